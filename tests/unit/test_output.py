"""Unit tests for CLI output helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from tablemover.config import MoverConfig
from tablemover.job import ArchiveJob
from utils.output import format_duration, print_summary


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "00:00:00"), (59.9, "00:00:59"), (3725, "01:02:05")],
)
def test_format_duration(seconds: float, expected: str) -> None:
    """Test HH:MM:SS formatting."""
    assert format_duration(seconds) == expected


def test_job_summary(mover_config: MoverConfig) -> None:
    """Test the job summary document."""
    job = ArchiveJob(config=mover_config)
    job.start()
    job.start_time = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    job.end_time = job.start_time + timedelta(seconds=90)
    job.selected, job.inserted, job.deleted = 10, 10, 10

    summary = job.summary()

    assert summary["duration_seconds"] == 90
    assert summary["source"] == {
        "address": "db1.internal:5432",
        "database": "app",
        "schema": "public",
        "table": "events",
        "charset": "UTF8",
    }
    assert summary["target"]["database"] == "archive"
    assert summary["counts"] == {"selected": 10, "inserted": 10, "deleted": 10}


def test_print_summary(mover_config: MoverConfig, capsys: pytest.CaptureFixture[str]) -> None:
    """Test the printed statistics."""
    job = ArchiveJob(config=mover_config)
    job.start()
    job.finish()
    job.selected, job.inserted, job.deleted = 1234, 1234, 1230

    print_summary(job.summary(), title="Move Statistics")

    out = capsys.readouterr().out
    assert "Move Statistics" in out
    assert "db1.internal:5432" in out
    assert "public.events" in out
    assert "1,234" in out
    assert "1,230" in out
