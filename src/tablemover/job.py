"""Per-run state: immutable settings plus the selected/inserted/deleted counters."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from tablemover.config import MoverConfig


@dataclass
class ArchiveJob:
    """One run of the mover.

    Each counter has a single writer: ``selected`` is advanced by the control
    loop after a fetch, ``inserted`` by the insert worker after the target
    commit and ``deleted`` by the delete worker after the source commit.
    """

    config: MoverConfig
    selected: int = 0
    inserted: int = 0
    deleted: int = 0
    estimated_rows: int = 0
    batches: int = 0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def start(self) -> None:
        """Record the start time."""
        self.start_time = datetime.now(timezone.utc)

    def finish(self) -> None:
        """Record the end time."""
        self.end_time = datetime.now(timezone.utc)

    @property
    def duration_seconds(self) -> float:
        """Seconds between start() and finish(), or up to now if still running."""
        if self.start_time is None:
            return 0.0
        end = self.end_time or datetime.now(timezone.utc)
        return (end - self.start_time).total_seconds()

    def counters(self) -> dict[str, int]:
        """Counters reached so far."""
        return {"selected": self.selected, "inserted": self.inserted, "deleted": self.deleted}

    def summary(self) -> dict[str, Any]:
        """Job summary printed by ``--statistics``."""
        source = self.config.source
        target = self.config.target
        return {
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
            "source": {
                "address": source.address,
                "database": source.database,
                "schema": source.schema_name,
                "table": source.table,
                "charset": source.charset,
            },
            "target": {
                "address": target.address,
                "database": target.database,
                "schema": target.schema_name,
                "table": target.table,
                "charset": target.charset,
            },
            "counts": self.counters(),
            "batches": self.batches,
            "estimated_rows": self.estimated_rows,
        }
