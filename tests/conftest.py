"""Pytest configuration and shared fixtures."""

from typing import Any

import pytest

from tablemover.config import MoverConfig


@pytest.fixture
def config_data() -> dict[str, Any]:
    """Minimal valid configuration document."""
    return {
        "source": {
            "host": "db1.internal",
            "port": 5432,
            "user": "mover",
            "password": "secret",
            "database": "app",
            "schema": "public",
            "table": "events",
            "batch_size": 4,
        },
        "target": {
            "database": "archive",
        },
        "job": {
            "progress_interval": 0,
            "control_enabled": False,
        },
    }


@pytest.fixture
def mover_config(config_data: dict[str, Any]) -> MoverConfig:
    """Validated configuration moving public.events from app to archive."""
    return MoverConfig.model_validate(config_data)
