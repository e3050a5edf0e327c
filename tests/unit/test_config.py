"""Unit tests for configuration module."""

import os
from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError

from tablemover.config import (
    JobSettings,
    MoverConfig,
    SourceConfig,
    apply_overrides,
    load_config,
)
from tablemover.exceptions import ConfigError


def test_source_config_defaults() -> None:
    """Test source configuration defaults."""
    config = SourceConfig(database="app", table="events")
    assert config.host == "127.0.0.1"
    assert config.port == 5432
    assert config.schema_name == "public"
    assert config.charset == "UTF8"
    assert config.pool_size == 2
    assert config.batch_size == 500
    assert config.where is None
    assert config.address == "127.0.0.1:5432"


def test_source_config_zero_batch_size_means_default() -> None:
    """Test that batch_size 0 falls back to the default."""
    config = SourceConfig(database="app", table="events", batch_size=0)
    assert config.batch_size == 500


def test_source_config_blank_where_is_unset() -> None:
    """Test that a blank WHERE clause is treated as unset."""
    config = SourceConfig(database="app", table="events", where="   ")
    assert config.where is None


@pytest.mark.parametrize("charset", ["utf8", "UTF-8", "utf8mb4"])
def test_source_config_accepts_utf8(charset: str) -> None:
    """Test UTF-8 charset aliases."""
    assert SourceConfig(database="app", table="events", charset=charset).charset == charset


def test_source_config_rejects_other_charsets() -> None:
    """Test that non UTF-8 charsets are rejected."""
    with pytest.raises(ValidationError, match="only UTF8"):
        SourceConfig(database="app", table="events", charset="latin1")


def test_source_config_rejects_unsafe_table_name() -> None:
    """Test that table names are validated."""
    with pytest.raises(ValidationError, match="Invalid SQL identifier"):
        SourceConfig(database="app", table="events; DROP TABLE x")


def test_source_config_both_password_sources() -> None:
    """Test that password and password_env cannot both be set."""
    with pytest.raises(ValidationError, match="Cannot specify both"):
        SourceConfig(database="app", table="events", password="x", password_env="PW")


def test_get_password_from_env() -> None:
    """Test password lookup from environment."""
    os.environ["TABLEMOVER_TEST_PW"] = "from-env"
    try:
        config = SourceConfig(database="app", table="events", password_env="TABLEMOVER_TEST_PW")
        assert config.get_password() == "from-env"
    finally:
        del os.environ["TABLEMOVER_TEST_PW"]


def test_get_password_missing_env() -> None:
    """Test that an unset password variable is an error."""
    config = SourceConfig(database="app", table="events", password_env="TABLEMOVER_UNSET_PW")
    with pytest.raises(ValueError, match="TABLEMOVER_UNSET_PW"):
        config.get_password()


def test_get_password_plaintext_warns() -> None:
    """Test that a plaintext password works but warns."""
    config = SourceConfig(database="app", table="events", password="secret")
    with pytest.warns(UserWarning, match="not recommended"):
        assert config.get_password() == "secret"


def test_target_defaults_from_source(config_data: dict[str, Any]) -> None:
    """Test that unset target fields are taken from the source."""
    config = MoverConfig.model_validate(config_data)
    assert config.target.host == "db1.internal"
    assert config.target.port == 5432
    assert config.target.user == "mover"
    assert config.target.password == "secret"
    assert config.target.database == "archive"
    assert config.target.schema_name == "public"
    assert config.target.table == "events"
    assert config.target.charset == "UTF8"


def test_identical_source_and_target_rejected(config_data: dict[str, Any]) -> None:
    """Test that moving a table onto itself is rejected."""
    config_data["target"] = {}
    with pytest.raises(ValidationError, match="identical"):
        MoverConfig.model_validate(config_data)


def test_same_database_other_table_allowed(config_data: dict[str, Any]) -> None:
    """Test that a different table in the same database is accepted."""
    config_data["target"] = {"table": "events_archive"}
    config = MoverConfig.model_validate(config_data)
    assert config.target.database == "app"
    assert config.target.table == "events_archive"


@pytest.mark.parametrize("sleep", [0.0, 0.1, 2.5])
def test_job_sleep_valid(sleep: float) -> None:
    """Test valid sleep intervals."""
    assert JobSettings(sleep_seconds=sleep).sleep_seconds == sleep


def test_job_sleep_too_short() -> None:
    """Test that sub-100ms sleeps are rejected."""
    with pytest.raises(ValidationError, match="100ms"):
        JobSettings(sleep_seconds=0.05)


def test_job_progress_too_short() -> None:
    """Test that sub-second progress intervals are rejected."""
    with pytest.raises(ValidationError, match="1s"):
        JobSettings(progress_interval=0.5)


def test_job_negative_memory_rejected() -> None:
    """Test that a negative memory ceiling is rejected."""
    with pytest.raises(ValidationError):
        JobSettings(memory_limit_bytes=-1)


def test_control_socket_path_default(mover_config: MoverConfig) -> None:
    """Test default control socket path."""
    assert mover_config.control_socket_path == "/tmp/db1.internal-app-events.sock"


def test_control_socket_path_configured(config_data: dict[str, Any]) -> None:
    """Test configured control socket path."""
    config_data["job"]["control_socket"] = "/run/mover.sock"
    config = MoverConfig.model_validate(config_data)
    assert config.control_socket_path == "/run/mover.sock"


def test_apply_overrides(mover_config: MoverConfig) -> None:
    """Test that CLI overrides land in the right sections."""
    config = apply_overrides(
        mover_config,
        where="created_at < now() - interval '90 days'",
        batch_size=100,
        sleep_seconds=0.5,
        progress_interval=None,
        statistics=True,
    )
    assert config.source.where == "created_at < now() - interval '90 days'"
    assert config.source.batch_size == 100
    assert config.job.sleep_seconds == 0.5
    assert config.job.progress_interval == 0
    assert config.job.statistics is True
    assert mover_config.source.batch_size == 4


def test_apply_overrides_revalidates(mover_config: MoverConfig) -> None:
    """Test that invalid overrides are reported as ConfigError."""
    with pytest.raises(ConfigError, match="Invalid command-line override"):
        apply_overrides(mover_config, sleep_seconds=0.01)


def test_load_config(tmp_path: Path) -> None:
    """Test loading configuration with environment substitution."""
    os.environ["TABLEMOVER_TEST_DB"] = "app"
    try:
        config_file = tmp_path / "job.yaml"
        config_file.write_text(
            """
source:
  host: localhost
  password_env: PGPASSWORD
  database: ${TABLEMOVER_TEST_DB}
  table: events
  where: "created_at < '2024-01-01'"
target:
  database: ${TABLEMOVER_TEST_TARGET:-archive}
job:
  sleep_seconds: 1
  statistics: true
"""
        )
        config = load_config(config_file)
    finally:
        del os.environ["TABLEMOVER_TEST_DB"]

    assert config.source.database == "app"
    assert config.target.database == "archive"
    assert config.target.password_env == "PGPASSWORD"
    assert config.job.sleep_seconds == 1
    assert config.job.statistics is True


def test_load_config_missing_file(tmp_path: Path) -> None:
    """Test loading a configuration file that does not exist."""
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.yaml")


def test_load_config_empty_file(tmp_path: Path) -> None:
    """Test loading an empty configuration file."""
    config_file = tmp_path / "empty.yaml"
    config_file.write_text("")
    with pytest.raises(ConfigError, match="empty"):
        load_config(config_file)


def test_load_config_invalid_yaml(tmp_path: Path) -> None:
    """Test loading malformed YAML."""
    config_file = tmp_path / "bad.yaml"
    config_file.write_text("source: [unclosed")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(config_file)


def test_load_config_validation_error(tmp_path: Path) -> None:
    """Test loading a document missing required fields."""
    config_file = tmp_path / "invalid.yaml"
    config_file.write_text("source:\n  host: localhost\n")
    with pytest.raises(ConfigError, match="validation failed"):
        load_config(config_file)


def test_load_config_missing_env_var(tmp_path: Path) -> None:
    """Test that an unset variable without default is reported."""
    config_file = tmp_path / "env.yaml"
    config_file.write_text("source:\n  database: ${TABLEMOVER_NOT_SET}\n  table: events\n")
    with pytest.raises(ConfigError, match="TABLEMOVER_NOT_SET"):
        load_config(config_file)
