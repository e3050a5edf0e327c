"""Configuration management using YAML and Pydantic."""

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from tablemover.exceptions import ConfigError
from utils import safe_identifier

DEFAULT_BATCH_SIZE = 500

# asyncpg always talks UTF-8 to the server.
_UTF8_ALIASES = {"utf8", "utf-8", "unicode", "utf8mb4"}


def _substitute_env_vars(value: str) -> str:
    """Substitute environment variables in string.

    Supports ${VAR} and ${VAR:-default} syntax.

    Args:
        value: String potentially containing env var references

    Returns:
        String with environment variables substituted
    """
    pattern = r"\$\{([^}:]+)(?::-([^}]*))?\}"

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2) if match.group(2) is not None else None
        env_value = os.getenv(var_name)
        if env_value is not None:
            return env_value
        if default is not None:
            return default
        raise ValueError(f"Environment variable {var_name} not set and no default provided")

    return re.sub(pattern, replacer, value)


def _substitute_env_in_dict(data: Any) -> Any:
    """Recursively substitute environment variables in a nested structure."""
    if isinstance(data, dict):
        return {key: _substitute_env_in_dict(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_in_dict(item) for item in data]
    elif isinstance(data, str):
        return _substitute_env_vars(data)
    return data


def _get_password(name: str, password_env: Optional[str], password: Optional[str]) -> str:
    if password_env:
        value = os.getenv(password_env)
        if value is None:
            raise ValueError(f"Environment variable {password_env} not set")
        return value
    if password is not None:
        import warnings

        warnings.warn(
            f"Using password from config file for database '{name}'. "
            f"This is not recommended for production. Use 'password_env' instead.",
            UserWarning,
            stacklevel=3,
        )
        return password
    return ""


class SourceConfig(BaseModel):
    """Source table configuration."""

    model_config = {"populate_by_name": True}

    host: str = Field(default="127.0.0.1", description="Database host")
    port: int = Field(default=5432, description="Database port", gt=0, lt=65536)
    user: str = Field(default="postgres", description="Database user")
    password_env: Optional[str] = Field(
        default=None,
        description="Environment variable name containing database password (preferred)",
    )
    password: Optional[str] = Field(
        default=None,
        description="Database password (development only - use password_env in production)",
    )
    database: str = Field(description="Database name", min_length=1)
    schema_name: str = Field(default="public", description="Schema name", alias="schema")
    table: str = Field(description="Source table name", min_length=1)
    charset: str = Field(default="UTF8", description="Client character set")
    pool_size: int = Field(default=2, description="Connection pool size", gt=0, le=10)
    where: Optional[str] = Field(
        default=None,
        description="WHERE clause selecting the rows to move; all rows when unset",
    )
    batch_size: int = Field(
        default=DEFAULT_BATCH_SIZE,
        description="Number of rows fetched per round (0 means the default)",
        ge=0,
    )

    @field_validator("charset")
    @classmethod
    def validate_charset(cls, v: str) -> str:
        """Only UTF-8 client encodings are supported."""
        if not v:
            raise ValueError("the source charset was specified with an empty value")
        if v.lower() not in _UTF8_ALIASES:
            raise ValueError(f"Unsupported charset: {v} (only UTF8 is supported)")
        return v

    @field_validator("schema_name", "table")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """Validate schema and table names."""
        safe_identifier(v)
        return v

    @field_validator("where")
    @classmethod
    def validate_where(cls, v: Optional[str]) -> Optional[str]:
        """Treat a blank WHERE clause as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("batch_size")
    @classmethod
    def default_batch_size(cls, v: int) -> int:
        """Zero falls back to the default batch size."""
        return v or DEFAULT_BATCH_SIZE

    @model_validator(mode="after")
    def validate_password_source(self) -> "SourceConfig":
        """Validate that at most one password source is provided."""
        if self.password_env and self.password is not None:
            raise ValueError(
                "Cannot specify both 'password_env' and 'password'. "
                "Use 'password_env' for production (recommended) or 'password' for development only."
            )
        return self

    @property
    def address(self) -> str:
        """Host and port as a single string."""
        return f"{self.host}:{self.port}"

    def get_password(self) -> str:
        """Get password from environment variable or config file.

        Returns:
            Database password (empty string when none is configured)

        Raises:
            ValueError: If the configured environment variable is not set
        """
        return _get_password(self.database, self.password_env, self.password)


class TargetConfig(BaseModel):
    """Target table configuration. Unset fields default to the source's values."""

    model_config = {"populate_by_name": True}

    host: Optional[str] = Field(default=None, description="Database host")
    port: Optional[int] = Field(default=None, description="Database port", gt=0, lt=65536)
    user: Optional[str] = Field(default=None, description="Database user")
    password_env: Optional[str] = Field(default=None)
    password: Optional[str] = Field(default=None)
    database: Optional[str] = Field(default=None, description="Database name")
    schema_name: Optional[str] = Field(default=None, description="Schema name", alias="schema")
    table: Optional[str] = Field(default=None, description="Target table name")
    charset: Optional[str] = Field(default=None, description="Client character set")
    pool_size: Optional[int] = Field(default=None, gt=0, le=10)

    @field_validator("charset")
    @classmethod
    def validate_charset(cls, v: Optional[str]) -> Optional[str]:
        """Only UTF-8 client encodings are supported."""
        if v is not None and v.lower() not in _UTF8_ALIASES:
            raise ValueError(f"Unsupported charset: {v} (only UTF8 is supported)")
        return v

    @field_validator("schema_name", "table")
    @classmethod
    def validate_identifier(cls, v: Optional[str]) -> Optional[str]:
        """Validate schema and table names."""
        if v is not None:
            safe_identifier(v)
        return v

    @model_validator(mode="after")
    def validate_password_source(self) -> "TargetConfig":
        """Validate that at most one password source is provided."""
        if self.password_env and self.password is not None:
            raise ValueError("Cannot specify both 'password_env' and 'password' for the target")
        return self

    @property
    def address(self) -> str:
        """Host and port as a single string."""
        return f"{self.host}:{self.port}"

    def get_password(self) -> str:
        """Get password from environment variable or config file."""
        return _get_password(self.database or "", self.password_env, self.password)


class JobSettings(BaseModel):
    """Pacing and safety limits of a run."""

    sleep_seconds: float = Field(
        default=0.0,
        description="Pause between batches in seconds (0 disables)",
        ge=0,
    )
    progress_interval: float = Field(
        default=5.0,
        description="Seconds between progress reports (0 disables)",
        ge=0,
    )
    memory_limit_bytes: int = Field(
        default=0,
        description="Maximum memory growth in bytes (0 means unlimited)",
        ge=0,
    )
    run_time_seconds: float = Field(
        default=0.0,
        description="Stop after this many seconds, between batches (0 means unlimited)",
        ge=0,
    )
    statistics: bool = Field(default=False, description="Print statistics after the run")
    statement_timeout_seconds: int = Field(
        default=1800,
        description="statement_timeout applied inside each batch transaction",
        gt=0,
    )
    control_enabled: bool = Field(default=True, description="Serve the pause/resume socket")
    control_socket: Optional[str] = Field(
        default=None,
        description="Unix socket path for pause/resume commands",
    )

    @field_validator("sleep_seconds")
    @classmethod
    def validate_sleep(cls, v: float) -> float:
        """Validate sleep interval."""
        if 0 < v < 0.1:
            raise ValueError("the value of sleep must be equal to 0 or greater than 100ms")
        return v

    @field_validator("progress_interval")
    @classmethod
    def validate_progress(cls, v: float) -> float:
        """Validate progress interval."""
        if 0 < v < 1:
            raise ValueError("the value of progress must be equal to 0 or greater than 1s")
        return v


class MonitoringConfig(BaseModel):
    """Monitoring and metrics configuration."""

    metrics_enabled: bool = Field(default=False, description="Enable Prometheus metrics endpoint")
    metrics_port: int = Field(
        default=8000,
        description="Port for Prometheus metrics endpoint",
        gt=0,
        lt=65536,
    )


class MoverConfig(BaseModel):
    """Root configuration model."""

    source: SourceConfig = Field(description="Source table")
    target: TargetConfig = Field(default_factory=TargetConfig, description="Target table")
    job: JobSettings = Field(default_factory=JobSettings, description="Run settings")
    monitoring: MonitoringConfig = Field(
        default_factory=MonitoringConfig,
        description="Monitoring and metrics configuration",
    )

    @model_validator(mode="after")
    def apply_defaults(self) -> "MoverConfig":
        """Fill unset target fields from the source and reject a self-move."""
        src, tgt = self.source, self.target
        if tgt.host is None:
            tgt.host = src.host
        if tgt.port is None:
            tgt.port = src.port
        if tgt.user is None:
            tgt.user = src.user
        if tgt.password_env is None and tgt.password is None:
            tgt.password_env = src.password_env
            tgt.password = src.password
        if tgt.database is None:
            tgt.database = src.database
        if tgt.schema_name is None:
            tgt.schema_name = src.schema_name
        if tgt.table is None:
            tgt.table = src.table
        if tgt.charset is None:
            tgt.charset = src.charset
        if tgt.pool_size is None:
            tgt.pool_size = src.pool_size

        if (
            src.host == tgt.host
            and src.port == tgt.port
            and src.database == tgt.database
            and src.schema_name == tgt.schema_name
            and src.table == tgt.table
        ):
            raise ValueError("the source and target tables are identical")
        return self

    @property
    def control_socket_path(self) -> str:
        """Configured control socket, or one derived from the source table."""
        if self.job.control_socket:
            return self.job.control_socket
        src = self.source
        return f"/tmp/{src.host}-{src.database}-{src.table}.sock"


def apply_overrides(config: MoverConfig, **overrides: Any) -> MoverConfig:
    """Return a re-validated copy of the configuration with CLI overrides applied.

    Args:
        config: Loaded configuration
        **overrides: where, batch_size, sleep_seconds, progress_interval,
            memory_limit_bytes, run_time_seconds, statistics; None means unset

    Raises:
        ConfigError: If the overridden configuration is invalid
    """
    data = config.model_dump(by_alias=True)
    for key, value in overrides.items():
        if value is None:
            continue
        if key in ("where", "batch_size"):
            data["source"][key] = value
        else:
            data["job"][key] = value
    try:
        return MoverConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid command-line override: {e}") from e


def load_config(config_path: Path) -> MoverConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated configuration object

    Raises:
        ConfigError: If configuration is invalid
    """
    try:
        with open(config_path, encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)

        if not raw_config:
            raise ConfigError("Configuration file is empty", context={"path": str(config_path)})

        config_data = _substitute_env_in_dict(raw_config)

        return MoverConfig.model_validate(config_data)

    except ConfigError:
        raise
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {config_path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in configuration file: {e}") from e
    except Exception as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e
