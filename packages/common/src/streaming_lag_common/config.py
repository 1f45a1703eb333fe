"""
Centralized Configuration Management for the Streaming Lag Probe.

This module is the single source of truth for the probe's settings. It uses
Pydantic's `BaseSettings` so that every value is typed and validated, whether it
comes from environment variables or from an env file.

Two kinds of settings exist:
- **Fixed for the process lifetime**: the target database and schema, and the
  PostgreSQL connection parameters. Changing them requires a restart.
- **Hot-reloadable**: `precision_ms`, the heartbeat interval. The worker
  re-reads its env file on SIGHUP via `load_config` and applies only this value.

Because environment variables take precedence over the env file and cannot be
changed from outside a running process, a reloadable `STREAMING_LAG_PRECISION`
should be set in the env file rather than in the process environment.

The model is frozen: a `StreamingLagConfig` is an immutable snapshot. A reload
produces a new snapshot instead of mutating the current one.
"""

from __future__ import annotations

import os
from typing import Final, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ENV_FILE: Final[str] = "deploy/.env"
CONFIG_FILE_ENV: Final[str] = "STREAMING_LAG_CONFIG_FILE"

# PostgreSQL truncates identifiers to NAMEDATALEN - 1 bytes.
MAX_IDENTIFIER_BYTES: Final[int] = 63
MAX_PRECISION_MS: Final[int] = 2**31 - 1


class StreamingLagConfig(BaseSettings):
    """
    Defines the complete configuration schema for the streaming lag probe.

    Each attribute maps to an environment variable through its alias. The
    class is organized into logical sections:
    - Runtime Environment: deployment name and logging threshold.
    - Heartbeat Target: which database and schema hold the heartbeat table,
      and how often it is written.
    - PostgreSQL Connection: how to reach the server.
    - Supervision: how the worker observes its supervisor's liveness.
    """

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        frozen=True,
    )

    # --- Runtime Environment ---
    environment: Literal["local", "dev", "staging", "prod"] = Field(
        default="local",
        alias="STREAMING_LAG_ENV",
        description="The deployment environment, reported in every log record.",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="STREAMING_LAG_LOG_LEVEL",
        description="Records below this level are not emitted.",
    )

    # --- Heartbeat Target ---
    target_database: str = Field(
        default="postgres",
        alias="STREAMING_LAG_DATABASE",
        description="Database holding the heartbeat table. Requires a restart to change.",
    )
    target_schema: str = Field(
        default="public",
        alias="STREAMING_LAG_SCHEMA",
        description=(
            "Schema holding the streaming_lag_data table. Must match the schema the "
            "table was created in. Requires a restart to change."
        ),
    )
    precision_ms: int = Field(
        default=5000,
        alias="STREAMING_LAG_PRECISION",
        description=(
            "Interval between heartbeat writes, in milliseconds. Reloaded on SIGHUP. "
            "Zero disarms the timer and stops heartbeat writes."
        ),
    )

    # --- PostgreSQL Connection ---
    pghost: str = Field(
        default="localhost", alias="PGHOST", description="Hostname of the PostgreSQL server."
    )
    pgport: int = Field(default=5432, alias="PGPORT", description="Port of the PostgreSQL server.")
    pguser: str = Field(
        default="postgres", alias="PGUSER", description="Role used to write the heartbeat."
    )
    pgpassword: str = Field(default="", alias="PGPASSWORD", description="Password for PGUSER.")
    connect_timeout_sec: int = Field(
        default=10,
        alias="STREAMING_LAG_CONNECT_TIMEOUT",
        description="Seconds to wait for the initial connection before giving up.",
    )

    # --- Supervision ---
    supervisor_fd: int | None = Field(
        default=None,
        alias="STREAMING_LAG_SUPERVISOR_FD",
        description=(
            "Inherited file descriptor (read end of a pipe held open by the "
            "supervisor). EOF on it means the supervisor is gone. When unset, "
            "the parent process is watched instead."
        ),
    )

    @field_validator("target_database", "target_schema")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        """
        Ensures a database or schema name is usable as a PostgreSQL identifier.

        Quoting is left to SQLAlchemy, so any characters are allowed except NUL,
        but the name must be non-empty and fit in PostgreSQL's identifier length
        limit; a longer name would be silently truncated by the server and never
        match.

        Raises:
            ValueError: If the name is empty, contains NUL, or is too long.
        """
        if not v:
            raise ValueError("identifier must not be empty")
        if "\x00" in v:
            raise ValueError("identifier must not contain NUL characters")
        if len(v.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
            raise ValueError(
                f"identifier {v!r} exceeds {MAX_IDENTIFIER_BYTES} bytes"
            )
        return v

    @field_validator("precision_ms")
    @classmethod
    def validate_precision(cls, v: int) -> int:
        """Rejects intervals outside [0, 2**31 - 1] milliseconds."""
        if not (0 <= v <= MAX_PRECISION_MS):
            raise ValueError(f"Invalid precision: {v} (must be 0-{MAX_PRECISION_MS} ms)")
        return v

    @field_validator("pgport")
    @classmethod
    def validate_pgport(cls, v: int) -> int:
        """Ensures the PostgreSQL port is within the valid TCP port range."""
        if not (1 <= v <= 65535):
            raise ValueError(f"Invalid PostgreSQL port: {v} (must be 1-65535)")
        return v

    @field_validator("connect_timeout_sec")
    @classmethod
    def validate_connect_timeout(cls, v: int) -> int:
        """Clamps the connect timeout to a reasonable range (1-300s)."""
        return max(1, min(v, 300))

    @field_validator("supervisor_fd")
    @classmethod
    def validate_supervisor_fd(cls, v: int | None) -> int | None:
        if v is not None and v < 0:
            raise ValueError(f"Invalid supervisor descriptor: {v} (must be >= 0)")
        return v

    def log_summary(self, redact_secrets: bool = True) -> dict[str, str | int | None]:
        """
        Generates a configuration summary suitable for logging at startup.

        Args:
            redact_secrets (bool): If True (the default), the password is
                replaced with '***'.

        Returns:
            dict[str, str | int | None]: The key configuration values.
        """
        return {
            "environment": self.environment,
            "target_database": self.target_database,
            "target_schema": self.target_schema,
            "precision_ms": self.precision_ms,
            "pghost": self.pghost,
            "pgport": self.pgport,
            "pguser": self.pguser,
            "pgpassword": "***" if redact_secrets and self.pgpassword else self.pgpassword,
            "supervisor_fd": self.supervisor_fd,
        }


def config_file_path() -> str:
    """Returns the env file the configuration is (re)loaded from."""
    return os.getenv(CONFIG_FILE_ENV, DEFAULT_ENV_FILE)


def load_config(env_file: str | None = None) -> StreamingLagConfig:
    """
    Builds a fresh configuration snapshot, bypassing the singleton.

    This is what a SIGHUP reload uses: it re-reads both the environment and the
    env file every time it is called.

    Args:
        env_file: The env file to read. Defaults to `config_file_path()`.

    Raises:
        pydantic.ValidationError: If any value fails validation.
    """
    return StreamingLagConfig(_env_file=env_file or config_file_path())


# This global variable holds the singleton instance of the configuration.
# It is initialized to None and lazy-loaded by the `get_config` function.
_config: StreamingLagConfig | None = None


def get_config() -> StreamingLagConfig:
    """
    Provides access to the global, singleton `StreamingLagConfig` instance.

    Returns:
        StreamingLagConfig: The configuration loaded at first use.

    Raises:
        pydantic.ValidationError: If the environment does not match the schema.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """
    Resets the global configuration singleton.

    Intended for tests, which change environment variables and then need the
    configuration to be loaded again.
    """
    global _config
    _config = None
