"""Pytest configuration for streaming_lag_common tests."""

from __future__ import annotations

from collections.abc import Generator
from unittest.mock import MagicMock

import pytest

from streaming_lag_common.config import reset_config

SETTINGS_ENV = [
    "STREAMING_LAG_ENV",
    "STREAMING_LAG_LOG_LEVEL",
    "STREAMING_LAG_DATABASE",
    "STREAMING_LAG_SCHEMA",
    "STREAMING_LAG_PRECISION",
    "STREAMING_LAG_CONNECT_TIMEOUT",
    "STREAMING_LAG_SUPERVISOR_FD",
    "STREAMING_LAG_CONFIG_FILE",
    "PGHOST",
    "PGPORT",
    "PGUSER",
    "PGPASSWORD",
]


@pytest.fixture(autouse=True)
def clean_settings_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Generator[None, None, None]:
    """Isolate every test from the developer's environment and env file."""
    for key in SETTINGS_ENV:
        monkeypatch.delenv(key, raising=False)
    # Point the default env file somewhere empty.
    monkeypatch.chdir(tmp_path_factory.mktemp("cwd"))
    reset_config()
    yield
    reset_config()


@pytest.fixture
def connection() -> MagicMock:
    """A stand-in for a SQLAlchemy Connection."""
    conn = MagicMock(name="connection")
    conn.execution_options.return_value = conn
    conn.begin.return_value.is_active = True
    return conn


def make_cursor(rows: list[tuple] | None = None, rowcount: int = -1) -> MagicMock:
    """Builds a fake CursorResult returning `rows`, or no rows when None."""
    cursor = MagicMock(name="cursor")
    cursor.returns_rows = rows is not None
    cursor.fetchall.return_value = rows or []
    cursor.rowcount = rowcount if rows is None else len(rows)
    return cursor


@pytest.fixture
def cursor_factory():
    return make_cursor
