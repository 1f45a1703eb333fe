"""
Database Connection and the Store Client.

This module wraps every interaction the probe has with PostgreSQL. Unlike a
request-serving application, the probe holds exactly one connection for its
whole lifetime: it is opened once at startup and only replaced by restarting
the process. There is no pool to speak of and no reconnect logic.

Key Components:
- **Engine Factory**: `create_store_engine` builds a SQLAlchemy `Engine` on
  psycopg2 with a single pooled connection, tagged with an `application_name`
  so the probe's session is easy to find in `pg_stat_activity`.
- **StoreResult**: Every statement outcome is reported as a structured result
  that distinguishes rows, no rows, and failure with an error code. Driver
  errors are captured here instead of being raised, so that callers decide
  explicitly (via `StoreResult.require`) that a failure is fatal.
- **StoreClient**: Executes short transactions with explicit boundaries
  (`transaction`) and provides the handful of operations the worker needs.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any

from sqlalchemy import create_engine, delete, func, insert, select, text, update
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.sql import Executable

from .config import StreamingLagConfig
from .errors import EnvironmentFatal, StoreFatal
from .models import HEARTBEAT_TABLE_NAME, heartbeat_schema_map, streaming_lag_data

logger = logging.getLogger(__name__)

_COUNT_HEARTBEAT_TABLES = text(
    "SELECT count(1)"
    "  FROM pg_catalog.pg_class c"
    "  JOIN pg_catalog.pg_namespace n ON c.relnamespace = n.oid"
    " WHERE n.nspname = :schema"
    "   AND c.relname = :relname"
    "   AND c.relkind = 'r'"
)

_DISABLE_SYNCHRONOUS_COMMIT = text("SET synchronous_commit TO off")


class ResultKind(Enum):
    """The three possible outcomes of a store statement."""

    ROWS = "rows"
    NO_ROWS = "no_rows"
    FAILED = "failed"


@dataclass(frozen=True)
class StoreResult:
    """
    The structured outcome of one statement.

    Attributes:
        kind: Whether the statement produced rows, produced none, or failed.
        rows: The fetched rows, for `ROWS` results.
        rowcount: Rows fetched (`ROWS`) or affected (`NO_ROWS`); -1 on failure.
        code: The SQLSTATE, or the driver exception class name, for `FAILED`.
        message: The server's error message, for `FAILED`.
    """

    kind: ResultKind
    rows: tuple[tuple[Any, ...], ...] = ()
    rowcount: int = -1
    code: str | None = None
    message: str | None = None

    @classmethod
    def from_error(cls, exc: DBAPIError) -> StoreResult:
        orig = exc.orig
        code = getattr(orig, "pgcode", None) or type(orig).__name__
        message = str(orig).strip() if orig is not None else str(exc)
        return cls(ResultKind.FAILED, code=code, message=message)

    @property
    def failed(self) -> bool:
        return self.kind is ResultKind.FAILED

    def require(self, kind: ResultKind, action: str) -> StoreResult:
        """
        Returns this result if it has the expected kind, else raises.

        A failed statement, or one that returned a different kind of result
        than the caller expects, is fatal to the worker.

        Args:
            kind: The expected (non-failed) result kind.
            action: Short description of the operation, used in the message.

        Raises:
            StoreFatal: If the result is `FAILED` or not of `kind`.
        """
        if self.failed:
            raise StoreFatal(f"{action}: error code {self.code}: {self.message}", code=self.code)
        if self.kind is not kind:
            raise StoreFatal(f"{action}: expected {kind.value} result, got {self.kind.value}")
        return self


def get_database_url(config: StreamingLagConfig, driver: str = "postgresql+psycopg2") -> URL:
    """Builds the SQLAlchemy URL for the configured target database."""
    return URL.create(
        driver,
        username=config.pguser,
        password=config.pgpassword or None,
        host=config.pghost,
        port=config.pgport,
        database=config.target_database,
    )


def create_store_engine(config: StreamingLagConfig, application_name: str) -> Engine:
    """
    Creates the SQLAlchemy engine used by the probe.

    The pool is limited to a single connection with no overflow: the probe
    holds one session for its entire life, and session-level settings (such as
    `synchronous_commit`) must stick to it.

    Args:
        config: The startup configuration snapshot.
        application_name: Reported to the server; shown in `pg_stat_activity`.
    """
    return create_engine(
        get_database_url(config),
        pool_size=1,
        max_overflow=0,
        connect_args={
            "application_name": application_name,
            "connect_timeout": config.connect_timeout_sec,
        },
    )


class StoreClient:
    """
    Executes the probe's transactions over one long-lived connection.

    All heartbeat-table statements are built from `models.streaming_lag_data`
    and placed in the configured schema with `schema_translate_map`.
    """

    def __init__(self, connection: Connection, schema: str, engine: Engine | None = None):
        self._connection = connection.execution_options(
            schema_translate_map=heartbeat_schema_map(schema)
        )
        self._engine = engine
        self.schema = schema

    @classmethod
    def connect(cls, config: StreamingLagConfig, application_name: str) -> StoreClient:
        """
        Opens the connection the worker will hold until it exits.

        Raises:
            EnvironmentFatal: If the server cannot be reached or refuses the session.
        """
        engine = create_store_engine(config, application_name)
        try:
            connection = engine.connect()
        except DBAPIError as exc:
            engine.dispose()
            failure = StoreResult.from_error(exc)
            raise EnvironmentFatal(
                f"cannot connect to database {config.target_database!r}: {failure.message}"
            ) from exc
        return cls(connection, config.target_schema, engine=engine)

    @contextmanager
    def transaction(self, activity: str) -> Generator[StoreClient, None, None]:
        """
        Runs the enclosed statements in one explicit transaction.

        The transaction commits when the block exits normally and rolls back if
        an exception escapes it. A failing COMMIT is fatal.

        Usage:
        ```
        with store.transaction("updating heartbeat"):
            store.touch_heartbeat().require(ResultKind.NO_ROWS, "update heartbeat")
        ```

        Args:
            activity: What the transaction does; prefixed to fatal messages.

        Raises:
            StoreFatal: If BEGIN or COMMIT fails.
        """
        logger.debug("transaction started: %s", activity)
        try:
            trans = self._connection.begin()
        except DBAPIError as exc:
            raise self._fatal(f"{activity}: cannot begin transaction", exc) from exc
        try:
            yield self
            trans.commit()
        except DBAPIError as exc:
            if trans.is_active:
                trans.rollback()
            raise self._fatal(f"{activity}: commit failed", exc) from exc
        except Exception:
            if trans.is_active:
                trans.rollback()
            raise

    def execute(self, statement: Executable, parameters: dict[str, Any] | None = None) -> StoreResult:
        """
        Executes one statement and reports its outcome as a `StoreResult`.

        Driver errors are never raised from here; they become `FAILED` results.
        """
        try:
            cursor = self._connection.execute(statement, parameters)
            if cursor.returns_rows:
                rows = tuple(tuple(row) for row in cursor.fetchall())
                return StoreResult(ResultKind.ROWS, rows=rows, rowcount=len(rows))
            return StoreResult(ResultKind.NO_ROWS, rowcount=cursor.rowcount)
        except DBAPIError as exc:
            return StoreResult.from_error(exc)

    def count_heartbeat_tables(self) -> StoreResult:
        """Counts ordinary tables named `streaming_lag_data` in the configured schema."""
        return self.execute(
            _COUNT_HEARTBEAT_TABLES, {"schema": self.schema, "relname": HEARTBEAT_TABLE_NAME}
        )

    def is_in_recovery(self) -> StoreResult:
        """Asks the server whether it is a standby (and therefore read-only)."""
        return self.execute(select(func.pg_is_in_recovery()))

    def clear_heartbeat(self) -> StoreResult:
        return self.execute(delete(streaming_lag_data))

    def seed_heartbeat(self) -> StoreResult:
        return self.execute(insert(streaming_lag_data).values(tstmp=func.now()))

    def touch_heartbeat(self) -> StoreResult:
        """Sets the heartbeat row's timestamp to the transaction's `now()`."""
        return self.execute(update(streaming_lag_data).values(tstmp=func.now()))

    def disable_synchronous_commit(self) -> StoreResult:
        """
        Turns off synchronous commit for this session.

        The heartbeat is a monitoring signal, not data that must survive a
        crash. Without waiting for the WAL flush on every commit, the write
        latency stays small and the lag a replica reader measures stays close
        to the real replication delay.
        """
        return self.execute(_DISABLE_SYNCHRONOUS_COMMIT)

    def close(self) -> None:
        """Closes the connection and disposes of the engine."""
        self._connection.close()
        if self._engine is not None:
            self._engine.dispose()

    @staticmethod
    def _fatal(action: str, exc: DBAPIError) -> StoreFatal:
        failure = StoreResult.from_error(exc)
        return StoreFatal(f"{action}: error code {failure.code}: {failure.message}", code=failure.code)
