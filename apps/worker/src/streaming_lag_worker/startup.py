"""
One-time Startup Validation of the Heartbeat Table.

Runs once, before the worker starts servicing timer events. It confirms that
the store is usable for the probe and leaves the heartbeat table in a known
state: exactly one row, stamped with the validation transaction's `now()`.
Every failure here is fatal; a restart by the supervisor simply runs this
again.
"""

from __future__ import annotations

from streaming_lag_common.db import ResultKind, StoreClient
from streaming_lag_common.errors import EnvironmentFatal, MissingHeartbeatTable

from .logger import log_event


def validate_environment(store: StoreClient) -> None:
    """
    Verifies the heartbeat table and resets it to a single fresh row.

    Steps, all in one transaction:
    1.  Count ordinary tables named `streaming_lag_data` in the configured
        schema. The count query must return exactly one non-NULL value.
    2.  Abort if the table is missing, with a hint about the schema setting.
    3.  Abort if the server is a standby, since it cannot accept writes.
    4.  Delete every row and insert one row stamped with `now()`.

    Raises:
        MissingHeartbeatTable: The table does not exist in the configured schema.
        EnvironmentFatal: The count query returned a malformed result, or the
            server is in recovery.
        StoreFatal: Any statement failed.
    """
    with store.transaction("verifying heartbeat table"):
        result = store.count_heartbeat_tables().require(ResultKind.ROWS, "count heartbeat tables")
        # The count query always yields one row; anything else means the
        # catalog query itself is broken.
        if result.rowcount != 1:
            raise EnvironmentFatal(f"got {result.rowcount} rows from a 'SELECT count()'")
        (count,) = result.rows[0]
        if count is None:
            raise EnvironmentFatal("'SELECT count()' returns NULL")
        if count == 0:
            raise MissingHeartbeatTable(store.schema)

        recovery = store.is_in_recovery().require(ResultKind.ROWS, "check recovery state")
        if recovery.rows and recovery.rows[0][0]:
            raise EnvironmentFatal(
                "server is in recovery; the heartbeat must be written on the primary"
            )

        store.clear_heartbeat().require(ResultKind.NO_ROWS, "clear heartbeat table")
        store.seed_heartbeat().require(ResultKind.NO_ROWS, "seed heartbeat row")

    log_event("INFO", "initialized, database objects validated", schema=store.schema)
