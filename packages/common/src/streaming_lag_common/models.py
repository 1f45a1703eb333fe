"""
SQLAlchemy Definition of the Heartbeat Table.

The probe writes to a single table, `streaming_lag_data`, with one
`timestamptz` column. The table is provisioned externally; this module only
describes it so that statements against it are built by SQLAlchemy rather than
by string formatting.

The table is declared without a schema. The schema the operator configured is
applied at execution time through `schema_translate_map` (see
`heartbeat_schema_map`), which lets the PostgreSQL dialect quote it properly
whatever characters it contains.
"""

from __future__ import annotations

from typing import Final

from sqlalchemy import TIMESTAMP, Column, MetaData, Table

HEARTBEAT_TABLE_NAME: Final[str] = "streaming_lag_data"

metadata_obj = MetaData()

streaming_lag_data = Table(
    HEARTBEAT_TABLE_NAME,
    metadata_obj,
    # The moment of the last heartbeat write. A replica reader computes
    # `clock_timestamp() - tstmp` to obtain the lag.
    Column("tstmp", TIMESTAMP(timezone=True)),
)


def heartbeat_schema_map(schema: str) -> dict[str | None, str]:
    """Returns the `schema_translate_map` that places the table in `schema`."""
    return {None: schema}
