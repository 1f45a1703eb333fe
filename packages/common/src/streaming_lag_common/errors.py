"""
Fatal Error Taxonomy for the Streaming Lag Worker.

The worker is crash-only: it never retries a failed store interaction and
never tries to repair its environment. Every condition it cannot operate under
is raised as a `WorkerFatal` subclass, logged once by the entrypoint, and
converted into a non-zero process exit. Restarting the process (and therefore
re-running startup validation) is the job of the external supervisor, which
relaunches the worker on non-zero exit with whatever backoff policy it chooses.

Keeping fatality in the exception hierarchy makes it explicit at every call
site: anything that is *not* a `WorkerFatal` is either handled locally (a bad
configuration reload) or is a programming error that propagates as-is.
"""

from __future__ import annotations

from typing import Final

EXIT_OK: Final[int] = 0
EXIT_FATAL: Final[int] = 1


class WorkerFatal(Exception):
    """
    Base class for every condition that terminates the worker.

    Attributes:
        exit_code: The process exit status to use. Always non-zero.
        hint: An optional corrective hint for the operator.
    """

    exit_code: int = EXIT_FATAL

    def __init__(self, message: str, *, hint: str | None = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class EnvironmentFatal(WorkerFatal):
    """The process environment is unusable (connection, timer, server role)."""


class MissingHeartbeatTable(EnvironmentFatal):
    """The heartbeat table does not exist in the configured schema."""

    def __init__(self, schema: str):
        super().__init__(
            f"table {schema}.streaming_lag_data not found",
            hint=(
                "STREAMING_LAG_SCHEMA must match the schema the streaming_lag_data "
                "table was created in"
            ),
        )
        self.schema = schema


class StoreFatal(WorkerFatal):
    """
    A store operation failed or returned something other than expected.

    Attributes:
        code: The SQLSTATE reported by the server, or the driver exception's
            class name when no SQLSTATE is available.
    """

    def __init__(self, message: str, *, code: str | None = None, hint: str | None = None):
        super().__init__(message, hint=hint)
        self.code = code


class ConfigFatal(WorkerFatal):
    """The startup configuration failed validation."""


class SupervisorLost(WorkerFatal):
    """The supervising process went away; the worker must bail out immediately."""
