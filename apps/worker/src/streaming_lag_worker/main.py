"""
Entrypoint for the Streaming Lag Worker.

Loads and validates the configuration, then hands control to the
`WorkerController` until it terminates. This is also where the crash-only
contract is enforced: every `WorkerFatal` is logged as a single fatal record
naming the worker and turned into a non-zero exit status. Restarting is left to
whatever supervises the process.

Run with:
    python -m streaming_lag_worker
or through the `streaming-lag-worker` console script.
"""

from __future__ import annotations

import sys

from pydantic import ValidationError

from streaming_lag_common.config import get_config
from streaming_lag_common.errors import ConfigFatal, WorkerFatal

from .controller import WorkerController
from .logger import configure_logging, log_event, log_fatal


def _run() -> int:
    try:
        config = get_config()
    except ValidationError as exc:
        raise ConfigFatal(f"invalid configuration: {exc}") from exc

    configure_logging(config.log_level, config.environment)
    log_event(
        "INFO",
        "starting",
        details={"config_summary": config.log_summary(redact_secrets=True)},
    )
    return WorkerController(config).run()


def main() -> int:
    """
    Runs the worker and converts its outcome into a process exit status.

    Returns:
        0 after a graceful terminate, the fatal error's exit code otherwise.
    """
    try:
        return _run()
    except WorkerFatal as exc:
        log_fatal(
            exc.message,
            hint=exc.hint,
            error_type=type(exc).__name__,
            code=getattr(exc, "code", None),
        )
        return exc.exit_code
    except Exception as exc:
        log_fatal("unexpected error", error=repr(exc))
        raise


if __name__ == "__main__":
    sys.exit(main())
