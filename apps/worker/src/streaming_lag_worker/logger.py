"""
Structured JSON Logging Utilities for the Streaming Lag Worker.

Every log record is a single line of JSON on stdout. The worker has no other
user interface, so these records are how an operator learns that the probe
started, that its environment checked out, and, above all, why it exited.

Standard Fields Automatically Included:
- `ts`: An ISO 8601 timestamp in UTC.
- `service`: The worker's name ("streaming_lag").
- `env`: The deployment environment.
- `version`: The semantic version of the running worker.
- `level`: The normalized log severity.
- `msg`: The primary, human-readable log message.

Records below the configured threshold (`STREAMING_LAG_LOG_LEVEL`) are dropped.
The threshold is read once, when the worker configures logging at startup.
"""

from __future__ import annotations

import json
import os
import sys
from datetime import UTC, datetime
from typing import Any

from . import SERVICE_NAME, __version__

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40, "CRITICAL": 50}

_env = os.getenv("STREAMING_LAG_ENV", "local")
_threshold = _LEVELS["INFO"]


def _normalize_level(level: str) -> str:
    """
    Ensures that a log level is a valid, uppercase string.

    An unknown level is reported as `INFO` rather than rejected.
    """
    level_upper = level.upper()
    return level_upper if level_upper in _LEVELS else "INFO"


def configure_logging(level: str, env: str) -> None:
    """Sets the minimum level emitted and the environment stamped on records."""
    global _threshold, _env
    _threshold = _LEVELS[_normalize_level(level)]
    _env = env


def _emit(level: str, msg: str, fields: dict[str, Any]) -> None:
    record = {
        "ts": datetime.now(UTC).isoformat(),
        "service": SERVICE_NAME,
        "env": _env,
        "version": __version__,
        "level": level,
        "msg": msg,
    }
    record.update(fields)
    print(json.dumps(record, separators=(",", ":"), default=str), file=sys.stdout, flush=True)


def log_event(level: str, msg: str, **fields: Any) -> None:
    """
    Emits a structured, single-line JSON log entry to standard output.

    Example:
    ```python
    log_event("INFO", "precision_changed", old_ms=5000, new_ms=1000)
    ```

    Args:
        level: The severity level of the log (e.g., "INFO", "ERROR").
        msg: The primary, human-readable log message.
        **fields: Extra key-value pairs added to the root of the JSON object.
    """
    normalized = _normalize_level(level)
    if _LEVELS[normalized] >= _threshold:
        _emit(normalized, msg, fields)


def log_fatal(msg: str, hint: str | None = None, **fields: Any) -> None:
    """
    Emits the record that accompanies a fatal exit.

    Fatal records are always emitted, regardless of the threshold, and carry
    `fatal: true` plus the corrective `hint` when one is known.
    """
    fields["fatal"] = True
    if hint is not None:
        fields["hint"] = hint
    _emit("CRITICAL", msg, fields)
