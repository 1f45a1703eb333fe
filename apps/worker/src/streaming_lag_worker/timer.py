"""
Interval timer that paces heartbeat writes.

The timer is the process's real-time interval timer (`ITIMER_REAL`). Each
expiry delivers SIGALRM, which the Signal Bridge turns into a pending timer
flag. Arming sets the initial delay and the repeat interval to the same value,
and replaces any previous schedule in a single call, so a reload never leaves
two schedules running.
"""

from __future__ import annotations

import signal

from streaming_lag_common.errors import EnvironmentFatal

from .logger import log_event


class HeartbeatTimer:
    """Arms, re-arms and disarms the heartbeat interval timer."""

    def __init__(self) -> None:
        self._interval_ms: int | None = None

    @property
    def interval_ms(self) -> int | None:
        """The interval currently armed, or None before the first `arm`."""
        return self._interval_ms

    def arm(self, precision_ms: int) -> None:
        """
        Starts (or restarts) the timer with a period of `precision_ms`.

        A period of zero disarms the timer: heartbeat writes stop while the
        worker keeps running and keeps handling reloads.

        Raises:
            EnvironmentFatal: If the interval timer cannot be set.
        """
        seconds = precision_ms / 1000
        try:
            signal.setitimer(signal.ITIMER_REAL, seconds, seconds)
        except (signal.ItimerError, OSError) as exc:
            raise EnvironmentFatal(f"cannot start timer: {exc}") from exc
        self._interval_ms = precision_ms
        if precision_ms == 0:
            log_event("WARNING", "timer_disarmed", reason="precision is 0, heartbeat writes stopped")

    def disarm(self) -> None:
        signal.setitimer(signal.ITIMER_REAL, 0)
        self._interval_ms = None
