"""
Supervisor Liveness and the Blocking Wait.

The worker is launched, and relaunched after every non-zero exit, by an
external supervisor (systemd, a container runtime, a process manager). The
worker never restarts itself and implements no backoff; that policy belongs to
the supervisor.

What the worker must do is notice when the supervisor disappears, because it
is unsafe to keep writing heartbeats with nobody left to stop or restart the
process. It observes this passively, as one more file descriptor in its
blocking wait:

- `STREAMING_LAG_SUPERVISOR_FD`: the read end of a pipe whose write end the
  supervisor keeps open. EOF on it means the supervisor is gone.
- Otherwise, a `pidfd` for the parent process (Linux 5.3+), which becomes
  readable when the parent exits.
- Otherwise, nothing is watched.
"""

from __future__ import annotations

import os
import selectors
import stat
from dataclasses import dataclass

from streaming_lag_common.config import StreamingLagConfig
from streaming_lag_common.errors import ConfigFatal

from .logger import log_event
from .signals import Latch


class SupervisorWatch:
    """
    A file descriptor that becomes readable when the supervisor goes away.

    `fd` is None when no watch could be established.
    """

    def __init__(self, fd: int | None, source: str, owned: bool = True):
        self.fd = fd
        self.source = source
        self._owned = owned

    @classmethod
    def open(cls, config: StreamingLagConfig) -> SupervisorWatch:
        if config.supervisor_fd is not None:
            _check_inherited_fd(config.supervisor_fd)
            return cls(config.supervisor_fd, "supervisor_fd", owned=False)
        if hasattr(os, "pidfd_open"):
            ppid = os.getppid()
            try:
                return cls(os.pidfd_open(ppid), f"parent_pid:{ppid}")
            except OSError as exc:
                log_event("WARNING", "supervisor_watch_unavailable", reason=str(exc))
                return cls(None, "disabled")
        log_event("WARNING", "supervisor_watch_unavailable", reason="os.pidfd_open not supported")
        return cls(None, "disabled")

    @property
    def enabled(self) -> bool:
        return self.fd is not None

    def close(self) -> None:
        if self.fd is not None and self._owned:
            os.close(self.fd)
        self.fd = None


@dataclass(frozen=True)
class WakeReasons:
    """Why a `Waiter.wait` call returned."""

    latch: bool
    supervisor_gone: bool


class Waiter:
    """Blocks, without timeout, until the latch is set or the supervisor is gone."""

    def __init__(self, latch: Latch, watch: SupervisorWatch):
        self._selector = selectors.DefaultSelector()
        self._selector.register(latch.fileno(), selectors.EVENT_READ, "latch")
        if watch.enabled:
            self._selector.register(watch.fd, selectors.EVENT_READ, "supervisor")

    def wait(self) -> WakeReasons:
        ready = {key.data for key, _ in self._selector.select(timeout=None)}
        return WakeReasons(latch="latch" in ready, supervisor_gone="supervisor" in ready)

    def close(self) -> None:
        self._selector.close()


def _check_inherited_fd(fd: int) -> None:
    """
    Verifies that `fd` is an open pipe or socket this process can wait on.

    Raises:
        ConfigFatal: If the descriptor is closed or of another kind.
    """
    hint = (
        "STREAMING_LAG_SUPERVISOR_FD must name the read end of a pipe the "
        "supervisor keeps open and passes to the worker"
    )
    try:
        mode = os.fstat(fd).st_mode
    except OSError as exc:
        raise ConfigFatal(
            f"supervisor descriptor {fd} is not open: {exc.strerror}", hint=hint
        ) from exc
    if not (stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode)):
        raise ConfigFatal(f"supervisor descriptor {fd} is not a pipe or socket", hint=hint)
