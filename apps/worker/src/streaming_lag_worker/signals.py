"""
Signal Bridge: turning asynchronous signals into flags the main loop drains.

Signal handlers in Python run on the main thread, between two bytecodes of
whatever the worker happens to be doing at that moment: halfway through a
transaction, inside a log call, or blocked in `select`. They therefore do the
bare minimum:

1.  set one sticky boolean in `PendingSignals`, and
2.  wake the main loop by writing a byte to a self-pipe (`Latch`).

Nothing else. No logging, no store access, no locks. In particular they do not
use `threading.Event`: its `set()` takes a non-reentrant lock that the
interrupted main thread may already be holding.

The flags are not a queue. Several SIGALRMs arriving before the loop wakes
collapse into one pending timer flag, which is exactly what a heartbeat needs.
"""

from __future__ import annotations

import os
import signal
from types import FrameType
from typing import Any

TERMINATE_SIGNALS = (signal.SIGTERM, signal.SIGINT)
RELOAD_SIGNAL = signal.SIGHUP
TIMER_SIGNAL = signal.SIGALRM


class Latch:
    """
    A self-pipe used to wake a blocking `select`.

    `set()` is idempotent: when the pipe is already full, the reader is already
    guaranteed to wake, so the write is dropped.
    """

    def __init__(self) -> None:
        self._read_fd, self._write_fd = os.pipe()
        os.set_blocking(self._read_fd, False)
        os.set_blocking(self._write_fd, False)

    def fileno(self) -> int:
        return self._read_fd

    def set(self) -> None:
        try:
            os.write(self._write_fd, b"\0")
        except BlockingIOError:
            pass

    def reset(self) -> None:
        """Consumes every pending wake-up byte."""
        while True:
            try:
                if not os.read(self._read_fd, 512):
                    return
            except BlockingIOError:
                return

    @property
    def closed(self) -> bool:
        return self._read_fd < 0

    def close(self) -> None:
        if self.closed:
            return
        os.close(self._read_fd)
        os.close(self._write_fd)
        self._read_fd = self._write_fd = -1


class PendingSignals:
    """
    The three sticky notification flags.

    Handlers only ever set a flag; the controller only ever clears one, through
    the `take_*` methods, after it has decided to act on it.
    """

    def __init__(self) -> None:
        self.terminate = False
        self.reload = False
        self.timer = False

    def take_terminate(self) -> bool:
        seen, self.terminate = self.terminate, False
        return seen

    def take_reload(self) -> bool:
        seen, self.reload = self.reload, False
        return seen

    def take_timer(self) -> bool:
        seen, self.timer = self.timer, False
        return seen


class SignalBridge:
    """Installs the handlers that feed `PendingSignals` and wake the `Latch`."""

    def __init__(self, pending: PendingSignals | None = None, latch: Latch | None = None):
        self.pending = pending or PendingSignals()
        self.latch = latch or Latch()
        self._previous: dict[int, Any] = {}

    # --- Handler entry points ---
    # Each one sets exactly its own flag and wakes the loop.

    def on_terminate(self, signum: int, frame: FrameType | None) -> None:
        self.pending.terminate = True
        self.latch.set()

    def on_reload(self, signum: int, frame: FrameType | None) -> None:
        self.pending.reload = True
        self.latch.set()

    def on_timer(self, signum: int, frame: FrameType | None) -> None:
        self.pending.timer = True
        self.latch.set()

    def _signal_map(self) -> dict[int, Any]:
        handlers: dict[int, Any] = {sig: self.on_terminate for sig in TERMINATE_SIGNALS}
        handlers[RELOAD_SIGNAL] = self.on_reload
        handlers[TIMER_SIGNAL] = self.on_timer
        return handlers

    def install(self) -> None:
        """Registers the handlers, remembering whatever was installed before."""
        for signum, handler in self._signal_map().items():
            self._previous[signum] = signal.signal(signum, handler)

    def unblock(self) -> None:
        """
        Removes the bridged signals from this thread's blocked mask.

        A supervisor may launch the worker with signals blocked; until they are
        unblocked, the handlers would never run.
        """
        signal.pthread_sigmask(signal.SIG_UNBLOCK, set(self._signal_map()))

    def restore(self) -> None:
        """Reinstates the handlers that were active before `install`."""
        for signum, previous in self._previous.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()
