"""
Worker Lifecycle Controller.

This module owns the probe's main loop. It runs everything on the main thread:
signals only set flags (see `signals`), and this controller is the single
consumer that acts on them.

Lifecycle:
```
STARTING -> VALIDATING -> IDLE <-> PROCESSING -> SHUTTING_DOWN -> TERMINATED
```
- **STARTING**: install signal handlers, unblock signal delivery, connect to
  the store, open the supervisor watch.
- **VALIDATING**: run startup validation, then relax the session's commit
  durability. The timer is armed once both succeed.
- **IDLE**: block without timeout until a signal wakes the loop or the
  supervisor disappears. Supervisor loss aborts immediately.
- **PROCESSING**: drain pending flags in the fixed order terminate, reload,
  timer, each at most once per wake-up. Terminate ends the loop before any
  other flag is looked at.
- **SHUTTING_DOWN**: disarm the timer, release resources, exit with status 0.

Failure policy: any `WorkerFatal` raised along the way propagates out of
`run()` untouched. The entrypoint logs it and exits non-zero; the supervisor
restarts the process, which re-runs validation from a clean slate.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Final

from pydantic import ValidationError

from streaming_lag_common.config import StreamingLagConfig, load_config
from streaming_lag_common.db import ResultKind, StoreClient
from streaming_lag_common.errors import EXIT_OK, StoreFatal, SupervisorLost

from . import SERVICE_NAME
from .logger import log_event
from .signals import Latch, SignalBridge
from .startup import validate_environment
from .supervisor import SupervisorWatch, Waiter
from .timer import HeartbeatTimer

# Settings that are read once at startup. A reload that changes them is
# reported by name and otherwise ignored.
RESTART_REQUIRED: Final[tuple[str, ...]] = (
    "target_database",
    "target_schema",
    "pghost",
    "pgport",
    "pguser",
    "pgpassword",
    "connect_timeout_sec",
    "log_level",
    "environment",
    "supervisor_fd",
)


class WorkerState(Enum):
    STARTING = "starting"
    VALIDATING = "validating"
    IDLE = "idle"
    PROCESSING = "processing"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


def _connect_store(config: StreamingLagConfig) -> StoreClient:
    return StoreClient.connect(config, application_name=SERVICE_NAME)


class WorkerController:
    """
    Drives the probe from startup to exit.

    Collaborators are injectable so the loop can be exercised without a
    database, real signals or a real supervisor.

    Args:
        config: The startup configuration snapshot. Database and schema are
            taken from it for the whole life of the process.
        store_factory: Opens the store connection.
        config_loader: Produces a fresh configuration snapshot on reload.
        bridge: The signal bridge whose flags the loop drains.
        timer: The heartbeat interval timer.
        watch_factory: Opens the supervisor liveness watch.
        waiter_factory: Builds the blocking wait over the latch and the watch.
    """

    def __init__(
        self,
        config: StreamingLagConfig,
        *,
        store_factory: Callable[[StreamingLagConfig], StoreClient] = _connect_store,
        config_loader: Callable[[], StreamingLagConfig] = load_config,
        bridge: SignalBridge | None = None,
        timer: HeartbeatTimer | None = None,
        watch_factory: Callable[[StreamingLagConfig], SupervisorWatch] = SupervisorWatch.open,
        waiter_factory: Callable[[Latch, SupervisorWatch], Waiter] = Waiter,
    ):
        self.config = config
        self._precision_ms = config.precision_ms
        self._store_factory = store_factory
        self._config_loader = config_loader
        self._bridge = bridge or SignalBridge()
        self._timer = timer or HeartbeatTimer()
        self._watch_factory = watch_factory
        self._waiter_factory = waiter_factory
        self._state = WorkerState.STARTING
        self._store: StoreClient | None = None
        self._watch: SupervisorWatch | None = None
        self._waiter: Waiter | None = None
        self.heartbeats = 0

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def precision_ms(self) -> int:
        """The heartbeat interval currently in effect."""
        return self._precision_ms

    def run(self) -> int:
        """
        Runs the worker until a terminate request is drained.

        Returns:
            EXIT_OK after a graceful shutdown.

        Raises:
            WorkerFatal: On any startup, store, timer or supervisor failure.
        """
        self._start()

        self._state = WorkerState.VALIDATING
        validate_environment(self._store)
        with self._store.transaction("relaxing commit durability"):
            self._store.disable_synchronous_commit().require(
                ResultKind.NO_ROWS, "cannot SET synchronous_commit TO off"
            )

        self._timer.arm(self._precision_ms)
        self._state = WorkerState.IDLE
        log_event("INFO", "heartbeat_started", precision_ms=self._precision_ms)

        while True:
            reasons = self._waiter.wait()
            self._bridge.latch.reset()
            if reasons.supervisor_gone:
                raise SupervisorLost(f"supervisor gone ({self._watch.source}), bailing out")

            self._state = WorkerState.PROCESSING
            if not self._drain():
                break
            self._state = WorkerState.IDLE

        return self._shutdown()

    def _start(self) -> None:
        self._bridge.install()
        self._bridge.unblock()
        self._store = self._store_factory(self.config)
        self._watch = self._watch_factory(self.config)
        self._waiter = self._waiter_factory(self._bridge.latch, self._watch)

    def _drain(self) -> bool:
        """
        Acts on pending flags in priority order.

        Returns:
            False if a terminate request was seen, True otherwise.
        """
        pending = self._bridge.pending
        if pending.take_terminate():
            return False
        if pending.take_reload():
            self._reload()
        if pending.take_timer():
            self._write_heartbeat()
        return True

    def _reload(self) -> None:
        """Re-reads the configuration and applies a changed precision."""
        try:
            fresh = self._config_loader()
        except ValidationError as exc:
            log_event("ERROR", "reload_failed", error=str(exc), precision_ms=self._precision_ms)
            return

        for name in RESTART_REQUIRED:
            if getattr(fresh, name) != getattr(self.config, name):
                log_event("WARNING", "setting_requires_restart", setting=name)

        if fresh.precision_ms != self._precision_ms:
            log_event(
                "INFO", "precision_changed", old_ms=self._precision_ms, new_ms=fresh.precision_ms
            )
            self._precision_ms = fresh.precision_ms
            self._timer.arm(self._precision_ms)

    def _write_heartbeat(self) -> None:
        with self._store.transaction("updating heartbeat"):
            result = self._store.touch_heartbeat().require(
                ResultKind.NO_ROWS, "cannot update timestamp"
            )
            if result.rowcount != 1:
                raise StoreFatal(
                    f"heartbeat update touched {result.rowcount} rows, expected 1",
                    hint="a restart re-seeds the heartbeat table with a single row",
                )
        self.heartbeats += 1

    def _shutdown(self) -> int:
        self._state = WorkerState.SHUTTING_DOWN
        # Disarm before restoring handlers: SIGALRM's default action kills the process.
        self._timer.disarm()
        self._waiter.close()
        self._watch.close()
        self._store.close()
        self._bridge.restore()
        self._bridge.latch.close()
        self._state = WorkerState.TERMINATED
        log_event("INFO", "stopped", heartbeats=self.heartbeats)
        return EXIT_OK
