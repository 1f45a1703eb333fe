"""Pytest configuration for streaming_lag_worker tests."""

from __future__ import annotations

import json
import signal
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import pytest

from streaming_lag_common.config import reset_config
from streaming_lag_common.db import ResultKind, StoreResult
from streaming_lag_worker.logger import configure_logging
from streaming_lag_worker.signals import Latch, SignalBridge
from streaming_lag_worker.supervisor import SupervisorWatch, WakeReasons

SETTINGS_ENV = [
    "STREAMING_LAG_ENV",
    "STREAMING_LAG_LOG_LEVEL",
    "STREAMING_LAG_DATABASE",
    "STREAMING_LAG_SCHEMA",
    "STREAMING_LAG_PRECISION",
    "STREAMING_LAG_CONNECT_TIMEOUT",
    "STREAMING_LAG_SUPERVISOR_FD",
    "STREAMING_LAG_CONFIG_FILE",
    "PGHOST",
    "PGPORT",
    "PGUSER",
    "PGPASSWORD",
]


@pytest.fixture(autouse=True)
def clean_settings_env(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Generator[None, None, None]:
    """Isolate every test from the developer's environment and env file."""
    for key in SETTINGS_ENV:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path_factory.mktemp("cwd"))
    reset_config()
    configure_logging("INFO", "local")
    yield
    reset_config()
    configure_logging("INFO", "local")


class FakeStore:
    """
    An in-memory stand-in for `StoreClient`.

    Rows are kept as a list of timestamps; a transaction that raises restores
    the rows it started with. Individual operations can be made to fail by
    putting a `StoreResult` into `fail` under the operation's name.
    """

    def __init__(
        self,
        schema: str = "public",
        table_exists: bool = True,
        rows: int = 0,
        in_recovery: bool = False,
    ):
        self.schema = schema
        self.table_exists = table_exists
        self.rows: list[datetime] = [datetime(2000, 1, 1, tzinfo=UTC)] * rows
        self.in_recovery = in_recovery
        self.fail: dict[str, StoreResult] = {}
        self.count_result: StoreResult | None = None
        self.transactions: list[str] = []
        self.operations: list[str] = []
        self.history: list[datetime] = []
        self.committed = 0
        self.rolled_back = 0
        self.synchronous_commit = True
        self.closed = False
        self.on_touch: Callable[[FakeStore], None] | None = None

    @contextmanager
    def transaction(self, activity: str) -> Generator[FakeStore, None, None]:
        self.transactions.append(activity)
        snapshot = list(self.rows)
        try:
            yield self
        except Exception:
            self.rows = snapshot
            self.rolled_back += 1
            raise
        self.committed += 1

    def _run(self, name: str, action: Callable[[], StoreResult]) -> StoreResult:
        self.operations.append(name)
        if name in self.fail:
            return self.fail[name]
        return action()

    def count_heartbeat_tables(self) -> StoreResult:
        if self.count_result is not None:
            self.operations.append("count")
            return self.count_result
        return self._run(
            "count",
            lambda: StoreResult(
                ResultKind.ROWS, rows=((1 if self.table_exists else 0,),), rowcount=1
            ),
        )

    def is_in_recovery(self) -> StoreResult:
        return self._run(
            "recovery",
            lambda: StoreResult(ResultKind.ROWS, rows=((self.in_recovery,),), rowcount=1),
        )

    def clear_heartbeat(self) -> StoreResult:
        def clear() -> StoreResult:
            count, self.rows = len(self.rows), []
            return StoreResult(ResultKind.NO_ROWS, rowcount=count)

        return self._run("clear", clear)

    def seed_heartbeat(self) -> StoreResult:
        def seed() -> StoreResult:
            self.rows.append(datetime.now(UTC))
            return StoreResult(ResultKind.NO_ROWS, rowcount=1)

        return self._run("seed", seed)

    def touch_heartbeat(self) -> StoreResult:
        def touch() -> StoreResult:
            now = datetime.now(UTC)
            self.rows = [now for _ in self.rows]
            self.history.append(now)
            if self.on_touch is not None:
                self.on_touch(self)
            return StoreResult(ResultKind.NO_ROWS, rowcount=len(self.rows))

        return self._run("touch", touch)

    def disable_synchronous_commit(self) -> StoreResult:
        def relax() -> StoreResult:
            self.synchronous_commit = False
            return StoreResult(ResultKind.NO_ROWS)

        return self._run("synchronous_commit", relax)

    def close(self) -> None:
        self.closed = True


class FakeTimer:
    """Records arm/disarm calls instead of touching the real interval timer."""

    def __init__(self) -> None:
        self.arms: list[int] = []
        self.disarmed = False
        self.interval_ms: int | None = None

    def arm(self, precision_ms: int) -> None:
        self.arms.append(precision_ms)
        self.interval_ms = precision_ms

    def disarm(self) -> None:
        self.disarmed = True
        self.interval_ms = None


Step = Callable[[SignalBridge], WakeReasons]


class ScriptedWaiter:
    """A waiter that replays a script of wake-ups, one per `wait()` call."""

    def __init__(self, bridge: SignalBridge, steps: list[Step]):
        self.bridge = bridge
        self.steps = list(steps)
        self.closed = False

    def wait(self) -> WakeReasons:
        if not self.steps:
            raise AssertionError("controller waited more often than scripted")
        return self.steps.pop(0)(self.bridge)

    def close(self) -> None:
        self.closed = True


def fire(*names: str) -> Step:
    """A wake-up after the named handlers ('terminate', 'reload', 'timer') ran."""

    def step(bridge: SignalBridge) -> WakeReasons:
        for name in names:
            getattr(bridge, f"on_{name}")(0, None)
        return WakeReasons(latch=True, supervisor_gone=False)

    return step


def supervisor_gone(*names: str) -> Step:
    """A wake-up reporting supervisor loss, optionally with flags also pending."""

    def step(bridge: SignalBridge) -> WakeReasons:
        for name in names:
            getattr(bridge, f"on_{name}")(0, None)
        return WakeReasons(latch=bool(names), supervisor_gone=True)

    return step


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def store_factory() -> type[FakeStore]:
    return FakeStore


@pytest.fixture
def fake_timer() -> FakeTimer:
    return FakeTimer()


@pytest.fixture
def bridge() -> Generator[SignalBridge, None, None]:
    """A real signal bridge, with the process's original handlers restored afterwards."""
    original = {
        signum: signal.getsignal(signum)
        for signum in (signal.SIGTERM, signal.SIGINT, signal.SIGHUP, signal.SIGALRM)
    }
    latch = Latch()
    yield SignalBridge(latch=latch)
    signal.setitimer(signal.ITIMER_REAL, 0)
    for signum, handler in original.items():
        signal.signal(signum, handler)
    latch.close()


@pytest.fixture
def disabled_watch() -> Callable[[Any], SupervisorWatch]:
    return lambda config: SupervisorWatch(None, "disabled")


@pytest.fixture
def script() -> dict[str, Callable[..., Step]]:
    return {"fire": fire, "supervisor_gone": supervisor_gone}


@pytest.fixture
def scripted_waiter(bridge: SignalBridge) -> Callable[[list[Step]], Callable[..., ScriptedWaiter]]:
    """Returns a factory that builds a `waiter_factory` replaying `steps`."""

    def build(steps: list[Step]) -> Callable[..., ScriptedWaiter]:
        waiter = ScriptedWaiter(bridge, steps)
        return lambda latch, watch: waiter

    return build


@pytest.fixture
def log_records(capsys: pytest.CaptureFixture[str]) -> Callable[[], list[dict[str, Any]]]:
    """Returns a callable parsing everything logged so far as JSON records."""

    def read() -> list[dict[str, Any]]:
        out = capsys.readouterr().out
        return [json.loads(line) for line in out.splitlines() if line.strip()]

    return read
