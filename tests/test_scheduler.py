"""Tests for the check scheduler: timers, no-overlap, cancellation."""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable

from checkbar.checks.checkfile import CheckDefinition
from checkbar.checks.contract import CheckStatus
from checkbar.checks.runner import RunResult
from checkbar.checks.scheduler import CheckScheduler
from checkbar.checks.state import CheckState, StateStore

from conftest import make_definition, make_run


async def fast_sleep(_: float) -> None:
    """Fake clock: every interval elapses almost instantly."""
    await asyncio.sleep(0.001)


async def wait_for(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class RecordingRunner:
    """Thread-safe fake runner that tracks concurrency per check."""

    def __init__(self, delay: float = 0.0, stdout: str = '{"result": true}') -> None:
        self.delay = delay
        self.stdout = stdout
        self.lock = threading.Lock()
        self.calls: dict[str, int] = {}
        self.active: dict[str, int] = {}
        self.max_active: dict[str, int] = {}
        self.max_total = 0
        self.release = threading.Event()
        self.release.set()

    def __call__(self, definition: CheckDefinition) -> RunResult:
        name = definition.name
        with self.lock:
            self.calls[name] = self.calls.get(name, 0) + 1
            self.active[name] = self.active.get(name, 0) + 1
            self.max_active[name] = max(self.max_active.get(name, 0), self.active[name])
            self.max_total = max(self.max_total, sum(self.active.values()))
        try:
            time.sleep(self.delay)
            self.release.wait(timeout=5)
        finally:
            with self.lock:
                self.active[name] -= 1
        return make_run(stdout=self.stdout)


def _setup(*names: str, runner: RecordingRunner, **kwargs) -> tuple[StateStore, CheckScheduler, list[CheckDefinition]]:
    store = StateStore()
    defs = [make_definition(n) for n in names]
    for d in defs:
        store.register(d)
    scheduler = CheckScheduler(store, runner=runner, sleep=fast_sleep, **kwargs)
    return store, scheduler, defs


# ── Timers ───────────────────────────────────────────────────────────────────


class TestTimers:
    def test_fires_immediately_and_periodically(self) -> None:
        runner = RecordingRunner()

        async def scenario() -> StateStore:
            store, scheduler, defs = _setup("a", runner=runner, interval=0.001)
            scheduler.schedule(defs[0])
            await wait_for(lambda: runner.calls.get("a", 0) >= 3)
            await scheduler.stop()
            return store

        store = asyncio.run(scenario())
        assert store.get("a").status == CheckStatus.OK

    def test_no_overlap_when_clock_outpaces_runs(self) -> None:
        runner = RecordingRunner(delay=0.05)

        async def scenario() -> None:
            _, scheduler, defs = _setup("slow", runner=runner, interval=0.001)
            scheduler.schedule(defs[0])
            await asyncio.sleep(0.4)
            await scheduler.stop()

        asyncio.run(scenario())
        assert runner.max_active["slow"] == 1
        # ~400 fires happened, only a handful of runs
        assert 1 <= runner.calls["slow"] <= 12

    def test_different_checks_run_concurrently(self) -> None:
        barrier = threading.Barrier(2, timeout=3)
        seen: list[str] = []

        def runner(definition: CheckDefinition) -> RunResult:
            barrier.wait()  # only passes if both checks are in flight together
            seen.append(definition.name)
            return make_run(stdout='{"result": true}')

        async def scenario() -> StateStore:
            store = StateStore()
            scheduler = CheckScheduler(store, runner=runner, interval=60, sleep=asyncio.sleep)
            for name in ("a", "b"):
                d = make_definition(name)
                store.register(d)
                scheduler.schedule(d)
            await wait_for(lambda: len(seen) == 2)
            await scheduler.drain()
            await scheduler.stop()
            return store

        store = asyncio.run(scenario())
        assert sorted(seen) == ["a", "b"]
        assert store.get("a").status == CheckStatus.OK
        assert store.get("b").status == CheckStatus.OK

    def test_global_cap(self) -> None:
        runner = RecordingRunner(delay=0.02)

        async def scenario() -> None:
            _, scheduler, defs = _setup("a", "b", "c", runner=runner, interval=0.001, max_concurrent_runs=1)
            for d in defs:
                scheduler.schedule(d)
            await wait_for(lambda: all(runner.calls.get(n, 0) >= 1 for n in "abc"))
            await scheduler.stop()

        asyncio.run(scenario())
        assert runner.max_total == 1

    def test_runner_exception_does_not_kill_timer(self) -> None:
        calls: list[int] = []

        def runner(definition: CheckDefinition) -> RunResult:
            calls.append(1)
            raise RuntimeError("boom")

        async def scenario() -> None:
            store = StateStore()
            d = make_definition("bad")
            store.register(d)
            scheduler = CheckScheduler(store, runner=runner, interval=0.001, sleep=fast_sleep)
            scheduler.schedule(d)
            await wait_for(lambda: len(calls) >= 3)
            await scheduler.stop()

        asyncio.run(scenario())

    def test_on_result_callback(self) -> None:
        runner = RecordingRunner(stdout='{"result": false}')
        results: list[CheckState] = []

        async def scenario() -> None:
            _, scheduler, defs = _setup("a", runner=runner, interval=60, on_result=results.append)
            scheduler.schedule(defs[0], periodic=False)
            assert scheduler.run_now("a")
            await scheduler.drain()
            await scheduler.stop()

        asyncio.run(scenario())
        assert [r.status for r in results] == [CheckStatus.FAILING]

    def test_interval_captured_at_schedule_time(self) -> None:
        runner = RecordingRunner()

        async def scenario() -> tuple[float, float]:
            _, scheduler, defs = _setup("a", "b", runner=runner, interval=5)
            scheduler.schedule(defs[0], periodic=False)
            scheduler.interval = 7
            scheduler.schedule(defs[1], periodic=False)
            intervals = (scheduler._timers["a"].interval, scheduler._timers["b"].interval)
            await scheduler.stop()
            return intervals

        assert asyncio.run(scenario()) == (5, 7)


# ── run_now / cancel ─────────────────────────────────────────────────────────


class TestRunNowAndCancel:
    def test_run_now_is_dropped_while_running(self) -> None:
        runner = RecordingRunner()
        runner.release.clear()

        async def scenario() -> list[bool]:
            _, scheduler, defs = _setup("a", runner=runner, interval=60)
            scheduler.schedule(defs[0], periodic=False)
            outcomes = [scheduler.run_now("a")]
            await wait_for(lambda: runner.calls.get("a", 0) == 1)
            outcomes.append(scheduler.run_now("a"))
            assert scheduler.is_running("a")
            runner.release.set()
            await scheduler.drain()
            outcomes.append(scheduler.run_now("a"))
            await scheduler.drain()
            await scheduler.stop()
            return outcomes

        assert asyncio.run(scenario()) == [True, False, True]
        assert runner.calls["a"] == 2

    def test_run_now_unknown(self) -> None:
        async def scenario() -> bool:
            scheduler = CheckScheduler(StateStore())
            result = scheduler.run_now("nope")
            await scheduler.stop()
            return result

        assert asyncio.run(scenario()) is False

    def test_cancel_discards_in_flight_result(self) -> None:
        runner = RecordingRunner()
        runner.release.clear()
        results: list[CheckState] = []

        async def scenario() -> StateStore:
            store, scheduler, defs = _setup("a", runner=runner, interval=60, on_result=results.append)
            scheduler.schedule(defs[0])
            await wait_for(lambda: runner.calls.get("a", 0) == 1)
            assert scheduler.cancel("a")
            assert scheduler.scheduled() == []
            runner.release.set()
            await scheduler.drain()
            await scheduler.stop()
            return store

        store = asyncio.run(scenario())
        assert store.get("a").status == CheckStatus.PENDING
        assert results == []

    def test_reschedule_discards_old_run(self) -> None:
        runner = RecordingRunner()
        runner.release.clear()

        async def scenario() -> StateStore:
            store, scheduler, defs = _setup("a", runner=runner, interval=60)
            scheduler.schedule(defs[0])
            await wait_for(lambda: runner.calls.get("a", 0) == 1)
            scheduler.schedule(make_definition("a", command="new"), periodic=False)
            runner.release.set()
            await scheduler.drain()
            await scheduler.stop()
            return store

        store = asyncio.run(scenario())
        assert store.get("a").status == CheckStatus.PENDING

    def test_cancel_unknown(self) -> None:
        async def scenario() -> bool:
            scheduler = CheckScheduler(StateStore())
            result = scheduler.cancel("nope")
            await scheduler.stop()
            return result

        assert asyncio.run(scenario()) is False


# ── Independence ─────────────────────────────────────────────────────────────


class TestIndependence:
    def test_stalled_checks_do_not_starve_others(self) -> None:
        stalled = 40  # well past any shared thread pool's default size
        release = threading.Event()

        def runner(definition: CheckDefinition) -> RunResult:
            if definition.name != "fast":
                release.wait(timeout=10)
            return make_run(stdout='{"result": true}')

        async def scenario() -> CheckStatus:
            store = StateStore()
            scheduler = CheckScheduler(store, runner=runner, interval=60)
            for name in [f"stuck-{i}" for i in range(stalled)] + ["fast"]:
                d = make_definition(name)
                store.register(d)
                scheduler.schedule(d)
            try:
                await wait_for(lambda: store.get("fast").status != CheckStatus.PENDING)
                assert all(scheduler.is_running(f"stuck-{i}") for i in range(stalled))
                return store.get("fast").status
            finally:
                release.set()
                await scheduler.stop()

        assert asyncio.run(scenario()) == CheckStatus.OK
