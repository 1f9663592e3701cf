"""Check scheduler — one periodic timer per check, no overlapping runs.

Each check gets its own asyncio loop task that fires immediately and then
every ``interval`` seconds. A fire only starts a run when the previous run of
the same check has finished; otherwise it is dropped, never queued. Commands
run on worker threads so a slow check never blocks the event loop. Without a
global cap every check gets its own worker, so stalled checks cannot starve
the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from .checkfile import CheckDefinition
from .contract import evaluate
from .runner import RunResult, run_command
from .state import CheckState, StateStore

logger = logging.getLogger(__name__)

Runner = Callable[[CheckDefinition], RunResult]
Sleep = Callable[[float], Awaitable[Any]]


@dataclass
class _Timer:
    definition: CheckDefinition
    interval: float
    loop_task: asyncio.Task[None] | None = None
    in_flight: asyncio.Task[None] | None = None
    cancelled: bool = False
    executor: Executor | None = None  # own worker when runs are uncapped

    @property
    def running(self) -> bool:
        return self.in_flight is not None and not self.in_flight.done()


class CheckScheduler:
    """Owns the timers of all registered checks.

    Lifecycle:
        scheduler = CheckScheduler(store)
        scheduler.schedule(definition)   # inside a running event loop
        ...
        await scheduler.stop()

    The interval is captured when a timer is created; ``interval`` changes
    apply to timers scheduled afterwards.
    """

    def __init__(
        self,
        store: StateStore,
        runner: Runner = run_command,
        interval: float = 10,
        sleep: Sleep = asyncio.sleep,
        max_concurrent_runs: int = 0,
        executor: Executor | None = None,
        on_result: Callable[[CheckState], Any] | None = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.interval = interval
        self.on_result = on_result
        self._sleep = sleep
        self._owns_executor = executor is None
        if executor is None and max_concurrent_runs > 0:
            executor = ThreadPoolExecutor(max_workers=max_concurrent_runs, thread_name_prefix="check")
        self._executor = executor
        self._semaphore = asyncio.Semaphore(max_concurrent_runs) if max_concurrent_runs > 0 else None
        self._timers: dict[str, _Timer] = {}
        self._runs: set[asyncio.Task[None]] = set()

    # -- public API ------------------------------------------------------------

    def schedule(self, definition: CheckDefinition, periodic: bool = True) -> None:
        """Start firing a check now and then every interval.

        An existing timer with the same name is cancelled first. With
        ``periodic=False`` the check is only tracked and runs on ``run_now``.
        """
        self.cancel(definition.name)
        timer = _Timer(definition=definition, interval=self.interval)
        self._timers[definition.name] = timer
        if periodic:
            timer.loop_task = asyncio.create_task(
                self._timer_loop(timer), name=f"check-{definition.name}",
            )

    def update(self, definition: CheckDefinition) -> None:
        """Swap a definition in place without touching its timer."""
        timer = self._timers.get(definition.name)
        if timer is not None:
            timer.definition = definition

    def cancel(self, name: str) -> bool:
        """Stop future fires. A run in flight finishes but its result is discarded."""
        timer = self._timers.pop(name, None)
        if timer is None:
            return False
        timer.cancelled = True
        if timer.loop_task is not None:
            timer.loop_task.cancel()
        if timer.executor is not None:
            timer.executor.shutdown(wait=False)
        logger.debug("Cancelled timer for %s", name)
        return True

    def run_now(self, name: str) -> bool:
        """Fire a check outside its timer. False if unknown or already running."""
        timer = self._timers.get(name)
        if timer is None:
            return False
        return self._fire(timer)

    def is_running(self, name: str) -> bool:
        timer = self._timers.get(name)
        return timer is not None and timer.running

    def scheduled(self) -> list[str]:
        return list(self._timers)

    async def drain(self) -> None:
        """Wait for every run currently in flight."""
        await asyncio.sleep(0)  # let freshly scheduled timers make their first fire
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel all timers and abandon runs in flight."""
        timers = list(self._timers.values())
        for name in list(self._timers):
            self.cancel(name)
        loops = [t.loop_task for t in timers if t.loop_task is not None]
        if loops:
            await asyncio.gather(*loops, return_exceptions=True)

        runs = list(self._runs)
        for run in runs:
            run.cancel()
        if runs:
            await asyncio.gather(*runs, return_exceptions=True)

        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("Check scheduler stopped")

    # -- internals -------------------------------------------------------------

    def _fire(self, timer: _Timer) -> bool:
        name = timer.definition.name
        if timer.running:
            logger.debug("Check %s still running, skipping this fire", name)
            return False
        task = asyncio.create_task(self._execute(timer), name=f"run-{name}")
        timer.in_flight = task
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)
        return True

    async def _timer_loop(self, timer: _Timer) -> None:
        """Persistent loop that fires a single check at its interval."""
        name = timer.definition.name
        while not timer.cancelled:
            try:
                self._fire(timer)
                await self._sleep(timer.interval)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Timer error for check %s", name)
                await self._sleep(timer.interval)

    def _worker(self, timer: _Timer) -> Executor:
        """Shared pool when capped, otherwise a dedicated thread for this check."""
        if self._executor is not None:
            return self._executor
        if timer.executor is None:
            timer.executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix=f"check-{timer.definition.name}",
            )
        return timer.executor

    async def _run(self, timer: _Timer, definition: CheckDefinition) -> RunResult | None:
        if timer.cancelled:
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._worker(timer), self.runner, definition)

    async def _execute(self, timer: _Timer) -> None:
        definition = timer.definition
        try:
            if self._semaphore is not None:
                async with self._semaphore:
                    run = await self._run(timer, definition)
            else:
                run = await self._run(timer, definition)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Runner crashed for check %s", definition.name)
            return

        if run is None or timer.cancelled or self._timers.get(definition.name) is not timer:
            logger.debug("Discarding result of cancelled check %s", definition.name)
            return

        evaluation = evaluate(run)
        state = self.store.apply(definition.name, run, evaluation)
        if state is None:
            return

        logger.debug(
            "Check %s: %s (exit %d, %dms)",
            definition.name, state.status.value, run.exit_code, run.duration_ms,
        )
        if self.on_result:
            try:
                self.on_result(state)
            except Exception:
                logger.exception("Result callback error")
