"""Orchestrator — the one object that wires the check pipeline together.

    watcher → checkfile parser → registry → scheduler → runner → contract → state store

Lifecycle:
    orchestrator = Orchestrator(settings)
    await orchestrator.start()
    ...
    await orchestrator.stop()
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from typing import Any

from .checks.checkfile import CheckDefinition, Section
from .checks.registry import CheckRegistry, RegistryDiff
from .checks.runner import RunResult, run_command
from .checks.scheduler import CheckScheduler, Runner, Sleep
from .checks.state import CheckState, OverallStatus, RunRecord, StateStore
from .checks.watcher import CheckfileWatcher
from .config import Settings

logger = logging.getLogger(__name__)


class Orchestrator:
    """Owns registry, state store, scheduler and watcher for one checks directory."""

    def __init__(
        self,
        config: Settings,
        runner: Runner | None = None,
        sleep: Sleep = asyncio.sleep,
        on_result: Callable[[CheckState], Any] | None = None,
    ) -> None:
        self.config = config
        self.root = config.checks_path
        self.registry = CheckRegistry()
        self.store = StateStore(history_size=config.history_size)
        self._runner = runner or functools.partial(
            run_command,
            scripts_dir=config.scripts_path,
            timeout=config.check_timeout or None,
        )
        self._sleep = sleep
        self._on_result = on_result
        self._scheduler: CheckScheduler | None = None
        self._watcher: CheckfileWatcher | None = None
        self._watch_task: asyncio.Task[None] | None = None
        self._running = False

    # -- lifecycle -------------------------------------------------------------

    @property
    def scheduler(self) -> CheckScheduler:
        if self._scheduler is None:
            self._scheduler = CheckScheduler(
                self.store,
                runner=self._runner,
                interval=self.config.check_run_interval,
                sleep=self._sleep,
                max_concurrent_runs=self.config.max_concurrent_runs,
                on_result=self._on_result,
            )
        return self._scheduler

    async def start(self, watch: bool = True) -> None:
        """Load all checkfiles, start every timer and the watcher."""
        if self._running:
            return
        self._running = True
        self.reload()
        if watch:
            self._watcher = CheckfileWatcher(
                self.root,
                poll_interval=self.config.watch_poll_interval,
                debounce=self.config.watch_debounce,
                sleep=self._sleep,
            )
            self._watch_task = asyncio.create_task(
                self._watch_loop(self._watcher), name="checkfile-watcher",
            )
        logger.info(
            "Orchestrator started: %d checks from %s (interval=%ss)",
            len(self.registry), self.root, self.scheduler.interval,
        )

    async def stop(self) -> None:
        self._running = False
        if self._watcher is not None:
            self._watcher.stop()
        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        # a later start() rebuilds everything from disk
        self.registry = CheckRegistry()
        self.store = StateStore(history_size=self.config.history_size)
        logger.info("Orchestrator stopped")

    # -- reconciliation --------------------------------------------------------

    def load(self) -> RegistryDiff:
        """Rescan the checks directory into the registry (no scheduling)."""
        return self.registry.load(self.root)

    def reload(self, periodic: bool = True) -> RegistryDiff:
        """Rescan and apply the diff to timers and states.

        Unchanged checks keep their timers and accumulated state.
        """
        diff = self.load()
        self.apply(diff, periodic=periodic)
        return diff

    def apply(self, diff: RegistryDiff, periodic: bool = True) -> None:
        scheduler = self.scheduler
        for definition in diff.removed:
            scheduler.cancel(definition.name)
            self.store.remove(definition.name)
        for definition in diff.changed:
            self.store.reset(definition)
            scheduler.schedule(definition, periodic=periodic)
        for definition in diff.moved:
            scheduler.update(definition)
            self.store.set_section(definition.name, definition.section)
        for definition in diff.added:
            self.store.register(definition)
            scheduler.schedule(definition, periodic=periodic)

    async def _watch_loop(self, watcher: CheckfileWatcher) -> None:
        try:
            async for batch in watcher.changes():
                logger.info("Checkfiles changed (%d paths), reloading", len(batch))
                try:
                    self.reload()
                except Exception:
                    logger.exception("Reload failed")
        except asyncio.CancelledError:
            pass

    # -- operations ------------------------------------------------------------

    def set_interval(self, seconds: float) -> None:
        """Interval for timers created from now on; running timers keep theirs."""
        if seconds <= 0:
            raise ValueError("interval must be positive")
        self.scheduler.interval = seconds
        logger.info("Check interval set to %ss for newly scheduled checks", seconds)

    def run_now(self, name: str) -> bool:
        """Run a check immediately. False when it is already in flight."""
        if name not in self.registry:
            raise KeyError(name)
        return self.scheduler.run_now(name)

    async def run_once(self, names: list[str] | None = None) -> list[CheckState]:
        """Load checkfiles and run each selected check exactly once."""
        self.reload(periodic=False)
        if names is None:
            selected = self.registry.names()
        else:
            selected = [n for n in names if n in self.registry]
        for name in selected:
            self.run_now(name)
        await self.scheduler.drain()
        return self.store.snapshot(order=selected)

    # -- read side -------------------------------------------------------------

    def snapshot(self) -> list[CheckState]:
        return self.store.snapshot(order=self.registry.names())

    def overall(self) -> OverallStatus:
        return self.store.overall()

    def sections(self) -> list[Section]:
        return self.registry.sections()

    def definition(self, name: str) -> CheckDefinition | None:
        return self.registry.get(name)

    def history(self, name: str) -> list[RunRecord]:
        return self.store.history(name)

    def last_run(self, name: str) -> RunResult | None:
        state = self.store.get(name)
        return state.last_run if state else None

    @property
    def watch_failure(self) -> str | None:
        return self._watcher.failed if self._watcher else None
