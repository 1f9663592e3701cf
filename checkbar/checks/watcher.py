"""Checkfile watcher — polls the checks directory and reports change batches.

The directory tree is scanned every ``poll_interval`` seconds. When the
signature of any checkfile changes, the watcher waits until the tree has been
quiet for ``debounce`` seconds, so an editor's save (write, rename, chmod)
becomes a single batch.

If the root disappears or becomes unreadable, the failure is logged once and
the stream of changes ends: no further reloads until restart.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path
from typing import Any

from .checkfile import discover_checkfiles

logger = logging.getLogger(__name__)

Signature = tuple[int, int, str]  # mtime_ns, size, real path
Sleep = Callable[[float], Awaitable[Any]]


class WatchError(Exception):
    """Raised when the checks directory can no longer be watched."""


def diff_signatures(old: dict[Path, Signature], new: dict[Path, Signature]) -> set[Path]:
    """Paths added, removed or modified between two scans."""
    changed = set(old.keys() ^ new.keys())
    changed.update(p for p in old.keys() & new.keys() if old[p] != new[p])
    return changed


class CheckfileWatcher:
    """Turns filesystem changes under ``root`` into debounced batches."""

    def __init__(
        self,
        root: Path,
        poll_interval: float = 1.0,
        debounce: float = 0.5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.root = root
        self.poll_interval = poll_interval
        self.debounce = debounce
        self._sleep = sleep
        self._running = False
        self.failed: str | None = None

    def scan(self) -> dict[Path, Signature]:
        """Signature of every checkfile under root. Raises WatchError."""
        if not self.root.is_dir():
            raise WatchError(f"checks directory not found: {self.root}")
        if not os.access(self.root, os.R_OK | os.X_OK):
            raise WatchError(f"checks directory not readable: {self.root}")

        signatures: dict[Path, Signature] = {}
        for path in discover_checkfiles(self.root):
            try:
                st = path.stat()
            except OSError:
                continue  # vanished between listing and stat
            signatures[path] = (st.st_mtime_ns, st.st_size, os.path.realpath(path))
        return signatures

    def stop(self) -> None:
        self._running = False

    async def changes(self) -> AsyncIterator[set[Path]]:
        """Yield one set of changed paths per settled burst of edits."""
        self._running = True
        try:
            current = self.scan()
        except WatchError as e:
            self._fail(e)
            return

        logger.info("Watching %s (%d checkfiles)", self.root, len(current))
        pending: set[Path] = set()

        while self._running:
            await self._sleep(self.debounce if pending else self.poll_interval)
            if not self._running:
                break
            try:
                latest = self.scan()
            except WatchError as e:
                self._fail(e)
                return

            changed = diff_signatures(current, latest)
            current = latest
            if changed:
                pending |= changed
                continue  # still settling
            if pending:
                batch, pending = pending, set()
                logger.debug("Checkfile change batch: %s", sorted(str(p) for p in batch))
                yield batch

    def _fail(self, error: WatchError) -> None:
        self.failed = str(error)
        self._running = False
        logger.error("Checkfile watcher stopped, reloads disabled until restart: %s", error)
