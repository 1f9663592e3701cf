"""State store — process-wide check name → current status + run history.

Readers (API, CLI) and writers (scheduler completions) run on different
threads; every update swaps in a new frozen CheckState under one lock, so a
reader never sees a half-written record.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable

from .checkfile import CheckDefinition
from .contract import CheckStatus, Evaluation
from .runner import RunResult


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class CheckState:
    """Current status of one registered check."""

    name: str
    status: CheckStatus = CheckStatus.PENDING
    changing: bool = False
    url: str | None = None
    info: tuple[tuple[str, str], ...] = ()
    section: str | None = None
    last_run: RunResult | None = None
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "section": self.section,
            "status": self.status.value,
            "changing": self.changing,
            "url": self.url,
            "info": [list(pair) for pair in self.info],
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class RunRecord:
    """One past run kept for the debug view."""

    run: RunResult
    status: CheckStatus

    def to_dict(self) -> dict[str, Any]:
        data = self.run.to_dict()
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class OverallStatus:
    """All checks folded into one badge."""

    status: CheckStatus
    changing: bool
    counts: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "changing": self.changing, "counts": self.counts}


class StateStore:
    """Thread-safe mapping of check name → CheckState."""

    def __init__(self, history_size: int = 20) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, CheckState] = {}
        self._history: dict[str, deque[RunRecord]] = {}
        self._history_size = max(history_size, 1)

    # -- writers ---------------------------------------------------------------

    def register(self, definition: CheckDefinition) -> CheckState:
        """Create a Pending state for a newly registered check."""
        state = CheckState(name=definition.name, section=definition.section)
        with self._lock:
            self._states[definition.name] = state
            self._history[definition.name] = deque(maxlen=self._history_size)
        return state

    def reset(self, definition: CheckDefinition) -> CheckState:
        """Back to Pending with no history (command changed)."""
        return self.register(definition)

    def set_section(self, name: str, section: str | None) -> None:
        with self._lock:
            state = self._states.get(name)
            if state is not None:
                self._states[name] = replace(state, section=section)

    def remove(self, name: str) -> bool:
        with self._lock:
            self._history.pop(name, None)
            return self._states.pop(name, None) is not None

    def apply(self, name: str, run: RunResult, evaluation: Evaluation) -> CheckState | None:
        """Record a finished run. Returns None if the check is no longer registered."""
        with self._lock:
            current = self._states.get(name)
            if current is None:
                return None
            state = replace(
                current,
                status=evaluation.status,
                changing=evaluation.changing,
                url=evaluation.url,
                info=evaluation.info,
                last_run=run,
                updated_at=_now(),
            )
            self._states[name] = state
            self._history[name].append(RunRecord(run=run, status=evaluation.status))
            return state

    # -- readers ---------------------------------------------------------------

    def get(self, name: str) -> CheckState | None:
        with self._lock:
            return self._states.get(name)

    def history(self, name: str) -> list[RunRecord]:
        """Past runs, newest first."""
        with self._lock:
            records = self._history.get(name)
            return list(reversed(records)) if records else []

    def snapshot(self, order: Iterable[str] | None = None) -> list[CheckState]:
        """Immutable copy of all states, optionally in a given name order."""
        with self._lock:
            if order is None:
                return list(self._states.values())
            return [self._states[n] for n in order if n in self._states]

    def overall(self) -> OverallStatus:
        states = self.snapshot()
        counts = {s.value: 0 for s in CheckStatus}
        for state in states:
            counts[state.status.value] += 1

        if counts[CheckStatus.ERROR.value]:
            status = CheckStatus.ERROR
        elif counts[CheckStatus.FAILING.value]:
            status = CheckStatus.FAILING
        elif counts[CheckStatus.PENDING.value]:
            status = CheckStatus.PENDING
        else:
            status = CheckStatus.OK

        return OverallStatus(
            status=status,
            changing=any(s.changing for s in states),
            counts=counts,
        )

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
