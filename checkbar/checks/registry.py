"""Check registry — merges all checkfiles into the canonical working set.

Single source of truth for which checks exist. The orchestrator turns the
diff returned by ``reconcile`` into scheduler and state-store updates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator

from .checkfile import CheckDefinition, CheckFile, Section, discover_checkfiles, load_checkfile

logger = logging.getLogger(__name__)


@dataclass
class RegistryDiff:
    """What changed between two registry generations."""

    added: list[CheckDefinition] = field(default_factory=list)
    removed: list[CheckDefinition] = field(default_factory=list)
    changed: list[CheckDefinition] = field(default_factory=list)  # new definitions
    moved: list[CheckDefinition] = field(default_factory=list)  # section-only edits

    @property
    def empty(self) -> bool:
        return not (self.added or self.removed or self.changed or self.moved)

    def summary(self) -> str:
        return (
            f"+{len(self.added)} -{len(self.removed)} "
            f"~{len(self.changed)} moved={len(self.moved)}"
        )


def load_checkfiles(root: Path) -> list[CheckFile]:
    """Load every checkfile under ``root``; unreadable files are skipped."""
    checkfiles = []
    for path in discover_checkfiles(root):
        try:
            checkfiles.append(load_checkfile(path))
        except OSError as e:
            logger.warning("Cannot read checkfile %s: %s", path, e)
    return checkfiles


class CheckRegistry:
    """Maps check name to CheckDefinition across all loaded checkfiles."""

    def __init__(self) -> None:
        self._checks: dict[str, CheckDefinition] = {}
        self._checkfiles: list[CheckFile] = []

    # -- merge / reconcile -----------------------------------------------------

    @staticmethod
    def merge(checkfiles: Iterable[CheckFile]) -> dict[str, CheckDefinition]:
        """Merge checkfiles in path order. On a name collision the later file wins."""
        merged: dict[str, CheckDefinition] = {}
        for checkfile in sorted(checkfiles, key=lambda c: str(c.path)):
            if checkfile.hidden:
                continue
            for definition in checkfile.checks:
                previous = merged.pop(definition.name, None)
                if previous is not None:
                    logger.warning(
                        "Duplicate check name '%s': %s overrides %s",
                        definition.name, definition.path, previous.path,
                    )
                merged[definition.name] = definition
        return merged

    def reconcile(self, checkfiles: Iterable[CheckFile]) -> RegistryDiff:
        """Swap in a new generation of checkfiles and report what changed."""
        checkfiles = [c for c in checkfiles if not c.hidden]
        incoming = self.merge(checkfiles)
        diff = RegistryDiff()

        for name, old in self._checks.items():
            if name not in incoming:
                diff.removed.append(old)

        for name, new in incoming.items():
            old = self._checks.get(name)
            if old is None:
                diff.added.append(new)
            elif (old.command, old.directory) != (new.command, new.directory):
                diff.changed.append(new)
            elif old != new:
                diff.moved.append(new)

        self._checks = incoming
        self._checkfiles = sorted(checkfiles, key=lambda c: str(c.path))

        if not diff.empty:
            logger.info("Registry reconciled: %s (%d checks)", diff.summary(), len(incoming))
        return diff

    def load(self, root: Path) -> RegistryDiff:
        """Scan ``root`` and reconcile against it."""
        return self.reconcile(load_checkfiles(root))

    # -- queries ---------------------------------------------------------------

    def get(self, name: str) -> CheckDefinition | None:
        return self._checks.get(name)

    def names(self) -> list[str]:
        return list(self._checks)

    def definitions(self) -> list[CheckDefinition]:
        return list(self._checks.values())

    @property
    def checkfiles(self) -> list[CheckFile]:
        return list(self._checkfiles)

    def sections(self) -> list[Section]:
        """Sections of all checkfiles in path order, restricted to live checks."""
        result = []
        for checkfile in self._checkfiles:
            for section in checkfile.sections:
                names = tuple(
                    n for n in section.names
                    if n in self._checks and self._checks[n].path == checkfile.path
                )
                result.append(Section(title=section.title, names=names))
        return result

    def __contains__(self, name: object) -> bool:
        return name in self._checks

    def __iter__(self) -> Iterator[CheckDefinition]:
        return iter(self.definitions())

    def __len__(self) -> int:
        return len(self._checks)
