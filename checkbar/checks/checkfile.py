"""Checkfile parser — turns checkfile text into ordered check definitions.

Grammar, one statement per line:

    #- Title        opens a section called "Title"
    #-              opens an untitled section (visual separator)
    # anything      comment
    name: command   a check; name runs up to the first ": "

Blank lines are ignored. Malformed lines become diagnostics and are skipped;
the rest of the file stays usable.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_SECTION = re.compile(r"^#-(?:\s+(?P<title>.*))?$")
_SEPARATOR = ": "


# ── Data models ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CheckDefinition:
    """A single check parsed from a checkfile."""

    name: str
    command: str
    path: Path  # checkfile the check came from
    directory: Path  # real (symlink-resolved) directory of the checkfile
    section: str | None = None


@dataclass(frozen=True)
class Section:
    """A run of checks opened by a ``#-`` line (or the top of the file)."""

    title: str | None
    names: tuple[str, ...] = ()


@dataclass(frozen=True)
class ParseDiagnostic:
    """A checkfile line that could not be parsed."""

    path: Path
    line_no: int
    line: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}:{self.line_no}: {self.message}: {self.line!r}"


@dataclass
class CheckFile:
    """Parsed contents of one checkfile."""

    path: Path
    real_path: Path
    checks: list[CheckDefinition] = field(default_factory=list)
    sections: list[Section] = field(default_factory=list)
    diagnostics: list[ParseDiagnostic] = field(default_factory=list)

    @property
    def hidden(self) -> bool:
        return is_hidden(self.path)


# ── Parsing ──────────────────────────────────────────────────────────────────


def is_hidden(path: Path) -> bool:
    return path.name.startswith(".")


def parse_checkfile(text: str, path: Path, directory: Path | None = None) -> CheckFile:
    """Parse checkfile text. Pure: no filesystem access.

    ``directory`` is the working directory assigned to every check; it
    defaults to ``path.parent`` and callers pass the resolved one.
    """
    directory = directory if directory is not None else path.parent
    result = CheckFile(path=path, real_path=path)

    title: str | None = None
    names: list[str] = []
    opened = False  # a "#-" line has been seen, so an empty section still counts

    def close_section() -> None:
        if names or opened:
            result.sections.append(Section(title=title, names=tuple(names)))

    for line_no, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue

        match = _SECTION.match(line)
        if match:
            close_section()
            title = (match.group("title") or "").strip() or None
            names = []
            opened = True
            continue

        if line.startswith("#"):
            continue

        name, sep, command = line.partition(_SEPARATOR)
        name = name.strip()
        command = command.strip()
        if not sep:
            diag = ParseDiagnostic(path, line_no, line, "expected '<name>: <command>'")
        elif not name:
            diag = ParseDiagnostic(path, line_no, line, "check name is empty")
        elif not command:
            diag = ParseDiagnostic(path, line_no, line, "check command is empty")
        else:
            result.checks.append(
                CheckDefinition(
                    name=name,
                    command=command,
                    path=path,
                    directory=directory,
                    section=title,
                )
            )
            names.append(name)
            continue

        logger.warning("Skipping checkfile line: %s", diag)
        result.diagnostics.append(diag)

    close_section()
    return result


def load_checkfile(path: Path) -> CheckFile:
    """Read and parse a checkfile from disk.

    Checks run from the real directory of the file, so a symlinked checkfile
    runs next to its target.
    """
    real_path = path.resolve()
    text = path.read_text(encoding="utf-8", errors="replace")
    checkfile = parse_checkfile(text, path, directory=real_path.parent)
    checkfile.real_path = real_path
    return checkfile


# ── Discovery ────────────────────────────────────────────────────────────────


def discover_checkfiles(root: Path) -> list[Path]:
    """Find every non-hidden checkfile under ``root``, following symlinks.

    Hidden files and hidden directories are skipped. Symlinked directories are
    followed once; a loop back to an already visited directory is ignored.
    """
    if not root.is_dir():
        return []

    found: list[Path] = []
    visited: set[str] = set()

    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        real_dir = os.path.realpath(dirpath)
        if real_dir in visited:
            dirnames[:] = []
            continue
        visited.add(real_dir)

        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        for filename in filenames:
            candidate = Path(dirpath) / filename
            if is_hidden(candidate) or not candidate.is_file():
                continue
            found.append(candidate)

    return sorted(found)
