"""Shared test fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from checkbar.checks.checkfile import CheckDefinition
from checkbar.checks.runner import RunResult
from checkbar.config import Settings

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")


def make_definition(name: str = "check", command: str = "true", directory: Path | None = None) -> CheckDefinition:
    directory = directory or Path("/tmp")
    return CheckDefinition(
        name=name,
        command=command,
        path=directory / "checks",
        directory=directory,
    )


def make_run(stdout: str = "", stderr: str = "", exit_code: int = 0, failure: str | None = None) -> RunResult:
    return RunResult(
        command="cmd",
        directory="/tmp",
        exit_code=exit_code,
        stdout=stdout,
        stderr=stderr,
        started_at="2025-01-01T00:00:00+00:00",
        duration_ms=5,
        failure=failure,
    )


@pytest.fixture
def checks_dir(tmp_path: Path) -> Path:
    """An empty checks directory."""
    root = tmp_path / "checks"
    root.mkdir()
    return root


@pytest.fixture
def config(checks_dir: Path) -> Settings:
    """Settings pointing at the temporary checks directory."""
    return Settings(
        checks_dir=str(checks_dir),
        check_run_interval=10,
        history_size=5,
        watch_poll_interval=0.01,
        watch_debounce=0.01,
    )
