"""Command runner — executes one check's command as a child process.

Blocking: the scheduler calls ``run_command`` on its worker pool so
a slow check never holds up the event loop or the other checks' timers.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .checkfile import CheckDefinition

logger = logging.getLogger(__name__)

TIMEOUT_MARKER = "timed out"

# after a timeout kill, how long to wait for the pipes to drain
KILL_GRACE = 1.0


@dataclass(frozen=True)
class RunResult:
    """Outcome of one execution of a check command."""

    command: str
    directory: str
    exit_code: int
    stdout: str
    stderr: str
    started_at: str
    duration_ms: int
    failure: str | None = None  # set when the command could not run to completion

    @property
    def ok_exit(self) -> bool:
        return self.exit_code == 0 and self.failure is None

    def to_dict(self) -> dict[str, object]:
        return {
            "command": self.command,
            "directory": self.directory,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "started_at": self.started_at,
            "duration_ms": self.duration_ms,
            "failure": self.failure,
        }


def build_env(scripts_dir: Path | None = None) -> dict[str, str]:
    """Inherit the process environment with ``scripts_dir`` first on PATH."""
    env = dict(os.environ)
    if scripts_dir is not None:
        current = env.get("PATH", "")
        parts = [p for p in current.split(os.pathsep) if p]
        if str(scripts_dir) not in parts:
            env["PATH"] = os.pathsep.join([str(scripts_dir), *parts])
    return env


def _kill_tree(proc: subprocess.Popen[str]) -> None:
    """Kill the child and everything it spawned."""
    try:
        if sys.platform == "win32":
            proc.kill()
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except OSError:
        pass  # already gone, or a zombie we may not signal


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _close_pipes(proc: subprocess.Popen[str]) -> None:
    for pipe in (proc.stdout, proc.stderr):
        if pipe is not None:
            pipe.close()
    proc.poll()


def run_command(
    definition: CheckDefinition,
    scripts_dir: Path | None = None,
    timeout: float | None = None,
) -> RunResult:
    """Run a check's command through the shell and capture its output.

    Never raises for command failures: a spawn error or a timeout comes back
    as a RunResult with ``exit_code == -1`` and the reason in ``stderr``.
    """
    started_at = datetime.now(timezone.utc).isoformat()
    cwd = str(definition.directory)
    t0 = time.perf_counter()

    def elapsed() -> int:
        return int((time.perf_counter() - t0) * 1000)

    try:
        proc = subprocess.Popen(
            definition.command,
            shell=True,
            cwd=cwd,
            env=build_env(scripts_dir),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            start_new_session=sys.platform != "win32",
        )
    except OSError as e:
        message = f"Failed to start command: {e}"
        logger.debug("Check %s: %s", definition.name, message)
        return RunResult(
            command=definition.command, directory=cwd, exit_code=-1,
            stdout="", stderr=message, started_at=started_at,
            duration_ms=elapsed(), failure=message,
        )

    try:
        stdout, stderr = proc.communicate(timeout=timeout or None)
    except subprocess.TimeoutExpired:
        _kill_tree(proc)
        try:
            stdout, stderr = proc.communicate(timeout=KILL_GRACE)
        except subprocess.TimeoutExpired as e:
            # a detached grandchild still holds the pipes open
            stdout, stderr = _decode(e.output), _decode(e.stderr)
            _close_pipes(proc)
        message = f"Command {TIMEOUT_MARKER} after {timeout:g}s"
        logger.debug("Check %s: %s", definition.name, message)
        stderr = f"{stderr}\n{message}" if stderr else message
        return RunResult(
            command=definition.command, directory=cwd, exit_code=-1,
            stdout=stdout, stderr=stderr, started_at=started_at,
            duration_ms=elapsed(), failure=message,
        )

    return RunResult(
        command=definition.command,
        directory=cwd,
        exit_code=proc.returncode,
        stdout=stdout,
        stderr=stderr,
        started_at=started_at,
        duration_ms=elapsed(),
    )
