"""Async subprocess execution for pipeline stages.

This module runs stage commands the same way everywhere:
1. Commands are argv lists, never shell strings
2. Each command gets its own session so the whole process group can be killed
3. Output goes to a log file inside the item's workspace
"""

from __future__ import annotations

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path

from .structured_logging import get_logger

logger = get_logger(__name__)


@dataclass
class ExecResult:
    """Result from a command execution."""

    ok: bool
    exit_code: int
    command: list[str]
    duration_s: float = 0.0
    log_path: str | None = None


def _validate_argv(argv: list[str]) -> None:
    """Validate that argv is a proper command list.

    Raises:
        ValueError: If argv is invalid.
    """
    if not isinstance(argv, list):
        raise ValueError(f"argv must be a list, got {type(argv).__name__}")

    if len(argv) == 0:
        raise ValueError("argv must not be empty")

    for i, arg in enumerate(argv):
        if not isinstance(arg, str):
            raise ValueError(f"argv[{i}] must be a string, got {type(arg).__name__}")


async def spawn(
    argv: list[str],
    cwd: str,
    env: dict[str, str] | None,
    log_path: str | os.PathLike[str],
) -> asyncio.subprocess.Process:
    """Start ``argv`` in a new session with stdout and stderr sent to ``log_path``.

    The log file is created (truncated) before the process starts; the
    child keeps its own duplicate of the descriptor.

    Raises:
        ValueError: If argv is invalid.
        OSError: If the log file cannot be created or the executable
            cannot be started.
    """
    _validate_argv(argv)
    with open(log_path, "wb") as log:
        return await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=log,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )


async def run_command(
    argv: list[str],
    cwd: str,
    env: dict[str, str] | None,
    log_path: str | os.PathLike[str],
) -> ExecResult:
    """Run a command to completion; no timeout is applied.

    No signal is ever sent from here: cancelling the awaiting task only
    stops waiting for the command.

    Raises:
        ValueError: If argv is invalid.
        OSError: If the command cannot be started.
    """
    start = time.monotonic()
    proc = await spawn(argv, cwd, env, log_path)
    exit_code = await proc.wait()
    duration = time.monotonic() - start
    logger.debug("Command finished", command=argv[0], exit_code=exit_code, duration_s=round(duration, 3))
    return ExecResult(
        ok=exit_code == 0,
        exit_code=exit_code,
        command=argv,
        duration_s=duration,
        log_path=str(Path(log_path)),
    )


def kill_process_group(proc: asyncio.subprocess.Process) -> bool:
    """Send SIGKILL to the process group led by ``proc``.

    Falls back to killing the process alone when the group is already
    gone. Returns False if nothing could be signalled.
    """
    if proc.returncode is not None:
        return False
    try:
        os.killpg(proc.pid, signal.SIGKILL)
        return True
    except ProcessLookupError:
        return False
    except PermissionError as e:
        logger.warning("Cannot signal process group, killing process only", pid=proc.pid, error=str(e))
    try:
        proc.kill()
        return True
    except ProcessLookupError:
        return False
