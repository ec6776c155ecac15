"""Deadline enforcement for the fetch stage.

Fetching consumer source goes over the network and can hang forever. The
guard races the fetch process against a deadline and, when the deadline
wins, kills the process group outright so the worker slot is released.
"""

from __future__ import annotations

import asyncio
import os
import time
from dataclasses import dataclass
from enum import Enum

from .exec_utils import kill_process_group, spawn
from .structured_logging import get_logger

logger = get_logger(__name__)


class GuardStatus(str, Enum):
    """How a guarded command ended."""

    COMPLETED_OK = "completed_ok"
    COMPLETED_FAILED = "completed_failed"
    TIMED_OUT = "timed_out"


@dataclass
class GuardOutcome:
    """Result of a guarded command."""

    status: GuardStatus
    exit_code: int | None
    duration_s: float
    pid: int | None = None
    reaped: bool = True

    @property
    def ok(self) -> bool:
        return self.status is GuardStatus.COMPLETED_OK

    @property
    def timed_out(self) -> bool:
        return self.status is GuardStatus.TIMED_OUT


class TimeoutGuard:
    """Run a command and abort it if it outlives ``timeout_s``."""

    def __init__(self, timeout_s: float, kill_grace_s: float = 5.0):
        """Initialize the guard.

        Args:
            timeout_s: Deadline for the command, in seconds.
            kill_grace_s: How long to wait for a killed process to be
                reaped before giving up on it.
        """
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {timeout_s}")
        self.timeout_s = timeout_s
        self.kill_grace_s = kill_grace_s

    async def run(
        self,
        argv: list[str],
        cwd: str,
        env: dict[str, str] | None,
        log_path: str | os.PathLike[str],
    ) -> GuardOutcome:
        """Run ``argv`` under the deadline.

        Raises:
            ValueError: If argv is invalid.
            OSError: If the process cannot be started.
        """
        start = time.monotonic()
        proc = await spawn(argv, cwd, env, log_path)

        try:
            exit_code = await asyncio.wait_for(proc.wait(), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Timed out", pid=proc.pid, timeout_s=self.timeout_s)
            reaped = await self._terminate(proc)
            return GuardOutcome(
                status=GuardStatus.TIMED_OUT,
                exit_code=proc.returncode,
                duration_s=time.monotonic() - start,
                pid=proc.pid,
                reaped=reaped,
            )
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise

        status = GuardStatus.COMPLETED_OK if exit_code == 0 else GuardStatus.COMPLETED_FAILED
        return GuardOutcome(
            status=status,
            exit_code=exit_code,
            duration_s=time.monotonic() - start,
            pid=proc.pid,
        )

    async def _terminate(self, proc: asyncio.subprocess.Process) -> bool:
        """Kill the process group and wait a bounded time for the exit.

        Returns True if the process was observed to exit. A slow or failed
        kill never blocks the caller past ``kill_grace_s``.
        """
        try:
            kill_process_group(proc)
        except OSError as e:
            logger.error("Failed to kill timed out process", pid=proc.pid, error=str(e))
            return False

        try:
            await asyncio.wait_for(asyncio.shield(proc.wait()), timeout=self.kill_grace_s)
        except asyncio.TimeoutError:
            logger.warning("Killed process not reaped yet, continuing", pid=proc.pid)
            return False
        return True
