"""Reply collector and completion detection.

The collector is the only writer of the RunState. A run ends on whichever
happens first:

- every fed item has reported (natural completion), or
- an operator interrupt arrives (requested completion).

Both sources are separate events merged by a first-of race, so the
driver always learns which one fired. Results gathered up to that point
are valid either way.
"""

from __future__ import annotations

import asyncio
from enum import Enum

from .results import Reply, RunState
from .structured_logging import get_logger

logger = get_logger(__name__)


class CompletionReason(str, Enum):
    """Why a run ended."""

    ALL_RECEIVED = "all_received"
    INTERRUPTED = "interrupted"


class Collector:
    """Single consumer of the reply stream."""

    def __init__(self, expected: int, replies: asyncio.Queue[Reply]):
        self.expected = expected
        self.replies = replies
        self.state = RunState()
        self.all_received = asyncio.Event()
        self.stop_requested = asyncio.Event()
        if expected == 0:
            self.all_received.set()

    async def collect(self) -> None:
        """Receive replies until all expected have arrived."""
        while not self.all_received.is_set():
            reply = await self.replies.get()
            self._record(reply)

    def _record(self, reply: Reply) -> None:
        received = self.state.record(reply)
        logger.info(
            f"Processed {received}/{self.expected} replies",
            item=reply.index,
            package=reply.identifier,
            result=reply.classification.code,
        )
        if received >= self.expected:
            self.all_received.set()

    def request_stop(self) -> None:
        """External interruption (operator abort)."""
        if not self.stop_requested.is_set():
            logger.warning("Stop requested", received=self.state.received, expected=self.expected)
        self.stop_requested.set()

    async def wait_for_completion(self) -> CompletionReason:
        """Block until the first completion source fires and report which one."""
        waiters = {
            asyncio.create_task(self.all_received.wait()): CompletionReason.ALL_RECEIVED,
            asyncio.create_task(self.stop_requested.wait()): CompletionReason.INTERRUPTED,
        }
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiters:
                task.cancel()

        # Natural completion wins a tie: every reply is already in.
        if self.all_received.is_set():
            return CompletionReason.ALL_RECEIVED
        return waiters[next(iter(done))]

    def snapshot(self) -> RunState:
        """Copy of the state accumulated so far."""
        state = RunState()
        for reply in list(self.state.replies):
            state.record(reply)
        return state
