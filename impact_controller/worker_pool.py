"""Fixed-size worker pool running the stage pipeline.

Implements:
- C concurrent workers pulling WorkItems from the feed
- One Reply per claimed item, handed to the collector
- Best-effort stop: no new claims after a stop request. Idle workers
  exit at once; a worker mid-pipeline runs its current item to the end,
  and that late outcome is logged rather than reported.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from .feed import WorkFeed
from .results import Classification, Reply, WorkItem
from .structured_logging import get_logger

logger = get_logger(__name__)


class Pipeline(Protocol):
    async def run(self, item: WorkItem, worker_id: int | None = None) -> Reply: ...


class WorkerPool:
    """Pool of asyncio workers draining a WorkFeed."""

    def __init__(self, pipeline: Pipeline, concurrency: int):
        """Initialize worker pool.

        Args:
            pipeline: Object classifying one item per call.
            concurrency: Number of workers (maximum items in flight).
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.pipeline = pipeline
        self.concurrency = concurrency
        self.peak_in_flight = 0
        self._tasks: list[asyncio.Task[None]] = []
        self._busy: set[int] = set()
        self._stopping = False

    @property
    def in_flight(self) -> int:
        return len(self._busy)

    def start(self, feed: WorkFeed, replies: asyncio.Queue[Reply]) -> list[asyncio.Task[None]]:
        """Spawn the workers. Must be called from a running event loop."""
        self._tasks = [
            asyncio.create_task(self._worker(i, feed, replies), name=f"impact-worker-{i}")
            for i in range(self.concurrency)
        ]
        return self._tasks

    def stop(self) -> None:
        """Stop claiming new items.

        Workers waiting for an item are cancelled; workers mid-pipeline
        finish their current item and then exit.
        """
        self._stopping = True
        idle = [
            task for worker_id, task in enumerate(self._tasks)
            if worker_id not in self._busy and not task.done()
        ]
        for task in idle:
            task.cancel()
        logger.info("Stopped claiming items", idle=len(idle), in_flight=self.in_flight)

    async def join(self) -> None:
        """Wait for every worker to exit."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def cancel(self) -> None:
        """Cancel workers still running and wait for them to unwind."""
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.info("Cancelled workers", count=len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

    async def _worker(self, worker_id: int, feed: WorkFeed, replies: asyncio.Queue[Reply]) -> None:
        while not self._stopping:
            item = await feed.get()
            if item is None or self._stopping:
                break

            self._busy.add(worker_id)
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                reply = await self._process(worker_id, item)
            finally:
                self._busy.discard(worker_id)

            if self._stopping:
                logger.info(
                    "Finished after stop, not reported",
                    item=item.index,
                    package=item.identifier,
                    worker=worker_id,
                    result=reply.classification.code,
                )
                break
            await replies.put(reply)

        logger.debug("Worker exiting", worker=worker_id)

    async def _process(self, worker_id: int, item: WorkItem) -> Reply:
        try:
            return await self.pipeline.run(item, worker_id)
        except Exception as e:
            logger.exception(
                "Pipeline raised", exc=e, item=item.index, package=item.identifier, worker=worker_id
            )
            return Reply(
                item=item,
                classification=Classification.FAILED_UNEXPECTEDLY,
                detail=f"{type(e).__name__}: {e}",
                worker_id=worker_id,
            )
