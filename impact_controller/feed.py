"""Work item feed.

Turns the ordered package list into indexed WorkItems and hands them to
the workers through a bounded queue.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from .results import WorkItem
from .structured_logging import get_logger

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 10


def load_package_list(filename: str) -> list[str]:
    """Load a newline-delimited package list.

    Surrounding whitespace is stripped; blank lines and ``#`` comments are
    skipped.

    Raises:
        OSError: If the file cannot be read.
    """
    packages = []
    with open(filename, encoding="utf-8") as f:
        for line in f:
            slug = line.strip()
            if slug and not slug.startswith("#"):
                packages.append(slug)
    return packages


class WorkFeed:
    """Bounded hand-off of WorkItems to the worker pool."""

    def __init__(self, identifiers: Iterable[str], maxsize: int = DEFAULT_QUEUE_SIZE):
        self.items: list[WorkItem] = [
            WorkItem(index=i, identifier=slug) for i, slug in enumerate(identifiers)
        ]
        self._queue: asyncio.Queue[WorkItem | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.fed = 0

    def __len__(self) -> int:
        return len(self.items)

    @property
    def closed(self) -> bool:
        return self._closed

    async def produce(self, worker_count: int) -> None:
        """Feed every item, then one end-of-feed marker per worker."""
        for item in self.items:
            if self._closed:
                logger.info("Feed closed early", fed=self.fed, total=len(self.items))
                return
            await self._queue.put(item)
            self.fed += 1

        for _ in range(worker_count):
            if self._closed:
                return
            await self._queue.put(None)

    async def get(self) -> WorkItem | None:
        """Next item, or None once the feed is closed."""
        if self._closed:
            return None
        item = await self._queue.get()
        if self._closed:
            return None
        return item

    def close_early(self) -> None:
        """Stop handing out items; queued items are discarded.

        Getters already waiting stay blocked; ``WorkerPool.stop()`` cancels
        those idle workers.
        """
        self._closed = True
        dropped = 0
        while True:
            try:
                if self._queue.get_nowait() is not None:
                    dropped += 1
            except asyncio.QueueEmpty:
                break
        if dropped:
            logger.info("Discarded queued items", count=dropped)
