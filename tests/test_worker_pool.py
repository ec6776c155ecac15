"""Tests for the worker pool."""

import asyncio

import pytest

from impact_controller.feed import WorkFeed
from impact_controller.results import Classification, Reply
from impact_controller.worker_pool import WorkerPool


class FakePipeline:
    """Classifies every item as passed after a short delay."""

    def __init__(self, delay=0.01, fail_index=None, gate=None, gated=None):
        self.delay = delay
        self.fail_index = fail_index
        self.gate = gate
        self.gated = range(10**6) if gated is None else gated
        self.started = []
        self.finished = []

    async def run(self, item, worker_id=None):
        self.started.append(item.index)
        if self.gate is not None and item.index in self.gated:
            await self.gate.wait()
        await asyncio.sleep(self.delay)
        self.finished.append(item.index)
        if item.index == self.fail_index:
            raise RuntimeError("boom")
        return Reply(item=item, classification=Classification.PASSED, worker_id=worker_id)


async def _drain(queue):
    replies = []
    while not queue.empty():
        replies.append(queue.get_nowait())
    return replies


class TestWorkerPool:
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            WorkerPool(FakePipeline(), 0)

    @pytest.mark.asyncio
    async def test_one_reply_per_item_within_concurrency_bound(self):
        feed = WorkFeed([f"pkg{i}" for i in range(20)], maxsize=4)
        replies = asyncio.Queue()
        pool = WorkerPool(FakePipeline(), concurrency=3)

        producer = asyncio.create_task(feed.produce(pool.concurrency))
        pool.start(feed, replies)
        await pool.join()
        await producer

        received = await _drain(replies)
        assert sorted(r.index for r in received) == list(range(20))
        assert 1 <= pool.peak_in_flight <= 3
        assert pool.in_flight == 0
        assert {r.worker_id for r in received} <= {0, 1, 2}

    @pytest.mark.asyncio
    async def test_pipeline_exception_becomes_failed_unexpectedly(self):
        feed = WorkFeed(["a", "b", "c"])
        replies = asyncio.Queue()
        pool = WorkerPool(FakePipeline(fail_index=1), concurrency=2)

        producer = asyncio.create_task(feed.produce(pool.concurrency))
        pool.start(feed, replies)
        await pool.join()
        await producer

        by_index = {r.index: r for r in await _drain(replies)}
        assert len(by_index) == 3
        assert by_index[1].classification is Classification.FAILED_UNEXPECTEDLY
        assert by_index[1].detail == "RuntimeError: boom"
        assert by_index[0].passed and by_index[2].passed

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_items_finish_without_new_claims(self):
        gate = asyncio.Event()
        pipeline = FakePipeline(gate=gate)
        feed = WorkFeed([f"pkg{i}" for i in range(10)])
        replies = asyncio.Queue()
        pool = WorkerPool(pipeline, concurrency=2)

        producer = asyncio.create_task(feed.produce(pool.concurrency))
        pool.start(feed, replies)
        while len(pipeline.started) < 2:
            await asyncio.sleep(0.01)

        pool.stop()
        assert pool.in_flight == 2
        gate.set()
        await asyncio.wait_for(pool.join(), timeout=1.0)
        producer.cancel()
        await asyncio.gather(producer, return_exceptions=True)

        # Finished after the stop: run to the end but not handed on.
        assert sorted(pipeline.finished) == [0, 1]
        assert pipeline.started == [0, 1]
        assert replies.empty()

    @pytest.mark.asyncio
    async def test_stop_releases_idle_workers_without_touching_busy_ones(self):
        gate = asyncio.Event()
        pipeline = FakePipeline(gate=gate, gated={0})
        # No end-of-feed markers: idle workers would wait forever.
        feed = WorkFeed(["busy"])
        replies = asyncio.Queue()
        pool = WorkerPool(pipeline, concurrency=3)

        await feed.produce(worker_count=0)
        tasks = pool.start(feed, replies)
        while pool.in_flight < 1:
            await asyncio.sleep(0.01)

        pool.stop()
        await asyncio.sleep(0.05)
        assert sum(t.done() for t in tasks) == 2
        assert pool.in_flight == 1

        gate.set()
        await asyncio.wait_for(pool.join(), timeout=1.0)

        assert pipeline.finished == [0]
        assert all(t.done() for t in tasks)

    @pytest.mark.asyncio
    async def test_cancel_interrupts_blocked_workers(self):
        pipeline = FakePipeline(gate=asyncio.Event())
        feed = WorkFeed(["a", "b"])
        replies = asyncio.Queue()
        pool = WorkerPool(pipeline, concurrency=2)

        producer = asyncio.create_task(feed.produce(pool.concurrency))
        pool.start(feed, replies)
        while len(pipeline.started) < 2:
            await asyncio.sleep(0.01)

        await asyncio.wait_for(pool.cancel(), timeout=1.0)
        await producer

        assert replies.empty()
