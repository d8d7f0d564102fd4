"""Tests for the dispatcher, worker pool and batch processor."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from common.errors import UpstreamQuotaExceeded, UpstreamTransientError
from common.models import PriorityTier, QueueTask
from pipeline.queue import PriorityTaskQueue
from pipeline.workers import BatchProcessor, Dispatcher, WorkerPool


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def task(asset_id, tier=PriorityTier.HIGH, attempts=0):
    return QueueTask(asset_id=asset_id, tier=tier, attempts=attempts)


@pytest.mark.asyncio
class TestDispatcherFailurePolicy:
    def setup_method(self):
        self.clock = FakeClock()
        self.queue = PriorityTaskQueue(max_size=10, clock=self.clock)

    async def test_success_releases_asset(self):
        handler = AsyncMock()
        dispatcher = Dispatcher(self.queue, handler, workers=1)
        self.queue.enqueue(task("btc"))
        t = self.queue.pop_ready()
        assert await dispatcher.process(t) is True
        handler.assert_awaited_once_with(t)
        assert not self.queue.is_in_flight("btc")
        assert dispatcher.processed == 1

    async def test_transient_failure_is_retried_with_backoff(self):
        handler = AsyncMock(side_effect=UpstreamTransientError("coingecko"))
        dispatcher = Dispatcher(self.queue, handler, workers=1, max_attempts=3, base_delay=0.5)
        self.queue.enqueue(task("eth", PriorityTier.MEDIUM))

        assert await dispatcher.process(self.queue.pop_ready()) is False
        assert self.queue.pop_ready() is None          # waiting out the backoff
        self.clock.t += 0.5
        retry = self.queue.pop_ready()
        assert retry.asset_id == "eth"
        assert retry.attempts == 1
        assert retry.tier == PriorityTier.MEDIUM
        assert dispatcher.retried == 1

    async def test_backoff_doubles(self):
        dispatcher = Dispatcher(self.queue, AsyncMock(), base_delay=1.0)
        assert [dispatcher.retry_delay(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    async def test_dropped_after_max_attempts(self):
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        dispatcher = Dispatcher(self.queue, handler, max_attempts=3, base_delay=0)
        self.queue.enqueue(task("sol", attempts=2))
        assert await dispatcher.process(self.queue.pop_ready()) is False
        assert self.queue.size() == 0
        assert dispatcher.dropped == 1
        assert dispatcher.failures["sol"] == 1

    async def test_quota_error_is_not_retried(self):
        handler = AsyncMock(side_effect=UpstreamQuotaExceeded("coingecko"))
        dispatcher = Dispatcher(self.queue, handler, base_delay=0)
        self.queue.enqueue(task("ada"))
        assert await dispatcher.process(self.queue.pop_ready()) is False
        assert self.queue.size() == 0
        assert dispatcher.retried == 0
        assert dispatcher.dropped == 1
        assert not self.queue.is_in_flight("ada")

    async def test_retry_into_saturated_tier_is_dropped(self):
        queue = PriorityTaskQueue(max_size=1, clock=self.clock)
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        dispatcher = Dispatcher(queue, handler, base_delay=0)
        queue.enqueue(task("a"))
        popped = queue.pop_ready()
        queue.enqueue(task("b"))
        await dispatcher.process(popped)
        assert dispatcher.dropped == 1
        assert queue.size() == 1

    async def test_retry_behind_pending_task_is_superseded(self):
        handler = AsyncMock(side_effect=UpstreamTransientError("coingecko"))
        dispatcher = Dispatcher(self.queue, handler, base_delay=0)
        self.queue.enqueue(task("btc", PriorityTier.MEDIUM))
        running = self.queue.pop_ready()
        self.queue.enqueue(task("btc", PriorityTier.HIGH))
        assert await dispatcher.process(running) is False
        assert dispatcher.retried == 0
        assert dispatcher.superseded == 1
        assert dispatcher.dropped == 0
        pending = self.queue.pop_ready()
        assert pending.tier == PriorityTier.HIGH
        assert pending.attempts == 0

    async def test_stats(self):
        dispatcher = Dispatcher(self.queue, AsyncMock())
        assert dispatcher.stats() == {"processed": 0, "retried": 0, "superseded": 0, "dropped": 0, "failing_assets": 0}


@pytest.mark.asyncio
class TestDispatcherWorkers:
    async def test_workers_drain_dispatch_tiers_in_priority_order(self):
        queue = PriorityTaskQueue()
        seen = []

        async def handler(t):
            seen.append(t.asset_id)

        for name, tier in [("low", PriorityTier.LOW), ("high", PriorityTier.HIGH),
                           ("crit", PriorityTier.CRITICAL), ("batch", PriorityTier.BATCH)]:
            queue.enqueue(task(name, tier))

        dispatcher = Dispatcher(queue, handler, workers=1)
        dispatcher.start()
        for _ in range(100):
            if len(seen) == 3:
                break
            await asyncio.sleep(0.01)
        await dispatcher.stop()

        assert seen == ["crit", "high", "low"]
        # BATCH belongs to the batch processor
        assert queue.size(PriorityTier.BATCH) == 1


@pytest.mark.asyncio
class TestWorkerPool:
    async def test_concurrency_is_bounded(self):
        pool = WorkerPool(2)
        running = 0
        peak = 0

        async def job(_):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return True

        results = await pool.map(job, range(6))
        assert results == [True] * 6
        assert peak == 2

    async def test_map_returns_exceptions_in_place(self):
        pool = WorkerPool(3)

        async def job(x):
            if x == 1:
                raise ValueError("bad")
            return x

        results = await pool.map(job, [0, 1, 2])
        assert results[0] == 0
        assert isinstance(results[1], ValueError)
        assert results[2] == 2

    async def test_submit_after_shutdown(self):
        pool = WorkerPool(1)
        pool.shutdown()
        with pytest.raises(RuntimeError):
            await pool.submit(AsyncMock())


@pytest.mark.asyncio
class TestBatchProcessor:
    async def test_run_once_drains_in_groups(self):
        queue = PriorityTaskQueue()
        for i in range(7):
            queue.enqueue(task(f"coin-{i}", PriorityTier.BATCH))
        handler = AsyncMock()
        dispatcher = Dispatcher(queue, handler)
        processor = BatchProcessor(queue, dispatcher, batch_size=3, parallel=2)

        assert await processor.run_once() == 6
        assert handler.await_count == 6
        assert queue.size(PriorityTier.BATCH) == 1
        assert await processor.run_once() == 1

    async def test_run_once_empty(self):
        queue = PriorityTaskQueue()
        processor = BatchProcessor(queue, Dispatcher(queue, AsyncMock()))
        assert await processor.run_once() == 0

    async def test_failures_follow_dispatcher_policy(self):
        queue = PriorityTaskQueue()
        queue.enqueue(task("coin-1", PriorityTier.BATCH))
        dispatcher = Dispatcher(queue, AsyncMock(side_effect=RuntimeError("x")), base_delay=0)
        processor = BatchProcessor(queue, dispatcher, batch_size=10, parallel=1)
        assert await processor.run_once() == 0
        assert dispatcher.retried == 1
        assert queue.size(PriorityTier.BATCH) == 1
