"""Worker pool, dispatcher and batch processor.

Dispatcher: N worker coroutines draining CRITICAL..LOW in strict priority.
BatchProcessor: periodically pulls BATCH tasks in groups of BATCH_SIZE and
runs PARALLEL_BATCHES groups at once through a WorkerPool.

Failure policy for one task:
  UpstreamQuotaExceeded → dropped, no retry (the budget will not come back soon)
  any other exception   → re-queued on its tier after base * 2**(attempt-1) s,
                          dropped after TASK_MAX_ATTEMPTS with a per-asset failure count
  a retry that finds an equal-or-better task already pending is superseded
"""
import asyncio
from collections import Counter
from typing import Any, Awaitable, Callable, Iterable

from common.errors import QueueSaturation, UpstreamQuotaExceeded
from common.logger import get_logger, new_trace_id
from common.models import PriorityTier, QueueTask
from config.settings import (BATCH_SIZE, BATCH_TIMEOUT, PARALLEL_BATCHES,
                             TASK_MAX_ATTEMPTS, TASK_RETRY_BASE_DELAY, WORKER_COUNT)
from pipeline.queue import PriorityTaskQueue

logger = get_logger("workers")

Handler = Callable[[QueueTask], Awaitable[Any]]

DISPATCH_TIERS = [PriorityTier.CRITICAL, PriorityTier.HIGH, PriorityTier.MEDIUM, PriorityTier.LOW]


class WorkerPool:
    """Runs coroutine jobs with at most *size* in progress."""

    def __init__(self, size: int):
        self.size = size
        self._sem = asyncio.Semaphore(size)
        self._shutdown = False

    async def submit(self, fn: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        if self._shutdown:
            raise RuntimeError("WorkerPool has been shut down")
        async with self._sem:
            return await fn(*args)

    async def map(self, fn: Callable[..., Awaitable[Any]], items: Iterable[Any]) -> list[Any]:
        """submit() for every item; exceptions are returned in place of results."""
        return await asyncio.gather(*(self.submit(fn, item) for item in items),
                                    return_exceptions=True)

    def shutdown(self) -> None:
        self._shutdown = True


class Dispatcher:
    def __init__(self, queue: PriorityTaskQueue, handler: Handler,
                 workers: int = WORKER_COUNT,
                 max_attempts: int = TASK_MAX_ATTEMPTS,
                 base_delay: float = TASK_RETRY_BASE_DELAY):
        self.queue = queue
        self.handler = handler
        self.workers = workers
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.processed = 0
        self.retried = 0
        self.superseded = 0
        self.dropped = 0
        self.failures: Counter[str] = Counter()
        self._tasks: list[asyncio.Task] = []
        self._running = False

    def retry_delay(self, attempts: int) -> float:
        return self.base_delay * 2 ** (attempts - 1)

    async def process(self, task: QueueTask) -> bool:
        """Run one task through the handler. True on success."""
        try:
            await self.handler(task)
            self.processed += 1
            return True
        except UpstreamQuotaExceeded as e:
            self.dropped += 1
            self.failures[task.asset_id] += 1
            logger.warning(f"{task.asset_id} dropped ({task.tier.name}): {e}")
            return False
        except Exception as e:
            self._retry_or_drop(task, e)
            return False
        finally:
            self.queue.mark_done(task.asset_id)

    def _retry_or_drop(self, task: QueueTask, error: Exception) -> None:
        attempts = task.attempts + 1
        if attempts >= self.max_attempts:
            self.dropped += 1
            self.failures[task.asset_id] += 1
            logger.error(f"❌ {task.asset_id} failed {attempts}x, dropping: {error}")
            return
        delay = self.retry_delay(attempts)
        retry = task.model_copy(update={"attempts": attempts})
        try:
            if not self.queue.enqueue(retry, delay=delay):
                self.superseded += 1
                logger.info(f"{task.asset_id} attempt {attempts} failed, retry superseded by a pending task: {error}")
                return
            self.retried += 1
            logger.warning(f"{task.asset_id} attempt {attempts} failed, retry in {delay:.1f}s: {error}")
        except QueueSaturation as e:
            self.dropped += 1
            self.failures[task.asset_id] += 1
            logger.error(f"❌ {task.asset_id} not re-queued: {e}")

    async def _worker(self, n: int) -> None:
        while self._running:
            task = await self.queue.dequeue(tiers=DISPATCH_TIERS, timeout=1.0)
            if task is None:
                continue
            new_trace_id(f"w{n}")
            await self.process(task)

    def start(self) -> list[asyncio.Task]:
        self._running = True
        self._tasks = [asyncio.create_task(self._worker(i), name=f"worker-{i}")
                       for i in range(self.workers)]
        logger.info(f"🚀 Dispatcher started with {self.workers} workers")
        return self._tasks

    async def stop(self) -> None:
        self._running = False
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    def stats(self) -> dict:
        return {
            "processed": self.processed,
            "retried": self.retried,
            "superseded": self.superseded,
            "dropped": self.dropped,
            "failing_assets": len(self.failures),
        }


class BatchProcessor:
    def __init__(self, queue: PriorityTaskQueue, dispatcher: Dispatcher,
                 batch_size: int = BATCH_SIZE, parallel: int = PARALLEL_BATCHES,
                 interval: float = BATCH_TIMEOUT):
        self.queue = queue
        self.dispatcher = dispatcher
        self.batch_size = batch_size
        self.interval = interval
        self.pool = WorkerPool(parallel)
        self._running = False
        self._task: asyncio.Task | None = None

    async def _run_group(self, group: list[QueueTask]) -> int:
        ok = 0
        for task in group:
            if await self.dispatcher.process(task):
                ok += 1
        return ok

    async def run_once(self) -> int:
        """Drain what is ready now. Returns the number of tasks that succeeded."""
        tasks = self.queue.drain(PriorityTier.BATCH, self.batch_size * self.pool.size)
        if not tasks:
            return 0
        groups = [tasks[i:i + self.batch_size] for i in range(0, len(tasks), self.batch_size)]
        results = await self.pool.map(self._run_group, groups)
        ok = sum(r for r in results if isinstance(r, int))
        logger.info(f"Batch: {ok}/{len(tasks)} tasks in {len(groups)} groups")
        return ok

    async def _loop(self) -> None:
        while self._running:
            new_trace_id("batch")
            await self.run_once()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        self._running = True
        self._task = asyncio.create_task(self._loop(), name="batch-processor")
        return self._task

    async def stop(self) -> None:
        self._running = False
        self.pool.shutdown()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
