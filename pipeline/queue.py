"""Tiered priority queue.

One min-heap per tier keyed by (ready_at, seq): FIFO inside a tier for tasks
with equal delay, delayed tasks become visible once ready_at passes. Tiers are
scanned in strict priority order on every dequeue.

Per asset:
  - at most one pending task; a newer task only replaces the pending one when
    it is on a higher-priority tier, otherwise it is dropped as a duplicate
  - at most one task in flight; ready tasks for an in-flight asset stay queued
    until mark_done() releases the asset
Replaced entries stay in the heap and are skipped lazily when popped.
"""
import asyncio
import heapq
import itertools
import time
from typing import Callable, Iterable, Optional

from common.errors import QueueSaturation
from common.logger import get_logger
from common.models import PriorityTier, QueueTask
from config.settings import QUEUE_MAX_SIZE

logger = get_logger("queue")

MAX_IDLE_WAIT = 1.0


class PriorityTaskQueue:
    def __init__(self, max_size: int = QUEUE_MAX_SIZE,
                 clock: Callable[[], float] = time.monotonic):
        self.max_size = max_size
        self._clock = clock
        self._heaps: dict[PriorityTier, list] = {t: [] for t in PriorityTier}
        self._counts: dict[PriorityTier, int] = {t: 0 for t in PriorityTier}
        self._pending: dict[str, tuple[PriorityTier, int]] = {}
        self._in_flight: set[str] = set()
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()

    # ── Producer side ─────────────────────────────────────────────────────────

    def enqueue(self, task: QueueTask, delay: float = 0.0) -> bool:
        """Queue a task. Returns False when an equal-or-better task is already pending."""
        tier = task.tier
        current = self._pending.get(task.asset_id)
        if current is not None and current[0] <= tier:
            return False
        if self._counts[tier] >= self.max_size:
            raise QueueSaturation(tier.name, self._counts[tier])
        if current is not None:
            self._counts[current[0]] -= 1
            logger.debug(f"{task.asset_id}: {current[0].name} task superseded by {tier.name}")
        seq = next(self._seq)
        heapq.heappush(self._heaps[tier], (self._clock() + delay, seq, task))
        self._pending[task.asset_id] = (tier, seq)
        self._counts[tier] += 1
        self._wakeup.set()
        return True

    # ── Consumer side ─────────────────────────────────────────────────────────

    def pop_ready(self, tiers: Optional[Iterable[PriorityTier]] = None) -> Optional[QueueTask]:
        """Highest-priority ready task whose asset is not in flight, or None."""
        now = self._clock()
        for tier in sorted(tiers or PriorityTier):
            heap = self._heaps[tier]
            blocked = []
            found = None
            while heap and heap[0][0] <= now:
                entry = heapq.heappop(heap)
                _, seq, task = entry
                if self._pending.get(task.asset_id) != (tier, seq):
                    continue
                if task.asset_id in self._in_flight:
                    blocked.append(entry)
                    continue
                found = task
                break
            for entry in blocked:
                heapq.heappush(heap, entry)
            if found is not None:
                del self._pending[found.asset_id]
                self._counts[tier] -= 1
                self._in_flight.add(found.asset_id)
                return found
        return None

    def _next_wait(self, tiers: Iterable[PriorityTier]) -> float:
        now = self._clock()
        wait = MAX_IDLE_WAIT
        for t in tiers:
            heap = self._heaps[t]
            if heap and heap[0][0] > now:
                wait = min(wait, heap[0][0] - now)
        return wait

    async def dequeue(self, tiers: Optional[Iterable[PriorityTier]] = None,
                      timeout: Optional[float] = None) -> Optional[QueueTask]:
        """Wait for the next task. Returns None once *timeout* seconds pass."""
        tiers = sorted(tiers or PriorityTier)
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            task = self.pop_ready(tiers)
            if task is not None:
                return task
            wait = self._next_wait(tiers)
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                wait = min(wait, remaining)
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=max(wait, 0.0))
            except asyncio.TimeoutError:
                pass

    def drain(self, tier: PriorityTier, n: int) -> list[QueueTask]:
        """Up to n ready tasks from one tier (marked in flight)."""
        tasks = []
        while len(tasks) < n:
            task = self.pop_ready([tier])
            if task is None:
                break
            tasks.append(task)
        return tasks

    def mark_done(self, asset_id: str) -> None:
        self._in_flight.discard(asset_id)
        self._wakeup.set()

    # ── Introspection ─────────────────────────────────────────────────────────

    def size(self, tier: Optional[PriorityTier] = None) -> int:
        if tier is None:
            return sum(self._counts.values())
        return self._counts[tier]

    def sizes(self) -> dict[str, int]:
        return {t.name: self._counts[t] for t in PriorityTier}

    def is_pending(self, asset_id: str) -> bool:
        return asset_id in self._pending

    def is_in_flight(self, asset_id: str) -> bool:
        return asset_id in self._in_flight
