"""
Tier scheduler.

Each tier has its own timer (config.settings.TIERS). A tier run walks its
market-cap pages, one provider call per page, and enqueues one QueueTask per
asset with the tier's enqueue delay:

  CRITICAL  on demand + strong-signal watch   every 60 s
  HIGH      ranks 1-100                       every 5 min
  MEDIUM    ranks 101-500                     every 15 min, +5 s delay
  LOW       ranks 501-2500                    hourly, +10 s per page
  BATCH     ranks 2501-5000                   every 6 h, only with >= 50% budget left

Before every page the rate limiter is probed; an exhausted budget ends the
tier run early (tasks already queued are kept). A failed page is logged and
the run moves on to the next page.
"""
import asyncio
from typing import Awaitable, Callable, Optional

from common.errors import QueueSaturation, UpstreamQuotaExceeded
from common.logger import get_logger, new_trace_id
from common.models import PriorityTier, QueueTask, TierRunReport
from config.settings import (BATCH_MIN_BUDGET_RATIO, CACHE_CLEANUP_INTERVAL,
                             COINGECKO_RATE_LIMIT, CONTEXT_REFRESH_INTERVAL,
                             STRONG_SIGNAL_DEVIATION, TIERS)
from ingest.base import BaseIngestor
from ingest.macro import MarketContextProvider
from pipeline.queue import PriorityTaskQueue
from pipeline.rate_limiter import RateLimiter
from storage.cache import TTLCache

logger = get_logger("scheduler")

CRITICAL_WATCH_LIMIT = 20
STATS_INTERVAL = 30 * 60

Sleep = Callable[[float], Awaitable[None]]


class TierScheduler:
    def __init__(self, market: BaseIngestor, queue: PriorityTaskQueue,
                 limiter: RateLimiter, cache: Optional[TTLCache] = None,
                 context: Optional[MarketContextProvider] = None,
                 tiers: Optional[dict] = None,
                 rate_limit_per_minute: int = COINGECKO_RATE_LIMIT,
                 sleep: Sleep = asyncio.sleep,
                 stats_hook: Optional[Callable[[], dict]] = None):
        self.market = market
        self.queue = queue
        self.limiter = limiter
        self.cache = cache
        self.context = context
        self.tiers = tiers or TIERS
        self.page_pause = 60.0 / rate_limit_per_minute if rate_limit_per_minute else 0.0
        self.sleep = sleep
        self.stats_hook = stats_hook
        self.reports: dict[PriorityTier, TierRunReport] = {}
        self._tasks: list[asyncio.Task] = []

    @property
    def source(self) -> str:
        return self.market.SOURCE

    def enqueue_delay(self, tier: PriorityTier, page: int) -> float:
        delay = float(self.tiers[tier.name]["enqueue_delay"])
        return delay * page if tier == PriorityTier.LOW else delay

    # ── Tier runs ─────────────────────────────────────────────────────────────

    async def run_tier(self, tier: PriorityTier) -> TierRunReport:
        cfg = self.tiers[tier.name]
        report = TierRunReport(tier=tier)

        if tier == PriorityTier.BATCH and self.limiter.remaining_ratio(self.source) < BATCH_MIN_BUDGET_RATIO:
            report.aborted = True
            report.reason = "budget below batch threshold"
            logger.info(f"⏭ {tier.name} skipped: {report.reason}")
            self.reports[tier] = report
            return report

        logger.info(f"🔄 {tier.name} run: pages {cfg['pages']} × {cfg['per_page']}")
        for i, page in enumerate(cfg["pages"]):
            if i > 0 and self.page_pause:
                await self.sleep(self.page_pause)
            try:
                self.limiter.check(self.source)
                snapshots = await asyncio.to_thread(self.market.fetch_batch, page, cfg["per_page"])
            except UpstreamQuotaExceeded as e:
                report.aborted = True
                report.reason = str(e)
                logger.warning(f"⛔ {tier.name} aborted at page {page}: {e}")
                break
            except Exception as e:
                report.pages_failed += 1
                logger.error(f"❌ {tier.name} page {page} failed: {e}")
                continue
            report.pages_fetched += 1

            delay = self.enqueue_delay(tier, page)
            try:
                for s in snapshots:
                    task = QueueTask(asset_id=s.id, tier=tier, snapshot=s)
                    if self.queue.enqueue(task, delay=delay):
                        report.enqueued += 1
                    else:
                        report.skipped += 1
            except QueueSaturation as e:
                report.aborted = True
                report.reason = str(e)
                logger.warning(f"⛔ {tier.name} aborted: {e}")
                break

        logger.info(
            f"✅ {tier.name}: {report.enqueued} enqueued, {report.skipped} duplicates, "
            f"{report.pages_fetched} pages ok, {report.pages_failed} failed"
            + (f", aborted ({report.reason})" if report.aborted else "")
        )
        self.reports[tier] = report
        return report

    def request_refresh(self, asset_id: str) -> bool:
        """Queue an on-demand recompute on the CRITICAL tier."""
        try:
            return self.queue.enqueue(QueueTask(asset_id=asset_id, tier=PriorityTier.CRITICAL))
        except QueueSaturation as e:
            logger.warning(f"Refresh for {asset_id} rejected: {e}")
            return False

    async def run_critical_watch(self) -> TierRunReport:
        """Re-queue the strongest cached signals on CRITICAL."""
        report = TierRunReport(tier=PriorityTier.CRITICAL)
        if self.cache is None:
            return report
        strong = []
        for key in self.cache.keys("signal:"):
            signal = self.cache.get(key)
            if signal is not None and signal.deviation >= STRONG_SIGNAL_DEVIATION:
                strong.append(signal)
        strong.sort(key=lambda s: s.deviation, reverse=True)
        for signal in strong[:CRITICAL_WATCH_LIMIT]:
            if self.request_refresh(signal.asset_id):
                report.enqueued += 1
            else:
                report.skipped += 1
        if report.enqueued:
            logger.info(f"🔥 CRITICAL watch: {report.enqueued} strong signals re-queued")
        self.reports[PriorityTier.CRITICAL] = report
        return report

    # ── Housekeeping ──────────────────────────────────────────────────────────

    async def refresh_context(self) -> None:
        if self.context is not None:
            await asyncio.to_thread(self.context.refresh)

    async def cleanup_cache(self) -> None:
        if self.cache is not None:
            self.cache.cleanup()

    async def log_stats(self) -> None:
        usage = self.limiter.usage(self.source)
        logger.info(
            f"📊 {usage.source}: {usage.calls_today}/{usage.daily_limit} today "
            f"({usage.daily_percentage}%), {usage.calls_this_month}/{usage.monthly_limit} this month; "
            f"queue={self.queue.sizes()}"
            + (f" workers={self.stats_hook()}" if self.stats_hook else "")
        )

    # ── Timers ────────────────────────────────────────────────────────────────

    async def _every(self, name: str, interval: float, job: Callable[[], Awaitable]) -> None:
        while True:
            new_trace_id(name)
            try:
                await job()
            except Exception as e:
                logger.error(f"❌ {name} failed: {e}")
            await asyncio.sleep(interval)

    def start(self) -> list[asyncio.Task]:
        jobs = [
            ("context", CONTEXT_REFRESH_INTERVAL, self.refresh_context),
            ("critical", self.tiers["CRITICAL"]["interval"], self.run_critical_watch),
            ("cache-cleanup", CACHE_CLEANUP_INTERVAL, self.cleanup_cache),
            ("stats", STATS_INTERVAL, self.log_stats),
        ]
        for tier in (PriorityTier.HIGH, PriorityTier.MEDIUM, PriorityTier.LOW, PriorityTier.BATCH):
            jobs.append((tier.name.lower(), self.tiers[tier.name]["interval"],
                         lambda t=tier: self.run_tier(t)))
        self._tasks = [asyncio.create_task(self._every(name, interval, job), name=name)
                       for name, interval, job in jobs]
        logger.info(f"🚀 Scheduler started: {', '.join(name for name, _, _ in jobs)}")
        return self._tasks

    async def stop(self) -> None:
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
