#!/usr/bin/env python3
"""
Signal engine service: tier timers + priority queue + worker pool.
Run: python scheduler.py
Set MARKET_DATA_SOURCE=mock to run against the synthetic universe.
"""
import asyncio

from common.logger import get_logger, new_trace_id
from common.models import PriorityTier
from pipeline.bootstrap import build_limiter, build_market, build_service
from pipeline.queue import PriorityTaskQueue
from pipeline.scheduler import TierScheduler
from pipeline.workers import BatchProcessor, Dispatcher
from storage.cache import TTLCache
from storage.database import init_db

logger = get_logger("main")


async def main() -> None:
    new_trace_id("boot")
    try:
        await init_db()
        limiter = build_limiter()
        cache = TTLCache()
        market = build_market(limiter, cache)
        service = build_service(limiter, cache, market)
    except Exception as e:
        logger.critical(f"❌ Bootstrap failed: {e}")
        raise

    queue = PriorityTaskQueue()
    dispatcher = Dispatcher(queue, service.handle)
    batches = BatchProcessor(queue, dispatcher)
    scheduler = TierScheduler(market, queue, limiter, cache=cache,
                              context=service.context, stats_hook=dispatcher.stats)

    await scheduler.refresh_context()
    dispatcher.start()
    batches.start()
    await scheduler.run_tier(PriorityTier.HIGH)
    tasks = scheduler.start()
    logger.info("✅ Signal engine running")
    try:
        await asyncio.gather(*tasks)
    finally:
        await scheduler.stop()
        await batches.stop()
        await dispatcher.stop()
        logger.info("🏁 Signal engine stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
