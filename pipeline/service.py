"""Signal service: snapshot → sub-scores → score → grade → classify → persist.

get_signal() is the read path: a cached signal younger than CACHE_TTL["signals"]
is returned without touching any upstream. compute() is the write path used by
the workers; concurrent compute() calls for the same asset share one execution.
"""
import asyncio
from types import ModuleType
from typing import Optional

from common.logger import get_logger
from common.models import AssetSnapshot, PriorityTier, Recommendation, Signal, SubScores
from config.settings import CACHE_TTL
from ingest.base import BaseIngestor
from ingest.macro import MarketContextProvider
from pipeline.alerts import AlertSink, alert_for, should_alert
from scoring.aggregator import build_explanation, score_asset
from scoring.classifier import classify
from scoring.risk import grade
from scoring.volatility import volatility_estimate
from storage import database
from storage.cache import TTLCache

logger = get_logger("service")


def signal_key(asset_id: str) -> str:
    return f"signal:{asset_id}"


class SignalService:
    def __init__(self, market: BaseIngestor,
                 context: Optional[MarketContextProvider] = None,
                 news=None, social=None, whale=None,
                 cache: Optional[TTLCache] = None,
                 store: ModuleType | object = database,
                 alerts: Optional[AlertSink] = None):
        self.market = market
        self.context = context
        self.news = news
        self.social = social
        self.whale = whale
        self.cache = cache if cache is not None else TTLCache()
        self.store = store
        self.alerts = alerts
        self.computed = 0
        self._inflight: dict[str, asyncio.Future] = {}

    # ── Read path ─────────────────────────────────────────────────────────────

    def cached_signal(self, asset_id: str) -> Optional[Signal]:
        return self.cache.get(signal_key(asset_id))

    async def get_signal(self, asset_id: str) -> Signal:
        cached = self.cached_signal(asset_id)
        if cached is not None:
            return cached
        return await self.compute(asset_id)

    # ── Write path ────────────────────────────────────────────────────────────

    async def compute(self, asset_id: str, snapshot: Optional[AssetSnapshot] = None,
                      tier: Optional[PriorityTier] = None) -> Signal:
        running = self._inflight.get(asset_id)
        if running is not None:
            return await asyncio.shield(running)
        future = asyncio.get_running_loop().create_future()
        self._inflight[asset_id] = future
        try:
            signal = await self._compute(asset_id, snapshot, tier)
            future.set_result(signal)
            return signal
        except Exception as e:
            future.set_exception(e)
            # mark retrieved so an unawaited future does not log "exception never retrieved"
            future.exception()
            raise
        finally:
            del self._inflight[asset_id]

    async def _sub_scores(self, symbol: str) -> SubScores:
        key = f"sentiment:{symbol}"
        cached = self.cache.get(key)
        if cached is None:
            news = await asyncio.to_thread(self.news.score_for, symbol) if self.news else None
            social = await asyncio.to_thread(self.social.score_for, symbol) if self.social else None
            cached = (news, social)
            self.cache.set(key, cached, CACHE_TTL["sentiment"])
        whale_key = f"whale:{symbol}"
        whale = self.cache.get(whale_key)
        if whale is None:
            whale = await asyncio.to_thread(self.whale.score_for, symbol) if self.whale else None
            # cache misses too, as NaN, so a silent provider is not polled every time
            self.cache.set(whale_key, whale if whale is not None else float("nan"), CACHE_TTL["whale_data"])
        return SubScores(news_sentiment=cached[0], social_sentiment=cached[1], whale=whale)

    async def _compute(self, asset_id: str, snapshot: Optional[AssetSnapshot],
                       tier: Optional[PriorityTier]) -> Signal:
        if snapshot is None:
            snapshot = await asyncio.to_thread(self.market.fetch_one, asset_id)
        sub_scores = await self._sub_scores(snapshot.symbol)
        context = self.context.get_context() if self.context else None

        result = score_asset(snapshot, sub_scores, context)
        risk, liquidity = grade(snapshot)
        cls = classify(result.composite, result.breakdown, snapshot, risk, liquidity)

        signal = Signal(
            asset_id=snapshot.id,
            symbol=snapshot.symbol,
            name=snapshot.name,
            final_score=result.composite,
            breakdown=result.breakdown,
            recommendation=Recommendation(action=cls.action, confidence=cls.confidence),
            timeframe=cls.timeframe,
            priority=cls.priority,
            tier=tier,
            risk_score=risk,
            liquidity_grade=liquidity,
            regime=result.regime,
            data_quality=result.data_quality,
            price=snapshot.price,
            market_cap=snapshot.market_cap,
            rank=snapshot.market_cap_rank,
            volume_ratio=round(snapshot.volume_ratio, 6),
            volatility=round(volatility_estimate(snapshot), 4),
            explanation=build_explanation(result.breakdown, result.regime),
        )

        await self.store.upsert_signal(signal)
        self.cache.set(signal_key(signal.asset_id), signal, CACHE_TTL["signals"])
        self.computed += 1
        logger.info(
            f"{signal.symbol:<8} {signal.final_score:>6.1f} {signal.recommendation.action.value:<11} "
            f"{signal.timeframe.value:<13} risk={signal.risk_score:.0f} liq={signal.liquidity_grade.value} "
            f"[{signal.regime.value}, {signal.data_quality.value}]"
        )

        if self.alerts is not None and should_alert(signal):
            await self.alerts.emit(alert_for(signal))
        return signal

    async def handle(self, task) -> Signal:
        """Worker entry point for a QueueTask."""
        return await self.compute(task.asset_id, snapshot=task.snapshot, tier=task.tier)
