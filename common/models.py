"""Core Pydantic models for the crypto signal engine."""
import math
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp_score(value: float, low: float = 0.0, high: float = 100.0) -> float:
    """Clamp to [low, high]; NaN collapses to neutral 50."""
    if value is None or math.isnan(value):
        return 50.0
    return float(min(high, max(low, value)))


# ── Enums ──────────────────────────────────────────────────────────────────────

class PriorityTier(IntEnum):
    CRITICAL = 0
    HIGH = 1
    MEDIUM = 2
    LOW = 3
    BATCH = 4


class Regime(str, Enum):
    VOLATILE = "volatile"
    STABLE = "stable"
    LOW_LIQUIDITY = "low_liquidity"
    NORMAL = "normal"


class Component(str, Enum):
    PRICE = "price"
    VOLUME = "volume"
    MARKET = "market"
    SENTIMENT = "sentiment"
    WHALE = "whale"
    VOLATILITY = "volatility"
    CORRELATION = "correlation"
    MACRO = "macro"


class Timeframe(str, Enum):
    SCALPING = "SCALPING"
    DAY_TRADING = "DAY_TRADING"
    SWING_TRADING = "SWING_TRADING"
    LONG_TERM = "LONG_TERM"
    REJECT = "REJECT"


class Action(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    BUY = "BUY"
    HOLD = "HOLD"
    WEAK_SELL = "WEAK_SELL"
    SELL = "SELL"
    STRONG_SELL = "STRONG_SELL"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class DataQuality(str, Enum):
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class DominancePhase(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    NEUTRAL = "neutral"


class LiquidityGrade(str, Enum):
    A_PLUS = "A+"
    A = "A"
    B_PLUS = "B+"
    B = "B"
    C_PLUS = "C+"
    C = "C"
    D = "D"

    @property
    def rank(self) -> int:
        return _GRADE_ORDER.index(self)

    def at_least(self, other: "LiquidityGrade") -> bool:
        return self.rank <= other.rank


# Best first. B+ and C+ exist only as thresholds; the grader never emits them.
_GRADE_ORDER = [
    LiquidityGrade.A_PLUS, LiquidityGrade.A, LiquidityGrade.B_PLUS, LiquidityGrade.B,
    LiquidityGrade.C_PLUS, LiquidityGrade.C, LiquidityGrade.D,
]


class Priority(str, Enum):
    HIGH = "high_priority"
    MEDIUM = "medium_priority"
    LOW = "low_priority"
    REJECTED = "rejected"


class MacroImpact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ── Inputs ─────────────────────────────────────────────────────────────────────

class AssetSnapshot(BaseModel):
    """Point-in-time market record for one asset. Missing numerics are None."""
    model_config = ConfigDict(frozen=True)

    id: str
    symbol: str
    name: str = ""
    price: Optional[float] = Field(default=None, ge=0)
    market_cap: Optional[float] = None
    market_cap_rank: Optional[int] = Field(default=None, ge=1)  # None = unranked
    total_volume: Optional[float] = None
    change_1h: Optional[float] = None
    change_24h: Optional[float] = None
    change_7d: Optional[float] = None
    change_30d: Optional[float] = None
    market_cap_change_24h: Optional[float] = None
    volume_change_24h: Optional[float] = None
    fetched_at: datetime = Field(default_factory=utcnow)

    @property
    def volume_ratio(self) -> float:
        if not self.market_cap or not self.total_volume or self.market_cap <= 0:
            return 0.0
        return self.total_volume / self.market_cap

    @property
    def abs_change_24h(self) -> float:
        change = self.change_24h
        if change is None or change != change:
            return 0.0
        return abs(change)

    @property
    def is_unranked(self) -> bool:
        return self.market_cap_rank is None


class SubScores(BaseModel):
    """Black-box provider outputs on 0..100. None means the provider had nothing."""
    news_sentiment: Optional[float] = None
    social_sentiment: Optional[float] = None
    whale: Optional[float] = None


class MacroEvent(BaseModel):
    name: str
    impact: MacroImpact = MacroImpact.MEDIUM
    scheduled_at: Optional[datetime] = None


class MarketContext(BaseModel):
    btc_correlation: float = Field(default=0.0, ge=-1.0, le=1.0)
    btc_change_24h: float = 0.0
    altcoin_season: bool = False
    dominance_phase: DominancePhase = DominancePhase.NEUTRAL
    btc_dominance: Optional[float] = None
    fear_greed_index: float = Field(default=50.0, ge=0.0, le=100.0)
    macro_events: list[MacroEvent] = []
    as_of: datetime = Field(default_factory=utcnow)


# ── Outputs ────────────────────────────────────────────────────────────────────

class ComponentScores(BaseModel):
    price: float = 50.0
    volume: float = 50.0
    market: float = 50.0
    sentiment: float = 50.0
    whale: float = 50.0
    volatility: float = 50.0
    correlation: float = 50.0
    macro: float = 50.0

    @field_validator("*", mode="before")
    @classmethod
    def _clamp(cls, v):
        return clamp_score(float(v)) if v is not None else 50.0

    def as_dict(self) -> dict[Component, float]:
        return {c: getattr(self, c.value) for c in Component}


class Recommendation(BaseModel):
    action: Action
    confidence: Confidence


class ScoreResult(BaseModel):
    composite: float
    raw: float
    breakdown: ComponentScores
    regime: Regime
    data_quality: DataQuality
    session_factor: float = 1.0
    persistence_factor: float = 1.0
    defaulted: list[str] = []


class Classification(BaseModel):
    timeframe: Timeframe
    priority: Priority
    action: Action
    confidence: Confidence
    volatility_level: str
    technical_strength: str
    volume_level: str


class Signal(BaseModel):
    asset_id: str
    symbol: str
    name: str = ""
    final_score: float = Field(ge=0, le=100)
    breakdown: ComponentScores
    recommendation: Recommendation
    timeframe: Timeframe
    priority: Priority
    tier: Optional[PriorityTier] = None
    risk_score: float = Field(ge=0, le=100)
    liquidity_grade: LiquidityGrade
    regime: Regime
    data_quality: DataQuality
    price: Optional[float] = None
    market_cap: Optional[float] = None
    rank: Optional[int] = None
    volume_ratio: float = 0.0
    volatility: float = 0.0
    explanation: str = ""
    computed_at: datetime = Field(default_factory=utcnow)

    @property
    def deviation(self) -> float:
        return abs(self.final_score - 50.0)


class QueueTask(BaseModel):
    asset_id: str
    tier: PriorityTier
    enqueued_at: datetime = Field(default_factory=utcnow)
    attempts: int = 0
    snapshot: Optional[AssetSnapshot] = None


class RateBudget(BaseModel):
    source: str
    daily_limit: int
    monthly_limit: int
    calls_today: int = 0
    calls_this_month: int = 0
    day: str = ""     # YYYY-MM-DD
    month: str = ""   # YYYY-MM
    warned_day: str = ""


class ApiUsage(BaseModel):
    source: str
    calls_today: int
    calls_this_month: int
    daily_limit: int
    monthly_limit: int
    remaining_today: int
    remaining_this_month: int
    daily_percentage: float
    monthly_percentage: float


class AlertEvent(BaseModel):
    asset_id: str
    symbol: str
    final_score: float
    action: Action
    timeframe: Timeframe
    reason: str
    created_at: datetime = Field(default_factory=utcnow)


class TierRunReport(BaseModel):
    tier: PriorityTier
    pages_fetched: int = 0
    pages_failed: int = 0
    enqueued: int = 0
    skipped: int = 0
    aborted: bool = False
    reason: str = ""
