"""
Signal Aggregator

Combines 8 component scorers into one composite signal (0..100, 50 = neutral).

Weights depend on the detected regime:

  component     volatile  stable  low_liq  normal
  price           25%      20%     25%      30%
  volume          30%      15%     30%      20%
  market          20%      25%     15%      20%
  sentiment       10%      15%     10%      15%
  whale            5%       5%      5%       5%
  volatility       6%       5%      5%       4%
  correlation      2%       8%      5%       3%
  macro            2%       7%      5%       3%

raw       = Σ component × weight[regime]
composite = 50 + (raw - 50) × session_factor × persistence_factor

Both factors scale the distance from neutral, so a quiet session pulls a
signal towards 50 instead of towards 0.
"""
from datetime import datetime, timezone

import numpy as np

from common.logger import get_logger
from common.models import (Action, AssetSnapshot, Component, ComponentScores,
                           DataQuality, MarketContext, Priority, Regime,
                           ScoreResult, Signal, SubScores, Timeframe)
from scoring.base import NEUTRAL
from scoring.macro import CorrelationScorer, MacroScorer
from scoring.market import MarketPositionScorer
from scoring.momentum import PriceMomentumScorer
from scoring.regime import detect_regime
from scoring.sentiment import SentimentScorer, WhaleScorer, usable
from scoring.volatility import VolatilityScorer
from scoring.volume import VolumeScorer

logger = get_logger("aggregator")

REGIME_WEIGHTS = {
    Regime.VOLATILE: {
        Component.PRICE: 0.25, Component.VOLUME: 0.30, Component.MARKET: 0.20,
        Component.SENTIMENT: 0.10, Component.WHALE: 0.05, Component.VOLATILITY: 0.06,
        Component.CORRELATION: 0.02, Component.MACRO: 0.02,
    },
    Regime.STABLE: {
        Component.PRICE: 0.20, Component.VOLUME: 0.15, Component.MARKET: 0.25,
        Component.SENTIMENT: 0.15, Component.WHALE: 0.05, Component.VOLATILITY: 0.05,
        Component.CORRELATION: 0.08, Component.MACRO: 0.07,
    },
    Regime.LOW_LIQUIDITY: {
        Component.PRICE: 0.25, Component.VOLUME: 0.30, Component.MARKET: 0.15,
        Component.SENTIMENT: 0.10, Component.WHALE: 0.05, Component.VOLATILITY: 0.05,
        Component.CORRELATION: 0.05, Component.MACRO: 0.05,
    },
    Regime.NORMAL: {
        Component.PRICE: 0.30, Component.VOLUME: 0.20, Component.MARKET: 0.20,
        Component.SENTIMENT: 0.15, Component.WHALE: 0.05, Component.VOLATILITY: 0.04,
        Component.CORRELATION: 0.03, Component.MACRO: 0.03,
    },
}

assert set(REGIME_WEIGHTS) == set(Regime), "Every regime needs a weight vector"
for _regime, _weights in REGIME_WEIGHTS.items():
    assert set(_weights) == set(Component), f"{_regime.value}: weight vector must cover every component"

SCORERS = {
    Component.PRICE: PriceMomentumScorer(),
    Component.VOLUME: VolumeScorer(),
    Component.MARKET: MarketPositionScorer(),
    Component.SENTIMENT: SentimentScorer(),
    Component.WHALE: WhaleScorer(),
    Component.VOLATILITY: VolatilityScorer(),
    Component.CORRELATION: CorrelationScorer(),
    Component.MACRO: MacroScorer(),
}

# UTC hour ranges → liquidity factor. Asia open is thin, EU/US overlap is deepest.
SESSION_FACTORS = [
    (0, 7, 0.95),
    (7, 13, 1.00),
    (13, 17, 1.05),
    (17, 21, 1.00),
    (21, 24, 0.92),
]
WEEKEND_FACTOR = 0.95

PERSISTENCE_MIN_MOVE = 0.5
HORIZONS = ("change_1h", "change_24h", "change_7d", "change_30d")


def session_factor(as_of: datetime) -> float:
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    as_of = as_of.astimezone(timezone.utc)
    factor = 1.0
    for start, end, f in SESSION_FACTORS:
        if start <= as_of.hour < end:
            factor = f
            break
    if as_of.weekday() >= 5:
        factor *= WEEKEND_FACTOR
    return factor


def persistence_factor(snapshot: AssetSnapshot, raw: float) -> float:
    """How consistently the horizons point the same way, relative to the signal."""
    moves = [getattr(snapshot, h) for h in HORIZONS]
    moves = [m for m in moves if usable(m) and abs(m) >= PERSISTENCE_MIN_MOVE]
    if len(moves) < 2:
        return 1.0
    pos = sum(1 for m in moves if m > 0)
    neg = len(moves) - pos
    dominant = 1 if pos > neg else -1 if neg > pos else 0
    direction = 1 if raw > NEUTRAL else -1 if raw < NEUTRAL else 0
    if dominant and direction and dominant != direction:
        return 0.95
    agree = max(pos, neg) / len(moves)
    if agree == 1.0:
        return 1.10
    if agree >= 0.75:
        return 1.05
    if agree > 0.5:
        return 1.0
    return 0.90


def assess_data_quality(snapshot: AssetSnapshot, defaulted_sub_scores: int) -> DataQuality:
    for value in (snapshot.price, snapshot.market_cap, snapshot.total_volume):
        if not usable(value) or value <= 0:
            return DataQuality.POOR
    if not usable(snapshot.change_24h):
        return DataQuality.FAIR
    if defaulted_sub_scores >= 2:
        return DataQuality.FAIR
    return DataQuality.GOOD


def score_asset(snapshot: AssetSnapshot,
                sub_scores: SubScores | None = None,
                context: MarketContext | None = None) -> ScoreResult:
    """
    Score one asset. Pure: no I/O, and the same inputs give the same result
    (the session clock is read from context.as_of).
    """
    sub_scores = sub_scores or SubScores()
    context = context or MarketContext()

    defaulted = [name for name, value in sub_scores.model_dump().items() if not usable(value)]
    defaulted += [h for h in HORIZONS if not usable(getattr(snapshot, h))]

    components = {c: scorer.safe_score(snapshot, sub_scores, context)
                  for c, scorer in SCORERS.items()}
    breakdown = ComponentScores(**{c.value: v for c, v in components.items()})

    regime = detect_regime(snapshot)
    weights = REGIME_WEIGHTS[regime]
    scores = breakdown.as_dict()
    raw = sum(scores[c] * weights[c] for c in Component)

    s_factor = session_factor(context.as_of)
    p_factor = persistence_factor(snapshot, raw)
    composite = NEUTRAL + (raw - NEUTRAL) * s_factor * p_factor
    composite = float(np.clip(composite, 0, 100))

    missing_sub_scores = sum(1 for d in defaulted if d in SubScores.model_fields)
    quality = assess_data_quality(snapshot, missing_sub_scores)

    logger.debug(
        f"{snapshot.symbol} [{regime.value}] "
        f"{', '.join(f'{c.value}={v:.1f}' for c, v in components.items())} "
        f"raw={raw:.1f} session={s_factor:.2f} persistence={p_factor:.2f} → {composite:.1f}"
    )

    return ScoreResult(
        composite=round(composite, 2),
        raw=round(raw, 2),
        breakdown=breakdown,
        regime=regime,
        data_quality=quality,
        session_factor=s_factor,
        persistence_factor=p_factor,
        defaulted=defaulted,
    )


def build_explanation(breakdown: ComponentScores, regime: Regime) -> str:
    parts = []
    if breakdown.price >= 75:        parts.append("📈 strong momentum")
    elif breakdown.price <= 25:      parts.append("📉 falling across horizons")
    if breakdown.volume >= 75:       parts.append("🔊 volume spike")
    elif breakdown.volume <= 30:     parts.append("🔈 thin volume")
    if breakdown.sentiment >= 70:    parts.append("😀 positive sentiment")
    elif breakdown.sentiment <= 30:  parts.append("😰 negative sentiment")
    if breakdown.whale >= 70:        parts.append("🐋 whale accumulation")
    elif breakdown.whale <= 30:      parts.append("🐋 whale distribution")
    if breakdown.macro <= 35:        parts.append("🌧 risk-off macro")
    if regime == Regime.VOLATILE:    parts.append("🌪 volatile regime")
    elif regime == Regime.LOW_LIQUIDITY: parts.append("💧 low liquidity")
    return " | ".join(parts) if parts else "🟡 neutral market"


# ── Batch helpers ──────────────────────────────────────────────────────────────

def filter_strong(signals: list[Signal], min_score: float = 80) -> list[Signal]:
    """Signals at least as far from neutral as min_score is (both directions)."""
    return [s for s in signals
            if s.final_score >= min_score or s.final_score <= 100 - min_score]


def group_by_timeframe(signals: list[Signal]) -> dict[Timeframe, list[Signal]]:
    grouped: dict[Timeframe, list[Signal]] = {t: [] for t in Timeframe}
    for s in signals:
        grouped[s.timeframe].append(s)
    return grouped


def signal_stats(signals: list[Signal]) -> dict:
    stats = {
        "total": len(signals),
        "avg_score": 0.0,
        "avg_volatility": 0.0,
        "avg_volume_ratio": 0.0,
        "actions": {a.value: 0 for a in Action},
        "timeframes": {t.value: 0 for t in Timeframe},
        "priorities": {p.value: 0 for p in Priority},
    }
    if not signals:
        return stats
    n = len(signals)
    for s in signals:
        stats["actions"][s.recommendation.action.value] += 1
        stats["timeframes"][s.timeframe.value] += 1
        stats["priorities"][s.priority.value] += 1
    stats["avg_score"] = round(sum(s.final_score for s in signals) / n, 2)
    stats["avg_volatility"] = round(sum(s.volatility for s in signals) / n, 2)
    stats["avg_volume_ratio"] = round(sum(s.volume_ratio for s in signals) / n, 2)
    return stats
