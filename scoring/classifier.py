"""
Strategy / Timeframe Classifier.

Maps (composite, volatility, volume, rank, risk, liquidity) to exactly one
holding-period strategy. Gates are checked top to bottom, first match wins:

  strategy       score  risk<=  volatility        strength          other
  SCALPING        55     80     high|extreme      strong            liquidity >= D
  DAY_TRADING     35     90     moderate|high     moderate|strong   liquidity >= D
  SWING_TRADING   30     90     -                 -                 volume >= moderate, liquidity >= C+
  LONG_TERM       20     95     -                 -                 -
  REJECT          otherwise

The buy/sell action comes from the composite alone and is independent of
the strategy.
"""
import math

from common.errors import ClassifierInvariantViolation
from common.logger import get_logger
from common.models import (Action, AssetSnapshot, Classification, ComponentScores,
                           Confidence, LiquidityGrade, Priority, Timeframe)

logger = get_logger("classifier")

ACTION_LADDER = [
    (85, Action.STRONG_BUY, Confidence.HIGH),
    (75, Action.BUY, Confidence.HIGH),
    (65, Action.BUY, Confidence.MEDIUM),
    (55, Action.HOLD, Confidence.MEDIUM),
    (45, Action.HOLD, Confidence.LOW),
    (35, Action.WEAK_SELL, Confidence.MEDIUM),
    (25, Action.SELL, Confidence.MEDIUM),
]

TIMEFRAME_PRIORITY = {
    Timeframe.SCALPING: Priority.HIGH,
    Timeframe.DAY_TRADING: Priority.MEDIUM,
    Timeframe.SWING_TRADING: Priority.MEDIUM,
    Timeframe.LONG_TERM: Priority.LOW,
    Timeframe.REJECT: Priority.REJECTED,
}


def recommend(score: float) -> tuple[Action, Confidence]:
    for threshold, action, confidence in ACTION_LADDER:
        if score >= threshold:
            return action, confidence
    return Action.STRONG_SELL, Confidence.HIGH


def volatility_level(change_24h: float) -> str:
    move = abs(change_24h)
    if move >= 20: return "extreme"
    if move >= 10: return "high"
    if move >= 4:  return "moderate"
    return "low"


def technical_strength(breakdown: ComponentScores) -> str:
    strength = 0.6 * abs(breakdown.price - 50) / 50 + 0.4 * breakdown.volume / 100
    if strength >= 0.65: return "strong"
    if strength >= 0.40: return "moderate"
    return "weak"


def volume_level(ratio: float) -> str:
    if ratio >= 3: return "very_high"
    if ratio >= 2: return "high"
    if ratio >= 1: return "moderate"
    return "low"


def validate_inputs(score: float, risk: float) -> None:
    if score is None or math.isnan(score) or not 0 <= score <= 100:
        raise ClassifierInvariantViolation(f"composite out of range: {score}")
    if risk is None or math.isnan(risk) or not 0 <= risk <= 100:
        raise ClassifierInvariantViolation(f"risk out of range: {risk}")


def _clamp_inputs(score: float, risk: float) -> tuple[float, float]:
    score = 50.0 if score is None or math.isnan(score) else min(100.0, max(0.0, score))
    risk = 100.0 if risk is None or math.isnan(risk) else min(100.0, max(0.0, risk))
    return score, risk


def choose_timeframe(score: float, risk: float, volatility: str, strength: str,
                     volume: str, liquidity: LiquidityGrade) -> Timeframe:
    if (score >= 55 and risk <= 80 and volatility in ("high", "extreme")
            and strength == "strong" and liquidity.at_least(LiquidityGrade.D)):
        return Timeframe.SCALPING
    if (score >= 35 and risk <= 90 and volatility in ("moderate", "high")
            and strength in ("moderate", "strong") and liquidity.at_least(LiquidityGrade.D)):
        return Timeframe.DAY_TRADING
    if (score >= 30 and risk <= 90 and volume in ("moderate", "high", "very_high")
            and liquidity.at_least(LiquidityGrade.C_PLUS)):
        return Timeframe.SWING_TRADING
    if score >= 20 and risk <= 95:
        return Timeframe.LONG_TERM
    return Timeframe.REJECT


def classify(score: float, breakdown: ComponentScores, snapshot: AssetSnapshot,
             risk: float, liquidity: LiquidityGrade) -> Classification:
    try:
        validate_inputs(score, risk)
    except ClassifierInvariantViolation as e:
        logger.warning(f"{snapshot.id}: {e}, clamping inputs")
        score, risk = _clamp_inputs(score, risk)
    vol = volatility_level(snapshot.abs_change_24h)
    strength = technical_strength(breakdown)
    volume = volume_level(snapshot.volume_ratio)
    timeframe = choose_timeframe(score, risk, vol, strength, volume, liquidity)
    action, confidence = recommend(score)
    return Classification(
        timeframe=timeframe,
        priority=TIMEFRAME_PRIORITY[timeframe],
        action=action,
        confidence=confidence,
        volatility_level=vol,
        technical_strength=strength,
        volume_level=volume,
    )
