"""
Risk & Liquidity Grader.

Risk score (0..100, higher = riskier) is the sum of four bands:
  volatility           0-40   by |24h change|
  volume inadequacy    0-30   by volume / market cap
  rank thinness        0-20   by market-cap rank (unranked = worst)
  short-horizon jumps  0-10   by |1h change|
plus a +20 compound-illiquidity surcharge when both the volume and the rank
bands are at their worst: such an asset cannot be exited without slippage
even on a quiet day.

Liquidity grade blends rank and volume scores (60/40) into A+ / A / B / C / D.
"""
from common.logger import get_logger
from common.models import AssetSnapshot, LiquidityGrade

logger = get_logger("risk")

VOLATILITY_BANDS = [(30.0, 40), (20.0, 30), (10.0, 20), (5.0, 10)]
VOLUME_RATIO_BANDS = [(0.3, 30), (0.5, 22), (1.0, 12), (2.0, 5)]      # ratio < threshold
RANK_BANDS = [(1000, 20), (500, 15), (100, 10), (50, 5), (10, 2)]     # rank > threshold
SHORT_HORIZON_BANDS = [(10.0, 10), (5.0, 6), (3.0, 3)]
COMPOUND_ILLIQUIDITY_SURCHARGE = 20

MAX_VOLUME_POINTS = VOLUME_RATIO_BANDS[0][1]
MAX_RANK_POINTS = RANK_BANDS[0][1]


def _volatility_points(snapshot: AssetSnapshot) -> int:
    move = snapshot.abs_change_24h
    for threshold, points in VOLATILITY_BANDS:
        if move >= threshold:
            return points
    return 0


def _volume_points(snapshot: AssetSnapshot) -> int:
    ratio = snapshot.volume_ratio
    for threshold, points in VOLUME_RATIO_BANDS:
        if ratio < threshold:
            return points
    return 0


def _rank_points(snapshot: AssetSnapshot) -> int:
    rank = snapshot.market_cap_rank
    if rank is None:
        return MAX_RANK_POINTS
    for threshold, points in RANK_BANDS:
        if rank > threshold:
            return points
    return 0


def _short_horizon_points(snapshot: AssetSnapshot) -> int:
    change = snapshot.change_1h
    if change is None or change != change:
        return 0
    for threshold, points in SHORT_HORIZON_BANDS:
        if abs(change) >= threshold:
            return points
    return 0


def risk_score(snapshot: AssetSnapshot) -> float:
    volume = _volume_points(snapshot)
    rank = _rank_points(snapshot)
    total = _volatility_points(snapshot) + volume + rank + _short_horizon_points(snapshot)
    if volume == MAX_VOLUME_POINTS and rank == MAX_RANK_POINTS:
        total += COMPOUND_ILLIQUIDITY_SURCHARGE
    return float(min(100, max(0, total)))


# ── Liquidity ──────────────────────────────────────────────────────────────────

LIQ_RANK_SCORES = [(10, 100), (50, 85), (100, 70), (500, 50), (1000, 30)]   # rank <= ceiling
LIQ_RANK_FLOOR = 10
LIQ_VOLUME_SCORES = [(3.0, 100), (2.0, 85), (1.0, 70), (0.5, 50), (0.1, 30)]  # ratio >= threshold
LIQ_VOLUME_FLOOR = 10

GRADE_THRESHOLDS = [
    (90, LiquidityGrade.A_PLUS),
    (75, LiquidityGrade.A),
    (60, LiquidityGrade.B),
    (40, LiquidityGrade.C),
]


def liquidity_score(snapshot: AssetSnapshot) -> float:
    rank = snapshot.market_cap_rank
    rank_part = LIQ_RANK_FLOOR
    if rank is not None:
        for ceiling, points in LIQ_RANK_SCORES:
            if rank <= ceiling:
                rank_part = points
                break
    volume_part = LIQ_VOLUME_FLOOR
    for threshold, points in LIQ_VOLUME_SCORES:
        if snapshot.volume_ratio >= threshold:
            volume_part = points
            break
    return 0.6 * rank_part + 0.4 * volume_part


def liquidity_grade(snapshot: AssetSnapshot) -> LiquidityGrade:
    score = liquidity_score(snapshot)
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return LiquidityGrade.D


def grade(snapshot: AssetSnapshot) -> tuple[float, LiquidityGrade]:
    risk = risk_score(snapshot)
    liquidity = liquidity_grade(snapshot)
    logger.debug(f"{snapshot.symbol}: risk={risk:.0f} liquidity={liquidity.value}")
    return risk, liquidity
