"""
Price Momentum Scorer.

Starts at neutral 50 and adds a signed bonus per horizon, sized by how far
the price moved over that horizon:

  horizon   strong(>=15%)  moderate(>=5%)  weak(>=2%)
  1h            15             10              5
  24h           20             15              8
  7d            10              7              3
  30d            5              3              0

Falling prices subtract the same amounts. Missing horizons contribute 0.
"""
from common.models import AssetSnapshot, MarketContext, SubScores
from scoring.base import BaseScorer, NEUTRAL

STRONG, MODERATE, WEAK = 15.0, 5.0, 2.0

HORIZON_POINTS = {
    "change_1h":  (15, 10, 5),
    "change_24h": (20, 15, 8),
    "change_7d":  (10, 7, 3),
    "change_30d": (5, 3, 0),
}


def horizon_bonus(change: float | None, points: tuple[int, int, int]) -> float:
    if change is None:
        return 0.0
    strong, moderate, weak = points
    magnitude = abs(change)
    if magnitude >= STRONG:
        bonus = strong
    elif magnitude >= MODERATE:
        bonus = moderate
    elif magnitude >= WEAK:
        bonus = weak
    else:
        return 0.0
    return float(bonus if change > 0 else -bonus)


class PriceMomentumScorer(BaseScorer):

    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        total = NEUTRAL
        for field, points in HORIZON_POINTS.items():
            total += horizon_bonus(getattr(snapshot, field), points)
        return self.clamp(total)
