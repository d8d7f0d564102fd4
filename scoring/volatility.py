"""Volatility Scorer: bigger 24h swings mean more tradable opportunity."""
from common.models import AssetSnapshot, MarketContext, SubScores
from scoring.base import BaseScorer

# (|24h change| %, score)
VOLATILITY_BANDS = [
    (20.0, 80.0),
    (10.0, 70.0),
    (5.0, 60.0),
    (2.0, 55.0),
]
CALM_SCORE = 45.0


def volatility_estimate(snapshot: AssetSnapshot) -> float:
    """Mean absolute change across the horizons that are present."""
    changes = [abs(c) for c in (snapshot.change_1h, snapshot.change_24h,
                                snapshot.change_7d, snapshot.change_30d)
               if c is not None and c == c]
    if not changes:
        return 0.0
    return sum(changes) / len(changes)


class VolatilityScorer(BaseScorer):

    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        return self.band(snapshot.abs_change_24h, VOLATILITY_BANDS, CALM_SCORE)
