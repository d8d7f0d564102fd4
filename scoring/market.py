"""Market Position Scorer: market-cap rank band plus 24h market-cap change."""
from common.models import AssetSnapshot, MarketContext, SubScores
from scoring.base import BaseScorer

RANK_BANDS = [
    (10, 90.0),
    (50, 80.0),
    (100, 70.0),
    (500, 50.0),
]
OTHER_RANK_SCORE = 30.0
MAX_MCAP_ADJUSTMENT = 10.0


def rank_score(rank: int | None) -> float:
    if rank is None:
        return OTHER_RANK_SCORE
    for ceiling, points in RANK_BANDS:
        if rank <= ceiling:
            return points
    return OTHER_RANK_SCORE


class MarketPositionScorer(BaseScorer):

    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        base = rank_score(snapshot.market_cap_rank)
        adjustment = self.nudge(snapshot.market_cap_change_24h, MAX_MCAP_ADJUSTMENT)
        return self.clamp(base + adjustment)
