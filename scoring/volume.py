"""Volume Scorer: 24h volume relative to market cap, nudged by volume change."""
from common.models import AssetSnapshot, MarketContext, SubScores
from scoring.base import BaseScorer

# (volume / market cap, score)
RATIO_BANDS = [
    (3.0, 90.0),   # spike
    (2.0, 75.0),   # high
    (1.0, 60.0),   # normal
]
LOW_RATIO_SCORE = 30.0
MAX_CHANGE_ADJUSTMENT = 10.0


class VolumeScorer(BaseScorer):

    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        base = self.band(snapshot.volume_ratio, RATIO_BANDS, LOW_RATIO_SCORE)
        change = snapshot.volume_change_24h
        adjustment = self.nudge(change / 10 if change is not None else None,
                                MAX_CHANGE_ADJUSTMENT)
        return self.clamp(base + adjustment)
