"""
Sentiment & Whale Scorers.

Sentiment blends two black-box providers:
  sentiment = 0.7 * news + 0.3 * social

Any missing or invalid provider value (None, NaN, non-numeric) is replaced
by neutral 50 before blending, so one silent provider halves its influence
instead of dragging the score to zero.

Whale activity is taken as-is from the on-chain provider, clamped.
"""
import math
from common.models import AssetSnapshot, MarketContext, SubScores
from scoring.base import BaseScorer, NEUTRAL

NEWS_WEIGHT = 0.7
SOCIAL_WEIGHT = 0.3


def usable(value) -> bool:
    if value is None or isinstance(value, bool):
        return False
    try:
        return not math.isnan(float(value))
    except (TypeError, ValueError):
        return False


def or_neutral(value) -> float:
    return float(value) if usable(value) else NEUTRAL


class SentimentScorer(BaseScorer):

    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        news = self.clamp(or_neutral(sub_scores.news_sentiment))
        social = self.clamp(or_neutral(sub_scores.social_sentiment))
        return self.clamp(news * NEWS_WEIGHT + social * SOCIAL_WEIGHT)


class WhaleScorer(BaseScorer):

    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        return self.clamp(or_neutral(sub_scores.whale))
