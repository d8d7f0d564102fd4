"""Base scorer abstract class."""
from abc import ABC, abstractmethod
import math
import numpy as np
from common.logger import get_logger
from common.models import AssetSnapshot, MarketContext, SubScores

NEUTRAL = 50.0


class BaseScorer(ABC):
    """A component scorer maps (snapshot, sub-scores, context) to [0, 100]."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        """Return score in [0, 100]; 50 is neutral."""
        pass

    def safe_score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
                   context: MarketContext) -> float:
        """score() that never raises: failures collapse to neutral."""
        try:
            return self.clamp(self.score(snapshot, sub_scores, context))
        except Exception as e:
            self.logger.error(f"{self.__class__.__name__} failed for {snapshot.id}: {e}")
            return NEUTRAL

    @staticmethod
    def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
        if value is None or math.isnan(value):
            return NEUTRAL
        return float(np.clip(value, low, high))

    @staticmethod
    def band(value: float, bands: list[tuple[float, float]], default: float) -> float:
        """First (threshold, points) with value >= threshold wins. Bands go high to low."""
        for threshold, points in bands:
            if value >= threshold:
                return points
        return default

    @staticmethod
    def nudge(value: float | None, limit: float) -> float:
        """Symmetric bounded adjustment; missing or NaN input contributes nothing."""
        if value is None or math.isnan(value):
            return 0.0
        return float(np.clip(value, -limit, limit))
