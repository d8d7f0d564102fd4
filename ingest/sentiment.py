"""Sentiment providers.

Both return a 0..100 score or None when they have nothing to say; the
scoring engine treats None as neutral 50. Neither ever raises.
"""
import json
import os
from pathlib import Path
from typing import Optional

import numpy as np
import requests

from common.errors import UpstreamQuotaExceeded
from common.logger import get_logger
from config.settings import ALPHA_VANTAGE_API_KEY
from pipeline.rate_limiter import RateLimiter

# Alpha Vantage labels |score| >= 0.35 as (somewhat) bullish/bearish; map that to the ends.
AV_SCORE_SCALE = 0.35


class AlphaVantageNewsSentiment:
    BASE_URL = "https://www.alphavantage.co/query"
    SOURCE = "alpha_vantage"

    def __init__(self, api_key: str = ALPHA_VANTAGE_API_KEY,
                 limiter: Optional[RateLimiter] = None,
                 session: Optional[requests.Session] = None):
        self.logger = get_logger(self.__class__.__name__)
        self.api_key = api_key
        self.limiter = limiter
        self.session = session or requests.Session()

    def fetch_news(self, symbol: str, limit: int = 50) -> list[dict]:
        """News items mentioning the coin, with per-ticker sentiment."""
        params = {"function": "NEWS_SENTIMENT", "tickers": f"CRYPTO:{symbol.upper()}",
                  "limit": limit, "apikey": self.api_key}
        resp = self.session.get(self.BASE_URL, params=params, timeout=10)
        resp.raise_for_status()
        feed = resp.json().get("feed", [])
        items = []
        for a in feed:
            ticker_score = next(
                (t.get("ticker_sentiment_score") for t in a.get("ticker_sentiment", [])
                 if t.get("ticker", "").upper() == f"CRYPTO:{symbol.upper()}"),
                a.get("overall_sentiment_score", 0),
            )
            items.append({"title": a.get("title", ""),
                          "published": a.get("time_published", ""),
                          "sentiment": float(ticker_score)})
        return items

    def score_for(self, symbol: str) -> Optional[float]:
        if not self.api_key:
            return None
        try:
            if self.limiter is not None and self.limiter.has(self.SOURCE):
                self.limiter.acquire(self.SOURCE)
            news = self.fetch_news(symbol)
        except UpstreamQuotaExceeded as e:
            self.logger.info(f"News sentiment skipped for {symbol}: {e}")
            return None
        except Exception as e:
            self.logger.warning(f"Alpha Vantage news failed for {symbol}: {e}")
            return None
        if not news:
            return None
        avg = float(np.mean([n["sentiment"] for n in news]))
        return float(np.clip(50 + avg / AV_SCORE_SCALE * 50, 0, 100))


class SocialSentimentFeed:
    """Reads scores published by the external social-feed poller.

    The poller writes {"BTC": 63.5, "ETH": 48.0, ...} to a JSON file; the file
    is re-read whenever its mtime changes.
    """

    def __init__(self, path: Optional[Path] = None):
        self.logger = get_logger(self.__class__.__name__)
        self.path = path or Path(os.getenv("SOCIAL_SENTIMENT_FILE", "data/social_sentiment.json"))
        self._mtime = None
        self._scores: dict[str, float] = {}

    def _reload(self) -> None:
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            self._scores = {}
            return
        if mtime == self._mtime:
            return
        try:
            raw = json.loads(self.path.read_text())
            self._scores = {str(k).upper(): float(v) for k, v in raw.items()}
            self._mtime = mtime
        except (ValueError, TypeError, AttributeError) as e:
            self.logger.warning(f"Unreadable social sentiment file {self.path}: {e}")

    def score_for(self, symbol: str) -> Optional[float]:
        self._reload()
        value = self._scores.get(symbol.upper())
        if value is None:
            return None
        return float(np.clip(value, 0, 100))
