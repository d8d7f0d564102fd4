"""CoinGecko market data ingestor.

Every request goes through the RateLimiter first, so an exhausted budget
raises UpstreamQuotaExceeded before any network traffic. Pages and single
coins are cached (CACHE_TTL["market_page"] / ["coin_data"]) to keep repeat
reads inside a tier run free.
"""
from typing import Optional

import requests

from common.errors import MalformedSnapshot, UpstreamQuotaExceeded, UpstreamTransientError
from common.models import AssetSnapshot
from config.settings import CACHE_TTL, COINGECKO_API_KEY
from ingest.base import BaseIngestor
from pipeline.rate_limiter import RateLimiter
from storage.cache import TTLCache

COINGECKO_URL = "https://api.coingecko.com/api/v3"
PRICE_CHANGE_HORIZONS = "1h,24h,7d,30d"


class CoinGeckoIngestor(BaseIngestor):
    SOURCE = "coingecko"

    def __init__(self, limiter: RateLimiter, cache: Optional[TTLCache] = None,
                 api_key: str = COINGECKO_API_KEY,
                 session: Optional[requests.Session] = None):
        super().__init__()
        self.limiter = limiter
        self.cache = cache if cache is not None else TTLCache()
        self.session = session or requests.Session()
        self.headers = {"accept": "application/json"}
        if api_key:
            self.headers["x-cg-demo-api-key"] = api_key

    def _get(self, path: str, params: Optional[dict] = None):
        self.limiter.acquire(self.SOURCE)
        try:
            resp = self.session.get(f"{COINGECKO_URL}{path}", params=params,
                                    headers=self.headers, timeout=10)
        except requests.RequestException as e:
            raise UpstreamTransientError(self.SOURCE, f"{path}: {e}") from e
        if resp.status_code == 429:
            raise UpstreamQuotaExceeded(self.SOURCE, f"{path}: HTTP 429 from upstream")
        if resp.status_code >= 500:
            raise UpstreamTransientError(self.SOURCE, f"{path}: HTTP {resp.status_code}")
        resp.raise_for_status()
        return resp.json()

    @staticmethod
    def normalize(coin: dict) -> dict:
        return {
            "id": coin.get("id"),
            "symbol": (coin.get("symbol") or "").upper(),
            "name": coin.get("name") or "",
            "price": coin.get("current_price"),
            "market_cap": coin.get("market_cap"),
            "market_cap_rank": coin.get("market_cap_rank"),
            "total_volume": coin.get("total_volume"),
            "change_1h": coin.get("price_change_percentage_1h_in_currency"),
            "change_24h": coin.get("price_change_percentage_24h_in_currency",
                                   coin.get("price_change_percentage_24h")),
            "change_7d": coin.get("price_change_percentage_7d_in_currency"),
            "change_30d": coin.get("price_change_percentage_30d_in_currency"),
            "market_cap_change_24h": coin.get("market_cap_change_percentage_24h"),
        }

    def _markets(self, **params) -> list[dict]:
        query = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "sparkline": "false",
            "price_change_percentage": PRICE_CHANGE_HORIZONS,
            **params,
        }
        data = self._get("/coins/markets", query)
        if not isinstance(data, list):
            raise MalformedSnapshot(f"{self.SOURCE}: /coins/markets returned {type(data).__name__}")
        return data

    def fetch_batch(self, page: int, per_page: int) -> list[AssetSnapshot]:
        key = f"page:{page}:{per_page}"
        cached = self.cache.get(key)
        if cached is not None:
            self.logger.debug(f"Page {page} served from cache")
            return cached
        self.logger.info(f"Fetching page {page} ({per_page}/page) from CoinGecko...")
        snapshots = self.parse_many([self.normalize(c) for c in self._markets(page=page, per_page=per_page)])
        self.cache.set(key, snapshots, CACHE_TTL["market_page"])
        for s in snapshots:
            self.cache.set(f"coin:{s.id}", s, CACHE_TTL["coin_data"])
        self.logger.info(f"Got {len(snapshots)} assets on page {page}")
        return snapshots

    def fetch_one(self, asset_id: str) -> AssetSnapshot:
        cached = self.cache.get(f"coin:{asset_id}")
        if cached is not None:
            return cached
        data = self._markets(ids=asset_id)
        if not data:
            raise MalformedSnapshot(f"{self.SOURCE}: unknown asset {asset_id}")
        snapshot = self.to_snapshot(self.normalize(data[0]))
        self.cache.set(f"coin:{asset_id}", snapshot, CACHE_TTL["coin_data"])
        return snapshot

    def fetch_global(self) -> dict:
        cached = self.cache.get("global")
        if cached is not None:
            return cached
        data = self._get("/global").get("data", {})
        result = {
            "btc_dominance": data.get("market_cap_percentage", {}).get("btc"),
            "eth_dominance": data.get("market_cap_percentage", {}).get("eth"),
            "market_cap_change_24h": data.get("market_cap_change_percentage_24h_usd"),
            "active_cryptocurrencies": data.get("active_cryptocurrencies"),
        }
        self.cache.set("global", result, CACHE_TTL["global"])
        return result
