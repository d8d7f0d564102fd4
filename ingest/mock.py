"""Synthetic market universe for offline runs (MARKET_DATA_SOURCE=mock) and tests.

Each asset is generated from a seed derived from its id, so the same asset
always gets the same snapshot. Market cap decays with rank; changes and
volume are drawn from heavier-tailed distributions further down the list.
"""
import zlib
from typing import Optional

import numpy as np

from common.errors import MalformedSnapshot
from common.models import AssetSnapshot
from ingest.base import BaseIngestor
from pipeline.rate_limiter import RateLimiter

NAMED = [("bitcoin", "BTC", "Bitcoin"), ("ethereum", "ETH", "Ethereum"),
         ("tether", "USDT", "Tether"), ("binancecoin", "BNB", "BNB"),
         ("solana", "SOL", "Solana"), ("ripple", "XRP", "XRP"),
         ("cardano", "ADA", "Cardano"), ("dogecoin", "DOGE", "Dogecoin")]


class SyntheticMarketIngestor(BaseIngestor):
    SOURCE = "coingecko"

    def __init__(self, universe_size: int = 5000, limiter: Optional[RateLimiter] = None):
        super().__init__()
        self.universe_size = universe_size
        self.limiter = limiter
        self.calls = 0

    @staticmethod
    def asset_id_for(rank: int) -> str:
        return NAMED[rank - 1][0] if rank <= len(NAMED) else f"coin-{rank}"

    @staticmethod
    def rank_for(asset_id: str) -> Optional[int]:
        for i, (aid, _, _) in enumerate(NAMED, start=1):
            if aid == asset_id:
                return i
        if asset_id.startswith("coin-") and asset_id[5:].isdigit():
            return int(asset_id[5:])
        return None

    def _spend(self) -> None:
        self.calls += 1
        if self.limiter is not None:
            self.limiter.acquire(self.SOURCE)

    def _snapshot(self, rank: int) -> AssetSnapshot:
        asset_id = self.asset_id_for(rank)
        rng = np.random.default_rng(zlib.crc32(asset_id.encode()))
        if rank <= len(NAMED):
            _, symbol, name = NAMED[rank - 1]
        else:
            symbol, name = f"C{rank}", f"Coin {rank}"
        market_cap = 1.2e12 / rank ** 1.3
        tail = 1 + np.log10(rank)   # smaller caps swing harder
        return AssetSnapshot(
            id=asset_id,
            symbol=symbol,
            name=name,
            price=float(abs(rng.lognormal(0, 2)) + 1e-6),
            market_cap=market_cap,
            market_cap_rank=rank,
            total_volume=float(market_cap * rng.lognormal(-2.5, 1.0)),
            change_1h=float(rng.standard_t(4) * 0.8 * tail),
            change_24h=float(rng.standard_t(4) * 3 * tail),
            change_7d=float(rng.standard_t(4) * 6 * tail),
            change_30d=float(rng.standard_t(4) * 12 * tail),
            market_cap_change_24h=float(rng.normal(0, 3)),
            volume_change_24h=float(rng.normal(0, 30)),
        )

    def fetch_batch(self, page: int, per_page: int) -> list[AssetSnapshot]:
        self._spend()
        start = (page - 1) * per_page + 1
        end = min(start + per_page, self.universe_size + 1)
        return [self._snapshot(r) for r in range(start, end)]

    def fetch_one(self, asset_id: str) -> AssetSnapshot:
        self._spend()
        rank = self.rank_for(asset_id)
        if rank is None or rank > self.universe_size:
            raise MalformedSnapshot(f"{self.SOURCE}: unknown asset {asset_id}")
        return self._snapshot(rank)

    def fetch_global(self) -> dict:
        return {"btc_dominance": 52.0, "eth_dominance": 17.0,
                "market_cap_change_24h": 0.0, "active_cryptocurrencies": self.universe_size}
