"""Whale Alert provider: large on-chain transfers around exchanges.

Coins leaving exchanges read as accumulation (bullish), coins arriving at
exchanges as distribution (bearish):

  score = 50 + 50 * (outflow_usd - inflow_usd) / (outflow_usd + inflow_usd)

Transfers that neither start nor end at an exchange are ignored.
"""
import time
from typing import Optional

import requests

from common.logger import get_logger
from config.settings import WHALE_ALERT_API_KEY

WHALE_ALERT_URL = "https://api.whale-alert.io/v1/transactions"
MIN_TRANSFER_USD = 500_000
LOOKBACK_SECONDS = 3600


class WhaleAlertProvider:
    def __init__(self, api_key: str = WHALE_ALERT_API_KEY,
                 session: Optional[requests.Session] = None):
        self.logger = get_logger(self.__class__.__name__)
        self.api_key = api_key
        self.session = session or requests.Session()

    def fetch_transfers(self, symbol: str) -> list[dict]:
        params = {
            "api_key": self.api_key,
            "min_value": MIN_TRANSFER_USD,
            "start": int(time.time()) - LOOKBACK_SECONDS,
            "currency": symbol.lower(),
        }
        resp = self.session.get(WHALE_ALERT_URL, params=params, timeout=10)
        resp.raise_for_status()
        return resp.json().get("transactions", []) or []

    @staticmethod
    def score_transfers(transfers: list[dict]) -> Optional[float]:
        inflow = outflow = 0.0
        for tx in transfers:
            src = (tx.get("from") or {}).get("owner_type")
            dst = (tx.get("to") or {}).get("owner_type")
            amount = float(tx.get("amount_usd") or 0)
            if dst == "exchange" and src != "exchange":
                inflow += amount
            elif src == "exchange" and dst != "exchange":
                outflow += amount
        if inflow + outflow == 0:
            return None
        return 50 + 50 * (outflow - inflow) / (outflow + inflow)

    def score_for(self, symbol: str) -> Optional[float]:
        if not self.api_key:
            return None
        try:
            return self.score_transfers(self.fetch_transfers(symbol))
        except Exception as e:
            self.logger.warning(f"Whale Alert failed for {symbol}: {e}")
            return None
