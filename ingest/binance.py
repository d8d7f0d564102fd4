"""Binance public API: daily closes for BTC correlation (no API key required).

A failed fetch yields an empty frame, so the context reads as neutral.
mock=True serves seeded synthetic closes without touching the network
(MARKET_DATA_SOURCE=mock).
"""
import zlib

import numpy as np
import pandas as pd
import requests

from common.logger import get_logger

BINANCE_KLINES_URL = "https://api.binance.com/api/v3/klines"
OHLCV = ["open", "high", "low", "close", "volume"]


class BinanceKlines:
    def __init__(self, session: requests.Session | None = None, mock: bool = False):
        self.logger = get_logger(self.__class__.__name__)
        self.session = session or requests.Session()
        self.mock = mock

    def fetch(self, symbol: str, days: int = 90) -> pd.DataFrame:
        if self.mock:
            return self._mock_data(symbol, days)
        try:
            self.logger.info(f"Fetching {symbol} from Binance...")
            params = {"symbol": symbol.upper(), "interval": "1d", "limit": days}
            resp = self.session.get(BINANCE_KLINES_URL, params=params, timeout=10)
            resp.raise_for_status()
            data = resp.json()
            if not data:
                raise ValueError("Empty response")
            df = pd.DataFrame(data, columns=[
                "timestamp", "open", "high", "low", "close", "volume",
                "close_time", "quote_volume", "trades", "taker_base", "taker_quote", "ignore"
            ])
            df["timestamp"] = pd.to_datetime(df["timestamp"], unit="ms")
            df = df.set_index("timestamp")
            for col in OHLCV:
                df[col] = df[col].astype(float)
            self.logger.info(f"Got {len(df)} rows for {symbol}")
            return df[OHLCV]
        except (requests.RequestException, KeyError, TypeError, ValueError) as e:
            self.logger.warning(f"Binance failed for {symbol}: {e}")
            return pd.DataFrame(columns=OHLCV, dtype=float)

    def closes(self, symbols: list[str], days: int = 90) -> pd.DataFrame:
        """Close prices, one column per symbol, aligned on date. Symbols that failed are left out."""
        frames = {s: self.fetch(s, days)["close"] for s in symbols}
        return pd.DataFrame({s: c for s, c in frames.items() if not c.empty}).dropna()

    def _mock_data(self, symbol: str, days: int = 90) -> pd.DataFrame:
        dates = pd.date_range(end=pd.Timestamp.now().normalize(), periods=days, freq="D")
        rng = np.random.default_rng(zlib.crc32(symbol.encode()))
        base = 40000 if "BTC" in symbol else 2000
        price = np.abs(base + np.cumsum(rng.standard_normal(days) * base * 0.02))
        return pd.DataFrame({
            "open": price * (1 + rng.standard_normal(days) * 0.005),
            "high": price * (1 + np.abs(rng.standard_normal(days)) * 0.015),
            "low":  price * (1 - np.abs(rng.standard_normal(days)) * 0.015),
            "close": price,
            "volume": rng.random(days) * 1000,
        }, index=dates)
