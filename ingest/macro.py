"""
Market context provider.

Builds the market-wide MarketContext the correlation and macro scorers read:
  1. Fear & Greed index: alternative.me, last good value on failure (50 at start)
  2. BTC dominance + phase: market provider's global endpoint, compared with
     the previous refresh
  3. BTC 24h change and correlation: Binance daily closes; the correlation is
     the mean Pearson correlation of daily returns between BTC and a basket
     (both 0 when BTC closes are unavailable)
  4. Macro events: configured calendar within the next window, plus a VIX
     spike check via yfinance

refresh() is blocking and meant for asyncio.to_thread; get_context() is cheap.
"""
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

import numpy as np
import pandas as pd
import requests

from common.errors import UpstreamQuotaExceeded
from common.logger import get_logger
from common.models import DominancePhase, MacroEvent, MacroImpact, MarketContext
from config.settings import CORRELATION_SYMBOLS, MACRO_CALENDAR, MACRO_EVENT_WINDOW_HOURS
from ingest.base import BaseIngestor
from ingest.binance import BinanceKlines

FEAR_GREED_URL = "https://api.alternative.me/fng/"
DOMINANCE_STEP = 0.5          # percentage points between refreshes that count as a move
ALTCOIN_SEASON_DOMINANCE = 45.0
VIX_TICKER = "^VIX"
VIX_HIGH, VIX_ELEVATED = 30.0, 25.0


class MarketContextProvider:
    def __init__(self, market: BaseIngestor, klines: Optional[BinanceKlines] = None,
                 session: Optional[requests.Session] = None,
                 calendar: Optional[list[dict]] = None, use_vix: bool = True):
        self.logger = get_logger(self.__class__.__name__)
        self.market = market
        self.klines = klines or BinanceKlines()
        self.session = session or requests.Session()
        self.calendar = MACRO_CALENDAR if calendar is None else calendar
        self.use_vix = use_vix
        self._lock = threading.Lock()
        self._context = MarketContext()
        self._last_fear_greed = 50.0
        self._last_dominance: Optional[float] = None

    def get_context(self, as_of: Optional[datetime] = None) -> MarketContext:
        with self._lock:
            ctx = self._context
        return ctx.model_copy(update={"as_of": as_of or datetime.now(timezone.utc)})

    def refresh(self) -> MarketContext:
        fear_greed = self._fear_greed()
        dominance, phase = self._dominance()
        btc_change, correlation = self._btc_coupling()
        events = self._macro_events()
        ctx = MarketContext(
            btc_correlation=correlation,
            btc_change_24h=btc_change,
            altcoin_season=dominance is not None and dominance < ALTCOIN_SEASON_DOMINANCE,
            dominance_phase=phase,
            btc_dominance=dominance,
            fear_greed_index=fear_greed,
            macro_events=events,
        )
        with self._lock:
            self._context = ctx
        self.logger.info(
            f"🔄 Context: F&G={fear_greed:.0f} dominance={dominance} ({phase.value}) "
            f"btc24h={btc_change:+.2f}% corr={correlation:.2f} events={len(events)}"
        )
        return ctx

    # ── Sources ───────────────────────────────────────────────────────────────

    def _fear_greed(self) -> float:
        try:
            resp = self.session.get(FEAR_GREED_URL, timeout=10)
            resp.raise_for_status()
            value = float(resp.json()["data"][0]["value"])
            if not 0 <= value <= 100:
                raise ValueError(f"out of range: {value}")
            self._last_fear_greed = value
        except (requests.RequestException, KeyError, IndexError, TypeError, ValueError) as e:
            self.logger.warning(f"Fear & Greed unavailable, keeping {self._last_fear_greed:.0f}: {e}")
        return self._last_fear_greed

    def _dominance(self) -> tuple[Optional[float], DominancePhase]:
        try:
            dominance = self.market.fetch_global().get("btc_dominance")
        except UpstreamQuotaExceeded as e:
            self.logger.info(f"Global data skipped: {e}")
            dominance = None
        except Exception as e:
            self.logger.warning(f"Global data unavailable: {e}")
            dominance = None
        if dominance is None:
            return self._last_dominance, DominancePhase.NEUTRAL
        phase = DominancePhase.NEUTRAL
        if self._last_dominance is not None:
            delta = dominance - self._last_dominance
            if delta >= DOMINANCE_STEP:
                phase = DominancePhase.RISING
            elif delta <= -DOMINANCE_STEP:
                phase = DominancePhase.FALLING
            else:
                phase = self._context.dominance_phase
        self._last_dominance = float(dominance)
        return self._last_dominance, phase

    def _btc_coupling(self) -> tuple[float, float]:
        closes = self.klines.closes(["BTCUSDT", *CORRELATION_SYMBOLS], days=90)
        if "BTCUSDT" not in closes or len(closes) < 3:
            return 0.0, 0.0
        btc_change = float((closes["BTCUSDT"].iloc[-1] / closes["BTCUSDT"].iloc[-2] - 1) * 100)
        return btc_change, btc_basket_correlation(closes)

    def _macro_events(self, now: Optional[datetime] = None) -> list[MacroEvent]:
        now = now or datetime.now(timezone.utc)
        horizon = now + timedelta(hours=MACRO_EVENT_WINDOW_HOURS)
        events = []
        for item in self.calendar:
            try:
                event = MacroEvent(**item)
            except (TypeError, ValueError) as e:
                self.logger.warning(f"Bad macro calendar entry {item}: {e}")
                continue
            at = event.scheduled_at
            if at is not None and at.tzinfo is None:
                at = at.replace(tzinfo=timezone.utc)
            if at is None or now - timedelta(hours=1) <= at <= horizon:
                events.append(event)
        vix = self._vix_event() if self.use_vix else None
        if vix is not None:
            events.append(vix)
        return events

    def _vix_event(self) -> Optional[MacroEvent]:
        import yfinance as yf
        try:
            df = yf.download(VIX_TICKER, period="1mo", progress=False, auto_adjust=True)
            if df.empty:
                return None
            if isinstance(df.columns, pd.MultiIndex):
                df.columns = [c[0].lower() for c in df.columns]
            else:
                df.columns = [str(c).lower() for c in df.columns]
            current = float(df["close"].dropna().iloc[-1])
        except Exception as e:
            self.logger.warning(f"Failed to fetch {VIX_TICKER}: {e}")
            return None
        if current >= VIX_HIGH:
            return MacroEvent(name=f"VIX {current:.1f}", impact=MacroImpact.HIGH)
        if current >= VIX_ELEVATED:
            return MacroEvent(name=f"VIX {current:.1f}", impact=MacroImpact.MEDIUM)
        return None


def btc_basket_correlation(closes: pd.DataFrame) -> float:
    """Mean correlation of daily returns between BTCUSDT and every other column."""
    returns = closes.pct_change().dropna()
    others = [c for c in returns.columns if c != "BTCUSDT"]
    if not others or len(returns) < 2:
        return 0.0
    corr = returns.corr()["BTCUSDT"][others]
    value = float(np.nanmean(corr.values)) if len(corr) else 0.0
    if np.isnan(value):
        return 0.0
    return float(np.clip(value, -1.0, 1.0))
