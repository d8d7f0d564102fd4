"""Tests for market, sentiment, whale and context providers."""
import json
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import numpy as np
import pandas as pd
import pytest
import requests

from common.errors import MalformedSnapshot, UpstreamQuotaExceeded, UpstreamTransientError
from common.models import DominancePhase, MacroImpact
from ingest.binance import BinanceKlines
from ingest.coingecko import CoinGeckoIngestor
from ingest.macro import MarketContextProvider, btc_basket_correlation
from ingest.mock import SyntheticMarketIngestor
from ingest.sentiment import AlphaVantageNewsSentiment, SocialSentimentFeed
from ingest.whale import WhaleAlertProvider
from pipeline.rate_limiter import RateLimiter
from storage.cache import TTLCache

REQUIRED_COLS = {"open", "high", "low", "close", "volume"}

BTC_MARKET = {
    "id": "bitcoin", "symbol": "btc", "name": "Bitcoin",
    "current_price": 67000.0, "market_cap": 1.3e12, "market_cap_rank": 1,
    "total_volume": 3.1e10,
    "price_change_percentage_1h_in_currency": 0.4,
    "price_change_percentage_24h_in_currency": 2.1,
    "price_change_percentage_7d_in_currency": -3.5,
    "price_change_percentage_30d_in_currency": 8.0,
    "market_cap_change_percentage_24h": 2.0,
}


def response(payload=None, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"HTTP {status}")
    return resp


def make_limiter(daily=100):
    limiter = RateLimiter()
    limiter.register("coingecko", daily, daily * 30)
    return limiter


# ── CoinGecko ─────────────────────────────────────────────────────────────────

class TestCoinGecko:
    def setup_method(self):
        self.session = MagicMock()
        self.limiter = make_limiter()
        self.ing = CoinGeckoIngestor(self.limiter, session=self.session)

    def test_empty_shared_cache_is_kept(self):
        cache = TTLCache()
        assert CoinGeckoIngestor(self.limiter, cache, session=self.session).cache is cache

    def test_normalize(self):
        record = CoinGeckoIngestor.normalize(BTC_MARKET)
        assert record["symbol"] == "BTC"
        assert record["price"] == 67000.0
        assert record["change_7d"] == -3.5

    def test_fetch_batch_parses_and_skips_malformed(self):
        self.session.get.return_value = response([BTC_MARKET, {"id": None, "symbol": "x"}])
        snapshots = self.ing.fetch_batch(1, 100)
        assert [s.id for s in snapshots] == ["bitcoin"]
        assert snapshots[0].market_cap_rank == 1
        assert snapshots[0].change_24h == 2.1

    def test_fetch_batch_is_cached(self):
        self.session.get.return_value = response([BTC_MARKET])
        self.ing.fetch_batch(1, 100)
        self.ing.fetch_batch(1, 100)
        assert self.session.get.call_count == 1
        assert self.limiter.usage("coingecko").calls_today == 1

    def test_fetch_one_served_from_page_cache(self):
        self.session.get.return_value = response([BTC_MARKET])
        self.ing.fetch_batch(1, 100)
        assert self.ing.fetch_one("bitcoin").price == 67000.0
        assert self.session.get.call_count == 1

    def test_fetch_one_unknown(self):
        self.session.get.return_value = response([])
        with pytest.raises(MalformedSnapshot):
            self.ing.fetch_one("nope")

    def test_unranked_coin(self):
        coin = {**BTC_MARKET, "id": "newcoin", "market_cap_rank": None}
        self.session.get.return_value = response([coin])
        assert self.ing.fetch_batch(1, 100)[0].is_unranked

    def test_429_is_quota(self):
        self.session.get.return_value = response(None, status=429)
        with pytest.raises(UpstreamQuotaExceeded):
            self.ing.fetch_batch(1, 100)

    def test_5xx_is_transient(self):
        self.session.get.return_value = response(None, status=503)
        with pytest.raises(UpstreamTransientError):
            self.ing.fetch_batch(1, 100)

    def test_network_error_is_transient(self):
        self.session.get.side_effect = requests.ConnectionError("reset")
        with pytest.raises(UpstreamTransientError):
            self.ing.fetch_batch(1, 100)

    def test_non_list_payload_is_malformed(self):
        self.session.get.return_value = response({"status": {"error_code": 1}})
        with pytest.raises(MalformedSnapshot):
            self.ing.fetch_batch(1, 100)

    def test_fetch_global(self):
        self.session.get.return_value = response(
            {"data": {"market_cap_percentage": {"btc": 54.2, "eth": 17.1},
                      "market_cap_change_percentage_24h_usd": 1.5,
                      "active_cryptocurrencies": 12000}})
        result = self.ing.fetch_global()
        assert result["btc_dominance"] == 54.2
        self.ing.fetch_global()
        assert self.session.get.call_count == 1

    def test_api_key_header(self):
        ing = CoinGeckoIngestor(self.limiter, api_key="demo-key", session=self.session)
        assert ing.headers["x-cg-demo-api-key"] == "demo-key"


# ── Synthetic universe ────────────────────────────────────────────────────────

class TestSyntheticMarket:
    def setup_method(self):
        self.ing = SyntheticMarketIngestor(universe_size=600)

    def test_pages_follow_rank(self):
        page = self.ing.fetch_batch(2, 100)
        assert [s.market_cap_rank for s in page] == list(range(101, 201))

    def test_first_page_has_named_assets(self):
        page = self.ing.fetch_batch(1, 10)
        assert page[0].id == "bitcoin"
        assert page[0].symbol == "BTC"
        assert page[9].id == "coin-10"

    def test_last_page_is_truncated(self):
        assert len(self.ing.fetch_batch(3, 250)) == 100
        assert self.ing.fetch_batch(4, 250) == []

    def test_deterministic(self):
        first = self.ing.fetch_one("coin-42").model_dump(exclude={"fetched_at"})
        second = SyntheticMarketIngestor().fetch_one("coin-42").model_dump(exclude={"fetched_at"})
        assert first == second

    def test_market_cap_decreases_with_rank(self):
        caps = [s.market_cap for s in self.ing.fetch_batch(1, 50)]
        assert caps == sorted(caps, reverse=True)

    def test_unknown_asset(self):
        with pytest.raises(MalformedSnapshot):
            self.ing.fetch_one("not-a-coin")
        with pytest.raises(MalformedSnapshot):
            self.ing.fetch_one("coin-601")

    def test_spends_budget(self):
        limiter = make_limiter(daily=1)
        ing = SyntheticMarketIngestor(limiter=limiter)
        ing.fetch_batch(1, 10)
        with pytest.raises(UpstreamQuotaExceeded):
            ing.fetch_batch(2, 10)


# ── Binance ───────────────────────────────────────────────────────────────────

class TestBinanceKlines:
    def test_failure_returns_empty_frame(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("offline")
        df = BinanceKlines(session=session).fetch("BTCUSDT", days=30)
        assert REQUIRED_COLS.issubset(df.columns)
        assert df.empty

    def test_mock_mode_never_calls_network(self):
        session = MagicMock()
        df = BinanceKlines(session=session, mock=True).fetch("BTCUSDT", days=30)
        session.get.assert_not_called()
        assert len(df) == 30
        assert (df["close"] > 0).all()

    def test_parses_klines(self):
        rows = [[1700000000000 + i * 86400000, "1", "2", "0.5", str(10 + i), "100",
                 0, "0", 0, "0", "0", "0"] for i in range(5)]
        session = MagicMock()
        session.get.return_value = response(rows)
        df = BinanceKlines(session=session).fetch("ETHUSDT", days=5)
        assert list(df["close"]) == [10.0, 11.0, 12.0, 13.0, 14.0]

    def test_closes_aligns_symbols(self):
        closes = BinanceKlines(session=MagicMock(), mock=True).closes(["BTCUSDT", "ETHUSDT"], days=20)
        assert list(closes.columns) == ["BTCUSDT", "ETHUSDT"]
        assert len(closes) == 20

    def test_closes_leave_out_failed_symbols(self):
        rows = [[1700000000000 + i * 86400000, "1", "2", "0.5", str(10 + i), "100",
                 0, "0", 0, "0", "0", "0"] for i in range(5)]
        session = MagicMock()
        session.get.side_effect = [response(rows), requests.ConnectionError("offline")]
        closes = BinanceKlines(session=session).closes(["BTCUSDT", "ETHUSDT"], days=5)
        assert list(closes.columns) == ["BTCUSDT"]
        assert len(closes) == 5


class TestBasketCorrelation:
    def test_perfectly_coupled(self):
        btc = pd.Series(np.linspace(100, 150, 30) + np.sin(np.arange(30)))
        closes = pd.DataFrame({"BTCUSDT": btc, "ETHUSDT": btc * 0.05, "SOLUSDT": btc * 0.002})
        assert btc_basket_correlation(closes) == pytest.approx(1.0)

    def test_no_basket(self):
        closes = pd.DataFrame({"BTCUSDT": np.linspace(100, 110, 10)})
        assert btc_basket_correlation(closes) == 0.0

    def test_bounded(self):
        rng = np.random.default_rng(3)
        closes = pd.DataFrame(np.abs(100 + rng.standard_normal((60, 3)).cumsum(axis=0)),
                              columns=["BTCUSDT", "ETHUSDT", "XRPUSDT"])
        assert -1.0 <= btc_basket_correlation(closes) <= 1.0


# ── Sentiment ─────────────────────────────────────────────────────────────────

class TestAlphaVantageNews:
    FEED = {"feed": [
        {"title": "BTC rallies", "time_published": "20261014T120000",
         "overall_sentiment_score": 0.1,
         "ticker_sentiment": [{"ticker": "CRYPTO:BTC", "ticker_sentiment_score": "0.35"}]},
        {"title": "Market wrap", "time_published": "20261014T130000",
         "overall_sentiment_score": 0.35, "ticker_sentiment": []},
    ]}

    def test_score_maps_to_0_100(self):
        session = MagicMock()
        session.get.return_value = response(self.FEED)
        provider = AlphaVantageNewsSentiment(api_key="k", session=session)
        assert provider.score_for("btc") == pytest.approx(100.0)

    def test_no_key_is_silent(self):
        session = MagicMock()
        assert AlphaVantageNewsSentiment(api_key="", session=session).score_for("BTC") is None
        session.get.assert_not_called()

    def test_failure_is_silent(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        assert AlphaVantageNewsSentiment(api_key="k", session=session).score_for("BTC") is None

    def test_quota_checked_before_request(self):
        limiter = RateLimiter()
        limiter.register(AlphaVantageNewsSentiment.SOURCE, 0, 0)
        session = MagicMock()
        provider = AlphaVantageNewsSentiment(api_key="k", limiter=limiter, session=session)
        assert provider.score_for("BTC") is None
        session.get.assert_not_called()


class TestSocialSentimentFeed:
    def test_reads_and_reloads(self, tmp_path):
        path = tmp_path / "social.json"
        path.write_text(json.dumps({"btc": 63.5, "ETH": 120}))
        feed = SocialSentimentFeed(path)
        assert feed.score_for("BTC") == 63.5
        assert feed.score_for("eth") == 100.0
        assert feed.score_for("SOL") is None

        path.write_text(json.dumps({"SOL": 41}))
        stat = path.stat()
        os.utime(path, (stat.st_atime, stat.st_mtime + 10))
        assert feed.score_for("SOL") == 41.0
        assert feed.score_for("BTC") is None

    def test_missing_file(self, tmp_path):
        assert SocialSentimentFeed(tmp_path / "absent.json").score_for("BTC") is None

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "social.json"
        path.write_text("{not json")
        assert SocialSentimentFeed(path).score_for("BTC") is None


# ── Whale ─────────────────────────────────────────────────────────────────────

class TestWhaleAlert:
    def test_outflows_are_bullish(self):
        transfers = [
            {"from": {"owner_type": "exchange"}, "to": {"owner_type": "unknown"}, "amount_usd": 3e6},
            {"from": {"owner_type": "unknown"}, "to": {"owner_type": "exchange"}, "amount_usd": 1e6},
            {"from": {"owner_type": "unknown"}, "to": {"owner_type": "unknown"}, "amount_usd": 9e9},
        ]
        assert WhaleAlertProvider.score_transfers(transfers) == pytest.approx(75.0)

    def test_all_inflow_is_bearish(self):
        transfers = [{"from": {"owner_type": "unknown"}, "to": {"owner_type": "exchange"},
                      "amount_usd": 2e6}]
        assert WhaleAlertProvider.score_transfers(transfers) == 0.0

    def test_no_exchange_flow(self):
        assert WhaleAlertProvider.score_transfers([]) is None

    def test_no_key_is_silent(self):
        session = MagicMock()
        assert WhaleAlertProvider(api_key="", session=session).score_for("BTC") is None
        session.get.assert_not_called()

    def test_failure_is_silent(self):
        session = MagicMock()
        session.get.side_effect = requests.ConnectionError("down")
        assert WhaleAlertProvider(api_key="k", session=session).score_for("BTC") is None


# ── Market context ────────────────────────────────────────────────────────────

class TestMarketContextProvider:
    def setup_method(self):
        self.market = MagicMock()
        self.market.fetch_global.return_value = {"btc_dominance": 52.0}
        self.klines = MagicMock()
        idx = pd.date_range("2026-09-01", periods=10, freq="D")
        btc = np.linspace(100, 110, 10)
        self.klines.closes.return_value = pd.DataFrame(
            {"BTCUSDT": btc, "ETHUSDT": btc * 0.05}, index=idx)
        self.session = MagicMock()
        self.session.get.return_value = response({"data": [{"value": "22"}]})

    def provider(self, **kwargs):
        return MarketContextProvider(self.market, klines=self.klines, session=self.session,
                                     use_vix=False, **kwargs)

    def test_refresh_builds_context(self):
        ctx = self.provider(calendar=[]).refresh()
        assert ctx.fear_greed_index == 22.0
        assert ctx.btc_dominance == 52.0
        assert ctx.dominance_phase == DominancePhase.NEUTRAL
        assert not ctx.altcoin_season
        assert ctx.btc_correlation == pytest.approx(1.0)
        assert ctx.btc_change_24h == pytest.approx((110 / (110 - 10 / 9) - 1) * 100)

    def test_dominance_phase_tracks_change(self):
        provider = self.provider(calendar=[])
        provider.refresh()
        self.market.fetch_global.return_value = {"btc_dominance": 53.0}
        assert provider.refresh().dominance_phase == DominancePhase.RISING
        self.market.fetch_global.return_value = {"btc_dominance": 52.2}
        assert provider.refresh().dominance_phase == DominancePhase.FALLING

    def test_low_dominance_is_altcoin_season(self):
        self.market.fetch_global.return_value = {"btc_dominance": 41.0}
        assert self.provider(calendar=[]).refresh().altcoin_season

    def test_binance_outage_reads_as_neutral_coupling(self):
        down = MagicMock()
        down.get.side_effect = requests.ConnectionError("down")
        provider = MarketContextProvider(self.market, klines=BinanceKlines(session=down),
                                         session=self.session, calendar=[], use_vix=False)
        ctx = provider.refresh()
        assert ctx.btc_change_24h == 0.0
        assert ctx.btc_correlation == 0.0
        assert ctx.fear_greed_index == 22.0

    def test_fear_greed_keeps_last_good_value(self):
        provider = self.provider(calendar=[])
        provider.refresh()
        self.session.get.side_effect = requests.ConnectionError("down")
        assert provider.refresh().fear_greed_index == 22.0

    def test_global_quota_keeps_previous_dominance(self):
        provider = self.provider(calendar=[])
        provider.refresh()
        self.market.fetch_global.side_effect = UpstreamQuotaExceeded("coingecko")
        assert provider.refresh().btc_dominance == 52.0

    def test_macro_calendar_window(self):
        now = datetime(2026, 11, 3, 12, tzinfo=timezone.utc)
        calendar = [
            {"name": "FOMC", "impact": "high", "scheduled_at": (now + timedelta(hours=6)).isoformat()},
            {"name": "CPI", "impact": "medium", "scheduled_at": (now + timedelta(days=3)).isoformat()},
            {"name": "bad", "impact": "catastrophic"},
        ]
        events = self.provider(calendar=calendar)._macro_events(now=now)
        assert [e.name for e in events] == ["FOMC"]
        assert events[0].impact == MacroImpact.HIGH

    def test_get_context_is_stamped(self):
        provider = self.provider(calendar=[])
        provider.refresh()
        as_of = datetime(2026, 10, 14, 14, tzinfo=timezone.utc)
        ctx = provider.get_context(as_of)
        assert ctx.as_of == as_of
        assert ctx.fear_greed_index == 22.0
