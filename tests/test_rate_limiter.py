"""Tests for per-source quota tracking."""
import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from common.errors import UpstreamQuotaExceeded
from ingest.coingecko import CoinGeckoIngestor
from pipeline.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, start=datetime(2026, 10, 14, 12, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestRateLimiter:
    def setup_method(self):
        self.clock = FakeClock()
        self.limiter = RateLimiter(clock=self.clock)
        self.limiter.register("coingecko", daily_limit=10, monthly_limit=100)

    def test_acquire_counts_calls(self):
        for _ in range(3):
            self.limiter.acquire("coingecko")
        usage = self.limiter.usage("coingecko")
        assert usage.calls_today == 3
        assert usage.calls_this_month == 3
        assert usage.remaining_today == 7
        assert usage.daily_percentage == 30.0

    def test_daily_exhaustion_raises(self):
        for _ in range(10):
            self.limiter.acquire("coingecko")
        with pytest.raises(UpstreamQuotaExceeded) as exc:
            self.limiter.acquire("coingecko")
        assert exc.value.source == "coingecko"
        assert self.limiter.usage("coingecko").calls_today == 10

    def test_check_reports_remaining(self):
        assert self.limiter.check("coingecko") == 10
        self.limiter.acquire("coingecko", calls=4)
        assert self.limiter.check("coingecko") == 6

    def test_check_raises_when_empty(self):
        self.limiter.acquire("coingecko", calls=10)
        with pytest.raises(UpstreamQuotaExceeded):
            self.limiter.check("coingecko")

    def test_day_rollover_resets_daily_only(self):
        self.limiter.acquire("coingecko", calls=10)
        self.clock.advance(days=1)
        self.limiter.acquire("coingecko")
        usage = self.limiter.usage("coingecko")
        assert usage.calls_today == 1
        assert usage.calls_this_month == 11

    def test_monthly_limit_binds_across_days(self):
        limiter = RateLimiter(clock=self.clock)
        limiter.register("cg", daily_limit=10, monthly_limit=15)
        limiter.acquire("cg", calls=10)
        self.clock.advance(days=1)
        limiter.acquire("cg", calls=5)
        with pytest.raises(UpstreamQuotaExceeded):
            limiter.acquire("cg")
        assert limiter.remaining_this_month("cg") == 0

    def test_month_rollover_resets_monthly(self):
        limiter = RateLimiter(clock=FakeClock(datetime(2026, 10, 31, 23, tzinfo=timezone.utc)))
        limiter.register("cg", daily_limit=10, monthly_limit=10)
        limiter.acquire("cg", calls=10)
        limiter._clock.advance(hours=2)
        limiter.acquire("cg")
        assert limiter.usage("cg").calls_this_month == 1

    def test_remaining_ratio(self):
        assert self.limiter.remaining_ratio("coingecko") == 1.0
        self.limiter.acquire("coingecko", calls=6)
        assert self.limiter.remaining_ratio("coingecko") == pytest.approx(0.4)

    def test_warns_once_per_day_at_threshold(self, caplog):
        with caplog.at_level(logging.WARNING, logger="rate_limiter"):
            for _ in range(10):
                self.limiter.acquire("coingecko")
        warnings = [r for r in caplog.records if "quota at" in r.getMessage()]
        assert len(warnings) == 1

    def test_has(self):
        assert self.limiter.has("coingecko")
        assert not self.limiter.has("whale_alert")


class TestQuotaBlocksNetwork:
    """An exhausted budget must fail before the HTTP request is attempted."""

    def test_no_request_after_exhaustion(self):
        limiter = RateLimiter()
        limiter.register(CoinGeckoIngestor.SOURCE, daily_limit=1, monthly_limit=100)
        session = MagicMock()
        session.get.return_value.status_code = 200
        session.get.return_value.json.return_value = []
        ing = CoinGeckoIngestor(limiter, session=session)

        assert ing.fetch_batch(1, 100) == []
        assert session.get.call_count == 1

        with pytest.raises(UpstreamQuotaExceeded):
            ing.fetch_batch(2, 100)
        assert session.get.call_count == 1
