"""Per-source daily/monthly call budgets.

A pure counter: it never sleeps and never talks to the network. Callers
acquire() immediately before each upstream request, so an exhausted budget
fails fast with UpstreamQuotaExceeded and no request is attempted.
Counters reset on UTC calendar day / month boundaries.
"""
import threading
from datetime import datetime, timezone
from typing import Callable

from common.errors import UpstreamQuotaExceeded
from common.logger import get_logger
from common.models import ApiUsage, RateBudget
from config.settings import QUOTA_WARNING_RATIO

logger = get_logger("rate_limiter")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._lock = threading.Lock()
        self._budgets: dict[str, RateBudget] = {}

    def register(self, source: str, daily_limit: int, monthly_limit: int) -> None:
        with self._lock:
            self._budgets[source] = RateBudget(
                source=source, daily_limit=daily_limit, monthly_limit=monthly_limit,
            )
        logger.info(f"Budget for {source}: {daily_limit}/day, {monthly_limit}/month")

    def has(self, source: str) -> bool:
        return source in self._budgets

    def _budget(self, source: str) -> RateBudget:
        """Look up and roll the budget. Caller holds the lock."""
        budget = self._budgets[source]
        now = self._clock()
        day, month = now.strftime("%Y-%m-%d"), now.strftime("%Y-%m")
        if budget.month != month:
            budget.month = month
            budget.calls_this_month = 0
        if budget.day != day:
            budget.day = day
            budget.calls_today = 0
        return budget

    @staticmethod
    def _remaining(budget: RateBudget) -> int:
        return max(0, min(budget.daily_limit - budget.calls_today,
                          budget.monthly_limit - budget.calls_this_month))

    def check(self, source: str) -> int:
        """Pre-batch probe. Returns calls left, raises if none are."""
        with self._lock:
            remaining = self._remaining(self._budget(source))
        if remaining <= 0:
            raise UpstreamQuotaExceeded(source)
        return remaining

    def acquire(self, source: str, calls: int = 1) -> None:
        with self._lock:
            budget = self._budget(source)
            if self._remaining(budget) < calls:
                raise UpstreamQuotaExceeded(
                    source,
                    f"{source}: budget exhausted "
                    f"({budget.calls_today}/{budget.daily_limit} today, "
                    f"{budget.calls_this_month}/{budget.monthly_limit} this month)",
                )
            budget.calls_today += calls
            budget.calls_this_month += calls
            warn = self._should_warn(budget)
            if warn:
                budget.warned_day = budget.day
        if warn:
            logger.warning(
                f"⚠️ {source} quota at {budget.calls_today}/{budget.daily_limit} today, "
                f"{budget.calls_this_month}/{budget.monthly_limit} this month"
            )

    @staticmethod
    def _should_warn(budget: RateBudget) -> bool:
        if budget.warned_day == budget.day:
            return False
        return (budget.calls_today >= budget.daily_limit * QUOTA_WARNING_RATIO
                or budget.calls_this_month >= budget.monthly_limit * QUOTA_WARNING_RATIO)

    def remaining_today(self, source: str) -> int:
        with self._lock:
            budget = self._budget(source)
            return max(0, budget.daily_limit - budget.calls_today)

    def remaining_this_month(self, source: str) -> int:
        with self._lock:
            budget = self._budget(source)
            return max(0, budget.monthly_limit - budget.calls_this_month)

    def remaining_ratio(self, source: str) -> float:
        """Share of today's budget still available, 0..1."""
        with self._lock:
            budget = self._budget(source)
            if budget.daily_limit <= 0:
                return 0.0
            return self._remaining(budget) / budget.daily_limit

    def usage(self, source: str) -> ApiUsage:
        with self._lock:
            b = self._budget(source)
            return ApiUsage(
                source=source,
                calls_today=b.calls_today,
                calls_this_month=b.calls_this_month,
                daily_limit=b.daily_limit,
                monthly_limit=b.monthly_limit,
                remaining_today=max(0, b.daily_limit - b.calls_today),
                remaining_this_month=max(0, b.monthly_limit - b.calls_this_month),
                daily_percentage=round(100 * b.calls_today / b.daily_limit, 1) if b.daily_limit else 100.0,
                monthly_percentage=round(100 * b.calls_this_month / b.monthly_limit, 1) if b.monthly_limit else 100.0,
            )
