"""
Crypto Signal Engine: one-shot scoring of the top of the market.
Run: python run.py [count]
"""
import asyncio
import sys
import warnings
warnings.filterwarnings("ignore")

from common.logger import get_logger, new_trace_id
from common.models import Timeframe
from pipeline.bootstrap import build_limiter, build_market, build_service
from scoring.aggregator import filter_strong, group_by_timeframe, signal_stats
from storage.cache import TTLCache

logger = get_logger("run")

ACTION_EMOJI = {"STRONG_BUY": "🟢🟢", "BUY": "🟢", "HOLD": "🟡",
                "WEAK_SELL": "🟠", "SELL": "🔴", "STRONG_SELL": "🔴🔴"}


async def main(count: int) -> None:
    new_trace_id("run")
    limiter = build_limiter()
    cache = TTLCache()
    market = build_market(limiter, cache)
    service = build_service(limiter, cache, market)
    await asyncio.to_thread(service.context.refresh)

    snapshots = await asyncio.to_thread(market.fetch_batch, 1, count)

    print("\n" + "=" * 104)
    print("  🚀  CRYPTO SIGNAL ENGINE  |  8-factor regime-weighted scoring")
    print("=" * 104)
    print(f"{'Symbol':<8} {'Price':>6} {'Vol':>5} {'Mkt':>5} {'Sent':>5} {'Whale':>5} {'Volat':>5} "
          f"{'Corr':>5} {'Macro':>5} {'SCORE':>7}  {'Regime':<13} {'Risk':>4} {'Liq':>3}  Strategy / Action")
    print("-" * 104)

    signals = []
    for s in snapshots:
        try:
            sig = await service.compute(s.id, snapshot=s)
            signals.append(sig)
            b = sig.breakdown
            print(
                f"{sig.symbol:<8}"
                f" {b.price:>6.1f} {b.volume:>5.1f} {b.market:>5.1f} {b.sentiment:>5.1f}"
                f" {b.whale:>5.1f} {b.volatility:>5.1f} {b.correlation:>5.1f} {b.macro:>5.1f}"
                f" {sig.final_score:>7.1f}  {sig.regime.value:<13} {sig.risk_score:>4.0f} {sig.liquidity_grade.value:>3}"
                f"  {sig.timeframe.value} / {ACTION_EMOJI.get(sig.recommendation.action.value, '⚪')} "
                f"{sig.recommendation.action.value}"
            )
        except Exception as e:
            print(f"{s.symbol:<8} {'ERROR':>80}  ❌ {e}")

    stats = signal_stats(signals)
    print("=" * 104)
    print(f"\n  Average score {stats['avg_score']} over {stats['total']} assets, "
          f"{len(filter_strong(signals))} strong signals")
    print("  Strategies: " + " | ".join(f"{k}: {v}" for k, v in stats["timeframes"].items()))
    for timeframe, group in group_by_timeframe(signals).items():
        if not group or timeframe == Timeframe.REJECT:
            continue
        top = sorted(group, key=lambda s: s.final_score, reverse=True)[:3]
        print(f"    {timeframe.value:<14} " + ", ".join(f"{s.symbol} {s.final_score:.1f}" for s in top))
    usage = limiter.usage(market.SOURCE)
    print(f"  API usage: {usage.calls_today}/{usage.daily_limit} today, "
          f"{usage.calls_this_month}/{usage.monthly_limit} this month")
    print("=" * 104 + "\n")


if __name__ == "__main__":
    asyncio.run(main(int(sys.argv[1]) if len(sys.argv) > 1 else 25))
