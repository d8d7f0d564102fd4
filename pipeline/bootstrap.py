"""Wiring shared by run.py and scheduler.py."""
from common.logger import get_logger
from config.settings import (COINGECKO_DAILY_LIMIT, COINGECKO_MONTHLY_LIMIT,
                             MARKET_DATA_SOURCE)
from ingest.base import BaseIngestor
from ingest.binance import BinanceKlines
from ingest.coingecko import CoinGeckoIngestor
from ingest.macro import MarketContextProvider
from ingest.mock import SyntheticMarketIngestor
from ingest.sentiment import AlphaVantageNewsSentiment, SocialSentimentFeed
from ingest.whale import WhaleAlertProvider
from pipeline.alerts import build_alert_sink
from pipeline.rate_limiter import RateLimiter
from pipeline.service import SignalService
from storage.cache import TTLCache

logger = get_logger("bootstrap")

# Alpha Vantage free tier
ALPHA_VANTAGE_DAILY_LIMIT = 25
ALPHA_VANTAGE_MONTHLY_LIMIT = 750


def build_limiter() -> RateLimiter:
    limiter = RateLimiter()
    limiter.register(CoinGeckoIngestor.SOURCE, COINGECKO_DAILY_LIMIT, COINGECKO_MONTHLY_LIMIT)
    limiter.register(AlphaVantageNewsSentiment.SOURCE, ALPHA_VANTAGE_DAILY_LIMIT, ALPHA_VANTAGE_MONTHLY_LIMIT)
    return limiter


def build_market(limiter: RateLimiter, cache: TTLCache, source: str = MARKET_DATA_SOURCE) -> BaseIngestor:
    if source == "mock":
        logger.info("Market data: synthetic universe")
        return SyntheticMarketIngestor(limiter=limiter)
    if source != "coingecko":
        raise ValueError(f"Unknown MARKET_DATA_SOURCE: {source}")
    logger.info("Market data: CoinGecko")
    return CoinGeckoIngestor(limiter, cache)


def build_service(limiter: RateLimiter, cache: TTLCache, market: BaseIngestor,
                  use_vix: bool = True) -> SignalService:
    klines = BinanceKlines(mock=isinstance(market, SyntheticMarketIngestor))
    context = MarketContextProvider(market, klines=klines, use_vix=use_vix)
    return SignalService(
        market=market,
        context=context,
        news=AlphaVantageNewsSentiment(limiter=limiter),
        social=SocialSentimentFeed(),
        whale=WhaleAlertProvider(),
        cache=cache,
        alerts=build_alert_sink(),
    )
