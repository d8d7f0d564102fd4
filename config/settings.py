"""Configuration loader."""
import json
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ── Upstream credentials ───────────────────────────────────────────────────────
COINGECKO_API_KEY = os.getenv("COINGECKO_API_KEY", "")
ALPHA_VANTAGE_API_KEY = os.getenv("ALPHA_VANTAGE_API_KEY", "")
WHALE_ALERT_API_KEY = os.getenv("WHALE_ALERT_API_KEY", "")
ALERT_WEBHOOK_URL = os.getenv("ALERT_WEBHOOK_URL", "")

# "coingecko" for live data, "mock" for the synthetic offline universe
MARKET_DATA_SOURCE = os.getenv("MARKET_DATA_SOURCE", "coingecko").lower()

# ── Quotas ─────────────────────────────────────────────────────────────────────
COINGECKO_RATE_LIMIT = int(os.getenv("COINGECKO_RATE_LIMIT", "30"))          # calls / minute
COINGECKO_MONTHLY_LIMIT = int(os.getenv("COINGECKO_MONTHLY_LIMIT", "10000"))
COINGECKO_DAILY_LIMIT = int(
    os.getenv("COINGECKO_DAILY_LIMIT", str(COINGECKO_MONTHLY_LIMIT // 30))
)
QUOTA_WARNING_RATIO = 0.9

# ── Dispatch ───────────────────────────────────────────────────────────────────
WORKER_COUNT = int(os.getenv("WORKER_COUNT", "10"))
QUEUE_MAX_SIZE = int(os.getenv("QUEUE_MAX_SIZE", "10000"))                  # per tier
TASK_MAX_ATTEMPTS = int(os.getenv("TASK_MAX_ATTEMPTS", "3"))
TASK_RETRY_BASE_DELAY = float(os.getenv("TASK_RETRY_BASE_DELAY", "1.0"))    # seconds
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "100"))
PARALLEL_BATCHES = int(os.getenv("PARALLEL_BATCHES", "5"))
BATCH_TIMEOUT = float(os.getenv("BATCH_TIMEOUT", "5.0"))

# Tier table: which market-cap pages each tier covers and how often it runs.
# LOW uses a per-page delay (page * enqueue_delay) to spread its load.
TIERS = {
    "CRITICAL": {"interval": 60,        "pages": [],                  "per_page": 0,   "enqueue_delay": 0.0},
    "HIGH":     {"interval": 5 * 60,    "pages": [1],                 "per_page": 100, "enqueue_delay": 0.0},
    "MEDIUM":   {"interval": 15 * 60,   "pages": [2, 3, 4, 5],        "per_page": 100, "enqueue_delay": 5.0},
    "LOW":      {"interval": 60 * 60,   "pages": list(range(3, 11)),  "per_page": 250, "enqueue_delay": 10.0},
    "BATCH":    {"interval": 6 * 3600,  "pages": list(range(11, 21)), "per_page": 250, "enqueue_delay": 0.0},
}
BATCH_MIN_BUDGET_RATIO = 0.5
CONTEXT_REFRESH_INTERVAL = 10 * 60
CACHE_CLEANUP_INTERVAL = 6 * 3600

# ── Cache TTLs (seconds) ───────────────────────────────────────────────────────
CACHE_TTL = {
    "coin_data":   int(os.getenv("CACHE_TTL_COIN_DATA", "300")),
    "signals":     int(os.getenv("CACHE_TTL_SIGNALS", "900")),
    "sentiment":   int(os.getenv("CACHE_TTL_SENTIMENT", "1800")),
    "whale_data":  int(os.getenv("CACHE_TTL_WHALE_DATA", "600")),
    "market_page": int(os.getenv("CACHE_TTL_MARKET_PAGE", "300")),
    "global":      1800,
}

# ── Signals ────────────────────────────────────────────────────────────────────
ALERT_DEVIATION = 30          # |score - 50| at or above this emits an alert
STRONG_SIGNAL_DEVIATION = 30  # cached signals this far from neutral are watched on CRITICAL

# Correlation basket for BTC coupling (Binance symbols)
CORRELATION_SYMBOLS = ["ETHUSDT", "SOLUSDT", "BNBUSDT", "XRPUSDT"]

# Known macro events: [{"name": "FOMC", "impact": "high", "scheduled_at": "2026-11-04T18:00:00Z"}]
MACRO_CALENDAR = json.loads(os.getenv("MACRO_CALENDAR", "[]"))
MACRO_EVENT_WINDOW_HOURS = 24

# ── Storage ────────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv("DATABASE_URL", "none").strip()


def async_database_url(url: str = DATABASE_URL) -> str:
    """Normalise a postgres URL for the asyncpg driver; "" when no database is configured."""
    if url.lower() in ("none", "", "null"):
        return ""
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://") and "+asyncpg" not in url:
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url
