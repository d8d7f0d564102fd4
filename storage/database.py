"""Signal store.

Backend is selected at startup via the DATABASE_URL environment variable:
  - DATABASE_URL=none (or unset) → CSV files data/signals.csv + data/signal_history.csv
  - DATABASE_URL=postgresql://... → PostgreSQL via SQLAlchemy async + asyncpg

One current signal per asset (upsert on asset_id) plus an append-only history.
All public functions are async so workers can await them on the event loop.
"""
import asyncio
import json
import math
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pandas as pd

from common.logger import get_logger
from common.models import ComponentScores, Recommendation, Signal
from config.settings import async_database_url

logger = get_logger("database")

DATA_DIR = Path(__file__).parent.parent / "data"
DATA_DIR.mkdir(exist_ok=True)

SIGNALS_FILE = "signals.csv"
HISTORY_FILE = "signal_history.csv"

# ── Backend detection ──────────────────────────────────────────────────────────
_db_url: str = async_database_url()
USE_POSTGRES: bool = bool(_db_url)

# PostgreSQL objects, populated only when USE_POSTGRES is True
_engine = None
_SessionFactory = None

if USE_POSTGRES:
    from sqlalchemy.dialects.postgresql import insert as pg_insert
    from sqlalchemy.ext.asyncio import (
        AsyncSession,
        async_sessionmaker,
        create_async_engine,
    )
    from sqlalchemy import select
    from storage.models import Base, SignalDB, SignalHistoryDB

    _engine = create_async_engine(
        _db_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )
    _SessionFactory = async_sessionmaker(_engine, expire_on_commit=False)
    logger.info(f"[PG] Backend: {_db_url.split('@')[-1]}")
else:
    logger.info("[CSV] Backend: %s/%s", DATA_DIR, SIGNALS_FILE)


# ── Row mapping ────────────────────────────────────────────────────────────────

def signal_to_row(s: Signal) -> dict:
    return {
        "asset_id": s.asset_id,
        "symbol": s.symbol,
        "name": s.name,
        "final_score": s.final_score,
        "breakdown": json.dumps(s.breakdown.model_dump()),
        "action": s.recommendation.action.value,
        "confidence": s.recommendation.confidence.value,
        "timeframe": s.timeframe.value,
        "priority": s.priority.value,
        "tier": int(s.tier) if s.tier is not None else None,
        "risk_score": s.risk_score,
        "liquidity_grade": s.liquidity_grade.value,
        "regime": s.regime.value,
        "data_quality": s.data_quality.value,
        "price": s.price,
        "market_cap": s.market_cap,
        "rank": s.rank,
        "volume_ratio": s.volume_ratio,
        "volatility": s.volatility,
        "explanation": s.explanation,
        "computed_at": s.computed_at.isoformat(),
    }


def _clean(val):
    """pandas hands back NaN for empty cells and numpy scalars for numbers."""
    if val is None:
        return None
    if isinstance(val, float) and math.isnan(val):
        return None
    if hasattr(val, "item"):
        return val.item()
    return val


def row_to_signal(row: dict) -> Signal:
    row = {k: _clean(v) for k, v in row.items()}
    breakdown = row["breakdown"]
    if isinstance(breakdown, str):
        breakdown = json.loads(breakdown)
    rank = row.get("rank")
    tier = row.get("tier")
    return Signal(
        asset_id=str(row["asset_id"]),
        symbol=str(row["symbol"]),
        name=row.get("name") or "",
        final_score=float(row["final_score"]),
        breakdown=ComponentScores(**breakdown),
        recommendation=Recommendation(action=row["action"], confidence=row["confidence"]),
        timeframe=row["timeframe"],
        priority=row["priority"],
        tier=int(tier) if tier is not None else None,
        risk_score=float(row["risk_score"]),
        liquidity_grade=row["liquidity_grade"],
        regime=row["regime"],
        data_quality=row["data_quality"],
        price=_to_float(row.get("price")),
        market_cap=_to_float(row.get("market_cap")),
        rank=int(rank) if rank is not None else None,
        volume_ratio=float(row.get("volume_ratio") or 0.0),
        volatility=float(row.get("volatility") or 0.0),
        explanation=row.get("explanation") or "",
        computed_at=pd.Timestamp(row["computed_at"]).to_pydatetime(),
    )


def _to_float(val) -> Optional[float]:
    return float(val) if val is not None else None


# ── CSV helpers (sync; run via asyncio.to_thread) ─────────────────────────────

_csv_lock = threading.Lock()


def _csv_upsert_signals(signals: list[Signal], data_dir: Path) -> None:
    rows = [signal_to_row(s) for s in signals]
    new = pd.DataFrame(rows)
    current_path = data_dir / SIGNALS_FILE
    history_path = data_dir / HISTORY_FILE
    with _csv_lock:
        if current_path.exists():
            existing = pd.read_csv(current_path)
            existing = existing[~existing["asset_id"].isin(new["asset_id"])]
            current = pd.concat([existing, new], ignore_index=True)
        else:
            current = new
        current = current.drop_duplicates("asset_id", keep="last")
        current.to_csv(current_path, index=False)

        history = new[["asset_id", "computed_at", "final_score", "action",
                       "timeframe", "risk_score", "regime"]]
        history.to_csv(history_path, mode="a", header=not history_path.exists(), index=False)
    logger.debug("[CSV] Upserted %d signals → %s", len(rows), current_path)


def _csv_get_current(asset_id: str, data_dir: Path) -> Optional[Signal]:
    path = data_dir / SIGNALS_FILE
    with _csv_lock:
        if not path.exists():
            return None
        df = pd.read_csv(path)
    df = df[df["asset_id"] == asset_id]
    if df.empty:
        return None
    return row_to_signal(df.iloc[-1].to_dict())


def _csv_load_history(asset_id: str, days: int, data_dir: Path) -> pd.DataFrame:
    path = data_dir / HISTORY_FILE
    with _csv_lock:
        if not path.exists():
            return pd.DataFrame()
        df = pd.read_csv(path)
    df = df[df["asset_id"] == asset_id]
    if df.empty:
        return df
    df["computed_at"] = pd.to_datetime(df["computed_at"], utc=True)
    cutoff = pd.Timestamp.now(tz="UTC") - pd.Timedelta(days=days)
    return df[df["computed_at"] >= cutoff].sort_values("computed_at")


def _csv_load_latest_all(data_dir: Path) -> pd.DataFrame:
    path = data_dir / SIGNALS_FILE
    with _csv_lock:
        if not path.exists():
            return pd.DataFrame()
        df = pd.read_csv(path)
    return df.sort_values("final_score", ascending=False).reset_index(drop=True)


# ── PostgreSQL helpers (async) ─────────────────────────────────────────────────

def _pg_values(s: Signal) -> dict:
    row = signal_to_row(s)
    row["breakdown"] = s.breakdown.model_dump()
    row["computed_at"] = s.computed_at
    return row


async def _pg_upsert_signals(signals: list[Signal]) -> None:
    async with _SessionFactory() as session:
        async with session.begin():
            for s in signals:
                values = _pg_values(s)
                stmt = (
                    pg_insert(SignalDB)
                    .values(**values)
                    .on_conflict_do_update(
                        index_elements=["asset_id"],
                        set_={k: v for k, v in values.items() if k != "asset_id"},
                    )
                )
                await session.execute(stmt)
                await session.execute(
                    pg_insert(SignalHistoryDB).values(
                        asset_id=s.asset_id,
                        computed_at=s.computed_at,
                        final_score=s.final_score,
                        action=s.recommendation.action.value,
                        timeframe=s.timeframe.value,
                        risk_score=s.risk_score,
                        regime=s.regime.value,
                    )
                )
    logger.debug("[PG] Upserted %d signals", len(signals))


def _pg_row_to_dict(r: "SignalDB") -> dict:
    return {c.name: getattr(r, c.name) for c in SignalDB.__table__.columns}


async def _pg_get_current(asset_id: str) -> Optional[Signal]:
    async with _SessionFactory() as session:
        row = (await session.execute(
            select(SignalDB).where(SignalDB.asset_id == asset_id)
        )).scalar_one_or_none()
    if row is None:
        return None
    return row_to_signal(_pg_row_to_dict(row))


async def _pg_load_history(asset_id: str, days: int) -> pd.DataFrame:
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    async with _SessionFactory() as session:
        stmt = (
            select(SignalHistoryDB)
            .where(SignalHistoryDB.asset_id == asset_id)
            .where(SignalHistoryDB.computed_at >= cutoff)
            .order_by(SignalHistoryDB.computed_at)
        )
        rows = (await session.execute(stmt)).scalars().all()
    if not rows:
        return pd.DataFrame()
    return pd.DataFrame([{
        "asset_id": r.asset_id,
        "computed_at": r.computed_at,
        "final_score": _to_float(r.final_score),
        "action": r.action,
        "timeframe": r.timeframe,
        "risk_score": _to_float(r.risk_score),
        "regime": r.regime,
    } for r in rows])


async def _pg_load_latest_all() -> pd.DataFrame:
    async with _SessionFactory() as session:
        rows = (await session.execute(
            select(SignalDB).order_by(SignalDB.final_score.desc())
        )).scalars().all()
    if not rows:
        return pd.DataFrame()
    return pd.DataFrame([_pg_row_to_dict(r) for r in rows])


# ── Public async API ───────────────────────────────────────────────────────────

async def save_signals(signals: list[Signal]) -> None:
    """Upsert current signals and append them to history."""
    if not signals:
        return
    if USE_POSTGRES:
        await _pg_upsert_signals(signals)
    else:
        await asyncio.to_thread(_csv_upsert_signals, signals, DATA_DIR)


async def upsert_signal(signal: Signal) -> None:
    await save_signals([signal])


async def get_current(asset_id: str) -> Optional[Signal]:
    """Return the stored current signal for *asset_id*, or None."""
    if USE_POSTGRES:
        return await _pg_get_current(asset_id)
    return await asyncio.to_thread(_csv_get_current, asset_id, DATA_DIR)


async def load_history(asset_id: str, days: int = 30) -> pd.DataFrame:
    """Return signal history for *asset_id* over the last *days* days."""
    if USE_POSTGRES:
        return await _pg_load_history(asset_id, days)
    return await asyncio.to_thread(_csv_load_history, asset_id, days, DATA_DIR)


async def load_latest_all() -> pd.DataFrame:
    """Return the current signal of every tracked asset, strongest first."""
    if USE_POSTGRES:
        return await _pg_load_latest_all()
    return await asyncio.to_thread(_csv_load_latest_all, DATA_DIR)


async def init_db() -> None:
    """Create all tables (idempotent). Prefer Alembic for production migrations."""
    if not USE_POSTGRES:
        return
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("[PG] Tables ensured")
