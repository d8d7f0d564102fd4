"""SQLAlchemy ORM models for the signal store."""
from sqlalchemy import (
    BigInteger, CheckConstraint, Column, DECIMAL, Index, Integer, JSON,
    String, TIMESTAMP, TEXT,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


_TIMEFRAMES = "'SCALPING', 'DAY_TRADING', 'SWING_TRADING', 'LONG_TERM', 'REJECT'"


class SignalDB(Base):
    """Current signal: one row per asset, overwritten on every compute."""
    __tablename__ = "signals"

    asset_id = Column(String(100), primary_key=True)
    symbol = Column(String(30), nullable=False)
    name = Column(String(150))

    final_score = Column(DECIMAL(6, 2), nullable=False)
    breakdown = Column(JSON, nullable=False)
    action = Column(String(20), nullable=False)
    confidence = Column(String(10), nullable=False)
    timeframe = Column(
        String(20),
        CheckConstraint(f"timeframe IN ({_TIMEFRAMES})", name="ck_signals_timeframe"),
        nullable=False,
    )
    priority = Column(String(20), nullable=False)
    tier = Column(Integer)
    risk_score = Column(DECIMAL(6, 2), nullable=False)
    liquidity_grade = Column(String(3), nullable=False)
    regime = Column(String(20), nullable=False)
    data_quality = Column(String(10), nullable=False)

    price = Column(DECIMAL(30, 12))
    market_cap = Column(DECIMAL(30, 2))
    rank = Column(Integer)
    volume_ratio = Column(DECIMAL(12, 6))
    volatility = Column(DECIMAL(10, 4))
    explanation = Column(TEXT)

    computed_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_signals_score", "final_score"),
        Index("idx_signals_timeframe", "timeframe"),
    )


class SignalHistoryDB(Base):
    """Append-only trail of computed signals."""
    __tablename__ = "signal_history"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    asset_id = Column(String(100), nullable=False)
    computed_at = Column(TIMESTAMP(timezone=True), nullable=False)
    final_score = Column(DECIMAL(6, 2), nullable=False)
    action = Column(String(20), nullable=False)
    timeframe = Column(String(20), nullable=False)
    risk_score = Column(DECIMAL(6, 2))
    regime = Column(String(20))

    __table_args__ = (
        Index("idx_signal_history_asset_time", "asset_id", "computed_at"),
    )
