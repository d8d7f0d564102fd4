"""Signal store: current signals (one row per asset) and signal history.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── signals ───────────────────────────────────────────────────────────────
    op.create_table(
        "signals",
        sa.Column("asset_id", sa.String(length=100), nullable=False),
        sa.Column("symbol", sa.String(length=30), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=True),
        sa.Column("final_score", sa.DECIMAL(precision=6, scale=2), nullable=False),
        sa.Column("breakdown", sa.JSON(), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("confidence", sa.String(length=10), nullable=False),
        sa.Column("timeframe", sa.String(length=20), nullable=False),
        sa.Column("priority", sa.String(length=20), nullable=False),
        sa.Column("tier", sa.Integer(), nullable=True),
        sa.Column("risk_score", sa.DECIMAL(precision=6, scale=2), nullable=False),
        sa.Column("liquidity_grade", sa.String(length=3), nullable=False),
        sa.Column("regime", sa.String(length=20), nullable=False),
        sa.Column("data_quality", sa.String(length=10), nullable=False),
        sa.Column("price", sa.DECIMAL(precision=30, scale=12), nullable=True),
        sa.Column("market_cap", sa.DECIMAL(precision=30, scale=2), nullable=True),
        sa.Column("rank", sa.Integer(), nullable=True),
        sa.Column("volume_ratio", sa.DECIMAL(precision=12, scale=6), nullable=True),
        sa.Column("volatility", sa.DECIMAL(precision=10, scale=4), nullable=True),
        sa.Column("explanation", sa.TEXT(), nullable=True),
        sa.Column("computed_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.CheckConstraint(
            "timeframe IN ('SCALPING', 'DAY_TRADING', 'SWING_TRADING', 'LONG_TERM', 'REJECT')",
            name="ck_signals_timeframe",
        ),
        sa.PrimaryKeyConstraint("asset_id"),
    )
    op.create_index("idx_signals_score", "signals", ["final_score"])
    op.create_index("idx_signals_timeframe", "signals", ["timeframe"])

    # ── signal_history ────────────────────────────────────────────────────────
    op.create_table(
        "signal_history",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("asset_id", sa.String(length=100), nullable=False),
        sa.Column("computed_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("final_score", sa.DECIMAL(precision=6, scale=2), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("timeframe", sa.String(length=20), nullable=False),
        sa.Column("risk_score", sa.DECIMAL(precision=6, scale=2), nullable=True),
        sa.Column("regime", sa.String(length=20), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_signal_history_asset_time", "signal_history", ["asset_id", "computed_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_signal_history_asset_time", table_name="signal_history")
    op.drop_table("signal_history")
    op.drop_index("idx_signals_timeframe", table_name="signals")
    op.drop_index("idx_signals_score", table_name="signals")
    op.drop_table("signals")
