"""Market regime detection. First matching rule wins."""
from common.models import AssetSnapshot, Regime

VOLATILE_MOVE = 20.0
STABLE_MOVE = 5.0
LOW_LIQUIDITY_RATIO = 0.5
LOW_LIQUIDITY_RANK = 1000


def detect_regime(snapshot: AssetSnapshot) -> Regime:
    move = snapshot.abs_change_24h
    if move > VOLATILE_MOVE:
        return Regime.VOLATILE
    rank = snapshot.market_cap_rank
    if snapshot.volume_ratio < LOW_LIQUIDITY_RATIO or rank is None or rank > LOW_LIQUIDITY_RANK:
        return Regime.LOW_LIQUIDITY
    if move < STABLE_MOVE:
        return Regime.STABLE
    return Regime.NORMAL
