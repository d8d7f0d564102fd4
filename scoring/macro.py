"""
Correlation & Macro Scorers.

Correlation (market structure around BTC):
  1. BTC coupling: assets tightly correlated with BTC inherit part of
     BTC's 24h move (|corr| >= 0.7: 2x, capped ±15; |corr| >= 0.4: 1x, capped ±8).
  2. Altcoin season: a non-top-100 asset up more than 5% in 24h gets +5,
     or +10 when the wider market is already flagged as altcoin season.
  3. BTC dominance phase: rising dominance drains alts (-5) and lifts BTC (+5);
     falling dominance lifts alts (+5).

Macro (risk appetite):
  1. Fear & Greed: extreme fear -12, fear -6, greed +6, extreme greed -4
     (euphoria is treated as a late-cycle warning).
  2. Macro calendar: every high-impact event in the window -8 (cap -20),
     every medium-impact event -3 (cap -6).

Inputs come from MarketContext only; no network access happens here.
"""
from common.models import (AssetSnapshot, DominancePhase, MacroImpact,
                           MarketContext, SubScores)
from scoring.base import BaseScorer, NEUTRAL

BTC_SYMBOL = "BTC"
ALT_RANK_FLOOR = 100
ALT_SEASON_MOVE = 5.0


def is_btc(snapshot: AssetSnapshot) -> bool:
    return snapshot.symbol.upper() == BTC_SYMBOL or snapshot.id == "bitcoin"


class CorrelationScorer(BaseScorer):

    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        total = NEUTRAL
        total += self._btc_coupling(snapshot, context)
        total += self._altcoin_season(snapshot, context)
        total += self._dominance(snapshot, context)
        return self.clamp(total)

    def _btc_coupling(self, snapshot: AssetSnapshot, context: MarketContext) -> float:
        if is_btc(snapshot):
            return 0.0
        corr = context.btc_correlation
        if abs(corr) >= 0.7:
            return self.nudge(context.btc_change_24h * corr * 2, 15.0)
        if abs(corr) >= 0.4:
            return self.nudge(context.btc_change_24h * corr, 8.0)
        return 0.0

    @staticmethod
    def _altcoin_season(snapshot: AssetSnapshot, context: MarketContext) -> float:
        rank = snapshot.market_cap_rank
        outside_top = rank is None or rank > ALT_RANK_FLOOR
        if outside_top and (snapshot.change_24h or 0.0) > ALT_SEASON_MOVE:
            return 10.0 if context.altcoin_season else 5.0
        return 0.0

    @staticmethod
    def _dominance(snapshot: AssetSnapshot, context: MarketContext) -> float:
        phase = context.dominance_phase
        if phase == DominancePhase.RISING:
            return 5.0 if is_btc(snapshot) else -5.0
        if phase == DominancePhase.FALLING and not is_btc(snapshot):
            return 5.0
        return 0.0


IMPACT_PENALTY = {
    MacroImpact.HIGH:   (8.0, 20.0),   # (per event, cap)
    MacroImpact.MEDIUM: (3.0, 6.0),
}


class MacroScorer(BaseScorer):

    def score(self, snapshot: AssetSnapshot, sub_scores: SubScores,
              context: MarketContext) -> float:
        total = NEUTRAL + self._fear_greed(context.fear_greed_index)
        total -= self._event_penalty(context)
        return self.clamp(total)

    @staticmethod
    def _fear_greed(index: float) -> float:
        if index <= 20:
            return -12.0
        if index <= 40:
            return -6.0
        if index >= 80:
            return -4.0
        if index >= 60:
            return 6.0
        return 0.0

    @staticmethod
    def _event_penalty(context: MarketContext) -> float:
        penalty = 0.0
        for impact, (per_event, cap) in IMPACT_PENALTY.items():
            count = sum(1 for e in context.macro_events if e.impact == impact)
            penalty += min(count * per_event, cap)
        return penalty
