# decision/scoring.py
from __future__ import annotations

from typing import Protocol

from ingestion.contracts.tick import MarketSnapshot
from lp_engine.models.regime import MarketRegime
from lp_engine.utils.config import BaseScoringConfig
from lp_engine.utils.numeric import clamp


class ScorerProto(Protocol):
    def score_reinvest(self, snapshot: MarketSnapshot, regime: MarketRegime) -> int:
        ...

    def score_reallocate(self, snapshot: MarketSnapshot, regime: MarketRegime) -> int:
        ...


class BaseScorer(ScorerProto):
    """
    Regime-weighted base scores before any heat adjustment.

    reinvest   = base + regime bonus/penalty - vol penalty
    reallocate = base + regime bonus         + vol bonus
    Both are clamped to [0, 100].
    """

    def __init__(self, config: BaseScoringConfig | None = None):
        self.config = config or BaseScoringConfig()

    def score_reinvest(self, snapshot: MarketSnapshot, regime: MarketRegime) -> int:
        c = self.config
        score = c.reinvest_base
        if regime is MarketRegime.SIDEWAYS:
            score += c.reinvest_sideways_bonus
        elif regime is MarketRegime.TRENDING:
            score -= c.reinvest_trending_penalty
        elif regime is MarketRegime.VOLATILE:
            score -= c.reinvest_volatile_penalty

        vol = clamp(float(snapshot.vol_norm), 0.0, c.reinvest_vol_max)
        # integer halving of the rounded penalty
        score -= round(vol * c.reinvest_vol_factor) // 2
        return int(clamp(score))

    def score_reallocate(self, snapshot: MarketSnapshot, regime: MarketRegime) -> int:
        c = self.config
        score = c.reallocate_base
        if regime is MarketRegime.TRENDING:
            score += c.reallocate_trending_bonus
        elif regime is MarketRegime.VOLATILE:
            score += c.reallocate_volatile_bonus

        vol = clamp(float(snapshot.vol_norm), 0.0, c.reallocate_vol_max)
        score += round(vol * c.reallocate_vol_factor)
        return int(clamp(score))
