# models/regime.py
from __future__ import annotations

from enum import Enum

from lp_engine.utils.config import RegimeThresholds


class MarketRegime(Enum):
    SIDEWAYS = "Sideways"
    TRENDING = "Trending"
    VOLATILE = "Volatile"


def detect_regime(
    vol_norm: float,
    trend_r2: float,
    slope_abs: float,
    thresholds: RegimeThresholds | None = None,
) -> MarketRegime:
    """Instantaneous classification, checked in order Volatile, Trending, Sideways."""
    t = thresholds or RegimeThresholds()

    if vol_norm >= t.volatile_vol_min and trend_r2 <= t.volatile_r2_max:
        return MarketRegime.VOLATILE

    if trend_r2 >= t.trend_r2_min and abs(slope_abs) >= t.trend_slope_abs_min:
        return MarketRegime.TRENDING

    if vol_norm <= t.sideways_vol_max and trend_r2 <= t.sideways_r2_max:
        return MarketRegime.SIDEWAYS

    return MarketRegime.VOLATILE if vol_norm >= t.volatile_vol_min else MarketRegime.SIDEWAYS
