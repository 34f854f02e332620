# src/lp_engine/features/heat.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from lp_engine.features.estimators import Point, log_return, realized_vol
from lp_engine.utils.numeric import clamp, round_half_away

HEAT_BASELINE = 50.0
NEUTRAL_HEAT = 50


@dataclass(frozen=True)
class Timeframe:
    name: str
    lookback_ms: int
    from_bars: bool  # False: raw ticks, True: 5m bars


_MIN = 60_000
_HOUR = 60 * _MIN
_DAY = 24 * _HOUR

# Short horizons read raw ticks; long horizons read 5m bars to bound cost.
TIMEFRAMES: tuple[Timeframe, ...] = (
    Timeframe("m5", 5 * _MIN, from_bars=False),
    Timeframe("m15", 15 * _MIN, from_bars=False),
    Timeframe("h1", _HOUR, from_bars=False),
    Timeframe("h6", 6 * _HOUR, from_bars=True),
    Timeframe("h24", _DAY, from_bars=True),
    Timeframe("d30", 30 * _DAY, from_bars=True),
)

# pair name -> (short timeframe, long timeframe)
HEAT_PAIRS: dict[str, tuple[str, str]] = {
    "tactical": ("m5", "h1"),
    "structural": ("m15", "h6"),
    "macro": ("h1", "h24"),
    "super_macro": ("h24", "d30"),
}

# macro is reported but not blended
BLEND_WEIGHTS: dict[str, float] = {
    "tactical": 0.50,
    "structural": 0.30,
    "super_macro": 0.20,
}


@dataclass(frozen=True)
class WindowStats:
    """Per-timeframe log-return and realized vol; None means not enough data."""

    ret: Mapping[str, float | None]
    vol: Mapping[str, float | None]


@dataclass(frozen=True)
class HeatBreakdown:
    tactical: int | None
    structural: int | None
    macro: int | None
    super_macro: int | None
    blended: int
    stats: WindowStats | None = field(default=None, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "blended": self.blended,
            "tactical": self.tactical,
            "structural": self.structural,
            "macro": self.macro,
            "superMacro": self.super_macro,
        }


def window_stats(windows: Mapping[str, Sequence[Point]]) -> WindowStats:
    """Estimate return/vol for every timeframe present in ``windows``."""
    ret: dict[str, float | None] = {}
    vol: dict[str, float | None] = {}
    for tf in TIMEFRAMES:
        series = windows.get(tf.name, ())
        ret[tf.name] = log_return(series)
        vol[tf.name] = realized_vol(series)
    return WindowStats(ret=ret, vol=vol)


def market_heat_score(vol_ratio: float | None, ret_short: float | None, ret_long: float | None) -> int:
    if vol_ratio is None and ret_short is None and ret_long is None:
        return NEUTRAL_HEAT

    score = HEAT_BASELINE

    if vol_ratio is not None:
        # >1 short-term vol expansion, <1 contraction
        score += (vol_ratio - 1.0) * 30.0

    if ret_short is not None and ret_long is not None:
        # disagreement = chop
        if _sign(ret_short) != _sign(ret_long):
            score += 10.0

    if ret_short is not None:
        score += min(10.0, abs(ret_short) * 200.0)

    return round_half_away(clamp(score))


def pair_heat(
    vol_short: float | None,
    vol_long: float | None,
    ret_short: float | None,
    ret_long: float | None,
) -> int | None:
    vol_ratio: float | None = None
    if vol_short is not None and vol_long is not None and vol_long > 0:
        vol_ratio = vol_short / vol_long

    if vol_ratio is None and ret_short is None and ret_long is None:
        return None

    return market_heat_score(vol_ratio, ret_short, ret_long)


def blend_heat(tactical: int | None, structural: int | None, super_macro: int | None) -> int:
    parts = [
        (BLEND_WEIGHTS["tactical"], tactical),
        (BLEND_WEIGHTS["structural"], structural),
        (BLEND_WEIGHTS["super_macro"], super_macro),
    ]
    present = [(w, float(v)) for w, v in parts if v is not None]
    if not present:
        return NEUTRAL_HEAT

    wsum = sum(w for w, _ in present)
    score = sum(w * v for w, v in present) / wsum
    return round_half_away(clamp(score))


def compute_heat(stats: WindowStats) -> HeatBreakdown:
    pairs: dict[str, int | None] = {}
    for name, (short, long) in HEAT_PAIRS.items():
        pairs[name] = pair_heat(
            stats.vol.get(short),
            stats.vol.get(long),
            stats.ret.get(short),
            stats.ret.get(long),
        )

    return HeatBreakdown(
        tactical=pairs["tactical"],
        structural=pairs["structural"],
        macro=pairs["macro"],
        super_macro=pairs["super_macro"],
        blended=blend_heat(pairs["tactical"], pairs["structural"], pairs["super_macro"]),
        stats=stats,
    )


def _sign(x: float) -> int:
    if x > 0:
        return 1
    if x < 0:
        return -1
    return 0
