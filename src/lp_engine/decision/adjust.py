# decision/adjust.py
from __future__ import annotations

from dataclasses import dataclass

from lp_engine.utils.config import HeatPolicy, ScoreAdjustmentPolicy
from lp_engine.utils.numeric import clamp, round_half_away


@dataclass(frozen=True)
class AdjustedScores:
    reinvest: int
    reallocate: int
    # clamped, pre-rounding values (the summary line prints these)
    reinvest_raw: float
    reallocate_raw: float


def adjust_scores(
    reinvest: float,
    reallocate: float,
    blended_heat: int,
    super_macro_heat: int | None,
    heat_policy: HeatPolicy | None = None,
    policy: ScoreAdjustmentPolicy | None = None,
) -> AdjustedScores:
    """Heat-aware defensive adjustment of base scores.

    Cool market (heat <= cool): reinvest is boosted.
    Hot market (heat >= hot): reinvest is cut, reallocate boosted, and reinvest
    is cut again when the super-macro pair is hot as well (missing counts as 0).
    Multipliers compose; clamping and rounding happen once, at the end.
    """
    hp = heat_policy or HeatPolicy()
    p = policy or ScoreAdjustmentPolicy()

    r = float(reinvest)
    a = float(reallocate)

    if blended_heat <= hp.cool_threshold:
        r *= p.reinvest_cool_boost

    elif blended_heat >= hp.hot_threshold:
        r *= p.reinvest_hot_penalty
        a *= p.reallocate_hot_boost
        if (super_macro_heat or 0) >= hp.hot_threshold:
            r *= p.reinvest_super_macro_hot_penalty

    r = clamp(r)
    a = clamp(a)
    return AdjustedScores(
        reinvest=round_half_away(r),
        reallocate=round_half_away(a),
        reinvest_raw=r,
        reallocate_raw=a,
    )
