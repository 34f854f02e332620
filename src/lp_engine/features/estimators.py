# src/lp_engine/features/estimators.py
"""
Return / volatility estimators over an ordered point series.

A series is either raw ticks (``PoolTick``: uses ``price``) or bars
(``PriceBar``: return uses first ``open`` and last ``close``, volatility uses
``close``). "No data" is ``None``; ``0.0`` is a real reading and is never used
as a stand-in.
"""
from __future__ import annotations

import math
from typing import Sequence, Union

import numpy as np

from ingestion.contracts.tick import PoolTick
from lp_engine.data.bars import PriceBar

Point = Union[PoolTick, PriceBar]


def _open_of(p: Point) -> float:
    return float(p.open) if isinstance(p, PriceBar) else float(p.price)


def _close_of(p: Point) -> float:
    return float(p.close) if isinstance(p, PriceBar) else float(p.price)


def log_return(series: Sequence[Point]) -> float | None:
    """ln(last / first); None for <2 points or a non-positive endpoint."""
    if len(series) < 2:
        return None
    p0 = _open_of(series[0])
    p1 = _close_of(series[-1])
    if p0 <= 0 or p1 <= 0:
        return None
    return math.log(p1 / p0)


def step_log_returns(series: Sequence[Point]) -> list[float]:
    """Consecutive log-returns of closes, skipping any non-positive adjacent pair."""
    out: list[float] = []
    for a, b in zip(series, series[1:]):
        p0, p1 = _close_of(a), _close_of(b)
        if p0 <= 0 or p1 <= 0:
            continue
        out.append(math.log(p1 / p0))
    return out


def realized_vol(series: Sequence[Point]) -> float | None:
    """Population stdev of consecutive log-returns; None for <3 points or <2 usable returns."""
    if len(series) < 3:
        return None
    returns = step_log_returns(series)
    if len(returns) < 2:
        return None
    return float(np.std(np.asarray(returns, dtype=float), ddof=0))
