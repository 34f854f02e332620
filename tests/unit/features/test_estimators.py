from __future__ import annotations

import math

import numpy as np
import pytest

from lp_engine.features.estimators import log_return, realized_vol, step_log_returns
from tests.helpers.fakes import BASE_TS, MIN_MS, make_bar, make_tick


def _ticks(prices):
    return [make_tick(BASE_TS + i * 10_000, p) for i, p in enumerate(prices)]


def test_log_return_of_ticks_uses_first_and_last_price() -> None:
    assert log_return(_ticks([100.0, 250.0, 110.0])) == pytest.approx(math.log(1.1))


def test_log_return_of_bars_uses_first_open_and_last_close() -> None:
    bars = [
        make_bar(BASE_TS, 101.0, open_=100.0),
        make_bar(BASE_TS + 5 * MIN_MS, 120.0, open_=101.0),
    ]
    assert log_return(bars) == pytest.approx(math.log(1.2))


@pytest.mark.parametrize("prices", [[], [100.0], [0.0, 100.0], [100.0, -1.0]])
def test_log_return_none_without_two_positive_endpoints(prices) -> None:
    assert log_return(_ticks(prices)) is None


def test_realized_vol_is_population_stdev_of_step_returns() -> None:
    prices = [100.0, 101.0, 99.5, 100.5]
    expected = np.std([math.log(101 / 100), math.log(99.5 / 101), math.log(100.5 / 99.5)])
    assert realized_vol(_ticks(prices)) == pytest.approx(expected)


def test_realized_vol_needs_three_points() -> None:
    assert realized_vol(_ticks([100.0, 101.0])) is None


def test_realized_vol_skips_non_positive_pairs() -> None:
    # only (100 -> 101) and (101 -> 102) survive; 0.0 kills two pairs
    prices = [100.0, 101.0, 102.0, 0.0, 103.0]
    assert step_log_returns(_ticks(prices)) == pytest.approx([math.log(1.01), math.log(102 / 101)])
    assert realized_vol(_ticks(prices)) is not None


def test_realized_vol_none_when_fewer_than_two_usable_returns() -> None:
    assert realized_vol(_ticks([100.0, 0.0, 0.0, 101.0])) is None


def test_flat_series_has_zero_vol_not_none() -> None:
    vol = realized_vol(_ticks([100.0, 100.0, 100.0]))
    assert vol == 0.0
    assert vol is not None
