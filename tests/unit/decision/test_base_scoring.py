from __future__ import annotations

import pytest

from lp_engine.decision.scoring import BaseScorer
from lp_engine.models.regime import MarketRegime
from tests.helpers.fakes import BASE_TS, snapshot


def _snap(vol: float):
    return snapshot("eth/usdc/3000", BASE_TS, 100.0, vol_norm=vol)


@pytest.mark.parametrize(
    "regime, vol, expected",
    [
        # 70 + 10 - round(200*0.03)//2 = 80 - 3
        (MarketRegime.SIDEWAYS, 0.03, 77),
        (MarketRegime.TRENDING, 0.03, 52),
        (MarketRegime.VOLATILE, 0.20, 25),
        # vol clamps at 0.5 -> penalty 50
        (MarketRegime.VOLATILE, 2.0, 0),
    ],
)
def test_score_reinvest(regime, vol, expected) -> None:
    assert BaseScorer().score_reinvest(_snap(vol), regime) == expected


@pytest.mark.parametrize(
    "regime, vol, expected",
    [
        # 30 + round(150*0.03)=round(4.5)=4 (banker's)
        (MarketRegime.SIDEWAYS, 0.03, 34),
        (MarketRegime.TRENDING, 0.10, 70),
        (MarketRegime.VOLATILE, 0.5, 100),
    ],
)
def test_score_reallocate(regime, vol, expected) -> None:
    assert BaseScorer().score_reallocate(_snap(vol), regime) == expected


def test_negative_vol_is_clamped_to_zero() -> None:
    assert BaseScorer().score_reinvest(_snap(-1.0), MarketRegime.SIDEWAYS) == 80
