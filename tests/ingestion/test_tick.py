from __future__ import annotations

import pytest

from ingestion.contracts.tick import (
    MarketSnapshot,
    PoolTick,
    QualityFlag,
    _coerce_epoch_ms,
    normalize_pool_id,
)


def test_snapshot_to_tick_keeps_identity_and_flags() -> None:
    snap = MarketSnapshot(
        chain_id=1,
        pool_id="eth/usdc/3000",
        as_of_ts=1_700_000_000_000,
        price=1.5,
        vol_norm=0.1,
        trend_r2=0.2,
        ema_slope_abs=0.0,
        block_number=12,
        source="stub",
    )
    tick = snap.to_tick(quality_flags=QualityFlag.PRICE_JUMP)
    assert isinstance(tick, PoolTick)
    assert tick.data_ts == 1_700_000_000_000
    assert tick.block_number == 12
    assert tick.source == "stub"
    assert tick.flags == QualityFlag.PRICE_JUMP
    assert isinstance(tick.quality_flags, int)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (1_700_000_000, 1_700_000_000_000),
        (1_700_000_000.5, 1_700_000_000_500),
        (1_700_000_000_123, 1_700_000_000_123),
        ("1700000000123", 1_700_000_000_123),
    ],
)
def test_coerce_epoch_ms(raw, expected) -> None:
    assert _coerce_epoch_ms(raw) == expected


@pytest.mark.parametrize("raw", [None, True, "yesterday"])
def test_coerce_epoch_ms_rejects(raw) -> None:
    with pytest.raises(ValueError):
        _coerce_epoch_ms(raw)


def test_normalize_pool_id() -> None:
    assert normalize_pool_id(" 0xAbC ") == "0xabc"
    with pytest.raises(ValueError):
        normalize_pool_id("  ")
