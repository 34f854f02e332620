from __future__ import annotations

from dataclasses import dataclass
from enum import IntFlag
from typing import Any


class QualityFlag(IntFlag):
    NONE = 0
    NON_POSITIVE_PRICE = 1 << 0
    TIMESTAMP_DRIFT_FUTURE = 1 << 1
    STALE_SAMPLE = 1 << 2
    PRICE_JUMP = 1 << 3


@dataclass(frozen=True)
class PoolTick:
    """
    One raw observed pool price sample, as persisted by the tick store.

    Semantics:
        - `data_ts`      : observation time (epoch ms int, UTC)
        - `block_number` : 0 when unknown; (chain, pool, block) is unique when > 0
        - `price`        : not validated here; non-positive prices are flagged, not dropped
        - provenance fields are optional and never affect analytics
    """

    chain_id: int
    pool_id: str
    data_ts: int
    price: float
    block_number: int = 0
    liquidity: float | None = None
    volume_token0: float | None = None
    volume_token1: float | None = None
    source: str | None = None
    latency_ms: int | None = None
    finality_status: str | None = None
    quality_flags: int = 0

    @property
    def flags(self) -> QualityFlag:
        return QualityFlag(self.quality_flags)


@dataclass(frozen=True)
class MarketSnapshot:
    """
    What the market-data provider hands the engine for one pool, once per iteration.

    `vol_norm`, `trend_r2` and `ema_slope_abs` are the instantaneous regime
    signals; the price becomes a PoolTick.
    """

    chain_id: int
    pool_id: str
    as_of_ts: int
    price: float
    vol_norm: float
    trend_r2: float
    ema_slope_abs: float
    block_number: int = 0
    liquidity: float | None = None
    source: str | None = None
    latency_ms: int | None = None

    def to_tick(self, *, quality_flags: int = 0) -> PoolTick:
        return PoolTick(
            chain_id=int(self.chain_id),
            pool_id=self.pool_id,
            data_ts=int(self.as_of_ts),
            price=float(self.price),
            block_number=int(self.block_number),
            liquidity=self.liquidity,
            source=self.source,
            latency_ms=self.latency_ms,
            quality_flags=int(quality_flags),
        )


def _coerce_epoch_ms(x: Any) -> int:
    """Coerce seconds-or-ms epoch into epoch milliseconds int.

    Heuristic: seconds are ~1e9, ms are ~1e12.
    """
    if x is None:
        raise ValueError("timestamp cannot be None")
    # bool is an int subclass; reject it
    if isinstance(x, bool):
        raise ValueError("invalid timestamp type: bool")
    try:
        v = float(x)
    except (TypeError, ValueError) as e:
        raise ValueError(f"invalid timestamp: {x!r}") from e

    if v < 10_000_000_000:  # seconds
        return int(round(v * 1000.0))
    return int(round(v))


def normalize_pool_id(pool_id: Any) -> str:
    s = str(pool_id or "").strip().lower()
    if not s:
        raise ValueError("pool_id cannot be empty")
    return s
