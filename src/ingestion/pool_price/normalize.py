from __future__ import annotations

import time
from typing import Any, Mapping

from ingestion.contracts.source import PoolRef
from ingestion.contracts.tick import (
    MarketSnapshot,
    PoolTick,
    QualityFlag,
    _coerce_epoch_ms,
    normalize_pool_id,
)

# Quality limits for a single observation.
MAX_FUTURE_DRIFT_MS = 15_000
MAX_SAMPLE_AGE_MS = 180_000
MAX_STEP_JUMP_RATIO = 0.30

# Provider payload keys -> canonical keys
_KEYMAP = {
    "ts": "as_of_ts",
    "timestamp": "as_of_ts",
    "asOfUtc": "as_of_ts",
    "as_of": "as_of_ts",
    "p": "price",
    "volNorm": "vol_norm",
    "trendR2": "trend_r2",
    "emaSlopeAbs": "ema_slope_abs",
    "blockNumber": "block_number",
    "block": "block_number",
}


def _now_ms() -> int:
    return int(time.time() * 1000.0)


def _canonical(raw: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in raw.items():
        out[_KEYMAP.get(str(k), str(k))] = v
    return out


def _opt_float(x: Any) -> float | None:
    if x is None:
        return None
    return float(x)


class PoolPriceNormalizer:
    """
    Normalize a provider payload for one pool into a MarketSnapshot.

    Accepted payload keys (aliases in _KEYMAP):
        price, vol_norm, trend_r2, ema_slope_abs   (required)
        as_of_ts (seconds or ms), block_number, liquidity, latency_ms (optional)
    """

    def __init__(self, source_name: str | None = None):
        self.source_name = source_name

    def normalize(self, *, raw: Mapping[str, Any], pool: PoolRef) -> MarketSnapshot:
        payload = _canonical(raw)

        missing = [k for k in ("price", "vol_norm", "trend_r2", "ema_slope_abs") if payload.get(k) is None]
        if missing:
            raise ValueError(f"pool payload missing fields: {missing}")

        ts_any = payload.get("as_of_ts")
        as_of_ts = _coerce_epoch_ms(ts_any) if ts_any is not None else _now_ms()

        latency = payload.get("latency_ms")
        return MarketSnapshot(
            chain_id=int(payload.get("chain_id", pool.chain_id)),
            pool_id=normalize_pool_id(payload.get("pool_id") or pool.key),
            as_of_ts=as_of_ts,
            price=float(payload["price"]),
            vol_norm=float(payload["vol_norm"]),
            trend_r2=float(payload["trend_r2"]),
            ema_slope_abs=abs(float(payload["ema_slope_abs"])),
            block_number=int(payload.get("block_number") or 0),
            liquidity=_opt_float(payload.get("liquidity")),
            source=self.source_name,
            latency_ms=int(latency) if latency is not None else None,
        )


def evaluate_quality(current: PoolTick, previous: PoolTick | None, now_ts: int) -> QualityFlag:
    """Flag suspicious samples. Flags are advisory; the tick is stored either way."""
    flags = QualityFlag.NONE

    if current.price <= 0:
        flags |= QualityFlag.NON_POSITIVE_PRICE
    if current.data_ts > now_ts + MAX_FUTURE_DRIFT_MS:
        flags |= QualityFlag.TIMESTAMP_DRIFT_FUTURE
    if now_ts - current.data_ts > MAX_SAMPLE_AGE_MS:
        flags |= QualityFlag.STALE_SAMPLE

    if previous is not None and previous.price > 0 and current.price > 0:
        jump = abs(current.price - previous.price) / previous.price
        if jump > MAX_STEP_JUMP_RATIO:
            flags |= QualityFlag.PRICE_JUMP

    return flags
