from __future__ import annotations

import threading
from typing import Iterable

from ingestion.contracts.tick import MarketSnapshot, PoolTick
from lp_engine.data.bars import BarInterval, PriceBar
from lp_engine.exceptions.core import OperationCancelled

BASE_TS = 1_704_067_200_000  # 2024-01-01T00:00:00Z
MIN_MS = 60_000


def make_tick(ts: int, price: float, *, pool_id: str = "eth/usdc/3000", chain_id: int = 1, block: int = 0) -> PoolTick:
    return PoolTick(chain_id=chain_id, pool_id=pool_id, data_ts=ts, price=price, block_number=block)


def make_bar(
    ts: int,
    close: float,
    *,
    open_: float | None = None,
    pool_id: str = "eth/usdc/3000",
    chain_id: int = 1,
    interval: BarInterval = BarInterval.M5,
) -> PriceBar:
    o = close if open_ is None else open_
    return PriceBar(
        chain_id=chain_id,
        pool_id=pool_id,
        bucket_ts=ts,
        interval=interval,
        open=o,
        high=max(o, close),
        low=min(o, close),
        close=close,
        samples=1,
    )


class ScriptedProvider:
    """Returns queued snapshots per pool key; repeats the last one when the queue runs dry."""

    def __init__(self, snapshots: dict[str, list[MarketSnapshot]] | None = None, fail_for: Iterable[str] = ()):
        self._queues = {k: list(v) for k, v in (snapshots or {}).items()}
        self._last: dict[str, MarketSnapshot] = {}
        self.fail_for = set(fail_for)
        self.calls: list[str] = []

    def push(self, key: str, snapshot: MarketSnapshot) -> None:
        self._queues.setdefault(key, []).append(snapshot)

    def fetch(self, pool) -> MarketSnapshot:
        self.calls.append(pool.key)
        if pool.key in self.fail_for:
            raise ConnectionError(f"upstream down for {pool.key}")
        queue = self._queues.get(pool.key) or []
        if queue:
            self._last[pool.key] = queue.pop(0)
        if pool.key not in self._last:
            raise LookupError(f"no snapshot scripted for {pool.key}")
        return self._last[pool.key]


class InMemoryReturnsStore:
    """Just enough of the store contract for the returns-frame builder."""

    def __init__(self, returns: dict[str, list[tuple[int, float]]] | None = None):
        self.returns = {k.lower(): list(v) for k, v in (returns or {}).items()}
        self.requests: list[tuple[int, str, BarInterval, int, int]] = []

    def get_log_returns(
        self,
        chain_id: int,
        pool_id: str,
        interval: BarInterval,
        from_ts: int,
        to_ts: int,
        *,
        stop_event: threading.Event | None = None,
    ) -> list[tuple[int, float]]:
        if stop_event is not None and stop_event.is_set():
            raise OperationCancelled("cancelled")
        self.requests.append((chain_id, pool_id, interval, from_ts, to_ts))
        return [(ts, r) for ts, r in self.returns.get(pool_id, []) if from_ts <= ts <= to_ts]

    def list_known_pools(self, chain_id: int, *, stop_event: threading.Event | None = None) -> list[str]:
        return sorted(self.returns)


def snapshot(
    pool_id: str,
    ts: int,
    price: float,
    *,
    vol_norm: float = 0.03,
    trend_r2: float = 0.2,
    slope: float = 0.0,
    chain_id: int = 1,
) -> MarketSnapshot:
    return MarketSnapshot(
        chain_id=chain_id,
        pool_id=pool_id,
        as_of_ts=ts,
        price=price,
        vol_norm=vol_norm,
        trend_r2=trend_r2,
        ema_slope_abs=slope,
    )
