from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Sequence

import pandas as pd

from ingestion.contracts.tick import PoolTick

if TYPE_CHECKING:
    from lp_engine.data.contracts.store import TickBarStore


class BarInterval(Enum):
    """Bar width classes. Both are rolled up and retained independently."""

    M1 = "m1"
    M5 = "m5"

    @property
    def width_ms(self) -> int:
        return 60_000 if self is BarInterval.M1 else 300_000

    @property
    def minutes(self) -> float:
        return self.width_ms / 60_000.0

    @property
    def table(self) -> str:
        return "pool_bars_1m" if self is BarInterval.M1 else "pool_bars_5m"

    @classmethod
    def parse(cls, value: "str | BarInterval") -> "BarInterval":
        if isinstance(value, BarInterval):
            return value
        s = str(value).strip().lower()
        if s in ("m1", "1m"):
            return cls.M1
        if s in ("m5", "5m"):
            return cls.M5
        raise ValueError(f"Unsupported bar interval: {value!r} (expected 'm1' or 'm5')")


@dataclass(frozen=True)
class PriceBar:
    chain_id: int
    pool_id: str
    bucket_ts: int  # bucket start, epoch ms
    interval: BarInterval
    open: float
    high: float
    low: float
    close: float
    samples: int


def bucket_floor(ts: int, interval: BarInterval) -> int:
    """Start of the bucket containing ``ts`` (epoch ms, UTC)."""
    width = interval.width_ms
    return (int(ts) // width) * width


def rollup_bars(ticks: Sequence[PoolTick], interval: BarInterval) -> list[PriceBar]:
    """
    Aggregate ticks into OHLC bars, one per (chain, pool, bucket).

    Ticks sharing a timestamp keep their input order, so open/close are
    deterministic for a given tick set.
    """
    if not ticks:
        return []

    df = pd.DataFrame(
        {
            "chain_id": [int(t.chain_id) for t in ticks],
            "pool_id": [t.pool_id for t in ticks],
            "ts": [int(t.data_ts) for t in ticks],
            "price": [float(t.price) for t in ticks],
        }
    )
    df["seq"] = range(len(df))
    df["bucket"] = (df["ts"] // interval.width_ms) * interval.width_ms
    df = df.sort_values(["ts", "seq"], kind="mergesort")

    agg = (
        df.groupby(["chain_id", "pool_id", "bucket"], sort=True)["price"]
        .agg(open="first", high="max", low="min", close="last", samples="count")
        .reset_index()
    )

    return [
        PriceBar(
            chain_id=int(row.chain_id),
            pool_id=str(row.pool_id),
            bucket_ts=int(row.bucket),
            interval=interval,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            samples=int(row.samples),
        )
        for row in agg.itertuples(index=False)
    ]


def roll_up(
    store: "TickBarStore",
    *,
    chain_id: int,
    pool_id: str,
    interval: BarInterval,
    from_ts: int,
    to_ts: int,
    stop_event: threading.Event | None = None,
) -> int:
    """
    Rebuild and upsert every bar touched by ticks in [from_ts, to_ts].

    The read window is widened down to the first bucket boundary so a bucket is
    always rebuilt from its complete tick set; a rerun never shrinks a bar.
    Returns the number of bars written.
    """
    start = bucket_floor(from_ts, interval)
    ticks = store.get_ticks(chain_id, pool_id, start, to_ts, stop_event=stop_event)
    bars = rollup_bars(ticks, interval)
    for bar in bars:
        store.upsert_bar(bar, stop_event=stop_event)
    return len(bars)
