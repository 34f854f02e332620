from __future__ import annotations

import threading
from typing import Protocol

from ingestion.contracts.tick import PoolTick
from lp_engine.data.bars import BarInterval, PriceBar
from lp_engine.exceptions.core import OperationCancelled

# (bucket_ts, log_return)
LogReturnPoint = tuple[int, float]


def check_cancelled(stop_event: threading.Event | None) -> None:
    if stop_event is not None and stop_event.is_set():
        raise OperationCancelled("store operation cancelled")


class TickBarStore(Protocol):
    """
    Persistence contract the engine and the returns-frame builder depend on.

    Contract:
        • timestamps are epoch ms (UTC); ranges are inclusive on both ends
        • reads return ascending time order
        • upsert_bar is idempotent per (chain, pool, bucket, interval)
        • purges delete rows strictly older than the cutoff
        • every call takes an optional stop_event; a set event raises
          OperationCancelled before anything is written
        • storage failures raise StorageError; no internal retry
    """

    def insert_tick(self, tick: PoolTick, *, stop_event: threading.Event | None = None) -> bool:
        ...

    def get_ticks(
        self, chain_id: int, pool_id: str, from_ts: int, to_ts: int, *, stop_event: threading.Event | None = None
    ) -> list[PoolTick]:
        ...

    def get_latest_tick(
        self, chain_id: int, pool_id: str, *, stop_event: threading.Event | None = None
    ) -> PoolTick | None:
        ...

    def get_latest_block(
        self, chain_id: int, pool_id: str, *, stop_event: threading.Event | None = None
    ) -> int | None:
        ...

    def upsert_bar(self, bar: PriceBar, *, stop_event: threading.Event | None = None) -> None:
        ...

    def get_bars(
        self,
        chain_id: int,
        pool_id: str,
        interval: BarInterval,
        from_ts: int,
        to_ts: int,
        *,
        stop_event: threading.Event | None = None,
    ) -> list[PriceBar]:
        ...

    def get_log_returns(
        self,
        chain_id: int,
        pool_id: str,
        interval: BarInterval,
        from_ts: int,
        to_ts: int,
        *,
        stop_event: threading.Event | None = None,
    ) -> list[LogReturnPoint]:
        ...

    def purge_ticks_older_than(self, cutoff_ts: int, *, stop_event: threading.Event | None = None) -> int:
        ...

    def purge_bars_older_than(
        self, interval: BarInterval, cutoff_ts: int, *, stop_event: threading.Event | None = None
    ) -> int:
        ...

    def list_known_pools(self, chain_id: int, *, stop_event: threading.Event | None = None) -> list[str]:
        ...
