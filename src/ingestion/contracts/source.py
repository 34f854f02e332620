from __future__ import annotations

from typing import Any, Mapping, Protocol

Raw = Mapping[str, Any]


class PoolRef(Protocol):
    """Anything that identifies a configured pool (see lp_engine.utils.config.PoolConfig)."""

    chain_id: int
    token0: str
    token1: str
    fee_tier: int

    @property
    def key(self) -> str:
        ...


class MarketDataSource(Protocol):
    """Pull-style source: one raw payload per pool per call."""

    def fetch_raw(self, pool: PoolRef) -> Raw:
        ...
