# decision/recommendation.py
from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from lp_engine.models.regime import MarketRegime

MAX_LATEST = 200


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [_thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class Recommendation:
    created_ts: int
    chain_id: int
    pool_id: str
    token0: str
    token1: str
    fee_tier: int
    regime: MarketRegime
    reinvest_score: int
    reallocate_score: int
    summary: str
    details: Mapping[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        # deep read-only copy
        object.__setattr__(self, "details", _freeze(self.details))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_ts": self.created_ts,
            "chain_id": self.chain_id,
            "pool_id": self.pool_id,
            "token0": self.token0,
            "token1": self.token1,
            "fee_tier": self.fee_tier,
            "regime": self.regime.value,
            "reinvest_score": self.reinvest_score,
            "reallocate_score": self.reallocate_score,
            "summary": self.summary,
            "details": _thaw(self.details),
        }


class RecommendationStore:
    """Bounded in-memory queue; the oldest entry is dropped when full. Never blocks producers."""

    def __init__(self, capacity: int = 500):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self._items: deque[Recommendation] = deque(maxlen=int(capacity))
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return int(self._items.maxlen or 0)

    def add(self, rec: Recommendation) -> None:
        with self._lock:
            self._items.append(rec)

    def get_latest(self, n: int = 50) -> list[Recommendation]:
        """Newest first; ``n`` is clamped to [1, 200]."""
        n = max(1, min(MAX_LATEST, int(n)))
        with self._lock:
            items = list(self._items)
        items.reverse()
        return items[:n]

    def latest_for(self, chain_id: int, pool_id: str) -> Recommendation | None:
        key = str(pool_id).strip().lower()
        with self._lock:
            for rec in reversed(self._items):
                if rec.chain_id == chain_id and rec.pool_id == key:
                    return rec
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
