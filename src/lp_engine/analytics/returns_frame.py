# analytics/returns_frame.py
"""
Cross-pool aligned log-return matrix.

Each pool contributes a ``{bucket_ts: log_return}`` series read from bars. The
frame keeps only timestamps every selected pool has; when that intersection is
too thin, the sparsest pools are dropped (never below two) until it reaches a
target derived from the window length.

Data-quality problems produce ``ok=False`` with a message, never an exception.
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

import pandas as pd

from lp_engine.data.bars import BarInterval, bucket_floor
from lp_engine.data.contracts.store import TickBarStore
from lp_engine.utils.logger import get_logger, log_debug
from lp_engine.utils.numeric import round_half_away

MIN_POOLS = 2
MIN_ALIGNED_POINTS = 5
TARGET_FRACTION = 0.60
TARGET_FLOOR = 20
TARGET_CEILING = 200
DEFAULT_TAKE_POOLS = 6

_MSG_NEED_POOLS = "Need at least 2 pools (use pools=... or ensure DB has >=2 pools)."
_MSG_ALL_EMPTY = "All pools have 0 return points. Ensure bars exist and increase lookback if needed."
_MSG_NO_OVERLAP = (
    "Pools have return data but share 0 common timestamps. This usually means bar bucket "
    "timestamps are not rounded consistently. Fix bucketing to exact boundaries."
)


@dataclass(frozen=True)
class ReturnsFrame:
    ok: bool
    message: str
    points: int
    pools: list[str]
    timestamps: list[int] = field(default_factory=list)
    returns: list[list[float]] = field(default_factory=list)  # pool-major, aligned to timestamps
    per_pool_counts: dict[str, int] = field(default_factory=dict)
    dropped: list[str] = field(default_factory=list)
    target_min_points: int | None = None

    def to_frame(self) -> pd.DataFrame:
        """Aligned returns as a DataFrame (index: bucket ts in ms, columns: pools)."""
        if not self.ok:
            return pd.DataFrame(columns=list(self.pools), dtype=float)
        data = {pool: vec for pool, vec in zip(self.pools, self.returns)}
        return pd.DataFrame(data, index=pd.Index(self.timestamps, name="bucket_ts"))

    def correlation(self) -> pd.DataFrame:
        return self.to_frame().corr()

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "message": self.message,
            "points": self.points,
            "pools": list(self.pools),
            "timestamps": list(self.timestamps),
            "returns": [list(v) for v in self.returns],
            "per_pool_counts": dict(self.per_pool_counts),
            "dropped": list(self.dropped),
            "target_min_points": self.target_min_points,
        }


@dataclass(frozen=True)
class PoolReturns:
    """Log-return series of one pool over a trailing window."""

    chain_id: int
    pool_id: str
    interval: BarInterval
    from_ts: int
    to_ts: int
    points: list[tuple[int, float]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.points)

    def to_dict(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "pool_id": self.pool_id,
            "interval": self.interval.value,
            "from_ts": self.from_ts,
            "to_ts": self.to_ts,
            "count": self.count,
            "points": [{"ts": ts, "r": r} for ts, r in self.points],
        }


def normalize_pools(pools: Iterable[str | None]) -> list[str]:
    """Trim, lower-case, drop blanks and de-duplicate, keeping first-seen order."""
    out: list[str] = []
    seen: set[str] = set()
    for p in pools:
        if p is None:
            continue
        s = str(p).strip().lower()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


def compute_target_min_points(interval: BarInterval, from_ts: int, to_ts: int) -> int:
    total_minutes = max(0.0, (int(to_ts) - int(from_ts)) / 60_000.0)
    expected = math.floor(total_minutes / interval.minutes)

    target = round_half_away(expected * TARGET_FRACTION)
    target = max(TARGET_FLOOR, min(TARGET_CEILING, target))
    return max(MIN_ALIGNED_POINTS, target)


def _trailing_window(lookback_hours: float, now_ts: int | None) -> tuple[int, int]:
    to_ts = int(now_ts) if now_ts is not None else int(time.time() * 1000)
    return to_ts - int(lookback_hours * 3_600_000), to_ts


def _intersection(series: Mapping[str, Mapping[int, float]], pools: Sequence[str]) -> list[int]:
    if not pools:
        return []
    common = set(series[pools[0]])
    for p in pools[1:]:
        common &= set(series[p])
    return sorted(common)


class ReturnsFrameBuilder:
    """Read-only, request-scoped; safe to share across threads with a thread-safe store."""

    def __init__(self, store: TickBarStore):
        self._store = store
        self._logger = get_logger(__name__)

    def build(
        self,
        chain_id: int,
        pools: Iterable[str | None],
        interval: BarInterval | str,
        from_ts: int,
        to_ts: int,
        *,
        stop_event: threading.Event | None = None,
    ) -> ReturnsFrame:
        interval = BarInterval.parse(interval)
        selected = normalize_pools(pools)

        if len(selected) < MIN_POOLS:
            return ReturnsFrame(ok=False, message=_MSG_NEED_POOLS, points=0, pools=selected)

        series: dict[str, dict[int, float]] = {}
        per_pool: dict[str, int] = {}
        for pool in selected:
            rows = self._store.get_log_returns(chain_id, pool, interval, from_ts, to_ts, stop_event=stop_event)
            by_ts: dict[int, float] = {}
            for ts, r in rows:
                by_ts[bucket_floor(ts, interval)] = float(r)
            series[pool] = by_ts
            per_pool[pool] = len(by_ts)

        if all(c == 0 for c in per_pool.values()):
            return ReturnsFrame(
                ok=False, message=_MSG_ALL_EMPTY, points=0, pools=selected, per_pool_counts=per_pool
            )

        target = compute_target_min_points(interval, from_ts, to_ts)
        working = list(selected)
        dropped: list[str] = []

        while len(working) > MIN_POOLS:
            if len(_intersection(series, working)) >= target:
                break
            # min() keeps the first of equally sparse pools
            sparsest = min(working, key=lambda p: per_pool.get(p, 0))
            working.remove(sparsest)
            dropped.append(sparsest)
            log_debug(self._logger, "returns_frame.drop_sparse", pool_id=sparsest, count=per_pool.get(sparsest, 0))

        timestamps = _intersection(series, working)

        if not timestamps:
            return ReturnsFrame(
                ok=False,
                message=_MSG_NO_OVERLAP,
                points=0,
                pools=working,
                per_pool_counts=per_pool,
                dropped=dropped,
                target_min_points=target,
            )

        if len(timestamps) < MIN_ALIGNED_POINTS:
            msg = (
                f"Too few common aligned points ({len(timestamps)}). "
                f"Increase lookback or allow more time for bars to populate. "
                f"Selected pools: {', '.join(working)}."
            )
            if dropped:
                msg += f" Dropped sparse pools: {', '.join(dropped)}."
            return ReturnsFrame(
                ok=False,
                message=msg,
                points=len(timestamps),
                pools=working,
                timestamps=timestamps,
                per_pool_counts=per_pool,
                dropped=dropped,
                target_min_points=target,
            )

        aligned = [[series[pool][ts] for ts in timestamps] for pool in working]

        msg = f"OK (intersection={len(timestamps)} points)."
        if dropped:
            msg += f" Dropped sparse pools to meet quality threshold (target>={target}): {', '.join(dropped)}."

        return ReturnsFrame(
            ok=True,
            message=msg,
            points=len(timestamps),
            pools=working,
            timestamps=timestamps,
            returns=aligned,
            per_pool_counts=per_pool,
            dropped=dropped,
            target_min_points=target,
        )

    def build_for_chain(
        self,
        chain_id: int,
        pools: Iterable[str] | None = None,
        *,
        take_pools: int = DEFAULT_TAKE_POOLS,
        interval: BarInterval | str = BarInterval.M5,
        lookback_hours: float = 24,
        now_ts: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> ReturnsFrame:
        """
        Frame over the trailing ``lookback_hours``.

        Without explicit pools, the first ``max(2, take_pools)`` known pools of
        the chain are used.
        """
        if chain_id <= 0:
            raise ValueError("chain_id must be > 0")
        if lookback_hours <= 0:
            raise ValueError("lookback_hours must be > 0")

        from_ts, to_ts = _trailing_window(lookback_hours, now_ts)

        if pools is None:
            known = self._store.list_known_pools(chain_id, stop_event=stop_event)
            selected = known[: max(MIN_POOLS, int(take_pools))]
        else:
            selected = list(pools)

        return self.build(chain_id, selected, interval, from_ts, to_ts, stop_event=stop_event)

    def pool_returns(
        self,
        chain_id: int,
        pool_id: str,
        *,
        interval: BarInterval | str = BarInterval.M5,
        lookback_hours: float = 24,
        now_ts: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> PoolReturns:
        """Unaligned log returns of a single pool over the trailing ``lookback_hours``."""
        if chain_id <= 0:
            raise ValueError("chain_id must be > 0")
        pool = str(pool_id or "").strip().lower()
        if not pool:
            raise ValueError("pool_id is required")
        if lookback_hours <= 0:
            raise ValueError("lookback_hours must be > 0")

        interval = BarInterval.parse(interval)
        from_ts, to_ts = _trailing_window(lookback_hours, now_ts)
        rows = self._store.get_log_returns(chain_id, pool, interval, from_ts, to_ts, stop_event=stop_event)
        return PoolReturns(
            chain_id=chain_id,
            pool_id=pool,
            interval=interval,
            from_ts=from_ts,
            to_ts=to_ts,
            points=[(int(ts), float(r)) for ts, r in rows],
        )
