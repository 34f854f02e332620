from __future__ import annotations

import math
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from ingestion.contracts.tick import PoolTick
from lp_engine.data.bars import BarInterval, PriceBar
from lp_engine.data.contracts.store import LogReturnPoint, check_cancelled
from lp_engine.exceptions.core import FatalError, StorageError
from lp_engine.utils.logger import get_logger, log_debug, log_error

_SCHEMA = """
CREATE TABLE IF NOT EXISTS pool_ticks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    chain_id        INTEGER NOT NULL,
    pool_id         TEXT    NOT NULL,
    ts_ms           INTEGER NOT NULL,
    block_number    INTEGER NOT NULL,
    price           REAL    NOT NULL,
    liquidity       REAL    NULL,
    volume_token0   REAL    NULL,
    volume_token1   REAL    NULL
);

CREATE INDEX IF NOT EXISTS ix_pool_ticks_pool_ts
    ON pool_ticks (chain_id, pool_id, ts_ms);

CREATE UNIQUE INDEX IF NOT EXISTS ux_pool_ticks_pool_block_nonzero
    ON pool_ticks (chain_id, pool_id, block_number)
    WHERE block_number > 0;
"""

_BAR_SCHEMA = """
CREATE TABLE IF NOT EXISTS {table} (
    chain_id   INTEGER NOT NULL,
    pool_id    TEXT    NOT NULL,
    ts_ms      INTEGER NOT NULL,  -- bucket start
    open       REAL    NOT NULL,
    high       REAL    NOT NULL,
    low        REAL    NOT NULL,
    close      REAL    NOT NULL,
    samples    INTEGER NOT NULL,
    PRIMARY KEY (chain_id, pool_id, ts_ms)
);
"""

# Provenance columns added after the first schema; migrated in place.
_TICK_EXTRA_COLUMNS = (
    ("source", "TEXT NULL"),
    ("latency_ms", "INTEGER NULL"),
    ("finality_status", "TEXT NULL"),
    ("quality_flags", "INTEGER NOT NULL DEFAULT 0"),
)

_TICK_COLUMNS = (
    "chain_id, pool_id, ts_ms, block_number, price, liquidity, volume_token0, volume_token1, "
    "source, latency_ms, finality_status, quality_flags"
)


def _pool(pool_id: str) -> str:
    return str(pool_id).strip().lower()


def _row_to_tick(r: sqlite3.Row) -> PoolTick:
    return PoolTick(
        chain_id=int(r["chain_id"]),
        pool_id=str(r["pool_id"]),
        data_ts=int(r["ts_ms"]),
        price=float(r["price"]),
        block_number=int(r["block_number"]),
        liquidity=r["liquidity"],
        volume_token0=r["volume_token0"],
        volume_token1=r["volume_token1"],
        source=r["source"],
        latency_ms=r["latency_ms"],
        finality_status=r["finality_status"],
        quality_flags=int(r["quality_flags"] or 0),
    )


class SqliteTickBarStore:
    """
    SQLite-backed tick & bar store.

    One shared connection (WAL, check_same_thread=False) guarded by a lock so
    the engine loop and ad hoc returns-frame readers can share an instance.
    """

    def __init__(self, db_path: str | Path):
        self._path = str(db_path)
        self._lock = threading.Lock()
        self._logger = get_logger(__name__)
        try:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self._path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._initialize()
        except (OSError, sqlite3.Error) as exc:
            # nothing can run without the store; not retried
            log_error(self._logger, "store.open_failed", path=self._path, err=str(exc))
            raise FatalError(f"cannot open tick store {self._path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _initialize(self) -> None:
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
            self._conn.execute("PRAGMA temp_store=MEMORY;")
            self._conn.executescript(_SCHEMA)
            for interval in BarInterval:
                self._conn.executescript(_BAR_SCHEMA.format(table=interval.table))
            existing = {str(r["name"]).lower() for r in self._conn.execute("PRAGMA table_info(pool_ticks);")}
            for name, definition in _TICK_EXTRA_COLUMNS:
                if name not in existing:
                    self._conn.execute(f"ALTER TABLE pool_ticks ADD COLUMN {name} {definition};")
            self._conn.commit()

    @contextmanager
    def _cursor(self, op: str, stop_event: threading.Event | None, *, write: bool = False) -> Iterator[sqlite3.Cursor]:
        check_cancelled(stop_event)
        with self._lock:
            try:
                cur = self._conn.cursor()
            except sqlite3.Error as exc:
                raise StorageError(f"{op} failed: {exc}") from exc
            try:
                yield cur
                if write:
                    self._conn.commit()
            except sqlite3.Error as exc:
                if write:
                    self._conn.rollback()
                raise StorageError(f"{op} failed: {exc}") from exc
            finally:
                cur.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def insert_tick(self, tick: PoolTick, *, stop_event: threading.Event | None = None) -> bool:
        """Append a tick. Returns False when (chain, pool, non-zero block) already exists."""
        args = (
            int(tick.chain_id),
            _pool(tick.pool_id),
            int(tick.data_ts),
            int(tick.block_number),
            float(tick.price),
            tick.liquidity,
            tick.volume_token0,
            tick.volume_token1,
            tick.source,
            tick.latency_ms,
            tick.finality_status,
            int(tick.quality_flags),
        )
        with self._cursor("insert_tick", stop_event, write=True) as cur:
            cur.execute(
                f"INSERT OR IGNORE INTO pool_ticks ({_TICK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);",
                args,
            )
            inserted = cur.rowcount == 1
        if not inserted:
            log_debug(self._logger, "store.tick_duplicate_block", pool_id=tick.pool_id, block=tick.block_number)
        return inserted

    def get_ticks(
        self, chain_id: int, pool_id: str, from_ts: int, to_ts: int, *, stop_event: threading.Event | None = None
    ) -> list[PoolTick]:
        with self._cursor("get_ticks", stop_event) as cur:
            rows = cur.execute(
                f"""
                SELECT {_TICK_COLUMNS} FROM pool_ticks
                WHERE chain_id = ? AND pool_id = ? AND ts_ms >= ? AND ts_ms <= ?
                ORDER BY ts_ms ASC, id ASC;
                """,
                (int(chain_id), _pool(pool_id), int(from_ts), int(to_ts)),
            ).fetchall()
        return [_row_to_tick(r) for r in rows]

    def get_latest_tick(
        self, chain_id: int, pool_id: str, *, stop_event: threading.Event | None = None
    ) -> PoolTick | None:
        with self._cursor("get_latest_tick", stop_event) as cur:
            row = cur.execute(
                f"""
                SELECT {_TICK_COLUMNS} FROM pool_ticks
                WHERE chain_id = ? AND pool_id = ?
                ORDER BY ts_ms DESC, id DESC
                LIMIT 1;
                """,
                (int(chain_id), _pool(pool_id)),
            ).fetchone()
        return _row_to_tick(row) if row is not None else None

    def get_latest_block(
        self, chain_id: int, pool_id: str, *, stop_event: threading.Event | None = None
    ) -> int | None:
        with self._cursor("get_latest_block", stop_event) as cur:
            row = cur.execute(
                """
                SELECT block_number FROM pool_ticks
                WHERE chain_id = ? AND pool_id = ?
                ORDER BY ts_ms DESC, id DESC
                LIMIT 1;
                """,
                (int(chain_id), _pool(pool_id)),
            ).fetchone()
        return int(row["block_number"]) if row is not None else None

    def purge_ticks_older_than(self, cutoff_ts: int, *, stop_event: threading.Event | None = None) -> int:
        with self._cursor("purge_ticks", stop_event, write=True) as cur:
            cur.execute("DELETE FROM pool_ticks WHERE ts_ms < ?;", (int(cutoff_ts),))
            return int(cur.rowcount)

    # ------------------------------------------------------------------
    # Bars
    # ------------------------------------------------------------------

    def upsert_bar(self, bar: PriceBar, *, stop_event: threading.Event | None = None) -> None:
        table = bar.interval.table
        with self._cursor("upsert_bar", stop_event, write=True) as cur:
            cur.execute(
                f"""
                INSERT INTO {table} (chain_id, pool_id, ts_ms, open, high, low, close, samples)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(chain_id, pool_id, ts_ms) DO UPDATE SET
                    open    = excluded.open,
                    high    = excluded.high,
                    low     = excluded.low,
                    close   = excluded.close,
                    samples = excluded.samples;
                """,
                (
                    int(bar.chain_id),
                    _pool(bar.pool_id),
                    int(bar.bucket_ts),
                    float(bar.open),
                    float(bar.high),
                    float(bar.low),
                    float(bar.close),
                    int(bar.samples),
                ),
            )

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
        interval = BarInterval.parse(interval)
        with self._cursor("get_bars", stop_event) as cur:
            rows = cur.execute(
                f"""
                SELECT chain_id, pool_id, ts_ms, open, high, low, close, samples
                FROM {interval.table}
                WHERE chain_id = ? AND pool_id = ? AND ts_ms >= ? AND ts_ms <= ?
                ORDER BY ts_ms ASC;
                """,
                (int(chain_id), _pool(pool_id), int(from_ts), int(to_ts)),
            ).fetchall()
        return [
            PriceBar(
                chain_id=int(r["chain_id"]),
                pool_id=str(r["pool_id"]),
                bucket_ts=int(r["ts_ms"]),
                interval=interval,
                open=float(r["open"]),
                high=float(r["high"]),
                low=float(r["low"]),
                close=float(r["close"]),
                samples=int(r["samples"]),
            )
            for r in rows
        ]

    def get_bar_closes(
        self,
        chain_id: int,
        pool_id: str,
        interval: BarInterval,
        from_ts: int,
        to_ts: int,
        *,
        stop_event: threading.Event | None = None,
    ) -> list[tuple[int, float]]:
        return [
            (b.bucket_ts, b.close)
            for b in self.get_bars(chain_id, pool_id, interval, from_ts, to_ts, stop_event=stop_event)
        ]

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
        """ln(close_i / close_{i-1}) stamped with bar i's bucket; non-positive pairs skipped."""
        closes = self.get_bar_closes(chain_id, pool_id, interval, from_ts, to_ts, stop_event=stop_event)
        out: list[LogReturnPoint] = []
        for (_, p0), (ts1, p1) in zip(closes, closes[1:]):
            if p0 <= 0 or p1 <= 0:
                continue
            out.append((ts1, math.log(p1 / p0)))
        return out

    def purge_bars_older_than(
        self, interval: BarInterval, cutoff_ts: int, *, stop_event: threading.Event | None = None
    ) -> int:
        interval = BarInterval.parse(interval)
        with self._cursor("purge_bars", stop_event, write=True) as cur:
            cur.execute(f"DELETE FROM {interval.table} WHERE ts_ms < ?;", (int(cutoff_ts),))
            return int(cur.rowcount)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def list_known_pools(self, chain_id: int, *, stop_event: threading.Event | None = None) -> list[str]:
        """Pools seen in ticks or either bar table, so discovery survives tick retention."""
        with self._cursor("list_known_pools", stop_event) as cur:
            rows = cur.execute(
                """
                SELECT DISTINCT pool_id FROM (
                    SELECT pool_id FROM pool_ticks   WHERE chain_id = ?
                    UNION
                    SELECT pool_id FROM pool_bars_5m WHERE chain_id = ?
                    UNION
                    SELECT pool_id FROM pool_bars_1m WHERE chain_id = ?
                )
                ORDER BY pool_id ASC;
                """,
                (int(chain_id),) * 3,
            ).fetchall()
        return [str(r["pool_id"]).lower() for r in rows]

    def dump_table(self, table: str) -> list[tuple[Any, ...]]:
        """Raw rows of a bar or tick table, in primary-key order (diagnostics)."""
        allowed = {"pool_ticks"} | {i.table for i in BarInterval}
        if table not in allowed:
            raise ValueError(f"unknown table: {table!r}")
        order = "id" if table == "pool_ticks" else "chain_id, pool_id, ts_ms"
        with self._cursor("dump_table", None) as cur:
            return [tuple(r) for r in cur.execute(f"SELECT * FROM {table} ORDER BY {order};").fetchall()]
