from __future__ import annotations

import argparse
import signal
import threading
import time

import numpy as np
from tqdm import tqdm

from ingestion.contracts.tick import PoolTick
from lp_engine.data.bars import BarInterval, roll_up
from lp_engine.data.sqlite_store import SqliteTickBarStore
from lp_engine.exceptions.core import OperationCancelled
from lp_engine.utils.logger import get_logger, init_logging, log_info

_LOGGER = get_logger(__name__)
_HOUR_MS = 3_600_000


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed a local store with synthetic correlated pool history")
    parser.add_argument("--db", default="data/lp_engine.sqlite")
    parser.add_argument("--chain-id", type=int, default=1)
    parser.add_argument("--pools", default="eth/usdc/3000,wbtc/usdc/3000,eth/wbtc/500")
    parser.add_argument("--hours", type=int, default=24)
    parser.add_argument("--step-seconds", type=int, default=10)
    parser.add_argument("--corr", type=float, default=0.6, help="pairwise correlation of step returns")
    parser.add_argument("--step-vol", type=float, default=0.001)
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--logging", default="configs/logging.json")
    return parser.parse_args()


def _correlated_steps(rng: np.random.Generator, n_pools: int, n_steps: int, corr: float, vol: float) -> np.ndarray:
    cov = np.full((n_pools, n_pools), corr * vol * vol)
    np.fill_diagonal(cov, vol * vol)
    return rng.multivariate_normal(np.zeros(n_pools), cov, size=n_steps)


def main() -> None:
    args = _parse_args()
    init_logging(args.logging, mode="cli")

    stop_event = threading.Event()

    def _handle_stop(signum, _frame):
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_stop)
    signal.signal(signal.SIGTERM, _handle_stop)

    pools = [p.strip().lower() for p in args.pools.split(",") if p.strip()]
    end_ts = int(time.time() * 1000)
    start_ts = end_ts - args.hours * _HOUR_MS
    step_ms = args.step_seconds * 1000
    steps_per_hour = _HOUR_MS // step_ms

    rng = np.random.default_rng(args.seed)
    prices = np.full(len(pools), 1.5)
    store = SqliteTickBarStore(args.db)
    written = 0
    try:
        for hour in tqdm(range(args.hours), desc=f"seed {len(pools)} pools"):
            if stop_event.is_set():
                break
            h0 = start_ts + hour * _HOUR_MS
            steps = _correlated_steps(rng, len(pools), steps_per_hour, args.corr, args.step_vol)
            for i, row in enumerate(steps):
                prices = prices * np.exp(row)
                ts = h0 + i * step_ms
                for pool, price in zip(pools, prices):
                    store.insert_tick(
                        PoolTick(chain_id=args.chain_id, pool_id=pool, data_ts=ts, price=float(price), source="seed"),
                        stop_event=stop_event,
                    )
                    written += 1
            for pool in pools:
                for interval in BarInterval:
                    roll_up(
                        store,
                        chain_id=args.chain_id,
                        pool_id=pool,
                        interval=interval,
                        from_ts=h0,
                        to_ts=h0 + _HOUR_MS - 1,
                        stop_event=stop_event,
                    )
    except OperationCancelled:
        log_info(_LOGGER, "seed.cancelled", ticks=written)
    finally:
        store.close()

    log_info(_LOGGER, "seed.done", pools=pools, ticks=written, hours=args.hours)


if __name__ == "__main__":
    main()
