from __future__ import annotations

import argparse
import json

from lp_engine.analytics.returns_frame import DEFAULT_TAKE_POOLS, ReturnsFrameBuilder
from lp_engine.data.bars import BarInterval
from lp_engine.data.sqlite_store import SqliteTickBarStore
from lp_engine.utils.logger import init_logging


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Aligned cross-pool log-return frame")
    parser.add_argument("--db", default="data/lp_engine.sqlite")
    parser.add_argument("--chain-id", type=int, required=True)
    parser.add_argument("--interval", default="m5", choices=["m1", "m5"])
    parser.add_argument("--lookback-hours", type=float, default=24)
    parser.add_argument("--pools", default=None, help="comma separated; default: first known pools")
    parser.add_argument("--pool", default=None, help="single pool: print its log returns instead of a frame")
    parser.add_argument("--take-pools", type=int, default=DEFAULT_TAKE_POOLS)
    parser.add_argument("--corr", action="store_true", help="print the correlation matrix instead of the frame")
    parser.add_argument("--logging", default="configs/logging.json")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    init_logging(args.logging, mode="cli")

    pools = None
    if args.pools:
        pools = [p for p in args.pools.split(",") if p.strip()]

    store = SqliteTickBarStore(args.db)
    builder = ReturnsFrameBuilder(store)
    try:
        if args.pool:
            series = builder.pool_returns(
                args.chain_id,
                args.pool,
                interval=BarInterval.parse(args.interval),
                lookback_hours=args.lookback_hours,
            )
            print(json.dumps(series.to_dict(), indent=2))
            return
        frame = builder.build_for_chain(
            args.chain_id,
            pools,
            take_pools=args.take_pools,
            interval=BarInterval.parse(args.interval),
            lookback_hours=args.lookback_hours,
        )
    except ValueError as exc:
        print(json.dumps({"ok": False, "message": str(exc)}))
        return
    finally:
        store.close()

    if args.corr and frame.ok:
        print(frame.correlation().round(4).to_string())
        return
    print(json.dumps(frame.to_dict(), indent=2))


if __name__ == "__main__":
    main()
