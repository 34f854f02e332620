from __future__ import annotations

import argparse
import asyncio
import signal
import threading
import uuid
from datetime import datetime, timezone

from ingestion.pool_price.provider import PoolPriceProvider
from ingestion.pool_price.source import RestPoolPriceSource, StubPoolPriceSource
from lp_engine.data.sqlite_store import SqliteTickBarStore
from lp_engine.decision.recommendation import RecommendationStore
from lp_engine.models.hysteresis import RegimeHysteresis, RegimeStateStore
from lp_engine.runtime.engine import DecisionEngine
from lp_engine.runtime.loop import EngineLoop
from lp_engine.utils.config import FileConfigProvider
from lp_engine.utils.logger import get_logger, init_logging, log_info

_LOGGER = get_logger(__name__)


def _make_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"engine-{stamp}-{uuid.uuid4().hex[:6]}"


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="LP pool heat & regime advisory engine")
    parser.add_argument("--config", default="configs/engine.json", help="engine config (JSON)")
    parser.add_argument("--logging", default="configs/logging.json", help="logging profiles (JSON)")
    parser.add_argument("--profile", default=None, help="logging profile; default: active_profile")
    parser.add_argument("--source-url", default=None, help="REST snapshot endpoint; default: synthetic stub")
    parser.add_argument("--seed", type=int, default=None, help="stub source seed")
    parser.add_argument("--once", action="store_true", help="run a single iteration and exit")
    return parser.parse_args()


async def main() -> None:
    args = _parse_args()
    run_id = _make_run_id()
    init_logging(args.logging, run_id=run_id, mode=args.profile)

    config_provider = FileConfigProvider(args.config)
    config = config_provider.snapshot()

    if args.source_url:
        source = RestPoolPriceSource(base_url=args.source_url)
    else:
        source = StubPoolPriceSource(seed=args.seed)

    store = SqliteTickBarStore(config.db_path)
    engine = DecisionEngine(
        store=store,
        provider=PoolPriceProvider(source=source),
        recommendations=RecommendationStore(capacity=config.recommendation_capacity),
        hysteresis=RegimeHysteresis(config.heat, RegimeStateStore()),
    )

    stop_event = threading.Event()

    def _handle_stop(signum, _frame):
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_stop)
    signal.signal(signal.SIGTERM, _handle_stop)

    loop = EngineLoop(engine=engine, config_provider=config_provider, stop_event=stop_event)
    log_info(_LOGGER, "app.start", run_id=run_id, db_path=config.db_path, pools=[p.key for p in config.pools])
    try:
        if args.once:
            loop.run_once(config)
            for rec in engine.recommendations.get_latest(len(config.pools) or 1):
                print(rec.summary)
        else:
            await loop.run()
    finally:
        store.close()


if __name__ == "__main__":
    asyncio.run(main())
