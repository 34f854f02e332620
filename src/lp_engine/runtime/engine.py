# runtime/engine.py
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, replace
from typing import Any

from ingestion.contracts.tick import MarketSnapshot, QualityFlag
from ingestion.pool_price.normalize import evaluate_quality
from ingestion.pool_price.provider import MarketDataProvider
from lp_engine.data.bars import BarInterval, roll_up
from lp_engine.data.contracts.store import TickBarStore
from lp_engine.decision.adjust import adjust_scores
from lp_engine.decision.recommendation import Recommendation, RecommendationStore
from lp_engine.decision.scoring import BaseScorer, ScorerProto
from lp_engine.exceptions.core import FatalError, OperationCancelled
from lp_engine.features.heat import TIMEFRAMES, HeatBreakdown, compute_heat, window_stats
from lp_engine.models.hysteresis import RegimeHysteresis, RegimeTransition
from lp_engine.models.regime import detect_regime
from lp_engine.utils.config import EngineConfig, PoolConfig
from lp_engine.utils.logger import (
    get_logger,
    log_data_integrity,
    log_debug,
    log_decision,
    log_exception,
    log_regime,
    log_storage,
)

_HOUR_MS = 3_600_000
_DAY_MS = 24 * _HOUR_MS


def _now_ms() -> int:
    return int(time.time() * 1000)


def _resolve_now(now_ts: int | None) -> int:
    return int(now_ts) if now_ts is not None else _now_ms()


def _fmt(v: int | None) -> str:
    return "" if v is None else str(v)


def format_summary(regime: str, heat: HeatBreakdown, reinvest: float, reallocate: float) -> str:
    return (
        f"Regime={regime}, Heat={heat.blended} "
        f"(T={_fmt(heat.tactical)},S={_fmt(heat.structural)},M={_fmt(heat.macro)},SM={_fmt(heat.super_macro)}), "
        f"Reinvest={reinvest:.1f}, Reallocate={reallocate:.1f}"
    )


def build_details(heat: HeatBreakdown) -> dict[str, Any]:
    stats = heat.stats
    names = [tf.name for tf in TIMEFRAMES]
    return {
        "heat": heat.to_dict(),
        "ret": {n: (stats.ret.get(n) if stats else None) for n in names},
        "vol": {n: (stats.vol.get(n) if stats else None) for n in names},
    }


@dataclass(frozen=True)
class PoolOutcome:
    pool_id: str
    recommendation: Recommendation
    transition: RegimeTransition
    heat: HeatBreakdown
    quality: QualityFlag


class DecisionEngine:
    """
    Per-pool pipeline, one call per pool per iteration:

        fetch -> quality check -> persist -> retention -> rollup
              -> windows -> estimators -> heat -> regime (+hysteresis)
              -> base scores -> heat adjustment -> Recommendation

    The engine owns no schedule; EngineLoop drives it.
    """

    def __init__(
        self,
        *,
        store: TickBarStore,
        provider: MarketDataProvider,
        recommendations: RecommendationStore,
        hysteresis: RegimeHysteresis | None = None,
        scorer: ScorerProto | None = None,
    ):
        self.store = store
        self.provider = provider
        self.recommendations = recommendations
        self.hysteresis = hysteresis or RegimeHysteresis()
        self.scorer = scorer
        self._logger = get_logger(__name__)

    # -------------------------------------------------
    # Iteration
    # -------------------------------------------------

    def run_iteration(
        self,
        config: EngineConfig,
        *,
        now_ts: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> list[PoolOutcome]:
        """Process every configured pool; a failing pool is logged and skipped."""
        outcomes: list[PoolOutcome] = []
        for pool in config.pools:
            if stop_event is not None and stop_event.is_set():
                break
            try:
                outcomes.append(
                    self.process_pool(pool, config, now_ts=now_ts, stop_event=stop_event)
                )
            except (OperationCancelled, FatalError):
                raise
            except Exception as exc:
                log_exception(
                    self._logger,
                    "engine.pool_failed",
                    chain_id=pool.chain_id,
                    pool_id=pool.key,
                    err_type=type(exc).__name__,
                )
        return outcomes

    def process_pool(
        self,
        pool: PoolConfig,
        config: EngineConfig,
        *,
        now_ts: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> PoolOutcome:
        chain_id = pool.chain_id
        pool_id = pool.key

        snapshot = self.provider.fetch(pool)
        quality = self._persist(snapshot, chain_id, pool_id, _resolve_now(now_ts), stop_event)
        # read after persisting so the fresh tick falls inside every window
        now = _resolve_now(now_ts)
        self._maintain(config, chain_id, pool_id, now, stop_event)

        heat = self._heat(chain_id, pool_id, now, stop_event)

        detected = detect_regime(
            snapshot.vol_norm, snapshot.trend_r2, snapshot.ema_slope_abs, config.regime
        )
        self.hysteresis.policy = config.heat
        transition = self.hysteresis.step(pool_id, detected, heat.blended, now)
        if transition.switched:
            log_regime(
                self._logger,
                "regime.switch",
                pool_id=pool_id,
                old=transition.previous,
                new=transition.current,
                confirmations=transition.candidate_count,
                required=transition.required,
                heat=heat.blended,
            )
        regime = transition.current

        scorer = self.scorer or BaseScorer(config.scoring)
        adjusted = adjust_scores(
            scorer.score_reinvest(snapshot, regime),
            scorer.score_reallocate(snapshot, regime),
            heat.blended,
            heat.super_macro,
            config.heat,
            config.adjustment,
        )

        rec = Recommendation(
            created_ts=now,
            chain_id=chain_id,
            pool_id=pool_id,
            token0=pool.token0,
            token1=pool.token1,
            fee_tier=pool.fee_tier,
            regime=regime,
            reinvest_score=adjusted.reinvest,
            reallocate_score=adjusted.reallocate,
            summary=format_summary(regime.value, heat, adjusted.reinvest_raw, adjusted.reallocate_raw),
            details=build_details(heat),
        )
        self.recommendations.add(rec)

        log_decision(
            self._logger,
            "engine.recommendation",
            pool_id=pool_id,
            heat=heat.to_dict(),
            detected=detected,
            regime=regime,
            reinvest=adjusted.reinvest,
            reallocate=adjusted.reallocate,
        )
        return PoolOutcome(pool_id=pool_id, recommendation=rec, transition=transition, heat=heat, quality=quality)

    # -------------------------------------------------
    # Steps
    # -------------------------------------------------

    def _persist(
        self,
        snapshot: MarketSnapshot,
        chain_id: int,
        pool_id: str,
        now: int,
        stop_event: threading.Event | None,
    ) -> QualityFlag:
        previous = self.store.get_latest_tick(chain_id, pool_id, stop_event=stop_event)
        # the configured pool key is authoritative for storage
        tick = replace(snapshot.to_tick(), chain_id=chain_id, pool_id=pool_id)

        flags = evaluate_quality(tick, previous, now)
        if flags:
            log_data_integrity(
                self._logger,
                "ingestion.quality_flags",
                chain_id=chain_id,
                pool_id=pool_id,
                data_ts=tick.data_ts,
                price=tick.price,
                flags=[f.name for f in QualityFlag if f and f in flags],
            )

        inserted = self.store.insert_tick(replace(tick, quality_flags=int(flags)), stop_event=stop_event)
        log_debug(self._logger, "store.tick_saved", pool_id=pool_id, price=tick.price, inserted=inserted)
        return flags

    def _maintain(
        self,
        config: EngineConfig,
        chain_id: int,
        pool_id: str,
        now: int,
        stop_event: threading.Event | None,
    ) -> None:
        ret = config.retention
        purged_ticks = self.store.purge_ticks_older_than(
            now - int(ret.raw_hours * _HOUR_MS), stop_event=stop_event
        )
        purged_1m = self.store.purge_bars_older_than(
            BarInterval.M1, now - int(ret.bars_1m_days * _DAY_MS), stop_event=stop_event
        )
        purged_5m = self.store.purge_bars_older_than(
            BarInterval.M5, now - int(ret.bars_5m_days * _DAY_MS), stop_event=stop_event
        )
        if purged_ticks or purged_1m or purged_5m:
            log_storage(
                self._logger,
                "store.purge",
                ticks=purged_ticks,
                bars_1m=purged_1m,
                bars_5m=purged_5m,
            )

        rollup_from = now - int(ret.rollup_lookback_minutes * 60_000)
        for interval in (BarInterval.M1, BarInterval.M5):
            roll_up(
                self.store,
                chain_id=chain_id,
                pool_id=pool_id,
                interval=interval,
                from_ts=rollup_from,
                to_ts=now,
                stop_event=stop_event,
            )

    def _heat(self, chain_id: int, pool_id: str, now: int, stop_event: threading.Event | None) -> HeatBreakdown:
        windows: dict[str, list] = {}
        for tf in TIMEFRAMES:
            start = now - tf.lookback_ms
            if tf.from_bars:
                windows[tf.name] = self.store.get_bars(
                    chain_id, pool_id, BarInterval.M5, start, now, stop_event=stop_event
                )
            else:
                windows[tf.name] = self.store.get_ticks(chain_id, pool_id, start, now, stop_event=stop_event)
        return compute_heat(window_stats(windows))
