from __future__ import annotations

import itertools
import re
import threading

import pytest

from ingestion.contracts.tick import QualityFlag
from lp_engine.data.bars import BarInterval
from lp_engine.data.sqlite_store import SqliteTickBarStore
from lp_engine.decision.recommendation import RecommendationStore
from lp_engine.exceptions.core import FatalError
from lp_engine.models.hysteresis import RegimeHysteresis, RegimeStateStore
from lp_engine.models.regime import MarketRegime
from lp_engine.runtime import engine as engine_module
from lp_engine.runtime.engine import DecisionEngine
from lp_engine.utils.config import EngineConfig, PoolConfig
from tests.helpers.fakes import BASE_TS, ScriptedProvider, make_tick, snapshot

ETH = PoolConfig(chain_id=1, token0="ETH", token1="USDC", fee_tier=3000)
BTC = PoolConfig(chain_id=1, token0="WBTC", token1="USDC", fee_tier=3000)
T0 = BASE_TS + 7 * 3_600_000
SEC = 1_000

SUMMARY_RE = re.compile(
    r"^Regime=(Sideways|Trending|Volatile), Heat=\d+ "
    r"\(T=\d*,S=\d*,M=\d*,SM=\d*\), Reinvest=\d+\.\d, Reallocate=\d+\.\d$"
)


@pytest.fixture()
def store(tmp_path):
    s = SqliteTickBarStore(tmp_path / "engine.sqlite")
    yield s
    s.close()


def _engine(store, provider) -> DecisionEngine:
    return DecisionEngine(
        store=store,
        provider=provider,
        recommendations=RecommendationStore(),
        hysteresis=RegimeHysteresis(store=RegimeStateStore()),
    )


def test_first_tick_yields_neutral_heat_recommendation(store) -> None:
    provider = ScriptedProvider({ETH.key: [snapshot(ETH.key, T0, 100.0)]})
    engine = _engine(store, provider)

    out = engine.process_pool(ETH, EngineConfig(pools=[ETH]), now_ts=T0)

    rec = out.recommendation
    assert rec.summary == "Regime=Sideways, Heat=50 (T=,S=,M=,SM=), Reinvest=77.0, Reallocate=34.0"
    assert (rec.reinvest_score, rec.reallocate_score) == (77, 34)
    assert rec.regime is MarketRegime.SIDEWAYS
    assert (rec.token0, rec.token1, rec.fee_tier) == ("ETH", "USDC", 3000)
    assert rec.details["heat"] == {
        "blended": 50,
        "tactical": None,
        "structural": None,
        "macro": None,
        "superMacro": None,
    }
    assert set(rec.details["ret"]) == {"m5", "m15", "h1", "h6", "h24", "d30"}
    assert all(v is None for v in rec.details["vol"].values())
    assert engine.recommendations.get_latest(1)[0] is rec

    assert len(store.get_ticks(1, ETH.key, T0, T0)) == 1
    assert len(store.get_bars(1, ETH.key, BarInterval.M1, 0, T0)) == 1
    assert len(store.get_bars(1, ETH.key, BarInterval.M5, 0, T0)) == 1


def test_heat_uses_history_once_windows_fill(store) -> None:
    for i in range(30):
        store.insert_tick(make_tick(T0 - (30 - i) * 10 * SEC, 100.0 * (1.001 ** (i % 3)), pool_id=ETH.key))
    provider = ScriptedProvider({ETH.key: [snapshot(ETH.key, T0, 100.0)]})
    out = _engine(store, provider).process_pool(ETH, EngineConfig(pools=[ETH]), now_ts=T0)

    assert out.heat.tactical is not None
    assert out.recommendation.details["vol"]["m5"] is not None
    assert SUMMARY_RE.match(out.recommendation.summary)


def test_regime_switch_requires_dwell_and_confirmations(store) -> None:
    provider = ScriptedProvider()
    engine = _engine(store, provider)
    cfg = EngineConfig(pools=[ETH])

    provider.push(ETH.key, snapshot(ETH.key, T0, 100.0))
    assert engine.process_pool(ETH, cfg, now_ts=T0).transition.seeded is True

    trending = dict(vol_norm=0.03, trend_r2=0.9, slope=0.01)
    regimes = []
    for k, offset in enumerate((60, 130, 140, 150, 160)):
        ts = T0 + offset * SEC
        provider.push(ETH.key, snapshot(ETH.key, ts, 100.0, **trending))
        regimes.append(engine.process_pool(ETH, cfg, now_ts=ts).recommendation.regime)

    # never inside the dwell window, and at most four post-dwell confirmations
    assert regimes[0] is MarketRegime.SIDEWAYS
    assert regimes[1] is MarketRegime.SIDEWAYS
    assert regimes[-1] is MarketRegime.TRENDING


def test_failing_pool_does_not_abort_iteration(store) -> None:
    provider = ScriptedProvider({BTC.key: [snapshot(BTC.key, T0, 40_000.0)]}, fail_for=[ETH.key])
    engine = _engine(store, provider)

    outcomes = engine.run_iteration(EngineConfig(pools=[ETH, BTC]), now_ts=T0)

    assert [o.pool_id for o in outcomes] == [BTC.key]
    assert provider.calls == [ETH.key, BTC.key]
    assert len(engine.recommendations) == 1


def test_previous_recommendation_stays_latest_on_failure(store) -> None:
    provider = ScriptedProvider({ETH.key: [snapshot(ETH.key, T0, 100.0)]})
    engine = _engine(store, provider)
    cfg = EngineConfig(pools=[ETH])
    engine.run_iteration(cfg, now_ts=T0)
    first = engine.recommendations.latest_for(1, ETH.key)

    provider.fail_for.add(ETH.key)
    engine.run_iteration(cfg, now_ts=T0 + 10 * SEC)
    assert engine.recommendations.latest_for(1, ETH.key) is first


def test_quality_flags_are_recorded_not_blocking(store) -> None:
    provider = ScriptedProvider(
        {ETH.key: [snapshot(ETH.key, T0, 100.0), snapshot(ETH.key, T0 + 10 * SEC, 150.0)]}
    )
    engine = _engine(store, provider)
    cfg = EngineConfig(pools=[ETH])
    engine.process_pool(ETH, cfg, now_ts=T0)
    out = engine.process_pool(ETH, cfg, now_ts=T0 + 10 * SEC)

    assert out.quality == QualityFlag.PRICE_JUMP
    latest = store.get_latest_tick(1, ETH.key)
    assert latest.price == 150.0
    assert QualityFlag.PRICE_JUMP in latest.flags


def test_retention_purges_aged_rows(store) -> None:
    old = T0 - 73 * 3_600_000
    store.insert_tick(make_tick(old, 99.0, pool_id=ETH.key))
    provider = ScriptedProvider({ETH.key: [snapshot(ETH.key, T0, 100.0)]})
    _engine(store, provider).process_pool(ETH, EngineConfig(pools=[ETH]), now_ts=T0)
    assert store.get_ticks(1, ETH.key, 0, old) == []


def test_set_stop_event_skips_remaining_pools(store) -> None:
    provider = ScriptedProvider({ETH.key: [snapshot(ETH.key, T0, 100.0)]})
    engine = _engine(store, provider)
    stop = threading.Event()
    stop.set()
    assert engine.run_iteration(EngineConfig(pools=[ETH]), now_ts=T0, stop_event=stop) == []
    assert provider.calls == []


class _ClockStampedProvider:
    """Stamps each snapshot with the shared clock at fetch time, like a live source."""

    def __init__(self, clock):
        self._clock = clock

    def fetch(self, pool):
        return snapshot(pool.key, self._clock(), 100.0)


def test_tick_stamped_during_fetch_is_inside_windows(store, monkeypatch) -> None:
    clock = itertools.count(T0, SEC).__next__
    monkeypatch.setattr(engine_module, "_now_ms", clock)
    engine = _engine(store, _ClockStampedProvider(clock))

    out = engine.process_pool(ETH, EngineConfig(pools=[ETH]))

    stored = store.get_latest_tick(1, ETH.key)
    assert out.recommendation.created_ts >= stored.data_ts
    bars = store.get_bars(1, ETH.key, BarInterval.M1, 0, out.recommendation.created_ts)
    assert [b.close for b in bars] == [100.0]


def test_fatal_error_stops_the_iteration(store) -> None:
    class _Broken(ScriptedProvider):
        def fetch(self, pool):
            self.calls.append(pool.key)
            raise FatalError("source credentials revoked")

    provider = _Broken()
    with pytest.raises(FatalError):
        _engine(store, provider).run_iteration(EngineConfig(pools=[ETH, BTC]), now_ts=T0)
    assert provider.calls == [ETH.key]
