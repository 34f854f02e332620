from __future__ import annotations

import json
from pathlib import Path
from typing import List, Protocol

from pydantic import BaseModel, Field, ValidationError

from lp_engine.exceptions.core import ConfigError
from lp_engine.utils.logger import get_logger, log_warn

_logger = get_logger(__name__)


class PoolConfig(BaseModel):
    chain_id: int = Field(1, gt=0)
    token0: str
    token1: str
    fee_tier: int = Field(3000, ge=0)
    pool_id: str | None = Field(None, description="Explicit pool identifier (address). Derived from tokens when unset.")

    @property
    def key(self) -> str:
        """Stable, lower-cased pool identifier used as the storage key."""
        if self.pool_id:
            return self.pool_id.strip().lower()
        return f"{self.token0}/{self.token1}/{self.fee_tier}".strip().lower()


class RegimeThresholds(BaseModel):
    sideways_vol_max: float = 0.06
    sideways_r2_max: float = 0.35
    trend_r2_min: float = 0.70
    trend_slope_abs_min: float = 0.005
    volatile_vol_min: float = 0.12
    volatile_r2_max: float = 0.55


class HeatPolicy(BaseModel):
    cool_threshold: int = 40
    hot_threshold: int = 70
    confirmations_cool: int = Field(2, ge=1)
    confirmations_mid: int = Field(3, ge=1)
    confirmations_hot: int = Field(4, ge=1)
    min_dwell_seconds: float = Field(120.0, ge=0)

    def required_confirmations(self, heat: int) -> int:
        if heat >= self.hot_threshold:
            return self.confirmations_hot
        if heat <= self.cool_threshold:
            return self.confirmations_cool
        return self.confirmations_mid


class ScoreAdjustmentPolicy(BaseModel):
    reinvest_cool_boost: float = 1.15
    reinvest_hot_penalty: float = 0.80
    reallocate_hot_boost: float = 1.20
    reinvest_super_macro_hot_penalty: float = 0.90


class BaseScoringConfig(BaseModel):
    reinvest_base: int = 70
    reinvest_sideways_bonus: int = 10
    reinvest_trending_penalty: int = 15
    reinvest_volatile_penalty: int = 25
    reinvest_vol_factor: float = 200.0
    reinvest_vol_max: float = 0.5

    reallocate_base: int = 30
    reallocate_trending_bonus: int = 25
    reallocate_volatile_bonus: int = 35
    reallocate_vol_factor: float = 150.0
    reallocate_vol_max: float = 0.5


class RetentionPolicy(BaseModel):
    raw_hours: float = Field(72.0, gt=0)
    bars_1m_days: float = Field(7.0, gt=0)
    bars_5m_days: float = Field(180.0, gt=0)
    rollup_lookback_minutes: float = Field(20.0, gt=0)


class EngineConfig(BaseModel):
    pools: List[PoolConfig] = Field(default_factory=list)
    loop_interval_seconds: float = Field(10.0, gt=0)
    db_path: str = "data/lp_engine.sqlite"
    recommendation_capacity: int = Field(500, gt=0)

    regime: RegimeThresholds = Field(default_factory=RegimeThresholds)
    heat: HeatPolicy = Field(default_factory=HeatPolicy)
    adjustment: ScoreAdjustmentPolicy = Field(default_factory=ScoreAdjustmentPolicy)
    scoring: BaseScoringConfig = Field(default_factory=BaseScoringConfig)
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)


def load_engine_config(path: str | Path) -> EngineConfig:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot read engine config {p}: {exc}") from exc
    try:
        return EngineConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid engine config {p}: {exc}") from exc


class ConfigProvider(Protocol):
    """Supplies a read-only config snapshot at the start of every loop iteration."""

    def snapshot(self) -> EngineConfig:
        ...


class StaticConfigProvider:
    def __init__(self, config: EngineConfig):
        self._config = config

    def snapshot(self) -> EngineConfig:
        return self._config.model_copy(deep=True)


class FileConfigProvider:
    """Re-reads the JSON file on every snapshot; keeps the last good config on errors."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._last: EngineConfig = load_engine_config(self._path)

    def snapshot(self) -> EngineConfig:
        try:
            self._last = load_engine_config(self._path)
        except ConfigError as exc:
            # file may be mid-write; last good snapshot stays in force
            log_warn(_logger, "config.reload_failed", path=str(self._path), err=str(exc))
        return self._last.model_copy(deep=True)
