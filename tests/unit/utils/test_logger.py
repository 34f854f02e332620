from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

import numpy as np

from lp_engine.models.regime import MarketRegime
from lp_engine.utils.logger import (
    ContextFilter,
    JsonFormatter,
    _debug_module_matches,
    get_logger,
    init_logging,
    log_data_integrity,
    log_regime,
    safe_jsonable,
)


class Color(Enum):
    RED = "red"


@dataclass
class Sample:
    path: Path
    created: datetime
    color: Color


def _write_config(tmp_path: Path, profile: dict) -> Path:
    cfg = {"active_profile": "default", "profiles": {"default": profile}}
    path = tmp_path / "logging.json"
    path.write_text(json.dumps(cfg), encoding="utf-8")
    return path


def test_safe_jsonable_handles_common_types() -> None:
    payload = {
        "path": Path("foo/bar"),
        "created": datetime(2020, 1, 1, 0, 0, 0),
        "enum": Color.RED,
        "sample": Sample(Path("x/y"), datetime(2021, 1, 2, 3, 4, 5), Color.RED),
        "exc": ValueError("boom"),
        "tuple": (1, 2),
        "set": {3, 4},
    }

    out = safe_jsonable(payload)
    json.dumps(out)
    assert out["path"] == "foo/bar"
    assert "2020" in out["created"]
    assert out["enum"] == "red"


def test_safe_jsonable_numbers() -> None:
    out = safe_jsonable({"nan": float("nan"), "inf": float("inf"), "np": np.float64(0.25), "i": np.int64(3)})
    assert out == {"nan": None, "inf": None, "np": 0.25, "i": 3}
    assert safe_jsonable(MarketRegime.TRENDING) == "Trending"


def test_debug_module_matching() -> None:
    assert _debug_module_matches("lp_engine.runtime.engine", "runtime")
    assert _debug_module_matches("lp_engine.runtime.engine", "lp_engine.runtime")
    assert _debug_module_matches("runtime.engine", "runtime")
    assert not _debug_module_matches("lp_engine.models", "runtime")


def test_init_logging_dictconfig_applied(tmp_path: Path) -> None:
    config_path = _write_config(
        tmp_path,
        {
            "level": "DEBUG",
            "debug": {"enabled": True, "modules": ["runtime"]},
            "handlers": {"console": {"enabled": True, "level": "DEBUG"}},
            "format": {"json": True},
        },
    )

    init_logging(config_path=str(config_path))
    logger = get_logger("lp_engine.test")

    assert logging.getLogger().level == logging.DEBUG
    assert logger.getEffectiveLevel() == logging.DEBUG

    root_handlers = logging.getLogger().handlers
    assert root_handlers
    assert any(isinstance(h.formatter, JsonFormatter) for h in root_handlers)
    assert any(any(isinstance(f, ContextFilter) for f in h.filters) for h in root_handlers)


def test_json_lines_carry_category_and_run_context(tmp_path: Path) -> None:
    log_path = tmp_path / "logs" / "{mode}-{run_id}.jsonl"
    config_path = _write_config(
        tmp_path,
        {
            "level": "INFO",
            "format": {"json": True},
            "handlers": {
                "console": {"enabled": False},
                "file": {"enabled": True, "path": str(log_path)},
            },
        },
    )
    init_logging(config_path=str(config_path), run_id="r1", mode="default")

    logger = get_logger("lp_engine.runtime.engine")
    log_regime(logger, "regime.switch", pool_id="p", old=MarketRegime.SIDEWAYS, new=MarketRegime.TRENDING)
    log_data_integrity(logger, "ingestion.quality_flags", pool_id="p", price=float("nan"))
    for h in logging.getLogger().handlers:
        h.flush()

    lines = (tmp_path / "logs" / "default-r1.jsonl").read_text(encoding="utf-8").splitlines()
    records = [json.loads(line) for line in lines]

    switch = next(r for r in records if r["event"] == "regime.switch")
    assert switch["category"] == "regime_transition"
    assert switch["level"] == "INFO"
    assert switch["context"]["new"] == "Trending"
    assert switch["context"]["run_id"] == "r1"
    assert switch["context"]["mode"] == "default"

    integrity = next(r for r in records if r["event"] == "ingestion.quality_flags")
    assert integrity["level"] == "WARNING"
    assert integrity["category"] == "data_integrity"
    assert integrity["context"]["price"] is None
