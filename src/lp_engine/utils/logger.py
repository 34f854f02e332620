import dataclasses
import json
import logging
import logging.config
import math
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from functools import lru_cache
from logging import Logger
from pathlib import Path
from typing import Any

_DEBUG_ENABLED = False
_DEBUG_MODULES: set[str] = set()
_CONFIGURED = False
_RUN_ID: str | None = None
_MODE: str | None = None

# ---------------------------------------------------------------------
# Log categories (lifted to the top level of every JSON line)
# ---------------------------------------------------------------------

CATEGORY_DATA_INTEGRITY = "data_integrity"
CATEGORY_DECISION = "decision_trace"
CATEGORY_REGIME = "regime_transition"
CATEGORY_STORAGE = "storage_maintenance"
CATEGORY_HEARTBEAT = "health_heartbeat"


def _merge_profile(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = _merge_profile(merged[k], v)
        else:
            merged[k] = v
    return merged


def _section(cfg: Mapping[str, Any], key: str) -> dict[str, Any]:
    value = cfg.get(key)
    return dict(value) if isinstance(value, dict) else {}


def _build_dict_config(profile: dict[str, Any], *, run_id: str | None, mode: str | None) -> dict[str, Any]:
    level_name = str(profile.get("level", "INFO")).upper()
    formatter_name = "json" if bool(_section(profile, "format").get("json", True)) else "standard"

    handlers_cfg = _section(profile, "handlers")
    console_cfg = _section(handlers_cfg, "console")
    file_cfg = _section(handlers_cfg, "file")

    handlers: dict[str, Any] = {}

    if bool(console_cfg.get("enabled", True)):
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "level": str(console_cfg.get("level", level_name)).upper(),
            "formatter": formatter_name,
            "filters": ["context"],
            "stream": "ext://sys.stdout",
        }

    if bool(file_cfg.get("enabled", False)):
        template = str(file_cfg.get("path", "artifacts/logs/{mode}-{run_id}.jsonl"))
        path = Path(template.format(run_id=run_id or "run", mode=mode or "default"))
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "level": str(file_cfg.get("level", level_name)).upper(),
            "formatter": formatter_name,
            "filters": ["context"],
            "filename": str(path),
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": "lp_engine.utils.logger.ContextFilter"},
        },
        "formatters": {
            "json": {"()": "lp_engine.utils.logger.JsonFormatter"},
            "standard": {
                "()": "lp_engine.utils.logger.UtcFormatter",
                "format": "%(asctime)s %(levelname)s %(name)s %(message)s %(context)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            },
        },
        "handlers": handlers,
        "root": {
            "level": level_name,
            "handlers": list(handlers),
        },
    }


def init_logging(
    config_path: str = "configs/logging.json",
    *,
    run_id: str | None = None,
    mode: str | None = None,
) -> None:
    """Configure the root logger from a profile in ``logging.json``.

    The selected profile is merged over ``profiles.default``; ``mode`` picks the
    profile and falls back to ``active_profile``.
    """
    global _DEBUG_ENABLED, _DEBUG_MODULES, _CONFIGURED, _RUN_ID, _MODE

    path = Path(config_path)
    if not path.is_absolute():
        path = Path.cwd() / path
    with path.open("r", encoding="utf-8") as f:
        cfg = json.load(f)

    profiles = cfg.get("profiles", {})
    if not isinstance(profiles, dict):
        raise TypeError("logging.json 'profiles' must be a dict")

    profile_name = str(mode or cfg.get("active_profile") or "default")
    if profile_name not in profiles:
        raise KeyError(f"logging profile not found: {profile_name}")

    base_profile = profiles.get("default", {})
    if not isinstance(base_profile, dict):
        base_profile = {}
    profile = _merge_profile(base_profile, profiles.get(profile_name, {}))

    debug_cfg = _section(profile, "debug")
    _DEBUG_ENABLED = bool(debug_cfg.get("enabled", False))
    _DEBUG_MODULES = {str(x) for x in debug_cfg.get("modules", [])}
    _RUN_ID = run_id
    _MODE = mode or profile_name

    logging.config.dictConfig(_build_dict_config(profile, run_id=run_id, mode=_MODE))

    _CONFIGURED = True
    get_logger.cache_clear()
    for logger in logging.root.manager.loggerDict.values():
        if isinstance(logger, logging.Logger) and logger.level != logging.NOTSET:
            logger.setLevel(logging.NOTSET)


class ContextFilter(logging.Filter):
    """Make sure every record carries a ``context`` dict with run metadata."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = getattr(record, "context", None)

        if not _CONFIGURED:
            if not hasattr(record, "context"):
                setattr(record, "context", None)
            return True

        if ctx is None:
            ctx = {}
        elif not isinstance(ctx, dict):
            ctx = {"_context": safe_jsonable(ctx)}
        setattr(record, "context", ctx)

        if _RUN_ID is not None:
            ctx.setdefault("run_id", _RUN_ID)
        if _MODE is not None:
            ctx.setdefault("mode", _MODE)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "ts": dt.isoformat(timespec="milliseconds"),
            "ts_ms": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }

        context = getattr(record, "context", None)
        if isinstance(context, dict) and context:
            context = dict(context)
            if "category" in context:
                payload["category"] = safe_jsonable(context.pop("category"))
            payload["context"] = safe_jsonable(context)

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        try:
            return json.dumps(payload, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as exc:
            fallback = {k: payload.get(k) for k in ("ts", "ts_ms", "level", "logger", "event")}
            fallback["context"] = repr(payload.get("context"))
            fallback["format_error"] = repr(exc)
            return json.dumps(fallback, ensure_ascii=False)


class UtcFormatter(logging.Formatter):
    converter = time.gmtime


@lru_cache(None)
def get_logger(name: str = "lp_engine") -> Logger:
    logger = logging.getLogger(name)
    if not _CONFIGURED:
        logger.setLevel(logging.NOTSET)
    return logger


def safe_jsonable(x: Any) -> Any:
    if x is None or isinstance(x, (str, int, bool)):
        return x
    if isinstance(x, float):
        # NaN / inf are not valid JSON
        return x if math.isfinite(x) else None
    if isinstance(x, datetime):
        if x.tzinfo is None:
            return x.replace(tzinfo=timezone.utc).isoformat()
        return x.astimezone(timezone.utc).isoformat()
    if isinstance(x, Path):
        return str(x)
    if isinstance(x, Enum):
        value = safe_jsonable(getattr(x, "value", None))
        return value if value is not None else str(x)
    if dataclasses.is_dataclass(x):
        if isinstance(x, type):
            return f"{x.__module__}.{x.__qualname__}"
        return safe_jsonable({f.name: getattr(x, f.name) for f in dataclasses.fields(x)})
    if isinstance(x, Mapping):
        out: dict[str, Any] = {}
        for k, v in x.items():
            key = safe_jsonable(k)
            out[key if isinstance(key, str) else repr(key)] = safe_jsonable(v)
        return out
    if isinstance(x, (list, tuple, set, frozenset)):
        return [safe_jsonable(v) for v in x]
    if hasattr(x, "item") and callable(x.item):
        # numpy scalars
        return safe_jsonable(x.item())
    return str(x)


def _sanitize_context(context: dict[str, Any]) -> dict[str, Any]:
    cleaned = safe_jsonable(context)
    if isinstance(cleaned, dict):
        return cleaned
    return {"_context": cleaned}


def _debug_module_matches(logger_name: str, module: str) -> bool:
    module = module.strip()
    if not module:
        return False
    if logger_name == module or logger_name.startswith(module + "."):
        return True
    return module in logger_name.split(".")


def log_debug(logger: Logger, msg: str, **context):
    if not _DEBUG_ENABLED:
        return
    if _DEBUG_MODULES and not any(_debug_module_matches(logger.name, m) for m in _DEBUG_MODULES):
        return
    logger.debug(msg, extra={"context": _sanitize_context(context)})


def log_info(logger: Logger, msg: str, **context):
    logger.info(msg, extra={"context": _sanitize_context(context)})


def log_warn(logger: Logger, msg: str, **context):
    logger.warning(msg, extra={"context": _sanitize_context(context)})


def log_error(logger: Logger, msg: str, **context):
    logger.error(msg, extra={"context": _sanitize_context(context)})


def log_exception(logger: Logger, msg: str, **context):
    logger.exception(msg, extra={"context": _sanitize_context(context)})

# ---------------------------------------------------------------------
# Semantic helpers
# ---------------------------------------------------------------------

def _log_category(logger: Logger, level: int, category: str, msg: str, context: dict[str, Any]) -> None:
    context["category"] = category
    logger.log(level, msg, extra={"context": _sanitize_context(context)})


def log_data_integrity(logger: Logger, msg: str, **context):
    """
    Tick quality problems: future drift, stale samples, price jumps, empty windows.
    Expected context: chain_id, pool_id, data_ts, flags
    """
    _log_category(logger, logging.WARNING, CATEGORY_DATA_INTEGRITY, msg, context)


def log_decision(logger: Logger, msg: str, **context):
    """
    Per-pool decision trace.
    Expected context: pool_id, heat, regime, reinvest, reallocate
    """
    _log_category(logger, logging.INFO, CATEGORY_DECISION, msg, context)


def log_regime(logger: Logger, msg: str, **context):
    """
    Committed regime switches.
    Expected context: pool_id, old, new, confirmations, required, heat
    """
    _log_category(logger, logging.INFO, CATEGORY_REGIME, msg, context)


def log_storage(logger: Logger, msg: str, **context):
    """Retention purges and bar rollups."""
    _log_category(logger, logging.INFO, CATEGORY_STORAGE, msg, context)


def log_heartbeat(logger: Logger, msg: str, **context):
    """
    Loop liveness.
    Expected context: cycle_ms, pools, failed, iteration
    """
    _log_category(logger, logging.INFO, CATEGORY_HEARTBEAT, msg, context)
