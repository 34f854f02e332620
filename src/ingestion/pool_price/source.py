from __future__ import annotations

import random
import time
from typing import Any

import requests

from ingestion.contracts.source import MarketDataSource, PoolRef, Raw
from lp_engine.exceptions.core import DataError


def _now_ms() -> int:
    return int(time.time() * 1000.0)


class StubPoolPriceSource(MarketDataSource):
    """
    Synthetic pool prices for local runs.

    Each pool follows its own multiplicative random walk so that short/long
    windows carry real volatility structure; regime signals are drawn
    uniformly like the upstream stub did.
    """

    def __init__(self, *, seed: int | None = None, start_price: float = 1.5, step_vol: float = 0.002):
        self._rng = random.Random(seed)
        self._start_price = float(start_price)
        self._step_vol = float(step_vol)
        self._prices: dict[str, float] = {}

    def fetch_raw(self, pool: PoolRef) -> Raw:
        last = self._prices.get(pool.key, self._start_price)
        price = last * (1.0 + self._rng.gauss(0.0, self._step_vol))
        self._prices[pool.key] = price
        return {
            "as_of_ts": _now_ms(),
            "price": price,
            "vol_norm": self._rng.random() * 0.25,
            "trend_r2": self._rng.random(),
            "ema_slope_abs": self._rng.random() * 0.02,
        }


class RestPoolPriceSource(MarketDataSource):
    """
    Pool price source using REST polling.

    GET {base_url}/{path} with params chainId, token0, token1, feeTier
    (+ poolId when the pool carries an explicit address). The response body is
    a JSON object accepted by PoolPriceNormalizer, optionally wrapped in
    {"result": {...}}.
    """

    def __init__(
        self,
        *,
        base_url: str,
        path: str = "api/pool/snapshot",
        timeout: float = 10.0,
        session: requests.Session | None = None,
        headers: dict[str, str] | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._path = path.lstrip("/")
        self._timeout = float(timeout)
        self._session = session or requests.Session()
        self._headers = dict(headers or {})

    def fetch_raw(self, pool: PoolRef) -> Raw:
        url = f"{self._base_url}/{self._path}"
        params: dict[str, Any] = {
            "chainId": pool.chain_id,
            "token0": pool.token0,
            "token1": pool.token1,
            "feeTier": pool.fee_tier,
        }
        explicit = getattr(pool, "pool_id", None)
        if explicit:
            params["poolId"] = explicit

        started = time.monotonic()
        r = self._session.get(url, params=params, headers=self._headers, timeout=self._timeout)
        r.raise_for_status()
        payload = r.json()

        if isinstance(payload, dict) and isinstance(payload.get("result"), dict):
            payload = payload["result"]
        if not isinstance(payload, dict):
            raise DataError(f"Unexpected pool snapshot response: {type(payload)!r}")

        out = dict(payload)
        out.setdefault("latency_ms", int((time.monotonic() - started) * 1000))
        return out
