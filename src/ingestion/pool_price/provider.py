from __future__ import annotations

import logging
from typing import Protocol

from ingestion.contracts.source import MarketDataSource, PoolRef
from ingestion.contracts.tick import MarketSnapshot
from ingestion.pool_price.normalize import PoolPriceNormalizer

_DOMAIN = "pool_price"


class MarketDataProvider(Protocol):
    def fetch(self, pool: PoolRef) -> MarketSnapshot:
        ...


class PoolPriceProvider:
    """
    source.fetch_raw -> normalize -> MarketSnapshot

    No retry here: a failed fetch surfaces to the engine loop, which skips the
    pool for this iteration.
    """

    def __init__(
        self,
        *,
        source: MarketDataSource,
        normalizer: PoolPriceNormalizer | None = None,
        logger: logging.Logger | None = None,
    ):
        self._source = source
        self._normalizer = normalizer or PoolPriceNormalizer(source_name=type(source).__name__)
        self._logger = logger or logging.getLogger(f"ingestion.{_DOMAIN}.{self.__class__.__name__}")
        self._fetch_seq = 0

    def fetch(self, pool: PoolRef) -> MarketSnapshot:
        self._fetch_seq += 1
        try:
            raw = self._source.fetch_raw(pool)
        except Exception as exc:
            self._logger.warning(
                "ingestion.source_fetch_error",
                extra={"context": {
                    "pool_id": pool.key,
                    "source_type": type(self._source).__name__,
                    "err_type": type(exc).__name__,
                    "err": str(exc),
                    "fetch_seq": self._fetch_seq,
                }},
            )
            raise

        try:
            return self._normalizer.normalize(raw=raw, pool=pool)
        except (ValueError, TypeError) as exc:
            self._logger.warning(
                "ingestion.normalize_drop",
                extra={"context": {
                    "pool_id": pool.key,
                    "raw_type": type(raw).__name__,
                    "err_type": type(exc).__name__,
                    "err": str(exc),
                    "fetch_seq": self._fetch_seq,
                }},
            )
            raise
