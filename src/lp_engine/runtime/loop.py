# runtime/loop.py
from __future__ import annotations

import asyncio
import threading
import time

from lp_engine.exceptions.core import FatalError, OperationCancelled
from lp_engine.runtime.engine import DecisionEngine, PoolOutcome
from lp_engine.utils.config import ConfigProvider, EngineConfig
from lp_engine.utils.logger import get_logger, log_exception, log_heartbeat, log_info

# granularity of the stop check while waiting for the next iteration
_WAKE_SLICE_S = 0.25


class EngineLoop:
    """
    Periodic driver for DecisionEngine.

    Semantics:
      - one config snapshot per iteration; pools are processed sequentially
      - failures inside an iteration are logged and the loop carries on
        after its normal delay
      - stops on stop_event, task cancellation, or FatalError (re-raised)
    """

    def __init__(
        self,
        *,
        engine: DecisionEngine,
        config_provider: ConfigProvider,
        stop_event: threading.Event | None = None,
        interval_seconds: float = 10.0,
    ):
        self.engine = engine
        self.config_provider = config_provider
        self._stop_event = stop_event or threading.Event()
        # last known cadence; kept when a config snapshot fails
        self.interval_seconds = float(interval_seconds)
        self._logger = get_logger(self.__class__.__name__)
        self.iterations = 0

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def stop(self) -> None:
        self._stop_event.set()

    def run_once(self, config: EngineConfig | None = None, *, now_ts: int | None = None) -> list[PoolOutcome]:
        if config is None:
            config = self.config_provider.snapshot()
        started = time.monotonic()
        outcomes = self.engine.run_iteration(config, now_ts=now_ts, stop_event=self._stop_event)
        self.iterations += 1
        log_heartbeat(
            self._logger,
            "engine.heartbeat",
            iteration=self.iterations,
            cycle_ms=int((time.monotonic() - started) * 1000),
            pools=len(config.pools),
            failed=len(config.pools) - len(outcomes),
        )
        return outcomes

    async def run(self) -> None:
        log_info(self._logger, "engine.started")
        try:
            while not self._stop_event.is_set():
                try:
                    config = self.config_provider.snapshot()
                    self.interval_seconds = float(config.loop_interval_seconds)
                    self.run_once(config)
                except OperationCancelled:
                    break
                except FatalError:
                    raise
                except Exception as exc:
                    log_exception(self._logger, "engine.iteration_failed", err_type=type(exc).__name__)

                # yield so other tasks run even when an iteration is CPU-heavy
                await asyncio.sleep(0)
                await self._sleep(self.interval_seconds)
        except asyncio.CancelledError:
            self._stop_event.set()
            raise
        finally:
            log_info(self._logger, "engine.stopped", iterations=self.iterations)

    async def _sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``, waking early once the stop event is set."""
        deadline = time.monotonic() + max(0.0, seconds)
        while not self._stop_event.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            await asyncio.sleep(min(_WAKE_SLICE_S, remaining))
