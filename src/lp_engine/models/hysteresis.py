# models/hysteresis.py
"""
Per-pool regime hysteresis.

A detected regime only replaces the confirmed one after
  1. ``min_dwell`` has elapsed since the last commit, and
  2. the same candidate was seen on N consecutive post-dwell steps, where N
     depends on blended heat (hot markets demand more confirmations).

Attempts inside the dwell window record the candidate without counting it.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass

from lp_engine.models.regime import MarketRegime
from lp_engine.utils.config import HeatPolicy


@dataclass
class RegimeState:
    current: MarketRegime
    last_change_ts: int
    candidate: MarketRegime | None = None
    candidate_count: int = 0


@dataclass(frozen=True)
class RegimeTransition:
    previous: MarketRegime
    current: MarketRegime
    switched: bool
    candidate: MarketRegime | None
    candidate_count: int
    required: int
    seeded: bool = False


class RegimeStateStore:
    """Owned map pool_id -> RegimeState. Lives for the process; empty on restart."""

    def __init__(self):
        self._states: dict[str, RegimeState] = {}
        self._pool_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def get(self, pool_id: str) -> RegimeState | None:
        with self._lock:
            return self._states.get(pool_id)

    def get_or_seed(self, pool_id: str, regime: MarketRegime, now_ts: int) -> tuple[RegimeState, bool]:
        with self._lock:
            state = self._states.get(pool_id)
            if state is not None:
                return state, False
            state = RegimeState(current=regime, last_change_ts=int(now_ts))
            self._states[pool_id] = state
            return state, True

    def lock_for(self, pool_id: str) -> threading.Lock:
        """Per-pool lock guarding mutation of that pool's state."""
        with self._lock:
            lock = self._pool_locks.get(pool_id)
            if lock is None:
                lock = self._pool_locks[pool_id] = threading.Lock()
            return lock

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


class RegimeHysteresis:
    def __init__(self, policy: HeatPolicy | None = None, store: RegimeStateStore | None = None):
        self.policy = policy or HeatPolicy()
        self.store = store if store is not None else RegimeStateStore()

    @property
    def min_dwell_ms(self) -> int:
        return int(round(self.policy.min_dwell_seconds * 1000.0))

    def step(self, pool_id: str, detected: MarketRegime, blended_heat: int, now_ts: int) -> RegimeTransition:
        required = self.policy.required_confirmations(blended_heat)
        state, seeded = self.store.get_or_seed(pool_id, detected, now_ts)

        with self.store.lock_for(pool_id):
            previous = state.current

            if seeded or detected == state.current:
                state.candidate = None
                state.candidate_count = 0
            elif now_ts - state.last_change_ts < self.min_dwell_ms:
                # too soon after the last commit: remember, do not count
                state.candidate = detected
                state.candidate_count = 0
            else:
                if state.candidate != detected:
                    state.candidate = detected
                    state.candidate_count = 1
                else:
                    state.candidate_count += 1

                if state.candidate_count >= required:
                    confirmed = state.candidate_count
                    state.current = detected
                    state.last_change_ts = int(now_ts)
                    state.candidate = None
                    state.candidate_count = 0
                    return RegimeTransition(
                        previous=previous,
                        current=detected,
                        switched=True,
                        candidate=None,
                        candidate_count=confirmed,
                        required=required,
                    )

            return RegimeTransition(
                previous=previous,
                current=state.current,
                switched=False,
                candidate=state.candidate,
                candidate_count=state.candidate_count,
                required=required,
                seeded=seeded,
            )
