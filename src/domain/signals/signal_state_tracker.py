"""
Signal State Tracker - edge-trigger state per (strategy, instrument, timeframe).

Each key is either ARMED (predicate false or not yet observed on the most
recent sample) or FIRED (predicate true on the most recent sample). A
signal is due only on the ARMED -> FIRED transition, so a condition that
stays true across many samples produces one signal.
"""

from __future__ import annotations

from enum import Enum
from threading import Lock
from typing import Dict, Tuple

EdgeKey = Tuple[str, str, str]  # (strategy_id, instrument_id, timeframe)


class EdgeState(Enum):
    ARMED = "armed"
    FIRED = "fired"


class SignalStateTracker:
    """
    Tracks ARMED/FIRED state for every (strategy, instrument, timeframe).

    Unobserved keys are ARMED. Keys for different pairs never interact.
    """

    def __init__(self) -> None:
        self._states: Dict[EdgeKey, EdgeState] = {}
        self._lock = Lock()

    def observe(self, key: EdgeKey, condition_met: bool) -> bool:
        """
        Record the predicate outcome for the latest sample.

        Returns:
            True if this observation is a rising edge (a signal should fire).
        """
        with self._lock:
            previous = self._states.get(key, EdgeState.ARMED)
            if condition_met:
                self._states[key] = EdgeState.FIRED
                return previous is EdgeState.ARMED
            self._states[key] = EdgeState.ARMED
            return False

    def state(self, key: EdgeKey) -> EdgeState:
        return self._states.get(key, EdgeState.ARMED)

    def reset_strategy(self, strategy_id: str) -> int:
        """Re-arm every key of one strategy. Returns the number of keys dropped."""
        with self._lock:
            keys = [k for k in self._states if k[0] == strategy_id]
            for key in keys:
                del self._states[key]
            return len(keys)

    def fired_count(self) -> int:
        return sum(1 for s in self._states.values() if s is EdgeState.FIRED)

    def clear(self) -> None:
        """Re-arm everything."""
        with self._lock:
            self._states.clear()

    def __len__(self) -> int:
        return len(self._states)
