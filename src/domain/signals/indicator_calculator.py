"""
IndicatorCalculator - incremental EMA50/EMA200 per (instrument, timeframe).

Each sample updates the running EMAs in constant time. An EMA of period N
is seeded with the simple average of the first N closes and is None until
then; afterwards it follows the standard recurrence with k = 2 / (N + 1).

Samples for one pair must arrive in strictly increasing timestamp order.
Out-of-order or duplicate samples raise FeedGapError (or are dropped with a
warning when strict ordering is off) and never touch the running state.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import TYPE_CHECKING, Deque, Dict, Iterable, List, Optional, Tuple

from src.utils.logging_setup import get_logger

from src.domain.exceptions import FeedGapError
from .models import TIMEFRAME_SECONDS, IndicatorSnapshot, Sample

if TYPE_CHECKING:
    from src.infrastructure.observability import SignalMetrics

logger = get_logger(__name__)

PairKey = Tuple[str, str]  # (instrument_id, timeframe)

FAST_PERIOD = 50
SLOW_PERIOD = 200


@dataclass
class EmaState:
    """Running exponential moving average for one period."""

    period: int
    count: int = 0
    seed_sum: float = 0.0
    value: Optional[float] = None

    @property
    def multiplier(self) -> float:
        return 2.0 / (self.period + 1)

    def update(self, close: float) -> Optional[float]:
        self.count += 1
        if self.value is None:
            self.seed_sum += close
            if self.count == self.period:
                self.value = self.seed_sum / self.period
            return self.value
        k = self.multiplier
        self.value = close * k + self.value * (1.0 - k)
        return self.value


@dataclass
class PairState:
    """Everything the calculator remembers for one (instrument, timeframe)."""

    fast: EmaState
    slow: EmaState
    history: Deque[Sample]
    last_timestamp: Optional[datetime] = None
    sample_count: int = 0
    last_snapshot: Optional[IndicatorSnapshot] = None
    gaps: int = field(default=0)


class IndicatorCalculator:
    """
    Maintains EMA state for every (instrument, timeframe) pair it sees.

    Example:
        calc = IndicatorCalculator()
        snapshot = calc.update(sample)
        if snapshot.is_ready:
            ...
    """

    def __init__(
        self,
        fast_period: int = FAST_PERIOD,
        slow_period: int = SLOW_PERIOD,
        history_size: int = 250,
        strict_ordering: bool = True,
        signal_metrics: Optional["SignalMetrics"] = None,
    ) -> None:
        """
        Args:
            fast_period: Period of the fast EMA (exposed as ema50).
            slow_period: Period of the slow EMA (exposed as ema200).
            history_size: Samples retained per pair for inspection.
            strict_ordering: Raise FeedGapError on out-of-order samples if True,
                otherwise log and drop them.
            signal_metrics: Metrics collector for instrumentation.
        """
        if fast_period < 1 or slow_period < 1:
            raise ValueError("EMA periods must be positive")
        self._fast_period = fast_period
        self._slow_period = slow_period
        self._history_size = history_size
        self._strict = strict_ordering
        self._metrics = signal_metrics
        self._states: Dict[PairKey, PairState] = {}
        self._states_lock = Lock()

    def _state_for(self, key: PairKey) -> PairState:
        state = self._states.get(key)
        if state is None:
            with self._states_lock:
                state = self._states.get(key)
                if state is None:
                    state = PairState(
                        fast=EmaState(self._fast_period),
                        slow=EmaState(self._slow_period),
                        history=deque(maxlen=self._history_size),
                    )
                    self._states[key] = state
                    if self._metrics:
                        self._metrics.set_indicator_pairs(len(self._states))
        return state

    def update(self, sample: Sample) -> Optional[IndicatorSnapshot]:
        """
        Fold one sample into its pair's EMAs.

        Returns:
            Snapshot as of this sample, or None if the sample was dropped
            (only when strict ordering is off).

        Raises:
            FeedGapError: If the sample does not advance the pair's timestamp.
        """
        start = time.perf_counter()
        key = (sample.instrument_id, sample.timeframe)
        state = self._state_for(key)

        last = state.last_timestamp
        if last is not None and sample.timestamp <= last:
            if self._metrics:
                self._metrics.record_feed_gap(sample.timeframe)
            error = FeedGapError(sample.instrument_id, sample.timeframe, last, sample.timestamp)
            if self._strict:
                raise error
            logger.warning(f"Dropped sample: {error}")
            return None

        if last is not None:
            self._check_missing_candles(state, sample, last)

        ema_fast = state.fast.update(sample.close)
        ema_slow = state.slow.update(sample.close)
        state.last_timestamp = sample.timestamp
        state.sample_count += 1
        state.history.append(sample)

        snapshot = IndicatorSnapshot(
            instrument_id=sample.instrument_id,
            timeframe=sample.timeframe,
            timestamp=sample.timestamp,
            sample_count=state.sample_count,
            ema50=ema_fast,
            ema200=ema_slow,
        )
        state.last_snapshot = snapshot

        if self._metrics:
            self._metrics.record_indicator_computed("ema")
            self._metrics.record_indicator_compute_latency((time.perf_counter() - start) * 1000, "ema")
        return snapshot

    def _check_missing_candles(self, state: PairState, sample: Sample, last: datetime) -> None:
        interval = TIMEFRAME_SECONDS.get(sample.timeframe)
        if not interval:
            return
        elapsed = (sample.timestamp - last).total_seconds()
        if elapsed > interval * 1.5:
            state.gaps += 1
            logger.warning(
                "Missing candles detected",
                extra={
                    "instrument": sample.instrument_id,
                    "timeframe": sample.timeframe,
                    "missing": int(elapsed // interval) - 1,
                },
            )

    def warm_up(self, samples: Iterable[Sample]) -> Optional[IndicatorSnapshot]:
        """Feed historical samples in order; returns the last snapshot."""
        snapshot = None
        for sample in samples:
            snapshot = self.update(sample) or snapshot
        return snapshot

    def snapshot(self, instrument_id: str, timeframe: str) -> Optional[IndicatorSnapshot]:
        """Latest snapshot for a pair, if any sample was accepted."""
        state = self._states.get((instrument_id, timeframe))
        return state.last_snapshot if state else None

    def history(self, instrument_id: str, timeframe: str) -> List[Sample]:
        state = self._states.get((instrument_id, timeframe))
        return list(state.history) if state else []

    def reset(self, instrument_id: str, timeframe: str) -> None:
        """Forget a pair; the next sample starts a fresh warm-up."""
        with self._states_lock:
            self._states.pop((instrument_id, timeframe), None)

    @property
    def pair_count(self) -> int:
        return len(self._states)
