"""
RuleEngine - strategy registry and edge-triggered rule evaluation.

The registry owns every Strategy together with its compiled predicate. The
evaluator applies each enabled strategy of the sample's timeframe to the
sample's input record and emits a Signal only on the transition from
ARMED to FIRED for that (strategy, instrument, timeframe).

A predicate that raises EvaluationError counts as "condition not met" for
that sample; the fault is logged and counted and other strategies still run.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from threading import RLock
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional

from src.utils.logging_setup import get_logger

from src.domain.exceptions import EvaluationError, StrategyNotFoundError
from .formula import CompiledPredicate
from .models import IndicatorSnapshot, Sample, Signal, Strategy, make_input_record
from .signal_state_tracker import SignalStateTracker

if TYPE_CHECKING:
    from src.infrastructure.observability import SignalMetrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class RegisteredStrategy:
    """A strategy and the predicate compiled from its current content."""

    strategy: Strategy
    predicate: CompiledPredicate

    @property
    def cache_key(self) -> str:
        return f"{self.strategy.id}:{self.strategy.structural_hash}"


class StrategyRegistry:
    """
    Registry of strategies keyed by id.

    Registering a strategy under an existing id replaces it; only the enabled
    flag is ever changed in place.

    Example:
        registry = StrategyRegistry()
        registry.add(strategy, compiler.compile_strategy(strategy))
        active = registry.for_timeframe("5m")
    """

    def __init__(self) -> None:
        self._by_id: Dict[str, RegisteredStrategy] = {}
        self._lock = RLock()

    def add(self, strategy: Strategy, predicate: CompiledPredicate) -> RegisteredStrategy:
        entry = RegisteredStrategy(strategy, predicate)
        with self._lock:
            self._by_id[strategy.id] = entry
        return entry

    def get(self, strategy_id: str) -> Optional[RegisteredStrategy]:
        return self._by_id.get(strategy_id)

    def require(self, strategy_id: str) -> RegisteredStrategy:
        entry = self._by_id.get(strategy_id)
        if entry is None:
            raise StrategyNotFoundError(f"No strategy registered with id {strategy_id!r}")
        return entry

    def set_enabled(self, strategy_id: str, enabled: bool) -> Strategy:
        """
        Flip the enabled flag, keeping the compiled predicate.

        Raises:
            StrategyNotFoundError: If the id is unknown.
        """
        with self._lock:
            entry = self.require(strategy_id)
            updated = entry.strategy.with_enabled(enabled)
            self._by_id[strategy_id] = RegisteredStrategy(updated, entry.predicate)
            return updated

    def remove(self, strategy_id: str) -> Optional[Strategy]:
        with self._lock:
            entry = self._by_id.pop(strategy_id, None)
        return entry.strategy if entry else None

    def for_timeframe(self, timeframe: str) -> List[RegisteredStrategy]:
        """Enabled strategies for a timeframe, in registration order."""
        with self._lock:
            entries = list(self._by_id.values())
        return [e for e in entries if e.strategy.enabled and e.strategy.timeframe == timeframe]

    def get_all(self) -> List[Strategy]:
        with self._lock:
            return [e.strategy for e in self._by_id.values()]

    def __contains__(self, strategy_id: str) -> bool:
        return strategy_id in self._by_id

    def __len__(self) -> int:
        return len(self._by_id)


class RuleEvaluator:
    """
    Applies registered strategies to samples and emits edge-triggered signals.

    Example:
        evaluator = RuleEvaluator(registry)
        signals = evaluator.evaluate(sample, snapshot)
    """

    def __init__(
        self,
        registry: StrategyRegistry,
        tracker: Optional[SignalStateTracker] = None,
        signal_metrics: Optional["SignalMetrics"] = None,
        trace_mode: bool = False,
    ) -> None:
        """
        Args:
            registry: Strategies to evaluate.
            tracker: Edge state store (a fresh one if None).
            signal_metrics: Metrics collector for instrumentation.
            trace_mode: If True, keep a ring buffer of recent evaluations.
        """
        self._registry = registry
        self._tracker = tracker or SignalStateTracker()
        self._metrics = signal_metrics
        self._trace_mode = trace_mode
        self._lock = RLock()

        self._signals_emitted = 0
        self._rules_evaluated = 0
        self._evaluation_errors = 0

        # Only populated in trace mode
        self._evaluation_history: Deque[Dict[str, Any]] = deque(maxlen=200)

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    @property
    def tracker(self) -> SignalStateTracker:
        return self._tracker

    @property
    def signals_emitted(self) -> int:
        return self._signals_emitted

    @property
    def rules_evaluated(self) -> int:
        return self._rules_evaluated

    @property
    def evaluation_errors(self) -> int:
        return self._evaluation_errors

    @property
    def trace_mode(self) -> bool:
        return self._trace_mode

    @trace_mode.setter
    def trace_mode(self, value: bool) -> None:
        self._trace_mode = value
        logger.info(f"RuleEvaluator trace_mode {'enabled' if value else 'disabled'}")

    def evaluate(self, sample: Sample, snapshot: IndicatorSnapshot) -> List[Signal]:
        """
        Evaluate every enabled strategy for the sample's timeframe.

        Must be called sequentially per (instrument, timeframe); the caller
        owns that ordering.

        Returns:
            Signals for strategies whose predicate rose from false to true.
        """
        if not snapshot.is_ready:
            return []

        start_time = time.perf_counter()
        record = make_input_record(sample, snapshot)
        fired: List[Signal] = []

        for entry in self._registry.for_timeframe(sample.timeframe):
            strategy = entry.strategy
            self._rules_evaluated += 1
            if self._metrics:
                self._metrics.record_rule_evaluated(strategy.id)

            error = False
            try:
                condition_met = entry.predicate(record)
            except EvaluationError as e:
                error = True
                condition_met = False
                self._evaluation_errors += 1
                if self._metrics:
                    self._metrics.record_evaluation_error(strategy.id)
                logger.error(
                    f"Predicate evaluation failed: {e}",
                    extra={
                        "strategy": strategy.id,
                        "instrument": sample.instrument_id,
                        "timeframe": sample.timeframe,
                    },
                    exc_info=True,
                )

            key = (strategy.id, sample.instrument_id, sample.timeframe)
            rising = self._tracker.observe(key, condition_met)

            if self._trace_mode:
                self._record_evaluation(strategy, sample, condition_met, rising, error)

            if rising:
                signal = self._build_signal(strategy, sample, snapshot)
                fired.append(signal)
                self._signals_emitted += 1
                if self._metrics:
                    self._metrics.record_signal_fired(strategy.id, signal.direction.value)
                logger.info(
                    "Signal fired",
                    extra={
                        "strategy": strategy.id,
                        "instrument": sample.instrument_id,
                        "timeframe": sample.timeframe,
                        "signal_type": signal.signal_type,
                        "price": signal.price,
                    },
                )

        if self._metrics:
            self._metrics.record_rule_evaluation_latency((time.perf_counter() - start_time) * 1000)
        return fired

    @staticmethod
    def _build_signal(strategy: Strategy, sample: Sample, snapshot: IndicatorSnapshot) -> Signal:
        return Signal(
            strategy_id=strategy.id,
            instrument_id=sample.instrument_id,
            timeframe=sample.timeframe,
            signal_type=strategy.signal_type,
            price=sample.close,
            timestamp=sample.timestamp,
            ema50=snapshot.ema50,
            ema200=snapshot.ema200,
            direction=strategy.direction,
            metadata={"strategyName": strategy.name},
        )

    def _record_evaluation(
        self,
        strategy: Strategy,
        sample: Sample,
        condition_met: bool,
        triggered: bool,
        error: bool,
    ) -> None:
        if triggered:
            reason = "signal emitted"
        elif error:
            reason = "evaluation error"
        elif condition_met:
            reason = "already fired"
        else:
            reason = "condition not met"

        entry = {
            "strategy_id": strategy.id,
            "instrument_id": sample.instrument_id,
            "timeframe": sample.timeframe,
            "condition_met": condition_met,
            "triggered": triggered,
            "error": error,
            "reason": reason,
            "timestamp": sample.timestamp,
        }
        with self._lock:
            self._evaluation_history.append(entry)

    def get_evaluation_history(self, limit: int = 50, triggered_only: bool = False) -> List[Dict[str, Any]]:
        """
        Recent evaluations, most recent first.

        Empty unless trace mode was on while evaluating.
        """
        with self._lock:
            history = list(self._evaluation_history)
        history = history[-limit:][::-1]
        if triggered_only:
            history = [e for e in history if e["triggered"]]
        return history
