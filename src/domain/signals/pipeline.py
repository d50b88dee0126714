"""
SignalPipeline - inbound facade of the rule engine.

Samples flow through the indicator calculator and rule evaluator under a
per-(instrument, timeframe) asyncio.Lock, so one pair is strictly
sequential while different pairs run concurrently. Each fired signal is
persisted (bounded by a timeout), broadcast to open connections, published
on the event bus, and handed to the notification fan-out without waiting.

Usage:
    pipeline = SignalPipeline(store=store, broadcaster=broadcaster, notifier=fanout)
    pipeline.register_strategy(strategy)
    signals = await pipeline.ingest("NIFTY50", "5m", sample)
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Protocol, Tuple

from src.utils.logging_setup import get_logger
from src.utils.market_hours import MarketHours
from src.utils.trace_context import new_cycle

from src.domain.events.domain_events import FeedGapEvent, SignalFiredEvent, StrategyChangedEvent
from src.domain.events.event_types import EventType
from src.domain.exceptions import FeedGapError, StoreError
from src.domain.interfaces.event_bus import EventBus
from src.domain.interfaces.signal_store import SignalStorePort
from .candle_aggregator import CandleAggregator, Tick
from .formula import RuleCompiler
from .indicator_calculator import IndicatorCalculator
from .instruments import InstrumentRegistry
from .models import DeliveryStatus, Sample, Signal, Strategy
from .rule_engine import RuleEvaluator, StrategyRegistry
from .signal_state_tracker import SignalStateTracker

if TYPE_CHECKING:
    from src.infrastructure.observability import SignalMetrics

logger = get_logger(__name__)

PairKey = Tuple[str, str]


class BroadcasterProtocol(Protocol):
    """Pushes a committed signal to every open delivery connection."""

    async def broadcast(self, signal: Signal) -> int:
        ...


class NotifierProtocol(Protocol):
    """Schedules outbound notifications; must return without waiting on senders."""

    def notify(self, signal: Signal) -> Any:
        ...


class SignalPipeline:
    """
    Wires compiler, calculator, evaluator and outbound collaborators.

    All collaborators are optional so the engine can run headless in tests.
    """

    def __init__(
        self,
        compiler: Optional[RuleCompiler] = None,
        calculator: Optional[IndicatorCalculator] = None,
        registry: Optional[StrategyRegistry] = None,
        store: Optional[SignalStorePort] = None,
        broadcaster: Optional[BroadcasterProtocol] = None,
        notifier: Optional[NotifierProtocol] = None,
        event_bus: Optional[EventBus] = None,
        aggregator: Optional[CandleAggregator] = None,
        market_hours: Optional[MarketHours] = None,
        instruments: Optional[InstrumentRegistry] = None,
        persist_timeout_sec: float = 5.0,
        signal_metrics: Optional["SignalMetrics"] = None,
    ) -> None:
        """
        Args:
            compiler: Rule compiler (shared cache).
            calculator: Indicator calculator.
            registry: Strategy registry.
            store: Signal store; signals are not persisted if None.
            broadcaster: Delivery channel broadcaster.
            notifier: Notification fan-out.
            event_bus: In-process event bus.
            aggregator: Tick-to-candle aggregator used by ingest_tick.
            market_hours: If set, ticks outside the session are ignored.
            instruments: Names signals and gates disabled instruments.
            persist_timeout_sec: Upper bound on one persist call.
            signal_metrics: Metrics collector for instrumentation.
        """
        self._metrics = signal_metrics
        self._compiler = compiler or RuleCompiler(metrics=signal_metrics)
        self._calculator = calculator or IndicatorCalculator(signal_metrics=signal_metrics)
        self._registry = registry if registry is not None else StrategyRegistry()
        self._tracker = SignalStateTracker()
        self._evaluator = RuleEvaluator(self._registry, self._tracker, signal_metrics=signal_metrics)
        self._store = store
        self._broadcaster = broadcaster
        self._notifier = notifier
        self._event_bus = event_bus
        self._aggregator = aggregator or CandleAggregator()
        self._market_hours = market_hours
        self._instruments = instruments if instruments is not None else InstrumentRegistry()
        self._persist_timeout = persist_timeout_sec

        self._pair_locks: Dict[PairKey, asyncio.Lock] = {}
        self._samples_ingested = 0
        self._signals_committed = 0
        self._feed_gaps = 0

    @property
    def compiler(self) -> RuleCompiler:
        return self._compiler

    @property
    def calculator(self) -> IndicatorCalculator:
        return self._calculator

    @property
    def registry(self) -> StrategyRegistry:
        return self._registry

    @property
    def evaluator(self) -> RuleEvaluator:
        return self._evaluator

    @property
    def instruments(self) -> InstrumentRegistry:
        return self._instruments

    # -------------------------------------------------------------------------
    # Strategy lifecycle
    # -------------------------------------------------------------------------

    def register_strategy(self, strategy: Strategy) -> Strategy:
        """
        Compile and register a strategy.

        Nothing is stored if compilation fails. Re-registering an id replaces
        the previous strategy and re-arms its edge state.

        Raises:
            CompileError: Malformed formula or disallowed identifier.
            UnknownConditionError: Condition kind not in the catalog.
        """
        predicate = self._compiler.compile_strategy(strategy)
        self._registry.add(strategy, predicate)
        self._tracker.reset_strategy(strategy.id)
        logger.info(
            f"Registered strategy {strategy.id}",
            extra={"timeframe": strategy.timeframe, "formula": predicate.formula, "enabled": strategy.enabled},
        )
        self._publish(
            EventType.STRATEGY_REGISTERED,
            StrategyChangedEvent(strategy_id=strategy.id, enabled=strategy.enabled, formula=predicate.formula),
        )
        return strategy

    def register_strategies(self, strategies: Iterable[Strategy]) -> List[Strategy]:
        return [self.register_strategy(s) for s in strategies]

    def disable_strategy(self, strategy_id: str) -> Strategy:
        """
        Stop evaluating a strategy.

        Raises:
            StrategyNotFoundError: If the id is unknown.
        """
        strategy = self._registry.set_enabled(strategy_id, False)
        self._tracker.reset_strategy(strategy_id)
        logger.info(f"Disabled strategy {strategy_id}")
        self._publish(EventType.STRATEGY_DISABLED, StrategyChangedEvent(strategy_id=strategy_id, enabled=False))
        return strategy

    def enable_strategy(self, strategy_id: str) -> Strategy:
        """
        Resume evaluating a strategy; it starts ARMED.

        Raises:
            StrategyNotFoundError: If the id is unknown.
        """
        strategy = self._registry.set_enabled(strategy_id, True)
        self._tracker.reset_strategy(strategy_id)
        logger.info(f"Enabled strategy {strategy_id}")
        self._publish(EventType.STRATEGY_ENABLED, StrategyChangedEvent(strategy_id=strategy_id, enabled=True))
        return strategy

    def list_strategies(self) -> List[Strategy]:
        return self._registry.get_all()

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def _pair_lock(self, key: PairKey) -> asyncio.Lock:
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = self._pair_locks.setdefault(key, asyncio.Lock())
        return lock

    async def ingest(self, instrument_id: str, timeframe: str, sample: Sample) -> List[Signal]:
        """
        Process one closed candle for a pair.

        Returns:
            Signals fired (and committed) by this sample.

        Raises:
            FeedGapError: If the sample does not advance the pair (strict mode).
        """
        if sample.instrument_id != instrument_id or sample.timeframe != timeframe:
            sample = replace(sample, instrument_id=instrument_id, timeframe=timeframe)

        async with self._pair_lock((instrument_id, timeframe)):
            with new_cycle(pair=f"{instrument_id}/{timeframe}"):
                self._samples_ingested += 1
                if self._metrics:
                    self._metrics.record_sample_ingested(timeframe)

                try:
                    snapshot = self._calculator.update(sample)
                except FeedGapError as e:
                    self._on_feed_gap(e)
                    raise

                if snapshot is None:
                    return []
                if not self._instruments.is_enabled(instrument_id):
                    # EMAs stay current so re-enabling needs no warm-up
                    logger.debug(f"Skipped evaluation for disabled instrument {instrument_id}")
                    return []

                signals = self._evaluator.evaluate(sample, snapshot)
                asset = self._instruments.resolve(instrument_id)
                for signal in signals:
                    signal.asset = asset
                    await self._commit(signal)
                return signals

    async def ingest_tick(self, instrument_id: str, tick: Tick) -> List[Signal]:
        """
        Feed a raw tick through candle aggregation.

        Ticks outside market hours are ignored when a session gate is set.
        Every candle the tick closes is ingested in timeframe order.
        """
        if self._market_hours and not self._market_hours.is_market_open(tick.timestamp):
            logger.debug(f"Ignored tick outside market hours for {instrument_id}")
            return []

        fired: List[Signal] = []
        for sample in self._aggregator.add_tick(instrument_id, tick):
            fired.extend(await self.ingest(instrument_id, sample.timeframe, sample))
        return fired

    def _on_feed_gap(self, error: FeedGapError) -> None:
        self._feed_gaps += 1
        logger.warning(
            f"Feed gap: {error}",
            extra={"instrument": error.instrument_id, "timeframe": error.timeframe},
        )
        self._publish(
            EventType.FEED_GAP,
            FeedGapEvent(
                instrument_id=error.instrument_id,
                timeframe=error.timeframe,
                last_timestamp=error.last_timestamp,
                rejected_timestamp=error.timestamp,
            ),
        )

    async def _commit(self, signal: Signal) -> None:
        """Persist, broadcast, publish and hand off to notifications."""
        if self._store is not None:
            try:
                signal.id = await asyncio.wait_for(self._store.persist(signal), self._persist_timeout)
            except asyncio.TimeoutError:
                logger.error(
                    f"Persist timed out after {self._persist_timeout}s",
                    extra={"strategy": signal.strategy_id, "instrument": signal.instrument_id},
                )
                if self._metrics:
                    self._metrics.record_store_error("timeout")
            except StoreError as e:
                logger.error(
                    f"Persist failed: {e}",
                    extra={"strategy": signal.strategy_id, "instrument": signal.instrument_id},
                )
                if self._metrics:
                    self._metrics.record_store_error("write")

        self._signals_committed += 1

        if self._broadcaster is not None:
            await self._broadcaster.broadcast(signal)
            signal.delivery_status = DeliveryStatus.BROADCAST

        self._publish(EventType.SIGNAL_FIRED, SignalFiredEvent(signal=signal))

        if self._notifier is not None:
            self._notifier.notify(signal)

    def _publish(self, event_type: EventType, payload: Any) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event_type, payload)

    def stats(self) -> Dict[str, Any]:
        """Counters for the health endpoint."""
        return {
            "strategies": len(self._registry),
            "pairs": self._calculator.pair_count,
            "samplesIngested": self._samples_ingested,
            "signalsCommitted": self._signals_committed,
            "feedGaps": self._feed_gaps,
            "evaluationErrors": self._evaluator.evaluation_errors,
            "compileCache": self._compiler.cache_info(),
        }
