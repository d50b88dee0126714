"""
Unit tests for edge-triggered rule evaluation.

Tests cover:
- ARMED/FIRED transitions in SignalStateTracker
- One signal per false->true edge in RuleEvaluator
- Evaluation errors count as "not met" and re-arm
- Disabled strategies, timeframe filtering and unready snapshots
"""

import pytest

from src.domain.exceptions import StrategyNotFoundError
from src.domain.signals.formula import RuleCompiler
from src.domain.signals.models import Condition, SignalDirection, Strategy
from src.domain.signals.rule_engine import RuleEvaluator, StrategyRegistry
from src.domain.signals.signal_state_tracker import EdgeState, SignalStateTracker

KEY = ("s1", "NIFTY50", "5m")


class TestSignalStateTracker:
    def test_unobserved_key_is_armed(self) -> None:
        assert SignalStateTracker().state(KEY) is EdgeState.ARMED

    def test_rising_edge_only_once(self) -> None:
        tracker = SignalStateTracker()
        outcomes = [tracker.observe(KEY, met) for met in (False, True, True, False, True)]
        assert outcomes == [False, True, False, False, True]
        assert tracker.state(KEY) is EdgeState.FIRED

    def test_keys_do_not_interact(self) -> None:
        tracker = SignalStateTracker()
        other = ("s1", "BANKNIFTY", "5m")
        assert tracker.observe(KEY, True)
        assert tracker.observe(other, True)
        assert tracker.fired_count() == 2

    def test_reset_strategy_rearms_only_that_strategy(self) -> None:
        tracker = SignalStateTracker()
        tracker.observe(KEY, True)
        tracker.observe(("s1", "BANKNIFTY", "5m"), True)
        tracker.observe(("s2", "NIFTY50", "5m"), True)

        assert tracker.reset_strategy("s1") == 2
        assert tracker.state(KEY) is EdgeState.ARMED
        assert tracker.state(("s2", "NIFTY50", "5m")) is EdgeState.FIRED


@pytest.fixture
def compiler() -> RuleCompiler:
    return RuleCompiler()


@pytest.fixture
def registry() -> StrategyRegistry:
    return StrategyRegistry()


def register(registry: StrategyRegistry, compiler: RuleCompiler, strategy: Strategy) -> Strategy:
    registry.add(strategy, compiler.compile_strategy(strategy))
    return strategy


class TestRuleEvaluator:
    def test_fires_once_per_rising_edge(self, registry, compiler, make_series, ready_snapshot) -> None:
        register(
            registry,
            compiler,
            Strategy(id="above_100", name="Above 100", timeframe="5m", formula="price > 100"),
        )
        evaluator = RuleEvaluator(registry)

        closes = [90, 95, 101, 102, 103, 104, 105, 99, 101]
        fired_at = []
        for i, sample in enumerate(make_series(closes)):
            if evaluator.evaluate(sample, ready_snapshot(sample)):
                fired_at.append(i)

        assert fired_at == [2, 8]
        assert evaluator.signals_emitted == 2
        assert evaluator.rules_evaluated == len(closes)

    def test_signal_content(self, registry, compiler, make_sample, ready_snapshot) -> None:
        register(
            registry,
            compiler,
            Strategy(
                id="5m_above_50_bullish",
                name="5m Bullish",
                timeframe="5m",
                conditions=(Condition("price_above_ema50"),),
                signal_type="5m_above_50_bullish",
            ),
        )
        sample = make_sample(105.0, index=3)
        [signal] = RuleEvaluator(registry).evaluate(sample, ready_snapshot(sample, ema50=100.0))

        assert signal.strategy_id == "5m_above_50_bullish"
        assert signal.instrument_id == "NIFTY50"
        assert signal.price == 105.0
        assert signal.timestamp == sample.timestamp
        assert signal.ema50 == 100.0
        assert signal.direction is SignalDirection.BULLISH
        assert signal.id is None
        assert signal.metadata["strategyName"] == "5m Bullish"

    def test_evaluation_error_counts_as_not_met(self, registry, compiler, make_series, ready_snapshot) -> None:
        register(
            registry,
            compiler,
            Strategy(id="fragile", name="Fragile", timeframe="5m", formula="10 / (price - 100) > 0"),
        )
        register(
            registry,
            compiler,
            Strategy(id="steady", name="Steady", timeframe="5m", formula="price > 0"),
        )
        evaluator = RuleEvaluator(registry)
        samples = make_series([101, 100, 101])

        first = evaluator.evaluate(samples[0], ready_snapshot(samples[0]))
        assert {s.strategy_id for s in first} == {"fragile", "steady"}

        # Division by zero: not met, strategy re-arms, other strategies unaffected
        assert evaluator.evaluate(samples[1], ready_snapshot(samples[1])) == []
        assert evaluator.evaluation_errors == 1
        assert evaluator.tracker.state(("fragile", "NIFTY50", "5m")) is EdgeState.ARMED
        assert evaluator.tracker.state(("steady", "NIFTY50", "5m")) is EdgeState.FIRED

        third = evaluator.evaluate(samples[2], ready_snapshot(samples[2]))
        assert [s.strategy_id for s in third] == ["fragile"]

    def test_unready_snapshot_skips_evaluation(self, registry, compiler, make_sample, ready_snapshot) -> None:
        register(registry, compiler, Strategy(id="s", name="S", timeframe="5m", formula="price > 0"))
        evaluator = RuleEvaluator(registry)
        sample = make_sample(10.0)
        snapshot = ready_snapshot(sample)
        unready = type(snapshot)(
            instrument_id=snapshot.instrument_id,
            timeframe=snapshot.timeframe,
            timestamp=snapshot.timestamp,
            sample_count=60,
            ema50=9.0,
            ema200=None,
        )

        assert evaluator.evaluate(sample, unready) == []
        assert evaluator.rules_evaluated == 0

    def test_only_matching_timeframe_and_enabled(self, registry, compiler, make_sample, ready_snapshot) -> None:
        register(registry, compiler, Strategy(id="m5", name="5m", timeframe="5m", formula="price > 0"))
        register(registry, compiler, Strategy(id="m15", name="15m", timeframe="15m", formula="price > 0"))
        register(
            registry,
            compiler,
            Strategy(id="off", name="Off", timeframe="5m", formula="price > 0", enabled=False),
        )
        sample = make_sample(10.0)

        fired = RuleEvaluator(registry).evaluate(sample, ready_snapshot(sample))
        assert [s.strategy_id for s in fired] == ["m5"]

    def test_trace_mode_history(self, registry, compiler, make_series, ready_snapshot) -> None:
        register(registry, compiler, Strategy(id="s", name="S", timeframe="5m", formula="price > 100"))
        evaluator = RuleEvaluator(registry, trace_mode=True)
        for sample in make_series([101, 102, 99]):
            evaluator.evaluate(sample, ready_snapshot(sample))

        history = evaluator.get_evaluation_history()
        assert [e["reason"] for e in history] == ["condition not met", "already fired", "signal emitted"]
        assert len(evaluator.get_evaluation_history(triggered_only=True)) == 1


class TestStrategyRegistry:
    def test_set_enabled_keeps_predicate(self, registry, compiler) -> None:
        strategy = register(registry, compiler, Strategy(id="s", name="S", timeframe="5m", formula="price > 1"))
        predicate = registry.require("s").predicate

        updated = registry.set_enabled("s", False)
        assert not updated.enabled
        assert registry.require("s").predicate is predicate
        assert registry.for_timeframe("5m") == []
        assert strategy.enabled  # original untouched

    def test_unknown_id(self, registry) -> None:
        with pytest.raises(StrategyNotFoundError):
            registry.set_enabled("missing", True)
        assert registry.get("missing") is None
