"""Tests for the random-walk candle feed."""

import asyncio
from datetime import timedelta

import pytest

from src.domain.signals.indicator_calculator import IndicatorCalculator
from src.domain.signals.models import Strategy
from src.domain.signals.pipeline import SignalPipeline
from src.infrastructure.feeds import SimulatedFeed


@pytest.fixture
def pipeline() -> SignalPipeline:
    return SignalPipeline(calculator=IndicatorCalculator(fast_period=5, slow_period=20))


class TestSimulatedFeed:
    def test_candles_are_consistent(self, pipeline, base_time) -> None:
        feed = SimulatedFeed(pipeline, ["NIFTY50"], ["5m"], seed=1)
        for _ in range(50):
            candle = feed.next_candle("NIFTY50", "5m", 100.0, base_time)
            assert candle.open == 100.0
            assert candle.low <= min(candle.open, candle.close)
            assert candle.high >= max(candle.open, candle.close)
            assert abs(candle.close / candle.open - 1.0) <= 0.01
            assert 1_000 <= candle.volume < 100_000

    def test_same_seed_same_walk(self, pipeline, base_time) -> None:
        a = SimulatedFeed(pipeline, ["X"], ["5m"], seed=42)
        b = SimulatedFeed(pipeline, ["X"], ["5m"], seed=42)
        assert a.next_candle("X", "5m", 100.0, base_time) == b.next_candle("X", "5m", 100.0, base_time)

    def test_warm_up_seeds_indicators_without_signals(self, pipeline, base_time) -> None:
        pipeline.register_strategy(Strategy(id="any", name="Any", timeframe="5m", formula="price > 0"))
        feed = SimulatedFeed(pipeline, ["NIFTY50", "TCS"], ["5m", "15m"], warmup_candles=25, seed=3)

        assert feed.warm_up(now=base_time) == 100

        snapshot = pipeline.calculator.snapshot("NIFTY50", "15m")
        assert snapshot.is_ready
        assert snapshot.sample_count == 25
        assert snapshot.timestamp == base_time - timedelta(minutes=15)
        assert pipeline.evaluator.signals_emitted == 0

    @pytest.mark.asyncio
    async def test_step_advances_one_interval(self, pipeline, base_time) -> None:
        pipeline.register_strategy(Strategy(id="any", name="Any", timeframe="5m", formula="price > 0"))
        feed = SimulatedFeed(pipeline, ["NIFTY50"], ["5m"], warmup_candles=25, seed=3)
        feed.warm_up(now=base_time)

        fired = await feed.step()
        await feed.step()

        assert [s.strategy_id for s in fired] == ["any"]
        snapshot = pipeline.calculator.snapshot("NIFTY50", "5m")
        assert snapshot.sample_count == 27
        assert snapshot.timestamp == base_time + timedelta(minutes=5)
        assert feed.steps == 2

    @pytest.mark.asyncio
    async def test_start_stop(self, pipeline) -> None:
        feed = SimulatedFeed(pipeline, ["NIFTY50"], ["5m"], interval_sec=0.01, warmup_candles=25, seed=3)
        await feed.start()
        assert feed.is_running
        await asyncio.sleep(0.05)
        await feed.stop()
        assert not feed.is_running
        assert feed.steps >= 1

    def test_unknown_timeframe(self, pipeline) -> None:
        with pytest.raises(ValueError):
            SimulatedFeed(pipeline, ["X"], ["1h"])
