"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Sequence

import pytest

from src.domain.signals.models import TIMEFRAME_SECONDS, IndicatorSnapshot, Sample, Signal

BASE_TIME = datetime(2024, 1, 15, 9, 15, tzinfo=timezone.utc)


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def make_sample() -> Callable[..., Sample]:
    """
    Factory for closed candles.

    ``index`` places the candle ``index`` intervals after BASE_TIME, so a
    run of increasing indexes is a well-ordered series.
    """

    def _make(
        close: float,
        index: int = 0,
        instrument_id: str = "NIFTY50",
        timeframe: str = "5m",
        low: Optional[float] = None,
        high: Optional[float] = None,
        volume: float = 1000.0,
    ) -> Sample:
        return Sample(
            instrument_id=instrument_id,
            timeframe=timeframe,
            open=close,
            high=high if high is not None else close,
            low=low if low is not None else close,
            close=close,
            volume=volume,
            timestamp=BASE_TIME + timedelta(seconds=TIMEFRAME_SECONDS[timeframe] * index),
        )

    return _make


@pytest.fixture
def make_series(make_sample) -> Callable[..., List[Sample]]:
    """Consecutive candles for one pair from a list of closes."""

    def _make(closes: Sequence[float], start: int = 0, **kwargs) -> List[Sample]:
        return [make_sample(c, index=start + i, **kwargs) for i, c in enumerate(closes)]

    return _make


@pytest.fixture
def ready_snapshot() -> Callable[[Sample, float, float], IndicatorSnapshot]:
    """Snapshot with both EMAs set, for evaluator tests that skip the calculator."""

    def _make(sample: Sample, ema50: float = 100.0, ema200: float = 90.0) -> IndicatorSnapshot:
        return IndicatorSnapshot(
            instrument_id=sample.instrument_id,
            timeframe=sample.timeframe,
            timestamp=sample.timestamp,
            sample_count=200,
            ema50=ema50,
            ema200=ema200,
        )

    return _make


@pytest.fixture
def sample_signal() -> Signal:
    return Signal(
        id="sig-1",
        strategy_id="15m_above_50_bullish",
        instrument_id="RELIANCE",
        timeframe="15m",
        signal_type="15m_above_50_bullish",
        price=2451.3,
        timestamp=BASE_TIME,
        ema50=2440.12,
        ema200=2398.5,
        metadata={"strategyName": "15m Bullish - Price Above 50 EMA (Uptrend)"},
    )
