"""
Unit tests for IndicatorCalculator.

Tests cover:
- SMA seeding and the EMA recurrence
- Readiness of the default 50/200 pair
- FeedGapError on out-of-order or duplicate samples
- Pair independence and warm-up
- Monotonic EMAs on rising closes; non-finite samples never reach the state
"""

import math
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from src.domain.exceptions import FeedGapError
from src.domain.signals.indicator_calculator import EmaState, IndicatorCalculator
from src.domain.signals.models import Sample


def rising_series(start: float, increments) -> list:
    base = datetime(2024, 1, 15, 9, 15, tzinfo=timezone.utc)
    closes = [start]
    for step in increments:
        closes.append(closes[-1] + step)
    return [
        Sample("NIFTY50", "5m", c, c, c, c, 1000.0, base + timedelta(minutes=5 * i))
        for i, c in enumerate(closes)
    ]


class TestEmaState:
    def test_none_until_seeded(self) -> None:
        ema = EmaState(period=3)
        assert ema.update(1.0) is None
        assert ema.update(2.0) is None
        assert ema.update(3.0) == pytest.approx(2.0)

    def test_recurrence_after_seed(self) -> None:
        ema = EmaState(period=3)
        for close in (1.0, 2.0, 3.0):
            ema.update(close)
        # k = 2 / (3 + 1) = 0.5
        assert ema.multiplier == pytest.approx(0.5)
        assert ema.update(4.0) == pytest.approx(3.0)
        assert ema.update(7.0) == pytest.approx(5.0)

    @settings(max_examples=50)
    @given(
        closes=st.lists(st.floats(min_value=1.0, max_value=10_000.0), min_size=5, max_size=60),
    )
    def test_ema_stays_within_observed_range(self, closes) -> None:
        ema = EmaState(period=5)
        value = None
        for close in closes:
            value = ema.update(close)
        assert value is not None
        assert min(closes) - 1e-6 <= value <= max(closes) + 1e-6


class TestIndicatorCalculator:
    def test_snapshot_values(self, make_series) -> None:
        calc = IndicatorCalculator(fast_period=3, slow_period=5)
        snapshots = [calc.update(s) for s in make_series([1, 2, 3, 4, 5, 6])]

        assert snapshots[1].ema50 is None
        assert snapshots[2].ema50 == pytest.approx(2.0)
        assert snapshots[3].ema200 is None
        assert not snapshots[3].is_ready
        assert snapshots[4].ema200 == pytest.approx(3.0)
        assert snapshots[4].is_ready
        assert snapshots[5].sample_count == 6

    def test_default_periods_ready_after_200_samples(self, make_series) -> None:
        calc = IndicatorCalculator()
        series = make_series([100.0 + i % 7 for i in range(200)])

        snapshot = calc.warm_up(series[:199])
        assert snapshot.ema50 is not None
        assert snapshot.ema200 is None

        snapshot = calc.update(series[199])
        assert snapshot.is_ready
        assert snapshot.ema200 == pytest.approx(sum(s.close for s in series) / 200)

    def test_duplicate_timestamp_raises(self, make_sample) -> None:
        calc = IndicatorCalculator(fast_period=2, slow_period=3)
        calc.update(make_sample(10.0, index=0))
        calc.update(make_sample(11.0, index=1))

        with pytest.raises(FeedGapError) as exc:
            calc.update(make_sample(99.0, index=1))
        assert exc.value.last_timestamp == make_sample(0, index=1).timestamp

        # Rejected sample left no trace
        snapshot = calc.snapshot("NIFTY50", "5m")
        assert snapshot.sample_count == 2
        assert snapshot.ema50 == pytest.approx(10.5)

    def test_out_of_order_raises(self, make_sample) -> None:
        calc = IndicatorCalculator(fast_period=2, slow_period=3)
        calc.update(make_sample(10.0, index=5))
        with pytest.raises(FeedGapError):
            calc.update(make_sample(10.0, index=4))

    def test_lenient_mode_drops_sample(self, make_sample) -> None:
        calc = IndicatorCalculator(fast_period=2, slow_period=3, strict_ordering=False)
        calc.update(make_sample(10.0, index=1))
        assert calc.update(make_sample(12.0, index=0)) is None
        assert calc.snapshot("NIFTY50", "5m").sample_count == 1

    def test_missing_candles_are_accepted(self, make_sample) -> None:
        calc = IndicatorCalculator(fast_period=2, slow_period=3)
        calc.update(make_sample(10.0, index=0))
        snapshot = calc.update(make_sample(12.0, index=5))
        assert snapshot.ema50 == pytest.approx(11.0)

    def test_pairs_are_independent(self, make_sample) -> None:
        calc = IndicatorCalculator(fast_period=2, slow_period=3)
        calc.update(make_sample(10.0, index=3, instrument_id="A"))
        # Earlier timestamp on another pair is fine
        snapshot = calc.update(make_sample(20.0, index=0, instrument_id="B"))
        assert snapshot.sample_count == 1
        calc.update(make_sample(30.0, index=0, instrument_id="A", timeframe="15m"))
        assert calc.pair_count == 3

    def test_history_and_reset(self, make_series) -> None:
        calc = IndicatorCalculator(fast_period=2, slow_period=3, history_size=3)
        calc.warm_up(make_series([1, 2, 3, 4, 5]))
        assert [s.close for s in calc.history("NIFTY50", "5m")] == [3, 4, 5]

        calc.reset("NIFTY50", "5m")
        assert calc.snapshot("NIFTY50", "5m") is None
        assert calc.history("NIFTY50", "5m") == []

    @settings(max_examples=50)
    @given(
        start=st.floats(min_value=1.0, max_value=10_000.0),
        increments=st.lists(st.floats(min_value=0.01, max_value=100.0), min_size=10, max_size=60),
    )
    def test_emas_never_fall_on_rising_closes(self, start, increments) -> None:
        calc = IndicatorCalculator(fast_period=3, slow_period=5)
        fast, slow = [], []
        for sample in rising_series(start, increments):
            snapshot = calc.update(sample)
            if snapshot.ema50 is not None:
                fast.append(snapshot.ema50)
            if snapshot.ema200 is not None:
                slow.append(snapshot.ema200)

        assert len(slow) == len(increments) + 1 - 4
        assert all(b >= a for a, b in zip(fast, fast[1:]))
        assert all(b >= a for a, b in zip(slow, slow[1:]))

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_close_never_reaches_state(self, make_sample, make_series, bad) -> None:
        calc = IndicatorCalculator(fast_period=2, slow_period=3)
        calc.warm_up(make_series([10.0, 11.0, 12.0]))
        before = calc.snapshot("NIFTY50", "5m").ema50

        with pytest.raises(ValueError, match="must be finite"):
            calc.update(make_sample(bad, index=3))

        after = calc.update(make_sample(13.0, index=3))
        assert math.isfinite(after.ema50) and math.isfinite(after.ema200)
        assert after.ema50 > before

    def test_rejects_non_positive_period(self) -> None:
        with pytest.raises(ValueError):
            IndicatorCalculator(fast_period=0, slow_period=10)
