"""
CandleAggregator - builds 5m/15m candles from raw ticks.

Each (instrument, timeframe) has at most one candle in progress. A tick
belongs to the period starting at floor(ts / interval) * interval; the
in-progress candle closes when a tick for a later period arrives, and is
returned as a Sample stamped with its period start.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from src.utils.logging_setup import get_logger

from .models import TIMEFRAME_SECONDS, Sample

logger = get_logger(__name__)


@dataclass(frozen=True)
class Tick:
    """One trade/quote update for an instrument."""

    price: float
    timestamp: datetime
    high: Optional[float] = None
    low: Optional[float] = None
    volume: float = 0.0

    def __post_init__(self) -> None:
        for name in ("price", "high", "low", "volume"):
            value = getattr(self, name)
            if value is not None and not math.isfinite(value):
                raise ValueError(f"Tick {name} must be finite, got {value!r}")


@dataclass
class _CandleBuilder:
    period_start: int  # epoch seconds
    open: float
    high: float
    low: float
    close: float
    volume: float

    def add(self, tick: Tick) -> None:
        self.high = max(self.high, tick.high if tick.high is not None else tick.price)
        self.low = min(self.low, tick.low if tick.low is not None else tick.price)
        self.close = tick.price
        self.volume += tick.volume

    def to_sample(self, instrument_id: str, timeframe: str) -> Sample:
        return Sample(
            instrument_id=instrument_id,
            timeframe=timeframe,
            open=self.open,
            high=self.high,
            low=self.low,
            close=self.close,
            volume=self.volume,
            timestamp=datetime.fromtimestamp(self.period_start, tz=timezone.utc),
        )


def period_start(timestamp: datetime, timeframe: str) -> int:
    """Epoch second at which the candle containing ``timestamp`` starts."""
    interval = TIMEFRAME_SECONDS[timeframe]
    return int(timestamp.timestamp() // interval) * interval


class CandleAggregator:
    """
    Aggregates ticks into closed candles for a fixed set of timeframes.

    Example:
        agg = CandleAggregator(["5m", "15m"])
        for sample in agg.add_tick("NIFTY50", tick):
            await pipeline.ingest(sample.instrument_id, sample.timeframe, sample)
    """

    def __init__(self, timeframes: Sequence[str] = ("5m", "15m")) -> None:
        unknown = [tf for tf in timeframes if tf not in TIMEFRAME_SECONDS]
        if unknown:
            raise ValueError(f"Unsupported timeframes: {unknown}")
        self._timeframes = tuple(timeframes)
        self._builders: Dict[Tuple[str, str], _CandleBuilder] = {}

    @property
    def timeframes(self) -> Tuple[str, ...]:
        return self._timeframes

    def add_tick(self, instrument_id: str, tick: Tick) -> List[Sample]:
        """
        Fold a tick into every timeframe's in-progress candle.

        Returns:
            Candles closed by this tick, in timeframe order. Usually empty.
        """
        closed: List[Sample] = []
        for timeframe in self._timeframes:
            sample = self._add(instrument_id, timeframe, tick)
            if sample is not None:
                closed.append(sample)
        return closed

    def _add(self, instrument_id: str, timeframe: str, tick: Tick) -> Optional[Sample]:
        key = (instrument_id, timeframe)
        start = period_start(tick.timestamp, timeframe)
        builder = self._builders.get(key)

        if builder is not None and start < builder.period_start:
            logger.warning(
                "Dropped late tick",
                extra={"instrument": instrument_id, "timeframe": timeframe, "ts": tick.timestamp.isoformat()},
            )
            return None

        if builder is not None and start == builder.period_start:
            builder.add(tick)
            return None

        self._builders[key] = _CandleBuilder(
            period_start=start,
            open=tick.price,
            high=tick.high if tick.high is not None else tick.price,
            low=tick.low if tick.low is not None else tick.price,
            close=tick.price,
            volume=tick.volume,
        )
        if builder is None:
            return None
        return builder.to_sample(instrument_id, timeframe)

    def current(self, instrument_id: str, timeframe: str) -> Optional[Sample]:
        """In-progress candle for a pair (not yet closed)."""
        builder = self._builders.get((instrument_id, timeframe))
        return builder.to_sample(instrument_id, timeframe) if builder else None

    def flush(self, instrument_id: str) -> List[Sample]:
        """Close and return every in-progress candle for an instrument."""
        closed = []
        for timeframe in self._timeframes:
            builder = self._builders.pop((instrument_id, timeframe), None)
            if builder is not None:
                closed.append(builder.to_sample(instrument_id, timeframe))
        return closed
