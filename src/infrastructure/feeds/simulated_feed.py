"""
Random-walk candle feed for demos and local runs.

Each (instrument, timeframe) pair gets its own walk: the close moves by a
uniform fraction of up to +/-1% per candle (2% total range), with wicks
extending past the body. Candle timestamps advance by exactly one
timeframe interval per step, independent of wall-clock time, so the
engine always sees a strictly increasing series.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from src.domain.exceptions import FeedGapError
from src.domain.signals.models import TIMEFRAME_SECONDS, Sample, Signal
from src.domain.signals.pipeline import SignalPipeline
from src.utils.logging_setup import get_logger
from src.utils.timezone import now_utc

logger = get_logger(__name__)

VOLATILITY = 0.02
DEFAULT_WARMUP_CANDLES = 200


class SimulatedFeed:
    """
    Drives a SignalPipeline with synthetic candles.

    Usage:
        feed = SimulatedFeed(pipeline, ["RELIANCE", "TCS"], ["5m", "15m"], interval_sec=30)
        await feed.start()
        ...
        await feed.stop()
    """

    def __init__(
        self,
        pipeline: SignalPipeline,
        instruments: Sequence[str],
        timeframes: Sequence[str],
        interval_sec: float = 30.0,
        warmup_candles: int = DEFAULT_WARMUP_CANDLES,
        seed: Optional[int] = None,
        volatility: float = VOLATILITY,
    ) -> None:
        unknown = [tf for tf in timeframes if tf not in TIMEFRAME_SECONDS]
        if unknown:
            raise ValueError(f"Unsupported timeframes for simulated feed: {unknown}")

        self._pipeline = pipeline
        self._instruments = list(instruments)
        self._timeframes = list(timeframes)
        self._interval = interval_sec
        self._warmup = warmup_candles
        self._volatility = volatility
        self._rng = np.random.default_rng(seed)

        self._last: Dict[Tuple[str, str], Sample] = {}
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.steps = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def next_candle(self, instrument_id: str, timeframe: str, previous_close: float, timestamp: datetime) -> Sample:
        """One candle whose open is the previous close."""
        drift = (self._rng.random() - 0.5) * self._volatility
        open_ = previous_close
        close = previous_close * (1.0 + drift)
        change = abs(close - open_)
        high = max(open_, close) + change * (0.5 + 0.5 * self._rng.random())
        low = min(open_, close) - change * (0.5 + 0.5 * self._rng.random())
        volume = float(self._rng.integers(1_000, 100_000))
        return Sample(
            instrument_id=instrument_id,
            timeframe=timeframe,
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=volume,
            timestamp=timestamp,
        )

    def warm_up(self, now: Optional[datetime] = None) -> int:
        """
        Preload history so EMAs are seeded before the first live step.

        Warm-up candles go straight into the indicator calculator; no
        strategy is evaluated on them. Returns the number of candles fed.
        """
        now = now or now_utc()
        fed = 0
        for instrument_id in self._instruments:
            base_price = 100.0 + float(self._rng.random()) * 100.0
            for timeframe in self._timeframes:
                step = timedelta(seconds=TIMEFRAME_SECONDS[timeframe])
                epoch = int(now.timestamp()) // int(step.total_seconds()) * int(step.total_seconds())
                ts = datetime.fromtimestamp(epoch, tz=now.tzinfo) - step * self._warmup

                candles: List[Sample] = []
                close = base_price
                for _ in range(self._warmup):
                    candle = self.next_candle(instrument_id, timeframe, close, ts)
                    candles.append(candle)
                    close = candle.close
                    ts += step

                self._pipeline.calculator.warm_up(candles)
                if candles:
                    self._last[(instrument_id, timeframe)] = candles[-1]
                fed += len(candles)

        logger.info(
            f"Warmed up {fed} candles",
            extra={"instruments": len(self._instruments), "timeframes": self._timeframes},
        )
        return fed

    async def step(self) -> List[Signal]:
        """Emit one candle for every pair and ingest it."""
        fired: List[Signal] = []
        for instrument_id in self._instruments:
            for timeframe in self._timeframes:
                key = (instrument_id, timeframe)
                previous = self._last.get(key)
                if previous is None:
                    close = 100.0 + float(self._rng.random()) * 100.0
                    ts = now_utc()
                else:
                    close = previous.close
                    ts = previous.timestamp + timedelta(seconds=TIMEFRAME_SECONDS[timeframe])

                candle = self.next_candle(instrument_id, timeframe, close, ts)
                self._last[key] = candle
                try:
                    fired.extend(await self._pipeline.ingest(instrument_id, timeframe, candle))
                except FeedGapError as e:
                    logger.warning(f"Simulated candle rejected: {e}")
        self.steps += 1
        if fired:
            logger.info(f"Step {self.steps} fired {len(fired)} signal(s)")
        return fired

    async def start(self) -> None:
        if self._running:
            logger.warning("Simulated feed already running")
            return
        if self._warmup and not self._last:
            self.warm_up()
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Simulated feed started (interval {self._interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Simulated feed stopped")

    async def _run(self) -> None:
        while self._running:
            await self.step()
            await asyncio.sleep(self._interval)
