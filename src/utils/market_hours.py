"""
Exchange session gate for tick ingestion.

Defaults to the NSE/MCX equity session, 09:15-15:30 Asia/Kolkata,
Monday to Friday. Exchange holidays are not modelled.
"""

from __future__ import annotations

from datetime import datetime, time
from typing import Optional

import pytz


class MarketHours:
    """
    Regular-session detector used by ``SignalPipeline.ingest_tick``.

    Both bounds are inclusive at minute resolution: 15:30:59 still counts
    as open, 15:31:00 does not.

    Example:
        gate = MarketHours()
        if gate.is_market_open(tick.timestamp):
            ...
    """

    def __init__(
        self,
        open_time: time = time(9, 15),
        close_time: time = time(15, 30),
        tz: str = "Asia/Kolkata",
    ):
        if open_time >= close_time:
            raise ValueError(f"Session open {open_time} must be before close {close_time}")
        self.open_time = open_time
        self.close_time = close_time
        self.tz = pytz.timezone(tz)

    def to_exchange_time(self, dt: Optional[datetime] = None) -> datetime:
        """Exchange-local time; naive datetimes are taken as UTC."""
        if dt is None:
            return datetime.now(self.tz)
        if dt.tzinfo is None:
            dt = pytz.utc.localize(dt)
        return dt.astimezone(self.tz)

    def is_market_open(self, dt: Optional[datetime] = None) -> bool:
        local = self.to_exchange_time(dt)
        if local.weekday() >= 5:
            return False
        minute = local.time().replace(second=0, microsecond=0)
        return self.open_time <= minute <= self.close_time

    def status(self, dt: Optional[datetime] = None) -> str:
        """"OPEN" or "CLOSED"."""
        return "OPEN" if self.is_market_open(dt) else "CLOSED"

    def format_exchange_time(self, dt: Optional[datetime] = None) -> str:
        """e.g. "2024-01-15 10:30:00 IST"."""
        return self.to_exchange_time(dt).strftime("%Y-%m-%d %H:%M:%S %Z")
