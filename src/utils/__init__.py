"""Utility modules."""

from .logging_setup import (
    flush_all_loggers,
    get_logger,
    setup_category_logging,
    shutdown_logging,
)
from .market_hours import MarketHours
from .timezone import now_utc, parse_timestamp, to_iso, to_utc
from .trace_context import get_cycle_id, new_cycle

__all__ = [
    # Logging
    "flush_all_loggers",
    "get_logger",
    "setup_category_logging",
    "shutdown_logging",
    # Trace context
    "get_cycle_id",
    "new_cycle",
    # Time
    "MarketHours",
    "now_utc",
    "parse_timestamp",
    "to_iso",
    "to_utc",
]
