"""
Timezone utilities for the signal engine.

Conventions:
- Internal storage/processing: UTC (timezone-aware)
- Wire format: ISO-8601 with a trailing "Z"

Naive datetimes coming from feeds or HTTP payloads are assumed to be UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Optional, Union

UTC = timezone.utc


def now_utc() -> datetime:
    """Get current time in UTC (timezone-aware)."""
    return datetime.now(UTC)


def to_utc(dt: datetime, assume_tz: Optional[tzinfo] = None) -> datetime:
    """
    Convert a datetime to UTC.

    Args:
        dt: The datetime to convert.
        assume_tz: If dt is naive, assume it's in this timezone (default UTC).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=assume_tz or UTC).astimezone(UTC)
    return dt.astimezone(UTC)


def parse_timestamp(value: Union[str, int, float, datetime]) -> datetime:
    """
    Parse a timestamp from the forms feeds and clients send.

    Accepts ISO-8601 strings (with or without "Z"), epoch milliseconds
    (int/float above 1e11), epoch seconds, or datetimes.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_utc(datetime.fromisoformat(text))
    raise ValueError(f"Invalid timestamp: {value!r}")


def to_iso(dt: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with a trailing "Z"."""
    return to_utc(dt).isoformat().replace("+00:00", "Z")
