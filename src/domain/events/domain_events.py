"""
Typed payloads for engine events.

Usage:
    from src.domain.events.domain_events import SignalFiredEvent

    event_bus.publish(EventType.SIGNAL_FIRED, SignalFiredEvent(signal=signal))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from src.domain.signals.models import Signal
from src.utils.timezone import now_utc, to_iso


@dataclass(frozen=True, slots=True)
class DomainEvent:
    """Base class for all engine events."""

    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": to_iso(self.timestamp)}


@dataclass(frozen=True, slots=True)
class SignalFiredEvent(DomainEvent):
    """A strategy rose from ARMED to FIRED and its signal was committed."""

    signal: Signal = None  # type: ignore[assignment]

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": to_iso(self.timestamp), "signal": self.signal.to_dict()}


@dataclass(frozen=True, slots=True)
class StrategyChangedEvent(DomainEvent):
    """A strategy was registered, disabled or re-enabled."""

    strategy_id: str = ""
    enabled: bool = True
    formula: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": to_iso(self.timestamp),
            "strategyId": self.strategy_id,
            "enabled": self.enabled,
            "formula": self.formula,
        }


@dataclass(frozen=True, slots=True)
class FeedGapEvent(DomainEvent):
    """A sample was rejected for not advancing its pair's timestamp."""

    instrument_id: str = ""
    timeframe: str = ""
    last_timestamp: datetime = None  # type: ignore[assignment]
    rejected_timestamp: datetime = None  # type: ignore[assignment]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": to_iso(self.timestamp),
            "instrumentId": self.instrument_id,
            "timeframe": self.timeframe,
            "lastTimestamp": to_iso(self.last_timestamp),
            "rejectedTimestamp": to_iso(self.rejected_timestamp),
        }
