"""Engine events and their typed payloads."""

from .domain_events import DomainEvent, FeedGapEvent, SignalFiredEvent, StrategyChangedEvent
from .event_types import EventType

__all__ = [
    "EventType",
    "DomainEvent",
    "FeedGapEvent",
    "SignalFiredEvent",
    "StrategyChangedEvent",
]
