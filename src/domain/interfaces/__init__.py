"""Domain interfaces for dependency injection."""

from .event_bus import EventBus
from .signal_store import SignalStorePort

__all__ = [
    "EventBus",
    "SignalStorePort",
]
