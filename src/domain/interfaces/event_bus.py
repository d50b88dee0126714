"""
In-process event bus port.

The pipeline publishes engine events here; observers (metrics, tests,
audit hooks) subscribe without the pipeline knowing about them.

    SIGNAL_FIRED         -> SignalFiredEvent
    FEED_GAP             -> FeedGapEvent
    STRATEGY_REGISTERED  -> StrategyChangedEvent
    STRATEGY_DISABLED    -> StrategyChangedEvent
    STRATEGY_ENABLED     -> StrategyChangedEvent
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

from src.domain.events.event_types import EventType

Subscriber = Callable[[Any], Any]


class EventBus(ABC):
    """Publishing never raises and never waits on a subscriber."""

    @abstractmethod
    def publish(self, event_type: EventType, payload: Any) -> None:
        ...

    @abstractmethod
    def subscribe(self, event_type: EventType, callback: Subscriber) -> None:
        """``callback`` may be a plain function or a coroutine function."""

    @abstractmethod
    def unsubscribe(self, event_type: EventType, callback: Subscriber) -> None:
        ...

    async def drain(self) -> None:
        """Wait for subscriber work still in flight (no-op by default)."""
        return None
