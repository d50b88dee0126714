"""Event types published on the in-process event bus."""

from __future__ import annotations

from enum import Enum


class EventType(Enum):
    """Engine event types."""

    # Evaluation
    SIGNAL_FIRED = "signal_fired"
    FEED_GAP = "feed_gap"

    # Strategy lifecycle
    STRATEGY_REGISTERED = "strategy_registered"
    STRATEGY_DISABLED = "strategy_disabled"
    STRATEGY_ENABLED = "strategy_enabled"
