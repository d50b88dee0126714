"""Market data feeds."""

from .simulated_feed import SimulatedFeed

__all__ = ["SimulatedFeed"]
