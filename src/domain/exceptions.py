"""
Domain exceptions for the SignalPro engine.

Implements a hierarchy distinguishing between recoverable runtime errors
(a bad sample, a failed predicate, a dropped socket) that are logged and
absorbed, and fatal errors (bad formulas, bad configuration) that are
surfaced to whoever caused them.
"""

from __future__ import annotations

from typing import Optional


class SignalProError(Exception):
    """Base class for all SignalPro domain exceptions."""
    pass


class RecoverableError(SignalProError):
    """
    Errors that the engine can recover from without restarting.

    Examples:
    - Predicate raised on one sample (division by zero)
    - Out-of-order sample from the feed
    - WebSocket transport dropped
    - Notification sender unreachable
    """
    pass


class FatalError(SignalProError):
    """
    Errors that must be reported to the caller instead of absorbed.

    Examples:
    - Malformed or disallowed formula text
    - Unknown condition kind in a strategy
    - Invalid configuration
    """
    pass


class EvaluationError(RecoverableError):
    """Runtime fault evaluating a compiled predicate against one sample."""
    pass


class ChannelError(RecoverableError):
    """Transport fault on a delivery channel."""
    pass


class FeedGapError(RecoverableError):
    """
    Sample rejected because it is out of order or duplicated.

    Attributes:
        instrument_id: Instrument the sample belongs to.
        timeframe: Sample timeframe.
        last_timestamp: Timestamp of the last accepted sample.
        timestamp: Timestamp of the rejected sample.
    """

    def __init__(self, instrument_id: str, timeframe: str, last_timestamp, timestamp) -> None:
        self.instrument_id = instrument_id
        self.timeframe = timeframe
        self.last_timestamp = last_timestamp
        self.timestamp = timestamp
        super().__init__(
            f"Out-of-order sample for {instrument_id}/{timeframe}: "
            f"{timestamp} is not after {last_timestamp}"
        )


# Short name used throughout the pipeline
FeedGap = FeedGapError


class NotificationError(RecoverableError):
    """Outbound notification could not be delivered."""
    pass


class StoreError(RecoverableError):
    """Signal store write or read failed."""
    pass


class CompileError(FatalError):
    """
    Formula text is malformed or references something outside the allowed surface.

    Attributes:
        formula: The offending formula text.
        position: 0-based character offset of the problem, if known.
        reason: Human readable description.
    """

    def __init__(self, reason: str, formula: str = "", position: Optional[int] = None) -> None:
        self.reason = reason
        self.formula = formula
        self.position = position
        super().__init__(self._render())

    def _render(self) -> str:
        where = f" at position {self.position}" if self.position is not None else ""
        text = f" in '{self.formula}'" if self.formula else ""
        return f"{self.reason}{where}{text}"


class UnknownConditionError(CompileError):
    """Condition kind is not part of the catalog."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"Unknown condition kind: {kind!r}")


class ConfigurationError(FatalError):
    """Invalid system configuration."""
    pass


class StrategyNotFoundError(FatalError):
    """No strategy registered under the requested id."""
    pass
