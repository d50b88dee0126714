"""Human-readable rendering of a signal for outbound notifications."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.domain.signals.models import Signal, SignalDirection

FOOTER = "SignalPro - Professional Trading Signals"

BULLISH_COLOR = 0x10B981
BEARISH_COLOR = 0xEF4444


@dataclass(frozen=True)
class NotificationMessage:
    subject: str
    text: str


def is_bullish(signal: Signal) -> bool:
    return signal.direction == SignalDirection.BULLISH


def direction_emoji(signal: Signal) -> str:
    return "🟢" if is_bullish(signal) else "🔴"


def format_value(value: Optional[float], digits: int = 4) -> str:
    return "N/A" if value is None else f"{value:.{digits}f}"


def strategy_name(signal: Signal) -> str:
    return signal.metadata.get("strategyName") or signal.strategy_id


def format_signal_message(signal: Signal) -> NotificationMessage:
    """
    Subject line and plain-text body shared by every channel.

    Example subject: "🟢 BULLISH Signal: RELIANCE - 15m Above 50 Bullish"
    """
    direction = signal.direction.value.upper()
    subject = f"{direction_emoji(signal)} {direction} Signal: {signal.instrument_name} - {strategy_name(signal)}"
    text = "\n".join(
        [
            "Trading Signal Alert",
            "=====================",
            f"Instrument: {signal.instrument_name}",
            f"Strategy: {strategy_name(signal)}",
            f"Signal Type: {signal.type_label}",
            f"Timeframe: {signal.timeframe}",
            f"Current Price: {format_value(signal.price)}",
            f"EMA 50: {format_value(signal.ema50)}",
            f"EMA 200: {format_value(signal.ema200)}",
            f"Time: {signal.timestamp.isoformat()}",
            "---",
            FOOTER,
        ]
    )
    return NotificationMessage(subject=subject, text=text)
