"""
Wire envelope for the delivery channel.

Every frame is a JSON object ``{"type": str, "data": ...}``. Frames that
are not valid JSON, not an object, or lack a string ``type`` decode to
None and are ignored by receivers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional


class MessageType:
    """Envelope type tags."""

    NEW_SIGNAL = "new_signal"
    CONNECTED = "connected"


CONNECTED_ACK: Dict[str, Any] = {"message": "WebSocket connected"}


@dataclass(frozen=True)
class Envelope:
    type: str
    data: Any = None


def encode_message(message_type: str, data: Any) -> str:
    return json.dumps({"type": message_type, "data": data}, default=str)


def decode_message(text: str) -> Optional[Envelope]:
    """Parse one frame; None if it is not a well-formed envelope."""
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    message_type = payload.get("type")
    if not isinstance(message_type, str):
        return None
    return Envelope(type=message_type, data=payload.get("data"))


def format_signal_notice(data: Dict[str, Any]) -> str:
    """
    User-facing line for a ``new_signal`` payload.

    Uses the instrument name from ``asset`` when present, otherwise the id.

    Example: "Reliance Industries: 15M ABOVE 50 BULLISH at 2451.30"
    """
    asset = data.get("asset")
    name = asset.get("name") if isinstance(asset, dict) else None
    instrument = name or data.get("instrumentId") or "Unknown Instrument"
    label = str(data.get("signalType", "")).replace("_", " ").upper()
    try:
        price = float(data.get("price"))
    except (TypeError, ValueError):
        return f"{instrument}: {label}"
    return f"{instrument}: {label} at {price:.2f}"
