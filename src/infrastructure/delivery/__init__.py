"""Real-time delivery channel: aiohttp WebSocket server and reconnecting client."""

from .envelope import (
    CONNECTED_ACK,
    Envelope,
    MessageType,
    decode_message,
    encode_message,
    format_signal_notice,
)
from .websocket_client import ChannelState, SignalChannelClient
from .websocket_server import SignalBroadcaster

__all__ = [
    "CONNECTED_ACK",
    "ChannelState",
    "Envelope",
    "MessageType",
    "SignalBroadcaster",
    "SignalChannelClient",
    "decode_message",
    "encode_message",
    "format_signal_notice",
]
