"""Application layer - service wiring and the HTTP/WebSocket surface."""

from .bootstrap import AppContainer
from .http_api import SignalApi, create_app
from .simple_event_bus import SimpleEventBus

__all__ = [
    "AppContainer",
    "SignalApi",
    "SimpleEventBus",
    "create_app",
]
