"""Outbound notification senders and the fire-and-forget fan-out."""

from .channels import (
    CHANNEL_TYPES,
    DiscordChannel,
    EmailChannel,
    NotificationChannel,
    NotificationResult,
    SmsChannel,
    TelegramChannel,
    WebhookChannel,
    build_channels,
)
from .fanout import NotificationFanout
from .formatting import NotificationMessage, format_signal_message

__all__ = [
    "CHANNEL_TYPES",
    "DiscordChannel",
    "EmailChannel",
    "NotificationChannel",
    "NotificationFanout",
    "NotificationMessage",
    "NotificationResult",
    "SmsChannel",
    "TelegramChannel",
    "WebhookChannel",
    "build_channels",
    "format_signal_message",
]
