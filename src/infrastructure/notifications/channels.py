"""
Outbound notification channels.

Each channel validates its settings and sends one signal: the HTTP channels
through a shared aiohttp session, email over SMTP with aiosmtplib. send()
never raises for delivery problems: HTTP or SMTP errors, transport faults
and bad settings all come back as a failed NotificationResult.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type
from urllib.parse import urlparse

import aiohttp
import aiosmtplib

from config.models import NotificationChannelConfig
from src.domain.exceptions import ConfigurationError, NotificationError
from src.domain.signals.models import Signal
from src.utils.logging_setup import get_logger
from src.utils.timezone import now_utc, to_iso

from .formatting import (
    BEARISH_COLOR,
    BULLISH_COLOR,
    FOOTER,
    direction_emoji,
    format_signal_message,
    format_value,
    is_bullish,
    strategy_name,
)

logger = get_logger(__name__)


@dataclass
class NotificationResult:
    success: bool
    channel: str
    message: str
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "channel": self.channel,
            "message": self.message,
            "timestamp": to_iso(self.timestamp),
        }


class NotificationChannel(ABC):
    """Base class for senders."""

    name: str = ""

    def __init__(self, settings: Optional[Mapping[str, Any]] = None) -> None:
        self.settings: Dict[str, Any] = dict(settings or {})

    @abstractmethod
    def validate_config(self) -> List[str]:
        """Return a list of problems with the settings; empty if usable."""

    @abstractmethod
    async def _deliver(self, signal: Signal, session: aiohttp.ClientSession) -> str:
        """Post the signal; return a success message or raise NotificationError."""

    async def send(self, signal: Signal, session: aiohttp.ClientSession) -> NotificationResult:
        errors = self.validate_config()
        if errors:
            return NotificationResult(False, self.name, f"Configuration error: {', '.join(errors)}")
        try:
            message = await self._deliver(signal, session)
        except NotificationError as e:
            return NotificationResult(False, self.name, str(e))
        return NotificationResult(True, self.name, message)

    async def _post_json(
        self,
        session: aiohttp.ClientSession,
        url: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        method: str = "POST",
    ) -> int:
        """Send JSON and return the status; non-2xx raises NotificationError."""
        try:
            async with session.request(method, url, json=payload, headers=headers) as response:
                if 200 <= response.status < 300:
                    return response.status
                body = await response.text()
        except aiohttp.ClientError as e:
            raise NotificationError(f"{self.name} error: {e}") from e
        raise NotificationError(f"{self.name} failed: HTTP {response.status} {body[:200]}".rstrip())


class WebhookChannel(NotificationChannel):
    """
    Generic JSON webhook.

    Settings: ``url`` (required), ``method`` (default POST), ``headers``
    (dict), ``auth_header`` + ``auth_value``.
    """

    name = "webhook"

    def validate_config(self) -> List[str]:
        url = self.settings.get("url")
        if not url:
            return ["Webhook URL is required"]
        parsed = urlparse(str(url))
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return ["Webhook URL must be an absolute HTTP or HTTPS URL"]
        return []

    def build_payload(self, signal: Signal) -> Dict[str, Any]:
        message = format_signal_message(signal)
        return {
            "event": "signal.created",
            "timestamp": to_iso(now_utc()),
            "subject": message.subject,
            "text": message.text,
            "data": {"signal": signal.to_dict()},
        }

    def build_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        custom = self.settings.get("headers")
        if isinstance(custom, dict):
            headers.update({str(k): str(v) for k, v in custom.items()})
        if self.settings.get("auth_header") and self.settings.get("auth_value"):
            headers[str(self.settings["auth_header"])] = str(self.settings["auth_value"])
        return headers

    async def _deliver(self, signal: Signal, session: aiohttp.ClientSession) -> str:
        status = await self._post_json(
            session,
            self.settings["url"],
            self.build_payload(signal),
            headers=self.build_headers(),
            method=str(self.settings.get("method", "POST")).upper(),
        )
        return f"Webhook delivered ({status})"


class DiscordChannel(NotificationChannel):
    """Discord incoming webhook with one embed per signal. Settings: ``webhook_url``."""

    name = "discord"
    URL_PREFIX = "https://discord.com/api/webhooks/"

    def validate_config(self) -> List[str]:
        url = self.settings.get("webhook_url")
        if not url:
            return ["Discord webhook URL is required"]
        if not str(url).startswith(self.URL_PREFIX):
            return ["Invalid Discord webhook URL format"]
        return []

    def build_embed(self, signal: Signal) -> Dict[str, Any]:
        return {
            "title": f"{direction_emoji(signal)} {signal.instrument_name} - {strategy_name(signal)}",
            "description": f"**{signal.type_label}**",
            "color": BULLISH_COLOR if is_bullish(signal) else BEARISH_COLOR,
            "fields": [
                {"name": "💰 Price", "value": format_value(signal.price), "inline": True},
                {"name": "📊 EMA 50", "value": format_value(signal.ema50), "inline": True},
                {"name": "📈 EMA 200", "value": format_value(signal.ema200), "inline": True},
                {"name": "⏱️ Timeframe", "value": signal.timeframe, "inline": True},
            ],
            "footer": {"text": FOOTER},
            "timestamp": to_iso(signal.created_at),
        }

    async def _deliver(self, signal: Signal, session: aiohttp.ClientSession) -> str:
        await self._post_json(session, self.settings["webhook_url"], {"embeds": [self.build_embed(signal)]})
        return "Discord notification sent"


class TelegramChannel(NotificationChannel):
    """Telegram bot message in Markdown. Settings: ``bot_token``, ``chat_id``."""

    name = "telegram"
    BASE_URL = "https://api.telegram.org"

    def validate_config(self) -> List[str]:
        errors = []
        if not self.settings.get("bot_token"):
            errors.append("Telegram Bot Token is required")
        if not self.settings.get("chat_id"):
            errors.append("Telegram Chat ID is required")
        return errors

    def build_text(self, signal: Signal) -> str:
        return "\n".join(
            [
                f"{direction_emoji(signal)} *{signal.instrument_name}* - {strategy_name(signal)}",
                "",
                f"📊 *Signal:* {signal.type_label}",
                f"⏱ *Timeframe:* {signal.timeframe}",
                f"💰 *Price:* `{format_value(signal.price)}`",
                f"📈 *EMA 50:* `{format_value(signal.ema50)}`",
                f"📉 *EMA 200:* `{format_value(signal.ema200)}`",
                f"🕐 *Time:* {to_iso(signal.timestamp)}",
                "",
                f"_{FOOTER}_",
            ]
        )

    @property
    def endpoint(self) -> str:
        return f"{self.BASE_URL}/bot{self.settings.get('bot_token')}/sendMessage"

    async def _deliver(self, signal: Signal, session: aiohttp.ClientSession) -> str:
        payload = {
            "chat_id": self.settings["chat_id"],
            "text": self.build_text(signal),
            "parse_mode": "Markdown",
        }
        await self._post_json(session, self.endpoint, payload)
        return "Telegram notification sent"


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _recipients(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value]


class EmailChannel(NotificationChannel):
    """
    Plain-text email over SMTP.

    Settings: ``smtp_host``, ``smtp_port``, ``username``, ``password``,
    ``to`` (address or list) and optionally ``from_address`` (defaults to
    the username). Port 465 uses implicit TLS; other ports upgrade with
    STARTTLS when the server offers it.
    """

    name = "email"

    def validate_config(self) -> List[str]:
        errors = []
        if not self.settings.get("smtp_host"):
            errors.append("SMTP host is required")
        port = self.settings.get("smtp_port")
        if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
            errors.append("SMTP port must be an integer between 1 and 65535")
        if not self.settings.get("username"):
            errors.append("SMTP username is required")
        if not self.settings.get("password"):
            errors.append("SMTP password is required")
        recipients = _recipients(self.settings.get("to"))
        if not recipients:
            errors.append("At least one recipient email is required")
        errors.extend(f"Invalid email format: {r}" for r in recipients if not EMAIL_PATTERN.match(r))
        return errors

    def build_message(self, signal: Signal) -> EmailMessage:
        rendered = format_signal_message(signal)
        message = EmailMessage()
        message["From"] = str(self.settings.get("from_address") or self.settings["username"])
        message["To"] = ", ".join(_recipients(self.settings.get("to")))
        message["Subject"] = rendered.subject
        message.set_content(rendered.text)
        return message

    async def _deliver(self, signal: Signal, session: aiohttp.ClientSession) -> str:
        port = self.settings["smtp_port"]
        try:
            await aiosmtplib.send(
                self.build_message(signal),
                hostname=self.settings["smtp_host"],
                port=port,
                username=self.settings["username"],
                password=self.settings["password"],
                use_tls=port == 465,
                timeout=float(self.settings.get("timeout_sec", 10.0)),
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            raise NotificationError(f"Email error: {e}") from e
        return f"Email sent to {len(_recipients(self.settings.get('to')))} recipient(s)"


class SmsChannel(NotificationChannel):
    """
    SMS through the Twilio Messages API, one request per recipient.

    Settings: ``account_sid``, ``auth_token``, ``from_number`` and ``to``
    (number or list). Succeeds when at least one recipient was reached.
    """

    name = "sms"
    BASE_URL = "https://api.twilio.com/2010-04-01"

    def validate_config(self) -> List[str]:
        errors = []
        if not self.settings.get("account_sid"):
            errors.append("Twilio Account SID is required")
        if not self.settings.get("auth_token"):
            errors.append("Twilio Auth Token is required")
        if not self.settings.get("from_number"):
            errors.append("Twilio sender number is required")
        if not _recipients(self.settings.get("to")):
            errors.append("At least one recipient phone number is required")
        return errors

    @property
    def endpoint(self) -> str:
        return f"{self.BASE_URL}/Accounts/{self.settings.get('account_sid')}/Messages.json"

    def build_text(self, signal: Signal) -> str:
        return "\n".join(
            [
                f"{direction_emoji(signal)} SignalPro Alert",
                f"{signal.instrument_name}: {strategy_name(signal)}",
                f"Price: {format_value(signal.price)}",
                f"EMA50: {format_value(signal.ema50)}",
                f"EMA200: {format_value(signal.ema200)}",
            ]
        )

    async def _deliver(self, signal: Signal, session: aiohttp.ClientSession) -> str:
        recipients = _recipients(self.settings.get("to"))
        auth = aiohttp.BasicAuth(str(self.settings["account_sid"]), str(self.settings["auth_token"]))
        body = self.build_text(signal)
        delivered = await self._send_each(session, recipients, body, auth)
        if not delivered:
            raise NotificationError(f"SMS failed for all {len(recipients)} recipient(s)")
        return f"SMS sent to {delivered}/{len(recipients)} recipient(s)"

    async def _send_each(
        self,
        session: aiohttp.ClientSession,
        recipients: Sequence[str],
        body: str,
        auth: aiohttp.BasicAuth,
    ) -> int:
        delivered = 0
        for number in recipients:
            form = {"To": number, "From": str(self.settings["from_number"]), "Body": body}
            try:
                async with session.post(self.endpoint, data=form, auth=auth) as response:
                    if 200 <= response.status < 300:
                        delivered += 1
                        continue
                    detail = (await response.text())[:200]
                    logger.warning(f"SMS to {number} failed: HTTP {response.status} {detail}")
            except aiohttp.ClientError as e:
                logger.warning(f"SMS to {number} failed: {e}")
        return delivered


CHANNEL_TYPES: Dict[str, Type[NotificationChannel]] = {
    WebhookChannel.name: WebhookChannel,
    DiscordChannel.name: DiscordChannel,
    TelegramChannel.name: TelegramChannel,
    EmailChannel.name: EmailChannel,
    SmsChannel.name: SmsChannel,
}


def build_channels(configs: List[NotificationChannelConfig]) -> List[NotificationChannel]:
    """
    Instantiate every enabled channel.

    Channels with invalid settings are still built (their sends report the
    configuration error) but a warning is logged at startup.

    Raises:
        ConfigurationError: Unknown channel type.
    """
    channels: List[NotificationChannel] = []
    for cfg in configs:
        if not cfg.enabled:
            continue
        channel_cls = CHANNEL_TYPES.get(cfg.channel)
        if channel_cls is None:
            raise ConfigurationError(
                f"Unknown notification channel '{cfg.channel}'; expected one of {sorted(CHANNEL_TYPES)}"
            )
        channel = channel_cls(cfg.settings)
        problems = channel.validate_config()
        if problems:
            logger.warning(f"Notification channel {cfg.channel} misconfigured: {', '.join(problems)}")
        channels.append(channel)
    return channels
