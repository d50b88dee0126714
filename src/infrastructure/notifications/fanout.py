"""
Fire-and-forget notification fan-out.

notify() schedules one background task per signal and returns at once;
the task sends to every channel concurrently, each bounded by a timeout.
Results are logged and counted. Nothing propagates back to the engine.

Usage:
    fanout = NotificationFanout(build_channels(config.notifications))
    fanout.notify(signal)          # returns immediately
    await fanout.close()           # waits for in-flight sends
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Dict, List, Optional, Set

import aiohttp

from src.domain.exceptions import NotificationError
from src.domain.signals.models import DeliveryStatus, Signal
from src.utils.logging_setup import get_logger

from .channels import NotificationChannel, NotificationResult

if TYPE_CHECKING:
    from src.infrastructure.observability import SignalMetrics

logger = get_logger(__name__)

DEFAULT_SEND_TIMEOUT_SEC = 10.0


class NotificationFanout:
    def __init__(
        self,
        channels: Optional[List[NotificationChannel]] = None,
        signal_metrics: Optional["SignalMetrics"] = None,
        send_timeout_sec: float = DEFAULT_SEND_TIMEOUT_SEC,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._channels = list(channels or [])
        self._metrics = signal_metrics
        self._timeout = send_timeout_sec
        self._session = session
        self._owns_session = session is None
        self._pending: Set[asyncio.Task] = set()
        self._sent = 0
        self._failed = 0

    @property
    def channels(self) -> List[NotificationChannel]:
        return list(self._channels)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def notify(self, signal: Signal) -> Optional[asyncio.Task]:
        """Schedule delivery to every channel; never waits on the senders."""
        if not self._channels:
            return None
        task = asyncio.get_running_loop().create_task(self._deliver(signal))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _deliver(self, signal: Signal) -> List[NotificationResult]:
        session = self._ensure_session()
        results = await asyncio.gather(*(self._send_one(ch, signal, session) for ch in self._channels))

        if any(r.success for r in results):
            signal.delivery_status = DeliveryStatus.NOTIFIED
        logger.info(
            f"Notified {sum(r.success for r in results)}/{len(results)} channel(s)",
            extra={"signal": signal.id, "strategy": signal.strategy_id},
        )
        return list(results)

    async def _send_one(
        self, channel: NotificationChannel, signal: Signal, session: aiohttp.ClientSession
    ) -> NotificationResult:
        try:
            result = await asyncio.wait_for(channel.send(signal, session), self._timeout)
        except asyncio.TimeoutError:
            result = NotificationResult(False, channel.name, f"Timed out after {self._timeout}s")

        if result.success:
            self._sent += 1
            logger.debug(result.message, extra={"channel": channel.name, "signal": signal.id})
        else:
            self._failed += 1
            error = NotificationError(f"{channel.name}: {result.message}")
            logger.warning(str(error), extra={"channel": channel.name, "signal": signal.id})
        if self._metrics:
            self._metrics.record_notification(channel.name, result.success)
        return result

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self._timeout))
            self._owns_session = True
        return self._session

    async def drain(self) -> None:
        """Wait for every in-flight delivery task."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        await self.drain()
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    def stats(self) -> Dict[str, int]:
        return {
            "channels": len(self._channels),
            "sent": self._sent,
            "failed": self._failed,
            "pending": len(self._pending),
        }
