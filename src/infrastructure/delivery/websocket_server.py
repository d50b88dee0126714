"""
Server side of the delivery channel.

SignalBroadcaster owns the set of open WebSocket connections. Each new
connection gets a ``connected`` acknowledgment; committed signals are
pushed as ``new_signal`` envelopes. There is no redelivery: a client that
is not connected when a signal commits catches up through the REST
listing.

Usage:
    broadcaster = SignalBroadcaster(signal_metrics=metrics)
    app.router.add_get("/ws", broadcaster.handle)
    delivered = await broadcaster.broadcast(signal)
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Optional, Set

from aiohttp import WSCloseCode, WSMsgType, web

from src.domain.signals.models import Signal
from src.utils.logging_setup import get_logger

from .envelope import CONNECTED_ACK, MessageType, encode_message

if TYPE_CHECKING:
    from src.infrastructure.observability import SignalMetrics

logger = get_logger(__name__)


class SignalBroadcaster:
    """
    Tracks open connections and fans committed signals out to them.

    Broadcasts are serialized by a lock, so every connection sees signals
    in commit order even when several pairs commit concurrently.
    """

    def __init__(
        self,
        heartbeat_sec: Optional[float] = None,
        signal_metrics: Optional["SignalMetrics"] = None,
    ) -> None:
        self._heartbeat = heartbeat_sec
        self._metrics = signal_metrics
        self._connections: Set[web.WebSocketResponse] = set()
        self._send_lock = asyncio.Lock()
        self._broadcasts = 0

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        """aiohttp handler for the ``/ws`` route."""
        ws = web.WebSocketResponse(heartbeat=self._heartbeat)
        await ws.prepare(request)

        self._connections.add(ws)
        self._update_gauge()
        logger.info("Client connected", extra={"remote": request.remote, "connections": len(self._connections)})

        try:
            await ws.send_str(encode_message(MessageType.CONNECTED, CONNECTED_ACK))
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    # Inbound frames carry no commands
                    logger.debug("Ignored inbound frame", extra={"size": len(msg.data)})
                elif msg.type == WSMsgType.ERROR:
                    logger.warning(f"Connection error: {ws.exception()}", extra={"remote": request.remote})
        except (ConnectionResetError, asyncio.CancelledError):
            logger.debug("Connection dropped during handshake", extra={"remote": request.remote})
            raise
        finally:
            self._connections.discard(ws)
            self._update_gauge()
            logger.info(
                "Client disconnected",
                extra={"remote": request.remote, "code": ws.close_code, "connections": len(self._connections)},
            )
        return ws

    async def broadcast(self, signal: Signal) -> int:
        """
        Send a ``new_signal`` envelope to every open connection.

        Connections whose send fails are dropped and logged; the failure
        never reaches the caller.

        Returns:
            Number of connections the envelope was written to.
        """
        payload = encode_message(MessageType.NEW_SIGNAL, signal.to_dict())
        delivered = 0
        failed = 0

        async with self._send_lock:
            for ws in list(self._connections):
                if ws.closed:
                    self._connections.discard(ws)
                    continue
                try:
                    await ws.send_str(payload)
                    delivered += 1
                except (ConnectionError, RuntimeError) as e:
                    failed += 1
                    self._connections.discard(ws)
                    logger.warning(
                        f"Dropped connection after failed send: {e}",
                        extra={"signal": signal.id, "strategy": signal.strategy_id},
                    )
            self._broadcasts += 1

        logger.debug(
            f"Broadcast {signal.signal_type} to {delivered} connection(s)",
            extra={"signal": signal.id, "instrument": signal.instrument_id, "failed": failed},
        )
        if self._metrics:
            self._metrics.record_broadcast(delivered, failed)
        self._update_gauge()
        return delivered

    async def close_all(self, code: int = WSCloseCode.GOING_AWAY, message: bytes = b"Server shutdown") -> None:
        """Close every open connection, e.g. on application shutdown."""
        connections = list(self._connections)
        self._connections.clear()
        for ws in connections:
            await ws.close(code=code, message=message)
        self._update_gauge()
        if connections:
            logger.info(f"Closed {len(connections)} connection(s)")

    def _update_gauge(self) -> None:
        if self._metrics:
            self._metrics.set_active_connections(len(self._connections))

    def stats(self) -> dict:
        return {"connections": len(self._connections), "broadcasts": self._broadcasts}
