"""
Reconnecting client for the delivery channel.

State machine:

    CONNECTING -> OPEN -> CLOSED
                            |  (unclean close only)
                            v
                       RECONNECTING --(fixed delay)--> CONNECTING

A close is clean when this client initiated it through close(), or when
the server ended the session with the normal-closure code 1000. Any other
ending (transport error, abnormal closure, server going away) schedules a
single reconnect after ``reconnect_delay`` seconds. The delay is fixed,
not exponential. close() cancels a pending reconnect, including one whose
handshake is already in flight; a handshake that completes after close()
is closed again immediately.

Usage:
    client = SignalChannelClient("ws://localhost:8080/ws", on_signal=handle)
    await client.connect()
    ...
    await client.close()
"""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import aiohttp
from aiohttp import WSCloseCode, WSMsgType

from src.domain.exceptions import ChannelError
from src.utils.logging_setup import get_logger

from .envelope import MessageType, decode_message, format_signal_notice

logger = get_logger(__name__)

SignalCallback = Callable[[Dict[str, Any], str], Union[None, Awaitable[None]]]
StateCallback = Callable[["ChannelState"], None]

DEFAULT_RECONNECT_DELAY_SEC = 3.0


class ChannelState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    RECONNECTING = "reconnecting"


class SignalChannelClient:
    """
    Subscribes to ``new_signal`` pushes and keeps the connection alive.

    ``on_signal(payload, notice)`` receives the raw signal payload and a
    formatted one-line notice; it may be a plain function or a coroutine
    function. Unknown message types and malformed frames are ignored.
    """

    def __init__(
        self,
        url: str,
        on_signal: Optional[SignalCallback] = None,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SEC,
        session: Optional[aiohttp.ClientSession] = None,
        on_state_change: Optional[StateCallback] = None,
        heartbeat_sec: Optional[float] = None,
    ) -> None:
        self._url = url
        self._on_signal = on_signal
        self._reconnect_delay = reconnect_delay
        self._session = session
        self._owns_session = session is None
        self._on_state_change = on_state_change
        self._heartbeat = heartbeat_sec

        self._state = ChannelState.CLOSED
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False

        self._handlers: Dict[str, Callable[[Any], Awaitable[None]]] = {
            MessageType.NEW_SIGNAL: self._handle_new_signal,
            MessageType.CONNECTED: self._handle_connected,
        }

        self.connect_attempts = 0
        self.reconnects_scheduled = 0
        self.signals_received = 0
        self.last_error: Optional[ChannelError] = None

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ChannelState.OPEN

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the channel.

        A failed handshake is treated as an unclean close, so a reconnect
        is scheduled. Returns True if the channel is open.
        """
        self._closing = False
        return await self._open()

    async def _open(self) -> bool:
        self._set_state(ChannelState.CONNECTING)
        self.connect_attempts += 1

        if self._session is None:
            self._session = aiohttp.ClientSession()

        try:
            ws = await self._session.ws_connect(self._url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, OSError) as e:
            self.last_error = ChannelError(f"Handshake with {self._url} failed: {e}")
            logger.warning(str(self.last_error), extra={"attempt": self.connect_attempts})
            self._on_closed(clean=False)
            return False

        if self._closing:
            # close() ran while the handshake was in flight
            await ws.close(code=WSCloseCode.OK, message=b"Client closing")
            self._set_state(ChannelState.CLOSED)
            return False

        self._ws = ws
        self._set_state(ChannelState.OPEN)
        logger.info(f"Connected to {self._url}")
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        return True

    async def close(self) -> None:
        """
        Intentionally close the channel.

        Cancels a pending reconnect, closes the socket with code 1000 and
        leaves the client in CLOSED with nothing scheduled.
        """
        self._closing = True

        if self._reconnect_task is not None:
            task = self._reconnect_task
            self._reconnect_task = None
            if task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            logger.debug("Cancelled pending reconnect")

        if self._ws is not None and not self._ws.closed:
            await self._ws.close(code=WSCloseCode.OK, message=b"Client closing")

        reader = self._reader_task
        if reader is not None and reader is not asyncio.current_task():
            await reader
        self._reader_task = None
        self._ws = None
        self._set_state(ChannelState.CLOSED)

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                await self._dispatch(msg.data)
            elif msg.type == WSMsgType.ERROR:
                self.last_error = ChannelError(f"Transport error: {ws.exception()}")
                logger.warning(str(self.last_error))
                break

        code = ws.close_code
        clean = self._closing or code == WSCloseCode.OK
        logger.info(f"Connection closed (code={code}, clean={clean})")
        self._ws = None
        self._on_closed(clean)

    async def _dispatch(self, text: str) -> None:
        envelope = decode_message(text)
        if envelope is None:
            logger.debug("Ignored malformed frame", extra={"size": len(text)})
            return
        handler = self._handlers.get(envelope.type)
        if handler is None:
            logger.debug(f"Ignored unknown message type {envelope.type!r}")
            return
        await handler(envelope.data)

    async def _handle_new_signal(self, data: Any) -> None:
        if not isinstance(data, dict):
            logger.debug("Ignored new_signal without an object payload")
            return
        self.signals_received += 1
        notice = format_signal_notice(data)
        logger.info(notice, extra={"signal": data.get("id")})

        if self._on_signal is None:
            return
        try:
            result = self._on_signal(data, notice)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Signal callback failed: {e}", exc_info=True)

    async def _handle_connected(self, data: Any) -> None:
        logger.debug("Server acknowledged connection", extra={"ack": data})

    # -------------------------------------------------------------------------
    # Reconnect
    # -------------------------------------------------------------------------

    def _on_closed(self, clean: bool) -> None:
        self._set_state(ChannelState.CLOSED)
        if clean or self._closing:
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        pending = self._reconnect_task
        if pending is not None and not pending.done() and pending is not asyncio.current_task():
            return
        self.reconnects_scheduled += 1
        self._set_state(ChannelState.RECONNECTING)
        logger.info(f"Reconnecting in {self._reconnect_delay}s", extra={"url": self._url})
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        if self._closing:
            return
        # Stays referenced through the handshake so close() can cancel it
        await self._open()
        if self._reconnect_task is asyncio.current_task():
            self._reconnect_task = None

    def _set_state(self, state: ChannelState) -> None:
        if state == self._state:
            return
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)
