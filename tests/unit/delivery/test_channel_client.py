"""
Unit tests for SignalChannelClient against a scripted aiohttp server.

Each accepted connection pops one mode from the server's script:
- "hold": send the ack and keep the connection open
- "abort": send the ack, then close with 1011 (unclean)
- "clean": send the ack, then close with 1000
- "signals": send a mix of valid, unknown and malformed frames, then hold
- "slow": hold the handshake until ``gate`` is set, then hold
"""

import asyncio
import json
from typing import List

import pytest
import pytest_asyncio
from aiohttp import WSCloseCode, web
from aiohttp.test_utils import TestServer

from src.infrastructure.delivery.envelope import CONNECTED_ACK, MessageType, encode_message
from src.infrastructure.delivery.websocket_client import ChannelState, SignalChannelClient


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class ScriptedServer:
    def __init__(self) -> None:
        self.modes: List[str] = []
        self.connections = 0
        self.slow_handshakes = 0
        self.gate = asyncio.Event()
        self.signal_payload = {
            "id": "sig-1",
            "instrumentId": "RELIANCE",
            "signalType": "15m_above_50_bullish",
            "price": 2451.3,
        }

    async def handle(self, request: web.Request) -> web.WebSocketResponse:
        mode = self.modes.pop(0) if self.modes else "hold"
        if mode == "slow":
            self.slow_handshakes += 1
            await self.gate.wait()
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections += 1

        await ws.send_str(encode_message(MessageType.CONNECTED, CONNECTED_ACK))
        if mode == "abort":
            await ws.close(code=WSCloseCode.INTERNAL_ERROR, message=b"boom")
            return ws
        if mode == "clean":
            await ws.close(code=WSCloseCode.OK)
            return ws
        if mode == "signals":
            await ws.send_str(json.dumps({"type": "mystery", "data": {"x": 1}}))
            await ws.send_str("{not json")
            await ws.send_str(json.dumps(["new_signal"]))
            await ws.send_str(json.dumps({"type": MessageType.NEW_SIGNAL, "data": "not an object"}))
            await ws.send_str(encode_message(MessageType.NEW_SIGNAL, self.signal_payload))

        async for _ in ws:
            pass
        return ws


@pytest_asyncio.fixture
async def scripted():
    script = ScriptedServer()
    app = web.Application()
    app.router.add_get("/ws", script.handle)
    server = TestServer(app)
    await server.start_server()
    yield script, server
    await server.close()


def make_client(server: TestServer, path: str = "/ws", **kwargs) -> SignalChannelClient:
    states: List[ChannelState] = []
    client = SignalChannelClient(str(server.make_url(path)), on_state_change=states.append, **kwargs)
    client.states = states
    return client


class TestChannelClient:
    @pytest.mark.asyncio
    async def test_connect_and_clean_close(self, scripted) -> None:
        script, server = scripted
        client = make_client(server)

        assert await client.connect()
        assert client.is_connected

        await client.close()
        assert client.state is ChannelState.CLOSED
        assert not client.reconnect_pending
        assert client.reconnects_scheduled == 0
        assert client.states == [ChannelState.CONNECTING, ChannelState.OPEN, ChannelState.CLOSED]

    @pytest.mark.asyncio
    async def test_unclean_close_reconnects_after_delay(self, scripted) -> None:
        script, server = scripted
        script.modes = ["abort", "hold"]
        client = make_client(server, reconnect_delay=0.05)
        try:
            await client.connect()
            await wait_until(lambda: client.connect_attempts == 2 and client.is_connected)

            assert client.reconnects_scheduled == 1
            assert script.connections == 2
            assert client.states == [
                ChannelState.CONNECTING,
                ChannelState.OPEN,
                ChannelState.CLOSED,
                ChannelState.RECONNECTING,
                ChannelState.CONNECTING,
                ChannelState.OPEN,
            ]
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_server_normal_closure_does_not_reconnect(self, scripted) -> None:
        script, server = scripted
        script.modes = ["clean"]
        client = make_client(server, reconnect_delay=0.05)
        try:
            await client.connect()
            await wait_until(lambda: client.state is ChannelState.CLOSED)
            await asyncio.sleep(0.2)

            assert client.reconnects_scheduled == 0
            assert client.connect_attempts == 1
            assert script.connections == 1
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_reconnect(self, scripted) -> None:
        script, server = scripted
        script.modes = ["abort"]
        client = make_client(server, reconnect_delay=30.0)

        await client.connect()
        await wait_until(lambda: client.reconnect_pending)
        assert client.state is ChannelState.RECONNECTING

        await client.close()

        assert client.state is ChannelState.CLOSED
        assert not client.reconnect_pending
        assert client.connect_attempts == 1
        assert script.connections == 1

    @pytest.mark.asyncio
    async def test_handshake_failure_schedules_reconnect(self, scripted) -> None:
        _, server = scripted
        client = make_client(server, path="/missing", reconnect_delay=30.0)

        assert not await client.connect()
        assert client.reconnect_pending
        assert client.state is ChannelState.RECONNECTING
        assert "Handshake" in str(client.last_error)

        await client.close()
        assert not client.reconnect_pending

    @pytest.mark.asyncio
    async def test_unknown_and_malformed_frames_are_ignored(self, scripted) -> None:
        script, server = scripted
        script.modes = ["signals"]
        received = []

        async def on_signal(data, notice) -> None:
            received.append((data, notice))

        client = make_client(server, on_signal=on_signal)
        try:
            await client.connect()
            await wait_until(lambda: received)

            assert client.signals_received == 1
            assert client.is_connected
            data, notice = received[0]
            assert data["id"] == "sig-1"
            assert notice == "RELIANCE: 15M ABOVE 50 BULLISH at 2451.30"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_connection(self, scripted) -> None:
        script, server = scripted
        script.modes = ["signals"]

        def on_signal(data, notice) -> None:
            raise ValueError("handler bug")

        client = make_client(server, on_signal=on_signal)
        try:
            await client.connect()
            await wait_until(lambda: client.signals_received == 1)
            assert client.is_connected
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_close_during_reconnect_handshake_stays_closed(self, scripted) -> None:
        script, server = scripted
        script.modes = ["abort", "slow"]
        client = make_client(server, reconnect_delay=0.05)

        await client.connect()
        await wait_until(lambda: script.slow_handshakes == 1)
        assert client.state is ChannelState.CONNECTING
        assert client.reconnect_pending

        await client.close()
        script.gate.set()
        await asyncio.sleep(0.2)

        assert client.state is ChannelState.CLOSED
        assert not client.is_connected
        assert not client.reconnect_pending
        assert client.states[-1] is ChannelState.CLOSED
        assert ChannelState.OPEN not in client.states[client.states.index(ChannelState.RECONNECTING):]

    @pytest.mark.asyncio
    async def test_reconnect_failure_schedules_another_attempt(self, scripted) -> None:
        _, server = scripted
        client = make_client(server, path="/missing", reconnect_delay=0.05)
        try:
            await client.connect()
            await wait_until(lambda: client.connect_attempts >= 3)
            assert client.reconnects_scheduled >= 2
            assert not client.is_connected
        finally:
            await client.close()
        assert not client.reconnect_pending
