"""Unit tests for SimpleEventBus."""

import asyncio

import pytest

from src.application.simple_event_bus import SimpleEventBus
from src.domain.events.event_types import EventType


def test_sync_subscribers_run_in_order() -> None:
    bus = SimpleEventBus()
    calls = []
    bus.subscribe(EventType.SIGNAL_FIRED, lambda p: calls.append(("a", p)))
    bus.subscribe(EventType.SIGNAL_FIRED, lambda p: calls.append(("b", p)))
    bus.subscribe(EventType.FEED_GAP, lambda p: calls.append(("gap", p)))

    bus.publish(EventType.SIGNAL_FIRED, 1)
    assert calls == [("a", 1), ("b", 1)]


def test_failing_subscriber_does_not_stop_others() -> None:
    bus = SimpleEventBus()
    calls = []

    def broken(payload) -> None:
        raise RuntimeError("boom")

    bus.subscribe(EventType.SIGNAL_FIRED, broken)
    bus.subscribe(EventType.SIGNAL_FIRED, calls.append)

    bus.publish(EventType.SIGNAL_FIRED, "x")
    assert calls == ["x"]


def test_unsubscribe() -> None:
    bus = SimpleEventBus()
    calls = []
    bus.subscribe(EventType.FEED_GAP, calls.append)
    bus.unsubscribe(EventType.FEED_GAP, calls.append)
    bus.unsubscribe(EventType.FEED_GAP, calls.append)

    bus.publish(EventType.FEED_GAP, "x")
    assert calls == []


@pytest.mark.asyncio
async def test_async_subscriber_is_scheduled_not_awaited() -> None:
    bus = SimpleEventBus()
    started = asyncio.Event()
    release = asyncio.Event()
    done = []

    async def slow(payload) -> None:
        started.set()
        await release.wait()
        done.append(payload)

    bus.subscribe(EventType.SIGNAL_FIRED, slow)
    bus.publish(EventType.SIGNAL_FIRED, "sig")
    assert done == []

    await asyncio.wait_for(started.wait(), timeout=1.0)
    release.set()
    await bus.drain()
    assert done == ["sig"]


def test_async_subscriber_without_loop_is_dropped() -> None:
    bus = SimpleEventBus()

    async def handler(payload) -> None:
        raise AssertionError("should not run")

    bus.subscribe(EventType.SIGNAL_FIRED, handler)
    bus.publish(EventType.SIGNAL_FIRED, "sig")


def test_publish_counts_and_subscriber_count() -> None:
    bus = SimpleEventBus()
    bus.subscribe(EventType.STRATEGY_REGISTERED, lambda p: None)

    bus.publish(EventType.STRATEGY_REGISTERED, "a")
    bus.publish(EventType.STRATEGY_REGISTERED, "b")
    bus.publish(EventType.FEED_GAP, "gap")

    assert bus.published[EventType.STRATEGY_REGISTERED] == 2
    assert bus.published[EventType.FEED_GAP] == 1
    assert bus.subscriber_count(EventType.STRATEGY_REGISTERED) == 1
    assert bus.subscriber_count(EventType.SIGNAL_FIRED) == 0
