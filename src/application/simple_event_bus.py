"""In-memory event bus for a single-process engine."""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict
from typing import Any, Dict, List, Set

from src.domain.events.event_types import EventType
from src.domain.interfaces.event_bus import EventBus, Subscriber
from src.utils.logging_setup import get_logger

logger = get_logger(__name__)


class SimpleEventBus(EventBus):
    """
    Plain callbacks run inline, in subscription order. Coroutine callbacks
    become tasks on the running loop; the publisher never awaits them, and
    ``drain()`` waits for the ones still running. A subscriber that raises
    is logged and the remaining subscribers still run.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[Subscriber]] = defaultdict(list)
        self._pending: Set[asyncio.Task] = set()
        self.published: Dict[EventType, int] = defaultdict(int)

    def publish(self, event_type: EventType, payload: Any) -> None:
        self.published[event_type] += 1
        for callback in tuple(self._subscribers[event_type]):
            try:
                result = callback(payload)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed on {event_type.value}: {e}", exc_info=True)
                continue
            if inspect.isawaitable(result):
                self._spawn(result, event_type)

    def _spawn(self, awaitable: Any, event_type: EventType) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"Dropped async subscriber for {event_type.value}: no running event loop")
            awaitable.close()
            return
        task = loop.create_task(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async subscriber failed: {task.exception()!r}")

    def subscribe(self, event_type: EventType, callback: Subscriber) -> None:
        self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: EventType, callback: Subscriber) -> None:
        try:
            self._subscribers[event_type].remove(callback)
        except ValueError:
            logger.debug(f"unsubscribe: callback not registered for {event_type.value}")

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._subscribers[event_type])

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*tuple(self._pending), return_exceptions=True)
