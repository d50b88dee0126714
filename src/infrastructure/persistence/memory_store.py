"""In-memory signal store for tests and database-less runs."""

from __future__ import annotations

import asyncio
import uuid
from typing import List, Optional

from src.domain.interfaces.signal_store import SignalStorePort
from src.domain.signals.models import Signal
from src.utils.logging_setup import get_logger

logger = get_logger(__name__)


class InMemorySignalStore(SignalStorePort):
    """
    Append-only list of signals with uuid4 ids.

    Nothing survives a restart; the pull-based catch-up path only sees
    signals fired since boot.
    """

    def __init__(self, max_signals: Optional[int] = None) -> None:
        self._signals: List[Signal] = []
        self._max = max_signals
        self._lock = asyncio.Lock()

    async def persist(self, signal: Signal) -> str:
        async with self._lock:
            signal_id = signal.id or str(uuid.uuid4())
            signal.id = signal_id
            self._signals.append(signal)
            if self._max is not None and len(self._signals) > self._max:
                del self._signals[: len(self._signals) - self._max]
        logger.debug(f"Stored signal {signal_id}")
        return signal_id

    async def list_recent(
        self,
        limit: int = 100,
        instrument_id: Optional[str] = None,
        strategy_id: Optional[str] = None,
    ) -> List[Signal]:
        matches = [
            s for s in reversed(self._signals)
            if (instrument_id is None or s.instrument_id == instrument_id)
            and (strategy_id is None or s.strategy_id == strategy_id)
        ]
        return matches[:limit]

    async def dismiss(self, signal_id: str) -> bool:
        for signal in self._signals:
            if signal.id == signal_id:
                signal.dismissed = True
                return True
        return False

    def __len__(self) -> int:
        return len(self._signals)
