"""
Signal store port.

The engine depends on this abstract port, not on a concrete database, so
tests and local runs can use the in-memory store.

Implementations:
- PostgresSignalStore (asyncpg) - production
- InMemorySignalStore - tests and database-less runs
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from src.domain.signals.models import Signal


class SignalStorePort(ABC):
    """
    Append-only store of fired signals.

    Usage:
        signal_id = await store.persist(signal)
        recent = await store.list_recent(limit=50, instrument_id="NIFTY50")
    """

    @abstractmethod
    async def persist(self, signal: "Signal") -> str:
        """
        Append a signal and return its durable id.

        Raises:
            StoreError: If the write failed.
        """
        pass

    @abstractmethod
    async def list_recent(
        self,
        limit: int = 100,
        instrument_id: Optional[str] = None,
        strategy_id: Optional[str] = None,
    ) -> List["Signal"]:
        """Most recent signals first, optionally filtered."""
        pass

    @abstractmethod
    async def dismiss(self, signal_id: str) -> bool:
        """Mark a signal dismissed. Returns False if the id is unknown."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        return None
