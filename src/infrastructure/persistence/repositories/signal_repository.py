"""
PostgreSQL signal store.

Implements SignalStorePort over the ``signals`` table (see
migrations/001_signals.sql). Writes are retried on connection-class
errors; anything still failing surfaces as StoreError.

The table carries a uniqueness constraint on (strategy, instrument,
timeframe, sample timestamp), so two engine nodes firing the same edge
store one row and both get the same id back.
"""

from __future__ import annotations

import json
import uuid
from functools import wraps
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import asyncpg
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.domain.exceptions import StoreError
from src.domain.interfaces.signal_store import SignalStorePort
from src.domain.signals.models import DeliveryStatus, Signal, SignalDirection
from src.infrastructure.persistence.database import DRIVER_ERRORS, Database
from src.utils.logging_setup import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 3


def db_retry() -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry decorator for database operations.

    Retries up to 3 times with exponential backoff on connection errors,
    timeouts and transient client errors. Logs each retry.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @retry(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(
                (
                    asyncpg.PostgresConnectionError,
                    asyncpg.InterfaceError,
                    asyncpg.InternalClientError,
                    ConnectionError,
                    TimeoutError,
                )
            ),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"Database operation failed, retrying ({retry_state.attempt_number}/{MAX_ATTEMPTS})",
                extra={
                    "function": func.__name__,
                    "error": str(retry_state.outcome.exception()) if retry_state.outcome else None,
                },
            ),
        )
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await func(*args, **kwargs)

        return wrapper  # type: ignore[return-value]

    return decorator


_INSERT = """
    INSERT INTO signals (
        id, strategy_id, instrument_id, timeframe, signal_type, direction,
        price, ema50, ema200, sample_time, created_at, delivery_status, metadata
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13::jsonb)
    ON CONFLICT (strategy_id, instrument_id, timeframe, sample_time) DO NOTHING
    RETURNING id
"""

_SELECT_EXISTING = """
    SELECT id FROM signals
    WHERE strategy_id = $1 AND instrument_id = $2 AND timeframe = $3 AND sample_time = $4
"""


def _row_to_signal(row: asyncpg.Record) -> Signal:
    metadata = row["metadata"]
    if isinstance(metadata, str):
        metadata = json.loads(metadata)
    return Signal(
        id=str(row["id"]),
        strategy_id=row["strategy_id"],
        instrument_id=row["instrument_id"],
        timeframe=row["timeframe"],
        signal_type=row["signal_type"],
        direction=SignalDirection(row["direction"]),
        price=row["price"],
        ema50=row["ema50"],
        ema200=row["ema200"],
        timestamp=row["sample_time"],
        created_at=row["created_at"],
        delivery_status=DeliveryStatus(row["delivery_status"]),
        dismissed=row["dismissed"],
        metadata=metadata or {},
    )


class PostgresSignalStore(SignalStorePort):
    """
    Signal store backed by asyncpg.

    Usage:
        store = PostgresSignalStore(db)
        signal_id = await store.persist(signal)
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    async def persist(self, signal: Signal) -> str:
        try:
            signal_id = await self._insert(signal)
        except DRIVER_ERRORS as e:
            raise StoreError(f"Failed to persist signal for {signal.strategy_id}: {e}") from e
        signal.id = signal_id
        return signal_id

    @db_retry()
    async def _insert(self, signal: Signal) -> str:
        new_id = uuid.uuid4()
        async with self._db.acquire() as conn:
            inserted = await conn.fetchval(
                _INSERT,
                new_id,
                signal.strategy_id,
                signal.instrument_id,
                signal.timeframe,
                signal.signal_type,
                signal.direction.value,
                signal.price,
                signal.ema50,
                signal.ema200,
                signal.timestamp,
                signal.created_at,
                signal.delivery_status.value,
                json.dumps(signal.metadata),
            )
            if inserted is None:
                # Same edge already stored by another node
                inserted = await conn.fetchval(
                    _SELECT_EXISTING,
                    signal.strategy_id,
                    signal.instrument_id,
                    signal.timeframe,
                    signal.timestamp,
                )
                logger.info(f"Signal already stored as {inserted}", extra={"strategy": signal.strategy_id})
        return str(inserted)

    @db_retry()
    async def list_recent(
        self,
        limit: int = 100,
        instrument_id: Optional[str] = None,
        strategy_id: Optional[str] = None,
    ) -> List[Signal]:
        clauses = []
        args: List[Any] = []
        if instrument_id is not None:
            args.append(instrument_id)
            clauses.append(f"instrument_id = ${len(args)}")
        if strategy_id is not None:
            args.append(strategy_id)
            clauses.append(f"strategy_id = ${len(args)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        args.append(limit)
        query = f"SELECT * FROM signals {where} ORDER BY created_at DESC LIMIT ${len(args)}"

        async with self._db.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [_row_to_signal(row) for row in rows]

    @db_retry()
    async def dismiss(self, signal_id: str) -> bool:
        try:
            key = uuid.UUID(signal_id)
        except ValueError:
            return False
        async with self._db.acquire() as conn:
            status = await conn.execute("UPDATE signals SET dismissed = TRUE WHERE id = $1", key)
        return status.endswith(" 1")

    async def close(self) -> None:
        await self._db.close()
