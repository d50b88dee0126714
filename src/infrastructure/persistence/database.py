"""
asyncpg pool for the signal store.

``Database`` owns one pool per process. The migration runner uses the
query helpers (driver errors become ``QueryError``); the repository uses
``acquire()`` directly so its tenacity retry sees the raw driver errors.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

import asyncpg
from asyncpg import Connection, Pool, Record

from config.models import DatabaseConfig
from src.domain.exceptions import StoreError
from src.utils.logging_setup import get_logger

logger = get_logger(__name__)

# Broken pool, connection or statement
DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

COMMAND_TIMEOUT_SEC = 30


class DatabaseError(StoreError):
    """Base exception for database operations."""


class DatabaseConnectionError(DatabaseError):
    """Pool could not be created, or was used before connect()."""


class QueryError(DatabaseError):
    """Statement failed."""


class Database:
    """
    Usage:
        db = Database(config.database)
        await db.connect()
        async with db.transaction() as conn:
            await conn.execute(sql)
        await db.close()
    """

    def __init__(self, config: DatabaseConfig):
        self._config = config
        self._pool: Optional[Pool] = None

    @property
    def pool(self) -> Pool:
        if self._pool is None:
            raise DatabaseConnectionError("Database not connected. Call connect() first.")
        return self._pool

    async def connect(self) -> None:
        """
        Create the pool (no-op when already connected).

        Raises:
            DatabaseConnectionError: If the server is unreachable or rejects the login.
        """
        if self._pool is not None:
            return
        pool_config = self._config.pool
        logger.info(
            f"Connecting to postgres at {self._config.host}:{self._config.port}/{self._config.database}",
            extra={"pool_min": pool_config.min_connections, "pool_max": pool_config.max_connections},
        )
        try:
            self._pool = await asyncpg.create_pool(
                self._config.dsn,
                min_size=pool_config.min_connections,
                max_size=pool_config.max_connections,
                command_timeout=COMMAND_TIMEOUT_SEC,
            )
        except DRIVER_ERRORS as e:
            raise DatabaseConnectionError(f"Failed to connect to database: {e}") from e

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    async def _run(self, method: str, query: str, *args: Any) -> Any:
        try:
            async with self.pool.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except DRIVER_ERRORS as e:
            logger.error(f"{method} failed: {e}", extra={"query": query[:200]})
            raise QueryError(f"{method} failed: {e}") from e

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement; returns the status tag (e.g. "UPDATE 1")."""
        return await self._run("execute", query, *args)

    async def fetch(self, query: str, *args: Any) -> List[Record]:
        return await self._run("fetch", query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return await self._run("fetchval", query, *args)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Connection]:
        """Pooled connection; driver errors propagate unchanged."""
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        """Connection inside a transaction: commit on exit, roll back on error."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn
