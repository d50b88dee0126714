"""
Signal persistence.

Provides:
- Database connection management with asyncpg
- PostgresSignalStore and InMemorySignalStore (SignalStorePort implementations)
"""

from src.infrastructure.persistence.database import (
    Database,
    DatabaseConnectionError,
    DatabaseError,
    QueryError,
)
from src.infrastructure.persistence.memory_store import InMemorySignalStore
from src.infrastructure.persistence.repositories.signal_repository import (
    PostgresSignalStore,
    db_retry,
)

__all__ = [
    "Database",
    "DatabaseConnectionError",
    "DatabaseError",
    "QueryError",
    "InMemorySignalStore",
    "PostgresSignalStore",
    "db_retry",
]
