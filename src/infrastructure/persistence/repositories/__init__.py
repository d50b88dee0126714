"""Repository classes for database operations."""

from .signal_repository import PostgresSignalStore

__all__ = ["PostgresSignalStore"]
