"""
Database migration runner for the signal store schema.

Applied versions are tracked in ``schema_migrations``; pending SQL files
named ``NNN_description.sql`` are applied in version order, each inside
its own transaction.

Usage:
    from migrations.runner import run_migrations

    await run_migrations(db)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set

from src.domain.exceptions import StoreError
from src.infrastructure.persistence.database import DRIVER_ERRORS, Database
from src.utils.logging_setup import get_logger

logger = get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Migration:
    """One SQL migration file."""

    version: str
    name: str
    path: Path


class MigrationError(StoreError):
    """Migration file could not be read or applied."""


class MigrationRunner:
    """
    Applies pending SQL migrations.

    Example:
        runner = MigrationRunner(db)
        applied = await runner.run()
    """

    MIGRATION_PATTERN = re.compile(r"^(\d{3})_(.+)\.sql$")

    def __init__(self, db: Database, migrations_dir: Path | str = MIGRATIONS_DIR):
        self._db = db
        self._migrations_dir = Path(migrations_dir)

    async def run(self, target_version: Optional[str] = None) -> List[Migration]:
        """
        Apply every pending migration up to ``target_version`` (all if None).

        Raises:
            MigrationError: On the first migration that fails; later ones are skipped.
        """
        await self._ensure_migrations_table()
        pending = await self.get_pending_migrations()
        if target_version:
            pending = [m for m in pending if m.version <= target_version]

        if not pending:
            logger.info("No pending migrations")
            return []

        applied = []
        for migration in pending:
            logger.info(f"Applying migration {migration.version}: {migration.name}")
            await self._apply(migration)
            applied.append(migration)

        logger.info(f"Applied {len(applied)} migration(s)")
        return applied

    async def get_pending_migrations(self) -> List[Migration]:
        applied = await self._applied_versions()
        return [m for m in self.discover() if m.version not in applied]

    async def get_current_version(self) -> Optional[str]:
        await self._ensure_migrations_table()
        return await self._db.fetchval(
            "SELECT version FROM schema_migrations ORDER BY version DESC LIMIT 1"
        )

    def discover(self) -> List[Migration]:
        """Migration files on disk, sorted by version."""
        if not self._migrations_dir.exists():
            logger.warning(f"Migrations directory not found: {self._migrations_dir}")
            return []

        found = []
        for path in self._migrations_dir.glob("*.sql"):
            match = self.MIGRATION_PATTERN.match(path.name)
            if match:
                version, name = match.groups()
                found.append(Migration(version=version, name=name, path=path))
        return sorted(found, key=lambda m: m.version)

    async def _ensure_migrations_table(self) -> None:
        await self._db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version     TEXT PRIMARY KEY,
                name        TEXT NOT NULL,
                applied_at  TIMESTAMPTZ DEFAULT NOW()
            )
            """
        )

    async def _applied_versions(self) -> Set[str]:
        await self._ensure_migrations_table()
        rows = await self._db.fetch("SELECT version FROM schema_migrations")
        return {row["version"] for row in rows}

    async def _apply(self, migration: Migration) -> None:
        try:
            sql = migration.path.read_text()
        except OSError as e:
            raise MigrationError(f"Cannot read migration file {migration.path}: {e}") from e

        try:
            async with self._db.transaction() as conn:
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, name) VALUES ($1, $2) "
                    "ON CONFLICT (version) DO NOTHING",
                    migration.version,
                    migration.name,
                )
        except DRIVER_ERRORS as e:
            logger.error(f"Migration {migration.version} failed: {e}")
            raise MigrationError(f"Migration {migration.version} ({migration.name}) failed: {e}") from e


async def run_migrations(db: Database, migrations_dir: Path | str = MIGRATIONS_DIR) -> List[Migration]:
    """Apply all pending migrations with a fresh runner."""
    return await MigrationRunner(db, migrations_dir).run()
