"""Versioned schema migrations.

Migrations are applied in ascending id order and recorded in the
``migrations`` table as soon as each one succeeds. Each ``up`` runs in
autocommit mode (DDL is not transactional on MySQL and some SQLite steps
need ``PRAGMA foreign_keys`` which is ignored inside a transaction), so
every step must guard itself against a partially-applied schema. A failure
aborts the run and leaves that migration unrecorded; the next run retries
it. Rollbacks (``down``) are kept for operators but never executed here.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from infradb.core.exceptions import MigrationFailure
from infradb.db.adapter import DatabaseAdapter

logger = logging.getLogger(__name__)

MigrationStep = Callable[[DatabaseAdapter], Awaitable[None]]

MIGRATIONS_TABLE = "migrations"


@dataclass(frozen=True)
class Migration:
    id: str
    name: str
    up: MigrationStep
    down: Optional[MigrationStep] = None


@dataclass(frozen=True)
class MigrationStatus:
    id: str
    name: str
    applied: bool
    applied_at: Optional[str] = None


class MigrationRunner:
    def __init__(self, adapter: DatabaseAdapter, migrations: Sequence[Migration]):
        ids = [m.id for m in migrations]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate migration ids: {sorted(i for i in set(ids) if ids.count(i) > 1)}")
        self.adapter = adapter
        self.migrations: List[Migration] = sorted(migrations, key=lambda m: m.id)
        self._lock = asyncio.Lock()

    async def ensure_migrations_table(self) -> None:
        dialect = self.adapter.dialect
        await self.adapter.execute(
            dialect.create_table(
                MIGRATIONS_TABLE,
                [
                    "id VARCHAR(255) PRIMARY KEY",
                    "name VARCHAR(255) NOT NULL",
                    dialect.choose(
                        sqlite="applied_at DATETIME DEFAULT CURRENT_TIMESTAMP",
                        mysql="applied_at TIMESTAMP(3) DEFAULT CURRENT_TIMESTAMP(3)",
                    ),
                ],
            )
        )

    async def applied(self) -> Dict[str, Optional[str]]:
        """Applied migration ids mapped to their applied_at timestamps."""
        rows = await self.adapter.query(f"SELECT id, applied_at FROM {MIGRATIONS_TABLE}")
        return {
            row["id"]: str(row["applied_at"]) if row["applied_at"] is not None else None
            for row in rows
        }

    async def pending(self) -> List[Migration]:
        await self.ensure_migrations_table()
        done = await self.applied()
        return [m for m in self.migrations if m.id not in done]

    async def status(self) -> List[MigrationStatus]:
        await self.ensure_migrations_table()
        done = await self.applied()
        return [
            MigrationStatus(id=m.id, name=m.name, applied=m.id in done, applied_at=done.get(m.id))
            for m in self.migrations
        ]

    async def run(self) -> List[str]:
        """Apply every pending migration. Returns the ids applied by this call."""
        async with self._lock:
            await self.ensure_migrations_table()
            done = await self.applied()
            applied_now: List[str] = []

            for migration in self.migrations:
                if migration.id in done:
                    continue

                logger.info(f"Applying migration {migration.id} ({migration.name})")
                try:
                    await migration.up(self.adapter)
                except Exception as e:
                    logger.error(f"Migration {migration.id} ({migration.name}) failed: {e}")
                    raise MigrationFailure(migration.id, migration.name) from e

                await self.adapter.execute(
                    f"INSERT INTO {MIGRATIONS_TABLE} (id, name, applied_at) VALUES (:id, :name, :applied_at)",
                    {
                        "id": migration.id,
                        "name": migration.name,
                        "applied_at": datetime.now(timezone.utc).replace(tzinfo=None),
                    },
                )
                applied_now.append(migration.id)

            if applied_now:
                logger.info(f"Applied {len(applied_now)} migration(s): {', '.join(applied_now)}")
            else:
                logger.info("Database schema is up to date")
            return applied_now
