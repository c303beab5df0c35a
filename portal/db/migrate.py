"""
Schema migrations for the users table.

Migration files live next to this module as `NNNN_name.sql` and run in name
order over a connection borrowed from the shared `Database` pool. The whole
batch runs in one transaction under a transaction-scoped advisory lock, so
replicas starting together apply each file exactly once and a failing file
leaves no partial schema behind.

The sessions table is not a migration: the session store bootstraps it at
startup (AUTH_SESSION_CREATE_TABLE).
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import psycopg

from portal.db.pool import Database
from portal.errors import MigrationError, StorageFailure

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# pg_advisory_xact_lock key shared by every replica of this service.
MIGRATION_LOCK_KEY = 472918301184

LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  version text PRIMARY KEY,
  checksum text NOT NULL,
  applied_at timestamptz NOT NULL DEFAULT now()
)
"""


@dataclass(frozen=True)
class Migration:
    version: str
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


def load_migrations(directory: Path = MIGRATIONS_DIR) -> List[Migration]:
    files = sorted(directory.glob("*.sql")) if directory.is_dir() else []
    return [Migration(version=p.stem, sql=p.read_text(encoding="utf-8")) for p in files]


def pending_migrations(migrations: Sequence[Migration], recorded: Dict[str, str]) -> List[Migration]:
    """
    Return the migrations not yet recorded, in order.

    Raises MigrationError when an already-applied file was edited afterwards.
    """
    pending: List[Migration] = []
    for m in migrations:
        checksum = recorded.get(m.version)
        if checksum is None:
            pending.append(m)
        elif checksum != m.checksum:
            raise MigrationError(
                f"migration {m.version} changed after it was applied "
                f"(recorded {checksum[:12]}, file {m.checksum[:12]})"
            )
    return pending


async def apply_migrations(db: Database, migrations: Optional[Sequence[Migration]] = None) -> List[str]:
    """Apply pending migrations; returns the versions applied by this call."""
    migs = list(migrations) if migrations is not None else load_migrations()
    try:
        async with db.connection() as conn:
            await conn.execute("SELECT pg_advisory_xact_lock(%s)", (MIGRATION_LOCK_KEY,))
            await conn.execute(LEDGER_DDL)
            cur = await conn.execute("SELECT version, checksum FROM schema_migrations")
            recorded = {str(version): str(checksum) for version, checksum in await cur.fetchall()}

            applied: List[str] = []
            for m in pending_migrations(migs, recorded):
                logger.info("Applying migration %s", m.version)
                await conn.execute(m.sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES (%s, %s)",
                    (m.version, m.checksum),
                )
                applied.append(m.version)
    except psycopg.Error as e:
        raise StorageFailure("schema migration failed") from e

    if applied:
        logger.info("Applied %d migration(s): %s", len(applied), ", ".join(applied))
    else:
        logger.info("Schema is up to date")
    return applied
