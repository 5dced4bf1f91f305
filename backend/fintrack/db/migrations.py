"""
Versioned schema migrations for tenant databases
"""
import logging
from datetime import datetime, timezone
from typing import List, Tuple

from .database import Database
from .tenant_schema import TENANT_MIGRATIONS

logger = logging.getLogger(__name__)

Migration = Tuple[int, str, str, str]

SCHEMA_MIGRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    description TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""


async def get_current_version(db: Database) -> int:
    """Get current schema version"""
    await db.execute(SCHEMA_MIGRATIONS_TABLE)
    result = await db.fetch_one("SELECT MAX(version) AS version FROM schema_migrations")
    return result["version"] if result and result["version"] else 0


async def apply_migration(db: Database, version: int, description: str, up_sql: str):
    """Apply a single migration"""
    # executescript rather than splitting on ';' so trigger bodies survive
    await db.execute_script(up_sql)
    await db.execute(
        "INSERT OR IGNORE INTO schema_migrations (version, description, applied_at) VALUES (?, ?, ?)",
        (version, description, datetime.now(timezone.utc).isoformat())
    )
    await db.commit()
    logger.info(f"Applied migration {version} to {db.db_path}: {description}")


async def run_migrations(db: Database, migrations: List[Migration] = TENANT_MIGRATIONS) -> int:
    """Run all pending migrations and return how many were applied"""
    current_version = await get_current_version(db)
    applied = 0

    for version, description, up_sql, _ in sorted(migrations, key=lambda m: m[0]):
        if version > current_version:
            await apply_migration(db, version, description, up_sql)
            applied += 1

    if applied:
        logger.info(f"Database {db.db_path} migrated from version {current_version} to {current_version + applied}")
    return applied


async def rollback_migration(db: Database, version: int, migrations: List[Migration] = TENANT_MIGRATIONS):
    """Rollback a specific migration"""
    for v, description, _, down_sql in migrations:
        if v == version:
            await db.execute_script(down_sql)
            await db.execute("DELETE FROM schema_migrations WHERE version = ?", (version,))
            await db.commit()
            logger.info(f"Rolled back migration {version}: {description}")
            return
    raise ValueError(f"Unknown migration version {version}")
