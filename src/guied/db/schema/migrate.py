"""Forward-only migration runner and schema version helper."""

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional

import asyncpg

from guied.db.models import Table
from guied.db.pool import close_pool, get_pool

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"

# pg_try_advisory_lock key shared by every migration runner of this service
MIGRATION_LOCK_ID = 71_830_001


async def _ensure_migrations_table(conn: asyncpg.Connection) -> None:
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS {Table.SCHEMA_MIGRATIONS} (
            version INTEGER PRIMARY KEY,
            filename TEXT NOT NULL DEFAULT '',
            applied_at TIMESTAMPTZ DEFAULT now()
        )
    """)


async def _get_applied_versions(conn: asyncpg.Connection) -> set[int]:
    rows = await conn.fetch(f"SELECT version FROM {Table.SCHEMA_MIGRATIONS}")
    return {row["version"] for row in rows}


def pending_migrations(migrations_dir: Path, applied: set[int]) -> list[tuple[int, Path]]:
    """
    List migrations not yet applied, ordered by version.

    The version is the numeric filename prefix ("001_initial.sql" -> 1).
    Files without a numeric prefix are ignored.
    """
    pending = []
    for sql_file in migrations_dir.glob("*.sql"):
        try:
            version = int(sql_file.stem.split("_")[0])
        except (ValueError, IndexError):
            continue
        if version not in applied:
            pending.append((version, sql_file))
    return sorted(pending, key=lambda item: item[0])


def split_sql_statements(sql: str) -> list[str]:
    """
    Split a SQL script into individual statements.

    Comments are stripped first. Semicolons inside single-quoted strings or
    $$-quoted bodies do not terminate a statement.
    """
    sql = re.sub(r"--.*$", "", sql, flags=re.MULTILINE)
    sql = re.sub(r"/\*.*?\*/", "", sql, flags=re.DOTALL)

    statements = []
    current: list[str] = []
    in_dollar = False
    in_quote = False
    i = 0

    while i < len(sql):
        if sql[i:i + 2] == "$$" and not in_quote:
            in_dollar = not in_dollar
            current.append("$$")
            i += 2
            continue

        char = sql[i]
        if char == "'" and not in_dollar:
            in_quote = not in_quote
        elif char == ";" and not in_dollar and not in_quote:
            current.append(char)
            stmt = "".join(current).strip()
            if stmt != ";":
                statements.append(stmt)
            current = []
            i += 1
            continue

        current.append(char)
        i += 1

    tail = "".join(current).strip()
    if tail:
        statements.append(tail)

    return statements


async def _apply_migration(conn: asyncpg.Connection, version: int, sql_path: Path) -> None:
    for statement in split_sql_statements(sql_path.read_text(encoding="utf-8")):
        await conn.execute(statement)

    await conn.execute(
        f"INSERT INTO {Table.SCHEMA_MIGRATIONS} (version, filename) VALUES ($1, $2)",
        version,
        sql_path.name,
    )


async def migrate(pool: Optional[asyncpg.Pool] = None) -> int:
    """
    Apply all pending migrations in version order.

    Each migration runs in its own transaction. A Postgres advisory lock
    keeps two instances from migrating at the same time. Re-running is a
    no-op once the schema is current.

    Args:
        pool: Connection pool (defaults to the shared pool)

    Returns:
        int: Number of migrations applied by this call

    Raises:
        FileNotFoundError: If the migrations directory is missing
        RuntimeError: If another migration run holds the lock
        asyncpg.PostgresError: On database errors
    """
    if not MIGRATIONS_DIR.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {MIGRATIONS_DIR}")

    if pool is None:
        pool = await get_pool()

    applied_count = 0

    async with pool.acquire() as conn:
        locked = await conn.fetchval("SELECT pg_try_advisory_lock($1)", MIGRATION_LOCK_ID)
        if not locked:
            raise RuntimeError(
                "Another migration is currently running. "
                "Wait for it to complete and try again."
            )

        try:
            await _ensure_migrations_table(conn)
            applied = await _get_applied_versions(conn)

            for version, sql_path in pending_migrations(MIGRATIONS_DIR, applied):
                async with conn.transaction():
                    await _apply_migration(conn, version, sql_path)
                applied_count += 1
                logger.info(f"Applied migration {version:03d}: {sql_path.name}")

            return applied_count

        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_ID)


async def schema_version(pool: Optional[asyncpg.Pool] = None) -> Optional[int]:
    """
    Get the highest applied migration version, or None before any migration.

    Raises:
        asyncpg.PostgresError: On database errors
    """
    if pool is None:
        pool = await get_pool()

    async with pool.acquire() as conn:
        await _ensure_migrations_table(conn)
        return await conn.fetchval(f"SELECT MAX(version) FROM {Table.SCHEMA_MIGRATIONS}")


def main() -> None:
    """CLI entry point for running migrations."""
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    async def _run():
        try:
            applied = await migrate()
            version = await schema_version()
        finally:
            await close_pool()

        if applied == 0:
            print(f"No pending migrations. Current schema version: {version}")
        else:
            print(f"Applied {applied} migration(s). Current schema version: {version}")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
