"""Apply SQL migrations from db/migrations/ in sorted order."""

import asyncio
from pathlib import Path

import asyncpg
import structlog

from src.config.settings import get_settings
from src.utils.logger import setup_logging

log = structlog.get_logger()

MIGRATION_DIR = Path(__file__).parent / "migrations"


async def run_migrations(database_url: str | None = None) -> list[str]:
    """Apply pending migrations and return the names of those applied."""
    conn = await asyncpg.connect(database_url or get_settings().database_url)
    applied: list[str] = []

    try:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS _migrations (
                name TEXT PRIMARY KEY,
                applied_at TIMESTAMPTZ DEFAULT NOW()
            )
        """)

        for path in sorted(MIGRATION_DIR.glob("*.sql")):
            name = path.name
            exists = await conn.fetchval("SELECT 1 FROM _migrations WHERE name = $1", name)
            if exists:
                log.debug("migration_skipped", name=name)
                continue
            async with conn.transaction():
                await conn.execute(path.read_text())
                await conn.execute("INSERT INTO _migrations (name) VALUES ($1)", name)
            applied.append(name)
            log.info("migration_applied", name=name)
    finally:
        await conn.close()

    log.info("migrations_complete", applied=len(applied))
    return applied


def run() -> None:
    setup_logging()
    asyncio.run(run_migrations())


if __name__ == "__main__":
    run()
