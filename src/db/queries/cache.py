from datetime import datetime
from typing import Any

import asyncpg

from src.models.cache import CacheEntry


async def get_entry(pool: asyncpg.Pool, key: str) -> CacheEntry | None:
    row = await pool.fetchrow("SELECT * FROM crawl_cache WHERE key = $1", key)
    if row is None:
        return None
    return CacheEntry(**dict(row))


async def upsert_entry(
    pool: asyncpg.Pool,
    key: str,
    value: Any,
    expires_at: datetime,
    last_updated: datetime,
) -> None:
    await pool.execute(
        """
        INSERT INTO crawl_cache (key, value, expires_at, last_updated)
        VALUES ($1, $2, $3, $4)
        ON CONFLICT (key) DO UPDATE SET
            value = EXCLUDED.value,
            expires_at = EXCLUDED.expires_at,
            last_updated = EXCLUDED.last_updated
        """,
        key,
        value,
        expires_at,
        last_updated,
    )


async def delete_entry(pool: asyncpg.Pool, key: str) -> None:
    await pool.execute("DELETE FROM crawl_cache WHERE key = $1", key)


async def delete_expired(pool: asyncpg.Pool, now: datetime) -> int:
    status = await pool.execute("DELETE FROM crawl_cache WHERE expires_at <= $1", now)
    return int(status.split()[-1])


async def count_entries(pool: asyncpg.Pool) -> int:
    return await pool.fetchval("SELECT COUNT(*) FROM crawl_cache")
