from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

import asyncpg
import structlog

from src.db.pool import store_errors
from src.db.queries import cache as cache_queries
from src.models.cache import CacheEntry

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CacheBackend(Protocol):
    """Durable tier: survives process restarts."""

    async def get(self, key: str) -> CacheEntry | None: ...

    async def put(self, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_expired(self, now: datetime) -> int: ...

    async def count(self) -> int: ...


class PgCacheBackend:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(self, key: str) -> CacheEntry | None:
        with store_errors("cache"):
            return await cache_queries.get_entry(self.pool, key)

    async def put(self, entry: CacheEntry) -> None:
        with store_errors("cache"):
            await cache_queries.upsert_entry(
                self.pool, entry.key, entry.value, entry.expires_at, entry.last_updated
            )

    async def delete(self, key: str) -> None:
        with store_errors("cache"):
            await cache_queries.delete_entry(self.pool, key)

    async def delete_expired(self, now: datetime) -> int:
        with store_errors("cache"):
            return await cache_queries.delete_expired(self.pool, now)

    async def count(self) -> int:
        with store_errors("cache"):
            return await cache_queries.count_entries(self.pool)


class MemoryCacheBackend:
    """Process-local stand-in for the durable tier (single-process runs, tests)."""

    def __init__(self) -> None:
        self.entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self.entries.get(key)

    async def put(self, entry: CacheEntry) -> None:
        self.entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self.entries.pop(key, None)

    async def delete_expired(self, now: datetime) -> int:
        expired = [key for key, entry in self.entries.items() if entry.is_expired(now)]
        for key in expired:
            del self.entries[key]
        return len(expired)

    async def count(self) -> int:
        return len(self.entries)


class CacheService:
    """Two-tier cache: an in-process dict in front of a durable backend.

    A value is never returned at or after its ``expires_at``; expired entries
    are evicted lazily on read. There is no single-flight protection here,
    concurrent misses for one domain are prevented by the rate limiter's
    per-domain serialization.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        default_ttl: timedelta = timedelta(days=30),
        memory_ttl: timedelta = timedelta(hours=1),
        now: Callable[[], datetime] = _utcnow,
    ):
        self.backend = backend
        self.default_ttl = default_ttl
        self.memory_ttl = memory_ttl
        self._now = now
        self._memory: dict[str, CacheEntry] = {}
        self.log = log.bind(service="CacheService")

    async def get(self, key: str) -> Any | None:
        now = self._now()

        entry = self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                return entry.value
            del self._memory[key]

        entry = await self.backend.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            await self.backend.delete(key)
            self.log.debug("cache_expired", key=key)
            return None

        self._memory[key] = entry.model_copy(
            update={"expires_at": min(entry.expires_at, now + self.memory_ttl)}
        )
        self.log.debug("cache_hit", key=key, tier="durable")
        return entry.value

    async def set(self, key: str, value: Any, ttl: timedelta | None = None) -> None:
        now = self._now()
        entry = CacheEntry(
            key=key,
            value=value,
            expires_at=now + (ttl if ttl is not None else self.default_ttl),
            last_updated=now,
        )
        await self.backend.put(entry)
        self._memory[key] = entry.model_copy(
            update={"expires_at": min(entry.expires_at, now + self.memory_ttl)}
        )
        self.log.info("cache_set", key=key, expires_at=entry.expires_at.isoformat())

    async def invalidate(self, key: str) -> None:
        self._memory.pop(key, None)
        await self.backend.delete(key)
        self.log.info("cache_invalidated", key=key)

    def flush(self) -> None:
        """Clear the in-process tier only; the durable tier is kept."""
        count = len(self._memory)
        self._memory.clear()
        self.log.info("memory_cache_flushed", entries=count)

    async def clean_expired(self) -> int:
        now = self._now()
        for key in [k for k, e in self._memory.items() if e.is_expired(now)]:
            del self._memory[key]
        removed = await self.backend.delete_expired(now)
        self.log.info("expired_cache_cleaned", removed=removed)
        return removed

    async def size(self) -> dict[str, int]:
        return {"memory": len(self._memory), "durable": await self.backend.count()}
