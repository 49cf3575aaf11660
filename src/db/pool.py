import json
from collections.abc import Iterator
from contextlib import contextmanager

import asyncpg
import structlog

from src.config.settings import get_settings
from src.utils.errors import StoreUnavailableError

log = structlog.get_logger()

_pool: asyncpg.Pool | None = None

# Driver errors that mean "the store is unreachable", as opposed to bad SQL
STORE_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    TimeoutError,
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
)


async def _init_connection(conn: asyncpg.Connection) -> None:
    for pg_type in ("json", "jsonb"):
        await conn.set_type_codec(
            pg_type, encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=settings.max_concurrent + 2,
            init=_init_connection,
        )
        log.info("db_pool_created", max_size=settings.max_concurrent + 2)
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        log.info("db_pool_closed")


@contextmanager
def store_errors(store: str) -> Iterator[None]:
    """Translate driver connectivity errors into StoreUnavailableError."""
    try:
        yield
    except STORE_ERRORS as e:
        raise StoreUnavailableError(f"{store} unavailable: {e}", store=store) from e
