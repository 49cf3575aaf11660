import asyncio
import signal
from datetime import timedelta
from typing import Any

import asyncpg
import structlog

from src.config.settings import Settings, get_settings
from src.db.pool import STORE_ERRORS, close_pool, get_pool
from src.models.crawl import CrawlOptions
from src.queue.jobs import JobHandlers
from src.queue.scheduler import Scheduler
from src.queue.store import PgJobStore
from src.scraping.fetcher.factory import create_fetcher
from src.services.cache import CacheService, PgCacheBackend
from src.services.crawler import CrawlerService
from src.services.proxy_pool import ProxyRotator
from src.services.rate_limiter import RateLimiter
from src.services.robots import RobotsPolicy
from src.utils.errors import StoreUnavailableError
from src.utils.logger import setup_logging
from src.utils.retry import retry_async

log = structlog.get_logger()


class Worker:
    """Runs the scheduler loop alongside periodic maintenance until stopped."""

    def __init__(
        self,
        scheduler: Scheduler,
        crawler: CrawlerService,
        cache: CacheService,
        rate_limiter: RateLimiter,
        proxies: ProxyRotator,
        *,
        retention: timedelta = timedelta(days=7),
        lease_timeout: timedelta = timedelta(hours=1),
        maintenance_interval_s: float = 86400,
    ):
        self.scheduler = scheduler
        self.crawler = crawler
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.proxies = proxies
        self.retention = retention
        self.lease_timeout = lease_timeout
        self.maintenance_interval_s = maintenance_interval_s
        self._stopping = asyncio.Event()
        self.log = log.bind(service="Worker")

    async def run(self) -> None:
        await self.proxies.initialize()
        maintenance = asyncio.create_task(self._maintenance_loop())
        try:
            if not self._stopping.is_set():
                await self.scheduler.run()
        finally:
            self._stopping.set()
            try:
                await maintenance
            finally:
                await self.shutdown()

    def request_stop(self) -> None:
        if not self._stopping.is_set():
            self.log.info("worker_stop_requested")
        self._stopping.set()
        self.scheduler.stop()

    async def run_maintenance(self) -> dict[str, Any]:
        """One maintenance pass. Store outages are logged and skipped."""
        report: dict[str, Any] = dict.fromkeys(("jobs_recovered", "jobs_purged", "cache_cleaned"))
        try:
            report["jobs_recovered"] = await self.scheduler.recover_stale(self.lease_timeout)
            report["jobs_purged"] = await self.scheduler.purge_older_than(self.retention)
            report["cache_cleaned"] = await self.cache.clean_expired()
        except StoreUnavailableError as e:
            self.log.warning("maintenance_store_unavailable", error=str(e))
        report["domain_queues_pruned"] = self.rate_limiter.prune_idle()
        return report

    async def shutdown(self) -> None:
        self.rate_limiter.resume()
        await self.rate_limiter.drain()
        await self.crawler.close()
        await self.proxies.close()
        self.cache.flush()
        self.log.info("worker_shutdown_complete")

    async def _maintenance_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_maintenance()
            except Exception:
                self.log.exception("maintenance_failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.maintenance_interval_s)
            except TimeoutError:
                pass


def build_worker(settings: Settings, pool: asyncpg.Pool) -> Worker:
    """Wire every component from settings. Nothing here is a module-level singleton."""
    rate_limiter = RateLimiter(
        settings.max_requests_per_second,
        settings.max_concurrent,
        burst_multiplier=settings.burst_multiplier,
        domain_requests_per_second=settings.domain_rate,
    )
    proxies = ProxyRotator(
        enabled=settings.use_proxies,
        static_urls=settings.proxy_urls,
        sources=settings.proxy_sources,
        max_failures=settings.max_proxy_failures,
        test_url=settings.proxy_test_url,
        test_timeout_ms=settings.proxy_test_timeout_ms,
        sample_size=settings.proxy_test_sample,
    )
    cache = CacheService(
        PgCacheBackend(pool),
        default_ttl=timedelta(days=settings.cache_ttl_days),
        memory_ttl=timedelta(seconds=settings.memory_cache_ttl_s),
    )
    crawler = CrawlerService(
        create_fetcher(settings.fetch_engine),
        rate_limiter,
        proxies,
        cache,
        RobotsPolicy(settings.user_agent, timeout_ms=settings.robots_timeout_ms),
        crawl_delay_ms=settings.crawl_delay_ms,
        page_timeout_ms=settings.page_timeout_ms,
    )
    scheduler = Scheduler(
        PgJobStore(pool),
        poll_interval_ms=settings.poll_interval_ms,
        default_max_attempts=settings.job_max_attempts,
    )

    handlers = JobHandlers(
        crawler,
        scheduler,
        defaults=CrawlOptions(
            max_pages=settings.max_pages,
            respect_robots=settings.respect_robots,
            user_agent=settings.user_agent,
        ),
    )
    handlers.register_all()

    return Worker(
        scheduler,
        crawler,
        cache,
        rate_limiter,
        proxies,
        retention=timedelta(days=settings.retention_days),
        lease_timeout=timedelta(seconds=settings.job_lease_timeout_s),
        maintenance_interval_s=settings.maintenance_interval_s,
    )


async def main() -> None:
    settings = get_settings()
    setup_logging()

    pool = await retry_async(get_pool, max_retries=5, retry_on=STORE_ERRORS)
    worker = build_worker(settings, pool)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.request_stop)

    log.info(
        "worker_starting",
        fetch_engine=settings.fetch_engine,
        use_proxies=settings.use_proxies,
    )
    try:
        await worker.run()
    finally:
        await close_pool()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
