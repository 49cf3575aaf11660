import asyncio
import time
from collections import deque
from datetime import UTC, datetime, timedelta
from urllib.parse import urljoin, urlparse

import structlog

from src.config.constants import CRAWL_CACHE_PREFIX, ROBOTS_BLOCKED_ERROR, SEED_PATHS
from src.models.crawl import CrawlOptions, CrawlResult, PageRecord
from src.models.proxy import ProxyEndpoint
from src.models.scraping import FetchOptions, FetchResult
from src.scraping.fetcher.factory import Fetcher
from src.scraping.parser.contact_parser import ContactParser
from src.scraping.parser.html_parser import HtmlParser
from src.scraping.parser.tech_parser import TechParser
from src.services.cache import CacheService
from src.services.proxy_pool import ProxyRotator
from src.services.rate_limiter import RateLimiter
from src.services.robots import RobotsPolicy
from src.utils.errors import InvalidDomainError
from src.utils.url import clean_domain, is_valid_scrape_url, normalize_url, registrable_domain

log = structlog.get_logger()


class CrawlSession:
    """Frontier and visited set for one crawl of one domain.

    Only same-domain URLs that have never been visited or queued are
    admitted, so every URL is fetched at most once per session.
    """

    def __init__(self, domain: str, base_url: str, page_budget: int):
        self.domain = domain
        self.base_url = base_url
        self.page_budget = page_budget
        self.registrable = registrable_domain(domain)
        self.frontier: deque[str] = deque()
        self.visited: set[str] = set()
        self.skipped: list[str] = []
        self.pages: list[PageRecord] = []
        self._seen: set[str] = set()

    @property
    def done(self) -> bool:
        return not self.frontier or len(self.visited) >= self.page_budget

    def enqueue(self, url: str) -> bool:
        if not is_valid_scrape_url(url):
            return False
        url = normalize_url(url)
        if url in self._seen or url in self.visited:
            return False
        if registrable_domain(url) != self.registrable:
            return False
        self._seen.add(url)
        self.frontier.append(url)
        return True

    def next_url(self) -> str | None:
        while self.frontier:
            url = self.frontier.popleft()
            if url not in self.visited:
                return url
        return None


class CrawlerService:
    """Bounded, polite crawl of a single domain.

    Every fetch goes through the rate limiter keyed by the target domain, so
    pages of one domain are never fetched concurrently.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        rate_limiter: RateLimiter,
        proxies: ProxyRotator,
        cache: CacheService,
        robots: RobotsPolicy,
        *,
        crawl_delay_ms: int = 500,
        page_timeout_ms: int = 30000,
        cache_ttl: timedelta | None = None,
    ):
        self.fetcher = fetcher
        self.rate_limiter = rate_limiter
        self.proxies = proxies
        self.cache = cache
        self.robots = robots
        self.crawl_delay = crawl_delay_ms / 1000
        self.page_timeout_ms = page_timeout_ms
        self.cache_ttl = cache_ttl
        self.log = log.bind(service="CrawlerService")

    async def crawl(self, domain: str, options: CrawlOptions | None = None) -> CrawlResult:
        """Crawl ``domain`` and return the pages found.

        Page-level failures are logged and skipped. A robots.txt block returns
        an empty result with ``error`` set. Cache backend failures propagate
        as StoreUnavailableError.
        """
        options = options or CrawlOptions()
        domain = clean_domain(domain)
        if not domain or " " in domain or not registrable_domain(domain):
            raise InvalidDomainError(f"Invalid crawl target: {domain!r}", domain=domain)

        crawl_log = self.log.bind(domain=domain)
        cache_key = f"{CRAWL_CACHE_PREFIX}{domain}"

        if options.use_cache:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                crawl_log.info("crawl_cache_hit")
                return CrawlResult.model_validate(cached)

        base_url = f"https://{domain}/"
        delay = self.crawl_delay
        if options.respect_robots:
            if not await self.robots.is_allowed(base_url, options.user_agent):
                crawl_log.warning("crawl_blocked_by_robots")
                return CrawlResult(domain=domain, error=ROBOTS_BLOCKED_ERROR)
            robots_delay = await self.robots.crawl_delay(base_url, options.user_agent)
            if robots_delay is not None and robots_delay > delay:
                delay = robots_delay

        session = CrawlSession(domain, base_url, options.max_pages)
        for path in SEED_PATHS:
            session.enqueue(urljoin(base_url, path))

        crawl_log.info("crawl_started", max_pages=options.max_pages, delay_s=delay)
        start = time.time()

        while not session.done:
            url = session.next_url()
            if url is None:
                break
            if options.respect_robots and not await self.robots.is_allowed(
                url, options.user_agent
            ):
                session.skipped.append(url)
                crawl_log.debug("page_disallowed", url=url)
                continue

            session.visited.add(url)
            page = await self._crawl_page(session, url, options)
            if page is not None:
                session.pages.append(page)
                for link in page.links:
                    session.enqueue(link)

            if not session.done:
                await asyncio.sleep(delay)

        result = CrawlResult(domain=domain, pages=session.pages, total_pages=len(session.pages))
        crawl_log.info(
            "crawl_completed",
            pages=result.total_pages,
            visited=len(session.visited),
            skipped=len(session.skipped),
            duration_ms=int((time.time() - start) * 1000),
        )

        if result.pages:
            await self.cache.set(cache_key, result.model_dump(mode="json"), self.cache_ttl)
        return result

    async def close(self) -> None:
        await self.fetcher.close()
        await self.robots.close()

    async def _crawl_page(
        self, session: CrawlSession, url: str, options: CrawlOptions
    ) -> PageRecord | None:
        started, finished, result = await self._fetch_with_egress(session.domain, url, options)

        if result.status_code != 200:
            self.log.warning(
                "page_fetch_failed",
                domain=session.domain,
                url=url,
                status_code=result.status_code,
                error=result.error,
            )
            return None

        page_url = result.url or url
        parser = HtmlParser(result.html, page_url)
        text = parser.extract_text()
        is_home = urlparse(url).path in ("", "/")

        return PageRecord(
            url=url,
            path=urlparse(url).path or "/",
            status_code=result.status_code,
            content=result.html,
            metadata=parser.extract_metadata(),
            structured_data=parser.extract_structured_data(),
            text_content=text,
            contact_info=ContactParser(result.html, page_url, text=text).extract(),
            links=parser.extract_links(),
            tech_stack=TechParser(result.html, result.headers).detect() if is_home else None,
            fetch_started_at=started,
            fetched_at=finished,
        )

    async def _fetch_with_egress(
        self, domain: str, url: str, options: CrawlOptions
    ) -> tuple[datetime, datetime, FetchResult]:
        proxy = self.proxies.next()
        outcome = await self._fetch(domain, url, options, proxy)
        if proxy is None:
            return outcome

        if not outcome[2].network_failed:
            self.proxies.report_success(proxy)
            return outcome

        self.proxies.report_failure(proxy)
        if not self.proxies.enabled:
            self.log.info("proxy_pool_exhausted_fetching_direct", domain=domain, url=url)
            return await self._fetch(domain, url, options, None)
        return outcome

    async def _fetch(
        self, domain: str, url: str, options: CrawlOptions, proxy: ProxyEndpoint | None
    ) -> tuple[datetime, datetime, FetchResult]:
        fetch_options = FetchOptions(
            timeout=self.page_timeout_ms,
            user_agent=options.user_agent,
            proxy=proxy.url if proxy else None,
        )

        async def task() -> tuple[datetime, datetime, FetchResult]:
            started = datetime.now(UTC)
            begin = time.time()
            try:
                result = await asyncio.wait_for(
                    self.fetcher.fetch(url, fetch_options),
                    timeout=self.page_timeout_ms / 1000,
                )
            except TimeoutError:
                result = self._failed(url, begin, "timeout")
            except Exception as e:
                result = self._failed(url, begin, str(e) or type(e).__name__)
            return started, datetime.now(UTC), result

        return await self.rate_limiter.run_under_limit(domain, task)

    @staticmethod
    def _failed(url: str, begin: float, error: str) -> FetchResult:
        return FetchResult(
            url=url,
            status_code=0,
            html="",
            duration_ms=int((time.time() - begin) * 1000),
            blocked=True,
            error=error,
        )
