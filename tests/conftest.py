import asyncio
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from src.models.scraping import FetchEngine, FetchOptions, FetchResult
from src.services.cache import CacheService, MemoryCacheBackend
from src.services.proxy_pool import ProxyRotator
from src.services.rate_limiter import RateLimiter
from src.services.robots import RobotsPolicy


class FakeClock:
    """Controllable UTC clock for schedulers and caches."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


class FakeFetcher:
    """Serves canned pages by URL and records every fetch."""

    def __init__(self, pages: dict[str, str] | None = None, headers: dict[str, str] | None = None):
        self.pages = pages or {}
        self.headers = headers or {}
        self.status: dict[str, int] = {}
        self.network_errors: set[str] = set()
        self.proxy_errors = False
        self.calls: list[tuple[str, str | None]] = []
        self.closed = False
        self.delay = 0.0

    async def fetch(self, url: str, options: FetchOptions | None = None) -> FetchResult:
        proxy = options.proxy if options else None
        self.calls.append((url, proxy))
        if self.delay:
            await asyncio.sleep(self.delay)

        if url in self.network_errors or (proxy and self.proxy_errors):
            return FetchResult(
                url=url,
                status_code=0,
                html="",
                engine=FetchEngine.HTTP,
                duration_ms=1,
                blocked=True,
                error="connection refused",
            )
        if url not in self.pages:
            return FetchResult(
                url=url, status_code=404, html="Not Found", engine=FetchEngine.HTTP, duration_ms=1
            )
        return FetchResult(
            url=url,
            status_code=self.status.get(url, 200),
            html=self.pages[url],
            headers=self.headers,
            engine=FetchEngine.HTTP,
            duration_ms=1,
        )

    async def close(self) -> None:
        self.closed = True

    @property
    def fetched_urls(self) -> list[str]:
        return [url for url, _ in self.calls]


def robots_client(body: str | None, status: int = 200) -> httpx.AsyncClient:
    """httpx client answering every request with the given robots.txt body."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if body is None:
            return httpx.Response(404, text="")
        return httpx.Response(status, text=body)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client.requests = requests  # type: ignore[attr-defined]
    return client


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_limiter() -> RateLimiter:
    return RateLimiter(max_requests_per_second=1000, max_concurrent=5)


@pytest.fixture
def memory_cache() -> CacheService:
    return CacheService(MemoryCacheBackend())


@pytest.fixture
def no_proxies() -> ProxyRotator:
    return ProxyRotator(enabled=False)


@pytest.fixture
def open_robots() -> RobotsPolicy:
    return RobotsPolicy("LeadCrawlBot/1.0", client=robots_client(None))


@pytest.fixture
def home_page_html() -> str:
    return """
    <html lang="en-GB">
    <head>
        <title>Acme Widgets - Industrial Widgets</title>
        <meta name="description" content="Widgets for every factory floor.">
        <meta name="keywords" content="widgets, manufacturing">
        <meta property="og:image" content="https://acme-widgets.com/og.png">
        <link rel="canonical" href="https://acme-widgets.com/">
        <script type="application/ld+json">
            {"@context": "https://schema.org", "@type": "Organization", "name": "Acme Widgets"}
        </script>
        <script type="application/ld+json">{ not valid json </script>
        <script src="https://cdn.shopify.com/s/files/theme.js"></script>
        <script src="https://www.googletagmanager.com/gtag/js?id=G-1"></script>
        <script src="//widget.intercom.io/widget/abc"></script>
    </head>
    <body>
        <nav>
            <a href="/about">About</a>
            <a href="/contact">Contact</a>
            <a href="/products/widget-x">Widget X</a>
            <a href="https://blog.acme-widgets.com/launch">Launch post</a>
            <a href="https://other-domain.com/partner">Partner</a>
            <a href="/brochure.pdf">Brochure</a>
            <a href="#top">Top</a>
        </nav>
        <p>Call us on (555) 123-4567 or write to sales@acme-widgets.com.</p>
        <a href="https://www.linkedin.com/company/acme-widgets">LinkedIn</a>
        <a href="https://twitter.com/acmewidgets">Twitter</a>
        <script>var hidden = "not visible text";</script>
    </body>
    </html>
    """


@pytest.fixture
def contact_page_html() -> str:
    return """
    <html>
    <head><title>Contact Acme</title></head>
    <body>
        <h1>Contact us</h1>
        <p>Visit us at 1200 Harbor Boulevard, Suite 300, Springfield.</p>
        <a href="mailto:hello@acme-widgets.com?subject=Hi">Email us</a>
        <a href="tel:+15551234567">Call</a>
        <a href="/">Home</a>
        <a href="/team">Team</a>
        <style>.hidden { display: none; }</style>
    </body>
    </html>
    """


@pytest.fixture
def simple_page_html() -> str:
    return "<html><head><title>Page</title></head><body><p>Plain page.</p></body></html>"


@pytest.fixture
def make_robots_client():
    return robots_client


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()
