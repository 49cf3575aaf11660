import time

import httpx
import structlog

from src.models.scraping import FetchEngine, FetchOptions, FetchResult

log = structlog.get_logger()

CAPTCHA_SIGNALS = (
    "captcha",
    "challenge-form",
    "cf-browser-verification",
    "recaptcha",
    "hcaptcha",
    "turnstile",
)


def detect_captcha(html: str) -> bool:
    html_lower = html.lower()
    return any(signal in html_lower for signal in CAPTCHA_SIGNALS)


class HttpFetcher:
    """Plain HTTP fetcher using httpx.

    Keeps one client per egress route (direct, or one per proxy URL) so
    connections are reused across pages of a crawl.
    """

    DEFAULT_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate",
    }

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None):
        self._transport = transport
        self._clients: dict[str | None, httpx.AsyncClient] = {}

    async def fetch(self, url: str, options: FetchOptions | None = None) -> FetchResult:
        options = options or FetchOptions()
        headers = {**self.DEFAULT_HEADERS, **options.headers}
        if options.user_agent:
            headers["User-Agent"] = options.user_agent

        client = self._client_for(options.proxy)
        start = time.time()
        try:
            response = await client.get(url, headers=headers, timeout=options.timeout / 1000)
        except httpx.HTTPError as e:
            log.debug("http_fetch_failed", url=url, error=str(e) or type(e).__name__)
            return FetchResult(
                url=url,
                status_code=0,
                html="",
                engine=FetchEngine.HTTP,
                duration_ms=int((time.time() - start) * 1000),
                blocked=True,
                error=str(e) or type(e).__name__,
            )

        html = response.text
        status_code = response.status_code
        return FetchResult(
            url=str(response.url),
            status_code=status_code,
            html=html,
            headers=dict(response.headers),
            engine=FetchEngine.HTTP,
            duration_ms=int((time.time() - start) * 1000),
            blocked=status_code in (403, 429, 503),
            captcha_detected=detect_captcha(html),
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()

    def _client_for(self, proxy: str | None) -> httpx.AsyncClient:
        client = self._clients.get(proxy)
        if client is None:
            if self._transport is not None:
                client = httpx.AsyncClient(transport=self._transport, follow_redirects=True)
            else:
                client = httpx.AsyncClient(proxy=proxy, follow_redirects=True)
            self._clients[proxy] = client
        return client
