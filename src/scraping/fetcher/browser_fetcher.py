import asyncio
import time
from urllib.parse import urlparse

from scrapling.fetchers import StealthyFetcher

from src.models.scraping import FetchEngine, FetchOptions, FetchResult
from src.scraping.fetcher.http_fetcher import detect_captcha


def _proxy_settings(proxy: str) -> dict[str, str]:
    parsed = urlparse(proxy)
    settings = {"server": f"{parsed.scheme}://{parsed.hostname}:{parsed.port}"}
    if parsed.username:
        settings["username"] = parsed.username
        settings["password"] = parsed.password or ""
    return settings


class BrowserFetcher:
    """Stealth headless browser fetcher for script-rendered sites."""

    async def fetch(self, url: str, options: FetchOptions | None = None) -> FetchResult:
        options = options or FetchOptions()
        kwargs = {"headless": True, "network_idle": True, "timeout": options.timeout}
        if options.proxy:
            kwargs["proxy"] = _proxy_settings(options.proxy)

        start = time.time()
        error = None
        try:
            fetcher = StealthyFetcher(auto_match=False)
            response = await asyncio.to_thread(fetcher.fetch, url, **kwargs)
            html = response.html_content
            status_code = response.status
        except Exception as e:
            html = ""
            status_code = 0
            error = str(e) or type(e).__name__

        return FetchResult(
            url=url,
            status_code=status_code,
            html=html,
            engine=FetchEngine.BROWSER,
            duration_ms=int((time.time() - start) * 1000),
            blocked=status_code in (0, 403, 429, 503),
            captcha_detected=detect_captcha(html),
            error=error,
        )

    async def close(self) -> None:
        """Each fetch launches its own browser; nothing to release."""
