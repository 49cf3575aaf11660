from typing import Protocol

from src.models.scraping import FetchEngine, FetchOptions, FetchResult
from src.scraping.fetcher.browser_fetcher import BrowserFetcher
from src.scraping.fetcher.http_fetcher import HttpFetcher


class Fetcher(Protocol):
    async def fetch(self, url: str, options: FetchOptions | None = None) -> FetchResult: ...

    async def close(self) -> None: ...


_FETCHERS: dict[FetchEngine, type[HttpFetcher] | type[BrowserFetcher]] = {
    FetchEngine.HTTP: HttpFetcher,
    FetchEngine.BROWSER: BrowserFetcher,
}


def create_fetcher(engine: FetchEngine | str) -> Fetcher:
    """Create a fetcher for the given engine. Unknown engine names raise ValueError."""
    fetcher_class = _FETCHERS[FetchEngine(engine)]
    return fetcher_class()
