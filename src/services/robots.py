from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx
import structlog

log = structlog.get_logger()


class RobotsPolicy:
    """robots.txt checks, one fetch per origin for the lifetime of the policy.

    A robots.txt that can't be fetched, or that answers with anything but a
    2xx/4xx, allows everything. A 4xx means no rules.
    """

    def __init__(
        self,
        user_agent: str,
        *,
        timeout_ms: int = 5000,
        client: httpx.AsyncClient | None = None,
    ):
        self.user_agent = user_agent
        self._client = client or httpx.AsyncClient(
            timeout=timeout_ms / 1000,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
        )
        self._owns_client = client is None
        self._parsers: dict[str, RobotFileParser | None] = {}

    async def is_allowed(self, url: str, user_agent: str | None = None) -> bool:
        parser = await self._parser_for(url)
        if parser is None:
            return True
        return parser.can_fetch(user_agent or self.user_agent, url)

    async def crawl_delay(self, url: str, user_agent: str | None = None) -> float | None:
        """Crawl-delay in seconds declared for our agent, if any."""
        parser = await self._parser_for(url)
        if parser is None:
            return None
        delay = parser.crawl_delay(user_agent or self.user_agent)
        return float(delay) if delay is not None else None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _parser_for(self, url: str) -> RobotFileParser | None:
        origin = self._origin(url)
        if origin in self._parsers:
            return self._parsers[origin]

        robots_url = f"{origin}/robots.txt"
        parser: RobotFileParser | None = None
        try:
            r = await self._client.get(robots_url)
            if 200 <= r.status_code < 300:
                parser = RobotFileParser(robots_url)
                parser.parse(r.text.splitlines())
            else:
                log.debug("robots_unavailable", url=robots_url, status=r.status_code)
        except httpx.HTTPError as e:
            log.debug("robots_fetch_failed", url=robots_url, error=str(e))

        self._parsers[origin] = parser
        return parser

    @staticmethod
    def _origin(url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme or 'https'}://{parsed.netloc}"
