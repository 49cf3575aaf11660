import asyncio
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog

from src.models.proxy import ProxyEndpoint

log = structlog.get_logger()


def parse_proxy(raw: str) -> ProxyEndpoint | None:
    """Parse ``host:port`` or ``scheme://[user:pass@]host:port``. None if malformed."""
    value = raw.strip()
    if not value or value.startswith("#"):
        return None
    if "://" not in value:
        value = f"http://{value}"

    parsed = urlparse(value)
    try:
        port = parsed.port
    except ValueError:
        return None
    if not parsed.hostname or port is None:
        return None

    return ProxyEndpoint(
        host=parsed.hostname,
        port=port,
        protocol=parsed.scheme or "http",
        username=parsed.username,
        password=parsed.password,
    )


class ProxyRotator:
    """Round-robin pool of outbound proxies with failure tracking.

    ``next()`` returning None means "use direct egress". The rotator never
    retries anything itself; callers report each outcome. All state changes
    happen without awaiting, so concurrent tasks on one event loop cannot
    interleave inside an update.
    """

    def __init__(
        self,
        *,
        enabled: bool = False,
        static_urls: Iterable[str] = (),
        sources: Iterable[str] = (),
        max_failures: int = 3,
        test_url: str = "https://httpbin.org/ip",
        test_timeout_ms: int = 5000,
        sample_size: int = 20,
        client: httpx.AsyncClient | None = None,
    ):
        self.configured = enabled
        self.enabled = False
        self.static_urls = list(static_urls)
        self.sources = list(sources)
        self.max_failures = max_failures
        self.test_url = test_url
        self.test_timeout = test_timeout_ms / 1000
        self.sample_size = sample_size
        self._client = client
        self._owns_client = client is None
        self._proxies: list[ProxyEndpoint] = []
        self._cursor = 0
        self.log = log.bind(service="ProxyRotator")

    @property
    def size(self) -> int:
        return len(self._proxies)

    async def initialize(self) -> None:
        """Load candidates and keep the ones that pass a health check."""
        if not self.configured:
            self.log.info("proxy_rotation_disabled")
            return

        candidates: dict[str, ProxyEndpoint] = {}
        for raw in self.static_urls:
            endpoint = parse_proxy(raw)
            if endpoint:
                candidates.setdefault(endpoint.key, endpoint)
        for endpoint in await self._fetch_sources():
            candidates.setdefault(endpoint.key, endpoint)

        sample = list(candidates.values())[: self.sample_size]
        healthy = await asyncio.gather(*(self._is_healthy(p) for p in sample))
        self._proxies = [p for p, ok in zip(sample, healthy, strict=True) if ok]
        self._cursor = 0
        self.enabled = bool(self._proxies)

        if self.enabled:
            self.log.info("proxies_initialized", tested=len(sample), working=len(self._proxies))
        else:
            self.log.warning("no_working_proxies", tested=len(sample))

    def next(self) -> ProxyEndpoint | None:
        if not self.enabled or not self._proxies:
            return None

        for _ in range(len(self._proxies)):
            endpoint = self._proxies[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._proxies)
            if endpoint.consecutive_failures < self.max_failures:
                endpoint.last_used_at = datetime.now(UTC)
                return endpoint

        self.log.warning("all_proxies_failing")
        self.enabled = False
        return None

    def report_success(self, endpoint: ProxyEndpoint | None) -> None:
        if endpoint is None:
            return
        current = self._find(endpoint.key)
        if current is not None:
            current.consecutive_failures = 0

    def report_failure(self, endpoint: ProxyEndpoint | None) -> None:
        if endpoint is None:
            return
        current = self._find(endpoint.key)
        if current is None:
            return

        current.consecutive_failures += 1
        self.log.warning(
            "proxy_failed", proxy=current.key, failures=current.consecutive_failures
        )
        if current.consecutive_failures >= self.max_failures:
            self._remove(current)

    async def refresh(self) -> None:
        self.log.info("proxies_refreshing")
        self._proxies = []
        self._cursor = 0
        self.enabled = False
        await self.initialize()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def stats(self) -> dict[str, Any]:
        return {
            "total_proxies": len(self._proxies),
            "failing_proxies": sum(1 for p in self._proxies if p.consecutive_failures),
            "cursor": self._cursor,
            "enabled": self.enabled,
        }

    def _find(self, key: str) -> ProxyEndpoint | None:
        for endpoint in self._proxies:
            if endpoint.key == key:
                return endpoint
        return None

    def _remove(self, endpoint: ProxyEndpoint) -> None:
        index = self._proxies.index(endpoint)
        del self._proxies[index]
        if index < self._cursor:
            self._cursor -= 1
        self.log.info("proxy_removed", proxy=endpoint.key, remaining=len(self._proxies))

        if self._proxies:
            self._cursor %= len(self._proxies)
        else:
            self._cursor = 0
            self.enabled = False
            self.log.warning("proxy_pool_exhausted")

    async def _fetch_sources(self) -> list[ProxyEndpoint]:
        if not self.sources:
            return []
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)

        endpoints: list[ProxyEndpoint] = []
        for source in self.sources:
            try:
                r = await self._client.get(source)
                r.raise_for_status()
            except httpx.HTTPError as e:
                self.log.error("proxy_source_failed", source=source, error=str(e))
                continue
            for line in r.text.splitlines():
                endpoint = parse_proxy(line)
                if endpoint:
                    endpoints.append(endpoint)
        return endpoints

    async def _is_healthy(self, endpoint: ProxyEndpoint) -> bool:
        try:
            async with httpx.AsyncClient(proxy=endpoint.url, timeout=self.test_timeout) as client:
                r = await client.get(self.test_url)
        except (httpx.HTTPError, ValueError) as e:
            self.log.debug("proxy_check_failed", proxy=endpoint.key, error=str(e))
            return False
        return r.status_code == 200
