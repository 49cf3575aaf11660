import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from src.config.constants import REQUEST_HISTORY_MINUTES

log = structlog.get_logger()


class _DomainQueue:
    """Serializes dispatches for one domain."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.last_dispatch: float | None = None
        self.pending = 0


class RateLimiter:
    """Admission control for fetches, globally and per target domain.

    Each domain gets a FIFO queue with at most one task in flight, and
    consecutive dispatches for a domain start at least
    ``1 / domain_requests_per_second`` seconds apart. Across domains, at
    most ``max_concurrent`` tasks run at once and dispatches draw from a
    token bucket refilled at ``max_requests_per_second`` that can hold
    ``max_requests_per_second * burst_multiplier`` tokens.
    """

    def __init__(
        self,
        max_requests_per_second: float = 2.0,
        max_concurrent: int = 5,
        *,
        burst_multiplier: float = 5.0,
        domain_requests_per_second: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_requests_per_second <= 0:
            raise ValueError("max_requests_per_second must be positive")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.max_requests_per_second = max_requests_per_second
        self.max_concurrent = max_concurrent
        self.domain_interval = 1.0 / (domain_requests_per_second or max_requests_per_second)
        self._clock = clock

        self._capacity = max(1.0, max_requests_per_second * burst_multiplier)
        self._tokens = self._capacity
        self._refilled_at = clock()

        self._global = asyncio.Semaphore(max_concurrent)
        self._domains: dict[str, _DomainQueue] = {}
        self._history: dict[str, deque[float]] = {}
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._idle = asyncio.Event()
        self._idle.set()
        self._pending = 0
        self._in_flight = 0

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    async def run_under_limit[T](self, domain: str, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` once admitted for ``domain`` and return its result.

        Errors raised by the task propagate unchanged; nothing is retried here.
        """
        queue = self._domains.get(domain)
        if queue is None:
            queue = self._domains[domain] = _DomainQueue()

        queue.pending += 1
        self._pending += 1
        self._idle.clear()
        try:
            async with queue.lock:
                await self._wait_for_spacing(queue)
                await self._resumed.wait()
                async with self._global:
                    await self._take_token()
                    queue.last_dispatch = self._clock()
                    self._track(domain, queue.last_dispatch)
                    self._in_flight += 1
                    log.debug("request_dispatched", domain=domain, in_flight=self._in_flight)
                    try:
                        return await task()
                    finally:
                        self._in_flight -= 1
        finally:
            queue.pending -= 1
            self._pending -= 1
            if self._pending == 0:
                self._idle.set()

    def recent_count(self, domain: str, window_minutes: float = 1) -> int:
        """Number of dispatches for ``domain`` within the trailing window.

        History is kept for REQUEST_HISTORY_MINUTES, so longer windows are
        clamped to that.
        """
        history = self._history.get(domain)
        if not history:
            return 0
        window_minutes = min(window_minutes, REQUEST_HISTORY_MINUTES)
        cutoff = self._clock() - window_minutes * 60
        return sum(1 for ts in history if ts >= cutoff)

    async def drain(self) -> None:
        """Wait until every queued and in-flight task has finished.

        Never returns while paused with work still queued.
        """
        await self._idle.wait()

    def pause(self) -> None:
        """Stop dispatching new tasks. Queued tasks wait; in-flight ones continue."""
        if not self.paused:
            self._resumed.clear()
            log.info("rate_limiter_paused", pending=self._pending)

    def resume(self) -> None:
        if self.paused:
            self._resumed.set()
            log.info("rate_limiter_resumed", pending=self._pending)

    def clear_domain(self, domain: str) -> bool:
        """Forget an idle domain's queue. Returns False if it still has work."""
        queue = self._domains.get(domain)
        if queue is None:
            return True
        if queue.pending:
            log.warning("domain_queue_busy", domain=domain, pending=queue.pending)
            return False
        del self._domains[domain]
        log.info("domain_queue_cleared", domain=domain)
        return True

    def prune_idle(self) -> int:
        """Drop idle domain queues whose spacing window has passed, and old history."""
        now = self._clock()
        idle = [
            domain
            for domain, queue in self._domains.items()
            if not queue.pending
            and (queue.last_dispatch is None or now - queue.last_dispatch >= self.domain_interval)
        ]
        for domain in idle:
            del self._domains[domain]

        for domain in list(self._history):
            self._trim_history(domain, now)
            if not self._history[domain]:
                del self._history[domain]

        if idle:
            log.info("domain_queues_pruned", removed=len(idle), active=len(self._domains))
        return len(idle)

    def stats(self) -> dict[str, Any]:
        return {
            "global": {
                "in_flight": self._in_flight,
                "pending": self._pending,
                "tokens": round(self._tokens, 2),
                "paused": self.paused,
            },
            "domains": {
                domain: {
                    "pending": queue.pending,
                    "recent_requests": self.recent_count(domain, 5),
                }
                for domain, queue in self._domains.items()
            },
        }

    async def _wait_for_spacing(self, queue: _DomainQueue) -> None:
        # Sleeps can wake a little early, so re-check against the clock
        while queue.last_dispatch is not None:
            remaining = self.domain_interval - (self._clock() - queue.last_dispatch)
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    async def _take_token(self) -> None:
        while True:
            now = self._clock()
            elapsed = now - self._refilled_at
            refill = elapsed * self.max_requests_per_second
            self._tokens = min(self._capacity, self._tokens + refill)
            self._refilled_at = now
            if self._tokens >= 1:
                self._tokens -= 1
                return
            await asyncio.sleep((1 - self._tokens) / self.max_requests_per_second)

    def _track(self, domain: str, ts: float) -> None:
        history = self._history.setdefault(domain, deque())
        history.append(ts)
        self._trim_history(domain, ts)

    def _trim_history(self, domain: str, now: float) -> None:
        history = self._history[domain]
        cutoff = now - REQUEST_HISTORY_MINUTES * 60
        while history and history[0] < cutoff:
            history.popleft()
