import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import structlog

from src.config.constants import (
    BACKOFF_BASE_MINUTES,
    DEFAULT_JOB_MAX_ATTEMPTS,
    DEFAULT_JOB_PRIORITY,
    LEASE_EXPIRED_ERROR,
)
from src.models.job import Job, JobStats, JobType
from src.queue.store import JobStore
from src.utils.errors import NoHandlerError, PermanentJobError, StoreUnavailableError

log = structlog.get_logger()

JobHandler = Callable[[Job], Awaitable[dict[str, Any] | None]]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def backoff_delay(attempts: int) -> timedelta:
    """Delay before the next try once ``attempts`` tries have failed."""
    return timedelta(minutes=BACKOFF_BASE_MINUTES * 2**attempts)


class Scheduler:
    """Polls the job store, runs one claimed job at a time, and advances its state.

    pending -> processing -> completed | pending (retry with backoff) | failed
    """

    def __init__(
        self,
        store: JobStore,
        *,
        poll_interval_ms: int = 5000,
        default_max_attempts: int = DEFAULT_JOB_MAX_ATTEMPTS,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.poll_interval_ms = poll_interval_ms
        self.default_max_attempts = default_max_attempts
        self._now = now
        self._handlers: dict[JobType, JobHandler] = {}
        self._stopping = asyncio.Event()
        self._running = False
        self.log = log.bind(service="Scheduler")

    @property
    def running(self) -> bool:
        return self._running

    def register_handler(self, job_type: JobType, handler: JobHandler) -> None:
        self._handlers[JobType(job_type)] = handler
        self.log.info("handler_registered", job_type=str(job_type))

    async def enqueue(
        self,
        job_type: JobType,
        payload: dict[str, Any] | None = None,
        priority: int = DEFAULT_JOB_PRIORITY,
        *,
        scheduled_for: datetime | None = None,
        max_attempts: int | None = None,
    ) -> UUID:
        """Persist a new pending job and return its id.

        Raises StoreUnavailableError when the store is unreachable; the caller
        decides whether to drop or retry the enqueue.
        """
        if max_attempts is None:
            max_attempts = self.default_max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        now = self._now()
        job = Job(
            id=uuid4(),
            type=JobType(job_type).value,
            payload=payload or {},
            priority=priority,
            max_attempts=max_attempts,
            scheduled_for=scheduled_for or now,
            created_at=now,
        )
        await self.store.insert(job)
        self.log.info(
            "job_enqueued",
            job_id=str(job.id),
            job_type=job.type,
            priority=priority,
            scheduled_for=job.scheduled_for.isoformat(),
        )
        return job.id

    async def get_job(self, job_id: UUID) -> Job | None:
        return await self.store.get(job_id)

    async def run_once(self) -> Job | None:
        """Claim and execute the next eligible job. Returns it, or None when idle."""
        job = await self.store.claim_next(self._now())
        if job is None:
            return None
        await self._execute(job)
        return job

    async def run(self, poll_interval_ms: int | None = None) -> None:
        """Poll until stop() is called.

        After a processed job the next claim happens immediately; an empty
        queue or an unreachable store waits one poll interval.
        """
        if self._running:
            self.log.warning("scheduler_already_running")
            return

        interval = (poll_interval_ms or self.poll_interval_ms) / 1000
        self._running = True
        self._stopping.clear()
        self.log.info("scheduler_started", poll_interval_s=interval)

        try:
            while not self._stopping.is_set():
                job = None
                try:
                    job = await self.run_once()
                except StoreUnavailableError as e:
                    self.log.warning("scheduler_store_unavailable", error=str(e))
                except Exception:
                    self.log.exception("scheduler_tick_error")

                if job is not None:
                    continue
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=interval)
                except TimeoutError:
                    pass
        finally:
            self._running = False
            self.log.info("scheduler_stopped")

    def stop(self) -> None:
        """Stop polling. A job already running is allowed to finish."""
        self._stopping.set()

    async def purge_older_than(self, retention: timedelta) -> int:
        cutoff = self._now() - retention
        removed = await self.store.purge(cutoff)
        self.log.info("jobs_purged", removed=removed, cutoff=cutoff.isoformat())
        return removed

    async def recover_stale(self, lease_timeout: timedelta) -> int:
        """Release jobs stuck in processing since before ``lease_timeout`` ago.

        Covers workers that crashed mid-job and completions lost to a store
        outage. Each release counts as a failed attempt: the job goes back to
        pending, or to failed once its attempts are used up.
        """
        now = self._now()
        released = await self.store.release_stale(
            now - lease_timeout, now, error_message=LEASE_EXPIRED_ERROR
        )
        if released:
            self.log.warning("stale_jobs_released", released=released)
        return released

    async def stats(self, window: timedelta = timedelta(hours=24)) -> list[JobStats]:
        return await self.store.stats(self._now() - window)

    def _resolve(self, job_type: str) -> JobHandler:
        try:
            handler = self._handlers.get(JobType(job_type))
        except ValueError:
            handler = None
        if handler is None:
            raise NoHandlerError(job_type)
        return handler

    async def _execute(self, job: Job) -> None:
        job_log = self.log.bind(job_id=str(job.id), job_type=job.type, attempt=job.attempts + 1)

        try:
            handler = self._resolve(job.type)
        except NoHandlerError as e:
            await self.store.fail(job.id, error_message=str(e), completed_at=self._now())
            job_log.error("job_no_handler")
            return

        job_log.info("job_started")
        started = self._now()
        try:
            result = await handler(job)
        except Exception as e:
            await self._handle_failure(job, e, job_log)
            return

        completed_at = self._now()
        await self.store.complete(job.id, result, completed_at)
        job_log.info(
            "job_completed",
            duration_ms=int((completed_at - started).total_seconds() * 1000),
        )

    async def _handle_failure(self, job: Job, error: Exception, job_log: Any) -> None:
        attempts = job.attempts + 1
        message = str(error) or type(error).__name__

        if isinstance(error, PermanentJobError) or attempts >= job.max_attempts:
            await self.store.fail(
                job.id,
                error_message=message,
                completed_at=self._now(),
                attempts=attempts,
            )
            job_log.error("job_failed", attempts=attempts, error=message)
            return

        retry_at = self._now() + backoff_delay(attempts)
        await self.store.reschedule(
            job.id,
            attempts=attempts,
            scheduled_for=retry_at,
            error_message=message,
        )
        job_log.warning(
            "job_retry_scheduled",
            attempts=attempts,
            retry_at=retry_at.isoformat(),
            error=message,
        )
