"""Job store backends: Postgres for production, in-process for single-process runs."""

import asyncio
from collections import Counter
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

import asyncpg

from src.db.pool import store_errors
from src.db.queries import jobs as job_queries
from src.models.job import Job, JobStats, JobStatus


class JobStore(Protocol):
    async def insert(self, job: Job) -> None: ...

    async def claim_next(self, now: datetime) -> Job | None: ...

    async def complete(
        self, job_id: UUID, result: dict[str, Any] | None, completed_at: datetime
    ) -> None: ...

    async def reschedule(
        self, job_id: UUID, *, attempts: int, scheduled_for: datetime, error_message: str
    ) -> None: ...

    async def fail(
        self,
        job_id: UUID,
        *,
        error_message: str,
        completed_at: datetime,
        attempts: int | None = None,
    ) -> None: ...

    async def get(self, job_id: UUID) -> Job | None: ...

    async def purge(self, cutoff: datetime) -> int: ...

    async def release_stale(
        self, started_before: datetime, now: datetime, *, error_message: str
    ) -> int: ...

    async def stats(self, since: datetime) -> list[JobStats]: ...


class PgJobStore:
    """Job store on the job_queue table."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def insert(self, job: Job) -> None:
        with store_errors("job_store"):
            await job_queries.insert_job(self.pool, job)

    async def claim_next(self, now: datetime) -> Job | None:
        with store_errors("job_store"):
            return await job_queries.claim_next_job(self.pool, now)

    async def complete(
        self, job_id: UUID, result: dict[str, Any] | None, completed_at: datetime
    ) -> None:
        with store_errors("job_store"):
            await job_queries.complete_job(self.pool, job_id, result, completed_at)

    async def reschedule(
        self, job_id: UUID, *, attempts: int, scheduled_for: datetime, error_message: str
    ) -> None:
        with store_errors("job_store"):
            await job_queries.reschedule_job(
                self.pool,
                job_id,
                attempts=attempts,
                scheduled_for=scheduled_for,
                error_message=error_message,
            )

    async def fail(
        self,
        job_id: UUID,
        *,
        error_message: str,
        completed_at: datetime,
        attempts: int | None = None,
    ) -> None:
        with store_errors("job_store"):
            await job_queries.fail_job(
                self.pool,
                job_id,
                error_message=error_message,
                completed_at=completed_at,
                attempts=attempts,
            )

    async def get(self, job_id: UUID) -> Job | None:
        with store_errors("job_store"):
            return await job_queries.get_job(self.pool, job_id)

    async def purge(self, cutoff: datetime) -> int:
        with store_errors("job_store"):
            return await job_queries.delete_finished_before(self.pool, cutoff)

    async def release_stale(
        self, started_before: datetime, now: datetime, *, error_message: str
    ) -> int:
        with store_errors("job_store"):
            return await job_queries.release_stale_jobs(
                self.pool, started_before, now, error_message=error_message
            )

    async def stats(self, since: datetime) -> list[JobStats]:
        with store_errors("job_store"):
            return await job_queries.count_jobs_since(self.pool, since)


class MemoryJobStore:
    """In-process job store.

    Claims are serialized by a lock, which gives the same exactly-one-claimer
    guarantee as the Postgres store within a single event loop. Jobs are
    copied on the way in and out so callers never alias stored state.
    """

    def __init__(self) -> None:
        self._jobs: dict[UUID, Job] = {}
        self._lock = asyncio.Lock()

    async def insert(self, job: Job) -> None:
        async with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)

    async def claim_next(self, now: datetime) -> Job | None:
        async with self._lock:
            eligible = [job for job in self._jobs.values() if job.is_eligible(now)]
            if not eligible:
                return None
            job = min(eligible, key=lambda j: (-j.priority, j.scheduled_for))
            job.status = JobStatus.PROCESSING
            job.started_at = now
            return job.model_copy(deep=True)

    async def complete(
        self, job_id: UUID, result: dict[str, Any] | None, completed_at: datetime
    ) -> None:
        async with self._lock:
            job = self._processing(job_id)
            if job is None:
                return
            job.status = JobStatus.COMPLETED
            job.result = result
            job.completed_at = completed_at

    async def reschedule(
        self, job_id: UUID, *, attempts: int, scheduled_for: datetime, error_message: str
    ) -> None:
        async with self._lock:
            job = self._processing(job_id)
            if job is None:
                return
            job.status = JobStatus.PENDING
            job.attempts = attempts
            job.scheduled_for = scheduled_for
            job.error_message = error_message

    async def fail(
        self,
        job_id: UUID,
        *,
        error_message: str,
        completed_at: datetime,
        attempts: int | None = None,
    ) -> None:
        async with self._lock:
            job = self._processing(job_id)
            if job is None:
                return
            job.status = JobStatus.FAILED
            job.error_message = error_message
            job.completed_at = completed_at
            if attempts is not None:
                job.attempts = attempts

    async def get(self, job_id: UUID) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def purge(self, cutoff: datetime) -> int:
        async with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status in (JobStatus.COMPLETED, JobStatus.FAILED)
                and job.completed_at is not None
                and job.completed_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
            return len(expired)

    async def release_stale(
        self, started_before: datetime, now: datetime, *, error_message: str
    ) -> int:
        async with self._lock:
            stale = [
                job
                for job in self._jobs.values()
                if job.status == JobStatus.PROCESSING
                and job.started_at is not None
                and job.started_at < started_before
            ]
            for job in stale:
                job.attempts += 1
                job.error_message = error_message
                if job.attempts >= job.max_attempts:
                    job.status = JobStatus.FAILED
                    job.completed_at = now
                else:
                    job.status = JobStatus.PENDING
                    job.scheduled_for = now
            return len(stale)

    async def stats(self, since: datetime) -> list[JobStats]:
        counts = Counter(
            (job.type, job.status) for job in self._jobs.values() if job.created_at >= since
        )
        return [
            JobStats(job_type=job_type, status=status, count=count)
            for (job_type, status), count in sorted(counts.items())
        ]

    def _processing(self, job_id: UUID) -> Job | None:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            return None
        return job
