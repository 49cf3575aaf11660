from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg

from src.models.job import Job, JobStats, JobStatus


def _row_to_job(row: asyncpg.Record) -> Job:
    data = dict(row)
    data["type"] = data.pop("job_type")
    data.pop("updated_at", None)
    return Job(**data)


async def insert_job(pool: asyncpg.Pool, job: Job) -> None:
    await pool.execute(
        """
        INSERT INTO job_queue (
            id, job_type, priority, payload, status, attempts,
            max_attempts, scheduled_for, created_at
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
        """,
        job.id,
        job.type,
        job.priority,
        job.payload,
        job.status,
        job.attempts,
        job.max_attempts,
        job.scheduled_for,
        job.created_at,
    )


async def claim_next_job(pool: asyncpg.Pool, now: datetime) -> Job | None:
    """Atomically move the best eligible pending job to processing.

    SKIP LOCKED lets concurrent workers claim different rows instead of
    blocking on (or double-claiming) the same one.
    """
    row = await pool.fetchrow(
        """
        UPDATE job_queue
        SET status = $2, started_at = $1, updated_at = NOW()
        WHERE id = (
            SELECT id FROM job_queue
            WHERE status = $3
              AND scheduled_for <= $1
              AND attempts < max_attempts
            ORDER BY priority DESC, scheduled_for ASC
            LIMIT 1
            FOR UPDATE SKIP LOCKED
        )
        RETURNING *
        """,
        now,
        JobStatus.PROCESSING,
        JobStatus.PENDING,
    )
    if row is None:
        return None
    return _row_to_job(row)


async def complete_job(
    pool: asyncpg.Pool,
    job_id: UUID,
    result: dict[str, Any] | None,
    completed_at: datetime,
) -> None:
    await pool.execute(
        """
        UPDATE job_queue
        SET status = $2, result = $3, completed_at = $4, updated_at = NOW()
        WHERE id = $1 AND status = $5
        """,
        job_id,
        JobStatus.COMPLETED,
        result,
        completed_at,
        JobStatus.PROCESSING,
    )


async def reschedule_job(
    pool: asyncpg.Pool,
    job_id: UUID,
    *,
    attempts: int,
    scheduled_for: datetime,
    error_message: str,
) -> None:
    await pool.execute(
        """
        UPDATE job_queue
        SET status = $2, attempts = $3, scheduled_for = $4,
            error_message = $5, updated_at = NOW()
        WHERE id = $1 AND status = $6
        """,
        job_id,
        JobStatus.PENDING,
        attempts,
        scheduled_for,
        error_message,
        JobStatus.PROCESSING,
    )


async def fail_job(
    pool: asyncpg.Pool,
    job_id: UUID,
    *,
    error_message: str,
    completed_at: datetime,
    attempts: int | None = None,
) -> None:
    await pool.execute(
        """
        UPDATE job_queue
        SET status = $2, error_message = $3, completed_at = $4,
            attempts = COALESCE($5, attempts), updated_at = NOW()
        WHERE id = $1 AND status = $6
        """,
        job_id,
        JobStatus.FAILED,
        error_message,
        completed_at,
        attempts,
        JobStatus.PROCESSING,
    )


async def get_job(pool: asyncpg.Pool, job_id: UUID) -> Job | None:
    row = await pool.fetchrow("SELECT * FROM job_queue WHERE id = $1", job_id)
    if row is None:
        return None
    return _row_to_job(row)


async def delete_finished_before(pool: asyncpg.Pool, cutoff: datetime) -> int:
    status = await pool.execute(
        """
        DELETE FROM job_queue
        WHERE status IN ($1, $2) AND completed_at < $3
        """,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        cutoff,
    )
    # asyncpg returns the command tag, e.g. "DELETE 12"
    return int(status.split()[-1])


async def release_stale_jobs(
    pool: asyncpg.Pool,
    started_before: datetime,
    now: datetime,
    *,
    error_message: str,
) -> int:
    """Return abandoned processing jobs to pending, or fail them when out of attempts."""
    status = await pool.execute(
        """
        UPDATE job_queue
        SET status = CASE WHEN attempts + 1 >= max_attempts
                THEN $4::varchar ELSE $5::varchar END,
            completed_at = CASE WHEN attempts + 1 >= max_attempts
                THEN $2::timestamptz ELSE NULL END,
            scheduled_for = CASE WHEN attempts + 1 >= max_attempts
                THEN scheduled_for ELSE $2::timestamptz END,
            attempts = attempts + 1,
            error_message = $3,
            updated_at = NOW()
        WHERE status = $6 AND started_at < $1
        """,
        started_before,
        now,
        error_message,
        JobStatus.FAILED,
        JobStatus.PENDING,
        JobStatus.PROCESSING,
    )
    return int(status.split()[-1])


async def count_jobs_since(pool: asyncpg.Pool, since: datetime) -> list[JobStats]:
    rows = await pool.fetch(
        """
        SELECT job_type, status, COUNT(*) AS count
        FROM job_queue
        WHERE created_at >= $1
        GROUP BY job_type, status
        ORDER BY job_type, status
        """,
        since,
    )
    return [JobStats(**dict(row)) for row in rows]
