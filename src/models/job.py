from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class JobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(StrEnum):
    CRAWL_DOMAIN = "crawl_domain"
    WEBSITE_ANALYSIS = "website_analysis"
    LEAD_ENRICHMENT = "lead_enrichment"
    FIND_EMAILS = "find_emails"


class Job(BaseModel):
    """A unit of asynchronous work as persisted in the job store.

    ``type`` is kept as a plain string so that rows written by other
    producers with an unknown kind can still be loaded and failed cleanly.
    """

    id: UUID
    type: str
    payload: dict[str, Any] = {}
    priority: int = 5
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    scheduled_for: datetime
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None

    def is_eligible(self, now: datetime) -> bool:
        return (
            self.status == JobStatus.PENDING
            and self.scheduled_for <= now
            and self.attempts < self.max_attempts
        )


class CrawlJobPayload(BaseModel):
    """Payload of crawl_domain and website_analysis jobs."""

    domain: str = Field(min_length=1)
    lead_id: str | int | None = None
    max_pages: int | None = Field(default=None, gt=0)
    respect_robots: bool | None = None
    use_cache: bool = True


class JobStats(BaseModel):
    job_type: str
    status: JobStatus
    count: int
