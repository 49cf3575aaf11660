"""Job handlers and the registration table the worker builds at startup."""

from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import ValidationError

from src.config.constants import FOLLOW_UP_JOB_PRIORITY
from src.models.crawl import CrawlOptions, CrawlResult
from src.models.job import CrawlJobPayload, Job, JobType
from src.queue.scheduler import JobHandler, Scheduler
from src.services.crawler import CrawlerService
from src.utils.errors import InvalidPayloadError

log = structlog.get_logger()

# External collaborator invoked with the job payload
Enricher = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | None]]


class JobHandlers:
    def __init__(
        self,
        crawler: CrawlerService,
        scheduler: Scheduler,
        *,
        defaults: CrawlOptions | None = None,
        enrichers: dict[JobType, Enricher] | None = None,
    ):
        self.crawler = crawler
        self.scheduler = scheduler
        self.defaults = defaults or CrawlOptions()
        self.enrichers = {JobType(k): v for k, v in (enrichers or {}).items()}
        self.log = log.bind(service="JobHandlers")

    def table(self) -> dict[JobType, JobHandler]:
        """Handlers by job type. Types without an implementation are left out."""
        handlers: dict[JobType, JobHandler] = {
            JobType.CRAWL_DOMAIN: self.crawl_domain,
            JobType.WEBSITE_ANALYSIS: self.website_analysis,
        }
        for job_type, enricher in self.enrichers.items():
            handlers.setdefault(job_type, self._wrap(enricher))
        return handlers

    def register_all(self) -> None:
        for job_type, handler in self.table().items():
            self.scheduler.register_handler(job_type, handler)

    async def crawl_domain(self, job: Job) -> dict[str, Any]:
        payload = self._payload(job)
        result = await self.crawler.crawl(payload.domain, self._options(payload))
        summary = result.summary()

        if payload.lead_id is not None and not result.error and not summary["emails"]:
            summary["follow_up_job_id"] = await self._enqueue_email_search(payload, result)
        return summary

    async def website_analysis(self, job: Job) -> dict[str, Any]:
        payload = self._payload(job)
        result = await self.crawler.crawl(payload.domain, self._options(payload))
        profile = build_site_profile(result)
        if payload.lead_id is not None:
            profile["lead_id"] = payload.lead_id
        return profile

    async def _enqueue_email_search(
        self, payload: CrawlJobPayload, result: CrawlResult
    ) -> str | None:
        if JobType.FIND_EMAILS not in self.enrichers:
            self.log.debug("email_search_unavailable", domain=result.domain)
            return None
        job_id = await self.scheduler.enqueue(
            JobType.FIND_EMAILS,
            {"lead_id": payload.lead_id, "domain": result.domain},
            FOLLOW_UP_JOB_PRIORITY,
        )
        self.log.info("email_search_enqueued", domain=result.domain, job_id=str(job_id))
        return str(job_id)

    def _options(self, payload: CrawlJobPayload) -> CrawlOptions:
        return self.defaults.model_copy(
            update={
                "max_pages": payload.max_pages or self.defaults.max_pages,
                "respect_robots": (
                    self.defaults.respect_robots
                    if payload.respect_robots is None
                    else payload.respect_robots
                ),
                "use_cache": payload.use_cache,
            }
        )

    @staticmethod
    def _payload(job: Job) -> CrawlJobPayload:
        try:
            return CrawlJobPayload.model_validate(job.payload)
        except ValidationError as e:
            raise InvalidPayloadError(
                f"Invalid {job.type} payload: {e.error_count()} error(s)"
            ) from e

    @staticmethod
    def _wrap(enricher: Enricher) -> JobHandler:
        async def handler(job: Job) -> dict[str, Any] | None:
            return await enricher(job.payload)

        return handler


def build_site_profile(result: CrawlResult) -> dict[str, Any]:
    """Aggregate a crawl into one profile of the site."""
    summary = result.summary()
    home = next((p for p in result.pages if p.path == "/"), None)
    if home is None and result.pages:
        home = result.pages[0]

    addresses: dict[str, None] = {}
    schema_types: set[str] = set()
    for page in result.pages:
        addresses.update(dict.fromkeys(page.contact_info.addresses))
        for block in page.structured_data:
            schema_types.update(_schema_types(block))

    return {
        "domain": result.domain,
        "title": home.metadata.title if home else "",
        "description": home.metadata.description if home else "",
        "language": home.metadata.language if home else None,
        "tech_stack": home.tech_stack.model_dump() if home and home.tech_stack else None,
        "emails": summary["emails"],
        "phones": summary["phones"],
        "addresses": list(addresses),
        "social_links": summary["social_links"],
        "structured_data_types": sorted(schema_types),
        "pages_analyzed": result.total_pages,
        "error": result.error,
    }


def _schema_types(block: Any) -> set[str]:
    """@type values in a JSON-LD block, including @graph members."""
    found: set[str] = set()
    items = block if isinstance(block, list) else [block]
    for item in items:
        if not isinstance(item, dict):
            continue
        kind = item.get("@type")
        if isinstance(kind, str):
            found.add(kind)
        elif isinstance(kind, list):
            found.update(k for k in kind if isinstance(k, str))
        if "@graph" in item:
            found.update(_schema_types(item["@graph"]))
    return found
