from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field


class PageMetadata(BaseModel):
    title: str = ""
    description: str = ""
    keywords: str = ""
    author: str = ""
    og_image: str = ""
    canonical: str = ""
    language: str = "en"


class ContactInfo(BaseModel):
    emails: list[str] = []
    phones: list[str] = []
    addresses: list[str] = []
    social_links: dict[str, str] = {}


class TechStack(BaseModel):
    platform: str | None = None
    analytics: list[str] = []
    marketing_tools: list[str] = []
    chat_widgets: list[str] = []
    frameworks: list[str] = []
    payment: list[str] = []


class PageRecord(BaseModel):
    """One fetched and parsed page. Immutable once produced."""

    model_config = {"frozen": True}

    url: str
    path: str
    status_code: int
    content: str = Field(default="", exclude=True, repr=False)
    metadata: PageMetadata = PageMetadata()
    structured_data: list[Any] = []
    text_content: str = ""
    contact_info: ContactInfo = ContactInfo()
    links: list[str] = []
    tech_stack: TechStack | None = None
    fetch_started_at: datetime
    fetched_at: datetime


class CrawlOptions(BaseModel):
    max_pages: int = Field(default=10, gt=0)
    respect_robots: bool = True
    user_agent: str = "LeadCrawlBot/1.0"
    use_cache: bool = True


class CrawlResult(BaseModel):
    domain: str
    pages: list[PageRecord] = []
    total_pages: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    error: str | None = None

    def summary(self) -> dict[str, Any]:
        """Compact, JSON-safe view stored as a job result."""
        emails: dict[str, None] = {}
        phones: dict[str, None] = {}
        social: dict[str, str] = {}
        for page in self.pages:
            emails.update(dict.fromkeys(page.contact_info.emails))
            phones.update(dict.fromkeys(page.contact_info.phones))
            for platform, link in page.contact_info.social_links.items():
                social.setdefault(platform, link)

        return {
            "domain": self.domain,
            "total_pages": self.total_pages,
            "urls": [p.url for p in self.pages],
            "emails": list(emails),
            "phones": list(phones),
            "social_links": social,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }
