from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from src.config.settings import Settings
from src.models.job import JobType
from src.queue.worker import build_worker
from src.scraping.fetcher.browser_fetcher import BrowserFetcher
from src.scraping.fetcher.factory import create_fetcher
from src.scraping.fetcher.http_fetcher import HttpFetcher


def test_postgres_scheme_is_rewritten():
    settings = Settings(database_url="postgres://u:p@db:5432/leadcrawl")

    assert settings.database_url == "postgresql://u:p@db:5432/leadcrawl"


def test_domain_rate_defaults_to_global_rate():
    assert Settings(max_requests_per_second=3).domain_rate == 3
    assert Settings(domain_requests_per_second=0.5).domain_rate == 0.5


def test_build_worker_wires_components():
    settings = Settings(
        max_requests_per_second=4,
        max_concurrent=3,
        use_proxies=True,
        proxy_urls=["10.0.0.1:8080"],
        fetch_engine="browser",
        retention_days=3,
    )

    worker = build_worker(settings, MagicMock())

    assert isinstance(worker.crawler.fetcher, BrowserFetcher)
    assert worker.rate_limiter.max_concurrent == 3
    assert worker.proxies.configured is True
    assert worker.retention.days == 3
    assert set(worker.scheduler._handlers) == {JobType.CRAWL_DOMAIN, JobType.WEBSITE_ANALYSIS}


def test_http_engine_is_default():
    worker = build_worker(Settings(), MagicMock())

    assert isinstance(worker.crawler.fetcher, HttpFetcher)


def test_build_worker_applies_queue_settings():
    settings = Settings(
        job_max_attempts=7,
        job_lease_timeout_s=900,
        max_requests_per_second=4,
        domain_requests_per_second=0.5,
    )

    worker = build_worker(settings, MagicMock())

    assert worker.scheduler.default_max_attempts == 7
    assert worker.lease_timeout == timedelta(minutes=15)
    assert worker.rate_limiter.domain_interval == 2.0


def test_unknown_fetch_engine_is_rejected():
    with pytest.raises(ValueError):
        create_fetcher("carrier-pigeon")
    with pytest.raises(ValidationError):
        Settings(fetch_engine="carrier-pigeon")
