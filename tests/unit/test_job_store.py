import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import asyncpg
import pytest

from src.models.job import Job, JobStatus
from src.queue.store import MemoryJobStore, PgJobStore
from src.utils.errors import StoreUnavailableError

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def make_job(**overrides) -> Job:
    fields = {
        "id": uuid4(),
        "type": "crawl_domain",
        "payload": {"domain": "acme-widgets.com"},
        "scheduled_for": NOW,
        "created_at": NOW,
    }
    fields.update(overrides)
    return Job(**fields)


class TestMemoryJobStore:
    async def test_concurrent_claims_hand_out_each_job_once(self):
        store = MemoryJobStore()
        for _ in range(3):
            await store.insert(make_job())

        claims = await asyncio.gather(*(store.claim_next(NOW) for _ in range(10)))
        claimed = [job.id for job in claims if job is not None]

        assert len(claimed) == 3
        assert len(set(claimed)) == 3

    async def test_claim_marks_processing(self):
        store = MemoryJobStore()
        job = make_job()
        await store.insert(job)

        claimed = await store.claim_next(NOW)
        stored = await store.get(job.id)

        assert claimed.status == JobStatus.PROCESSING
        assert stored.status == JobStatus.PROCESSING
        assert stored.started_at == NOW

    async def test_exhausted_job_is_never_claimed(self):
        store = MemoryJobStore()
        await store.insert(make_job(attempts=3, max_attempts=3))

        assert await store.claim_next(NOW) is None

    async def test_updates_ignore_jobs_not_processing(self):
        store = MemoryJobStore()
        job = make_job()
        await store.insert(job)

        await store.complete(job.id, {"done": True}, NOW)
        stored = await store.get(job.id)

        assert stored.status == JobStatus.PENDING
        assert stored.result is None

    async def test_returned_jobs_do_not_alias_stored_state(self):
        store = MemoryJobStore()
        job = make_job()
        await store.insert(job)

        fetched = await store.get(job.id)
        fetched.payload["domain"] = "changed.com"

        assert (await store.get(job.id)).payload["domain"] == "acme-widgets.com"

    async def test_reschedule_then_fail(self):
        store = MemoryJobStore()
        job = make_job()
        await store.insert(job)

        await store.claim_next(NOW)
        retry_at = NOW + timedelta(minutes=2)
        await store.reschedule(job.id, attempts=1, scheduled_for=retry_at, error_message="boom")
        assert await store.claim_next(NOW) is None

        await store.claim_next(retry_at)
        await store.fail(job.id, error_message="boom again", completed_at=retry_at, attempts=2)
        stored = await store.get(job.id)

        assert stored.status == JobStatus.FAILED
        assert stored.attempts == 2
        assert stored.error_message == "boom again"


class TestPgJobStore:
    @pytest.fixture
    def pool(self):
        return MagicMock()

    async def test_claim_maps_row_to_job(self, pool):
        job_id = uuid4()
        pool.fetchrow = AsyncMock(
            return_value={
                "id": job_id,
                "job_type": "crawl_domain",
                "payload": {"domain": "acme-widgets.com"},
                "priority": 5,
                "status": "processing",
                "attempts": 0,
                "max_attempts": 3,
                "scheduled_for": NOW,
                "created_at": NOW,
                "started_at": NOW,
                "completed_at": None,
                "result": None,
                "error_message": None,
                "updated_at": NOW,
            }
        )
        store = PgJobStore(pool)

        job = await store.claim_next(NOW)

        assert job.id == job_id
        assert job.type == "crawl_domain"
        assert job.status == JobStatus.PROCESSING
        sql = pool.fetchrow.await_args.args[0]
        assert "FOR UPDATE SKIP LOCKED" in sql

    async def test_claim_returns_none_when_idle(self, pool):
        pool.fetchrow = AsyncMock(return_value=None)

        assert await PgJobStore(pool).claim_next(NOW) is None

    async def test_connection_errors_become_store_unavailable(self, pool):
        pool.fetchrow = AsyncMock(side_effect=ConnectionRefusedError("refused"))

        with pytest.raises(StoreUnavailableError) as exc:
            await PgJobStore(pool).claim_next(NOW)

        assert exc.value.store == "job_store"

    async def test_interface_errors_become_store_unavailable(self, pool):
        pool.execute = AsyncMock(side_effect=asyncpg.InterfaceError("pool is closed"))

        with pytest.raises(StoreUnavailableError):
            await PgJobStore(pool).insert(make_job())

    async def test_purge_parses_delete_status(self, pool):
        pool.execute = AsyncMock(return_value="DELETE 4")

        assert await PgJobStore(pool).purge(NOW) == 4

    async def test_release_stale_parses_update_status(self, pool):
        pool.execute = AsyncMock(return_value="UPDATE 2")

        released = await PgJobStore(pool).release_stale(
            NOW - timedelta(hours=1), NOW, error_message="lease expired"
        )

        assert released == 2
        sql = pool.execute.await_args.args[0]
        assert "attempts = attempts + 1" in sql
        assert pool.execute.await_args.args[1:4] == (
            NOW - timedelta(hours=1),
            NOW,
            "lease expired",
        )
