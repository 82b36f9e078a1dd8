from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from crosslister.models.job import Job
from crosslister.schemas.job import JobIn
from crosslister.services import job_queue
from crosslister.services.rate_limit import InMemorySlidingWindowLimiter
from worker import dispatcher


async def _enqueue(session_factory, n):
    async with session_factory() as db:
        for i in range(n):
            await job_queue.enqueue(db, JobIn.model_validate({
                "userId": "u1",
                "listingId": f"L-{i}",
                "platform": "depop",
                "normalizedListingData": {"title": f"Item {i}", "price": "10"},
            }))
            await db.commit()


@pytest.mark.asyncio
async def test_tick_dispatches_up_to_concurrency(session_factory, monkeypatch):
    sent = []
    monkeypatch.setattr(dispatcher.celery, "send_task", lambda name, args, queue: sent.append((name, args, queue)))
    await _enqueue(session_factory, 3)

    limiter = InMemorySlidingWindowLimiter(limit=10, window_seconds=60)
    assert await dispatcher._tick(session_factory, limiter, "d-1") == 2

    assert [s[0] for s in sent] == ["worker.tasks.run_job"] * 2
    assert all(s[2] == "crosslisting" for s in sent)

    async with session_factory() as db:
        statuses = sorted((await db.execute(select(Job.status))).scalars().all())
    assert statuses == ["processing", "processing", "queued"]


@pytest.mark.asyncio
async def test_tick_releases_job_when_broker_is_down(session_factory, monkeypatch):
    def _down(*args, **kwargs):
        raise ConnectionError("broker unreachable")

    monkeypatch.setattr(dispatcher.celery, "send_task", _down)
    await _enqueue(session_factory, 1)

    limiter = InMemorySlidingWindowLimiter(limit=10, window_seconds=60)
    assert await dispatcher._tick(session_factory, limiter, "d-1") == 0

    async with session_factory() as db:
        job = (await db.execute(select(Job))).scalar_one()
    assert job.status == "queued"
    assert job.attempts == 0
    assert "broker unreachable" in job.error_message


@pytest.mark.asyncio
async def test_tick_recovers_expired_leases_first(session_factory, monkeypatch):
    sent = []
    monkeypatch.setattr(dispatcher.celery, "send_task", lambda name, args, queue: sent.append(args))
    await _enqueue(session_factory, 1)

    limiter = InMemorySlidingWindowLimiter(limit=10, window_seconds=60)
    await dispatcher._tick(session_factory, limiter, "d-1")
    first_lease = sent[0][1]

    async with session_factory() as db:
        await db.execute(update(Job).values(lease_expires_at=datetime.now(timezone.utc) - timedelta(minutes=1)))
        await db.commit()

    await dispatcher._tick(session_factory, limiter, "d-2")
    assert len(sent) == 2
    assert sent[1][0] == sent[0][0]
    assert sent[1][1] != first_lease
