import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, update

from crosslister.adapters.base import CreateResult
from crosslister.core.config import settings
from crosslister.core.errors import (
    ADAPTER_UPDATE_REQUIRED,
    ElementNotFound,
    InvalidTransition,
    NetworkError,
    UnsupportedPlatform,
    ValidationRejected,
    VerificationRequired,
)
from crosslister.models.audit_log import AuditLog
from crosslister.models.job import Job, JobAttempt
from crosslister.models.platform_listing import PlatformListing
from crosslister.schemas.job import JobIn
from crosslister.services import job_queue
from crosslister.services.rate_limit import InMemorySlidingWindowLimiter

LISTING = {"title": "Wool coat", "price": "120.00", "images": ["https://img.example.com/1.jpg"]}


def _job_in(**kw) -> JobIn:
    data = {
        "userId": "u1",
        "listingId": "L-1",
        "platform": "poshmark",
        "normalizedListingData": LISTING,
        "encryptedCredentials": "00:11:22",
    }
    data.update(kw)
    return JobIn.model_validate(data)


def _limiter(limit=100, window=60):
    return InMemorySlidingWindowLimiter(limit=limit, window_seconds=window)


async def _job(db, job_id) -> Job:
    return (await db.execute(select(Job).where(Job.id == job_id).execution_options(populate_existing=True))).scalar_one()


async def _claim(db, limiter=None, **kw):
    claimed = await job_queue.claim(db, "w-1", limiter=limiter or _limiter(), **kw)
    await db.commit()
    return claimed


@pytest.mark.asyncio
async def test_enqueue_is_idempotent_on_job_id(db_session):
    first, created = await job_queue.enqueue(db_session, _job_in(jobId="job-abc"))
    await db_session.commit()
    again, created_again = await job_queue.enqueue(db_session, _job_in(jobId="job-abc", listingId="L-other"))
    await db_session.commit()

    assert created is True
    assert created_again is False
    assert again.id == first.id == "job-abc"
    assert again.listing_id == "L-1"
    assert first.status == "queued"
    assert await db_session.scalar(select(func.count()).select_from(Job)) == 1


@pytest.mark.asyncio
async def test_enqueue_rejects_unknown_platform_and_missing_listing(db_session):
    with pytest.raises(UnsupportedPlatform):
        await job_queue.enqueue(db_session, _job_in(platform="ebay"))
    with pytest.raises(ValidationRejected):
        await job_queue.enqueue(db_session, _job_in(normalizedListingData=None))

    # delete jobs carry no listing data
    job, created = await job_queue.enqueue(db_session, _job_in(operation="delete", normalizedListingData=None))
    assert created and job.operation == "delete"


@pytest.mark.asyncio
async def test_claim_moves_oldest_job_to_processing(db_session):
    a, _ = await job_queue.enqueue(db_session, _job_in(listingId="L-a"))
    await db_session.commit()
    b, _ = await job_queue.enqueue(db_session, _job_in(listingId="L-b"))
    await db_session.commit()

    claimed = await _claim(db_session)
    assert claimed.job_id == a.id
    assert claimed.attempt == 1

    job = await _job(db_session, a.id)
    assert job.status == "processing"
    assert job.lease_id == claimed.lease_id
    assert job.worker_id == "w-1"
    assert await job_queue.renew_lease(db_session, a.id, claimed.lease_id) is not None
    assert (await _job(db_session, b.id)).status == "queued"


@pytest.mark.asyncio
async def test_same_target_never_processes_twice(db_session):
    for _ in range(2):
        await job_queue.enqueue(db_session, _job_in())
        await db_session.commit()

    assert await _claim(db_session, max_concurrent=5) is not None
    # second job targets the same (listing, platform, operation)
    assert await _claim(db_session, max_concurrent=5) is None

    await job_queue.enqueue(db_session, _job_in(platform="depop"))
    await db_session.commit()
    assert await _claim(db_session, max_concurrent=5) is not None


@pytest.mark.asyncio
async def test_concurrency_ceiling(db_session):
    for i in range(3):
        await job_queue.enqueue(db_session, _job_in(listingId=f"L-{i}"))
        await db_session.commit()

    assert await _claim(db_session, max_concurrent=2) is not None
    assert await _claim(db_session, max_concurrent=2) is not None
    assert await _claim(db_session, max_concurrent=2) is None
    running = await db_session.scalar(select(func.count()).select_from(Job).where(Job.status == "processing"))
    assert running == 2


@pytest.mark.asyncio
async def test_rate_window_limits_starts(db_session):
    now = [1000.0]
    limiter = InMemorySlidingWindowLimiter(limit=2, window_seconds=60, clock=lambda: now[0])
    for i in range(3):
        await job_queue.enqueue(db_session, _job_in(listingId=f"L-{i}"))
        await db_session.commit()

    assert await _claim(db_session, limiter, max_concurrent=10) is not None
    assert await _claim(db_session, limiter, max_concurrent=10) is not None
    assert await _claim(db_session, limiter, max_concurrent=10) is None
    queued = await db_session.scalar(select(func.count()).select_from(Job).where(Job.status == "queued"))
    assert queued == 1

    now[0] += 61
    assert await _claim(db_session, limiter, max_concurrent=10) is not None


@pytest.mark.asyncio
async def test_job_not_due_is_skipped(db_session):
    job, _ = await job_queue.enqueue(db_session, _job_in())
    await db_session.execute(
        update(Job).where(Job.id == job.id).values(next_attempt_at=datetime.now(timezone.utc) + timedelta(minutes=5))
    )
    await db_session.commit()
    assert await _claim(db_session) is None


@pytest.mark.asyncio
async def test_ack_completes_and_records_platform_listing(db_session):
    job, _ = await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()
    claimed = await _claim(db_session)

    done = await job_queue.ack(
        db_session, claimed.job_id, claimed.lease_id,
        CreateResult(platform_listing_id="pm-123", platform_url="https://poshmark.com/listing/pm-123"),
        warnings=["Image 2 of 3 failed to upload"],
    )
    await db_session.commit()

    assert done.status == "completed"
    assert done.platform_listing_id == "pm-123"
    assert done.completed_at is not None
    assert done.lease_id is None
    assert done.warnings == ["Image 2 of 3 failed to upload"]

    pl = (await db_session.execute(select(PlatformListing))).scalar_one()
    assert (pl.platform_listing_id, pl.status) == ("pm-123", "active")
    attempt = (await db_session.execute(select(JobAttempt))).scalar_one()
    assert attempt.outcome == "completed"


@pytest.mark.asyncio
async def test_stale_lease_cannot_record_outcome(db_session):
    await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()
    claimed = await _claim(db_session)

    assert await job_queue.ack(db_session, claimed.job_id, "not-the-lease", None) is None
    assert (await _job(db_session, claimed.job_id)).status == "processing"


@pytest.mark.asyncio
async def test_retryable_error_backs_off_until_ceiling(db_session, monkeypatch):
    monkeypatch.setattr(settings, "max_job_attempts", 2)
    job, _ = await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()

    claimed = await _claim(db_session)
    retried = await job_queue.nack(db_session, claimed.job_id, claimed.lease_id, NetworkError("connection reset"))
    await db_session.commit()
    assert retried.status == "queued"
    assert retried.error_code == "NETWORK_ERROR"
    assert retried.next_attempt_at is not None
    assert retried.lease_id is None

    await db_session.execute(update(Job).where(Job.id == job.id).values(next_attempt_at=None))
    await db_session.commit()
    claimed = await _claim(db_session)
    assert claimed.attempt == 2

    failed = await job_queue.nack(db_session, claimed.job_id, claimed.lease_id, NetworkError("connection reset"))
    await db_session.commit()
    assert failed.status == "failed"
    assert failed.completed_at is not None

    outcomes = (await db_session.execute(
        select(JobAttempt.outcome).where(JobAttempt.job_id == job.id).order_by(JobAttempt.attempt)
    )).scalars().all()
    assert outcomes == ["retry_scheduled", "failed"]


@pytest.mark.asyncio
async def test_fatal_error_fails_immediately(db_session):
    await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()
    claimed = await _claim(db_session)

    job = await job_queue.nack(db_session, claimed.job_id, claimed.lease_id, ValidationRejected("price too low", field="price"))
    await db_session.commit()
    assert job.status == "failed"
    assert job.error_code == "VALIDATION_REJECTED"
    assert job.error_message == "price too low"


@pytest.mark.asyncio
async def test_exhausted_missing_element_reports_adapter_update(db_session, monkeypatch):
    monkeypatch.setattr(settings, "max_job_attempts", 1)
    await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()
    claimed = await _claim(db_session)

    job = await job_queue.nack(db_session, claimed.job_id, claimed.lease_id, ElementNotFound("#brand", field="brand"))
    await db_session.commit()
    assert job.status == "failed"
    assert job.error_code == ADAPTER_UPDATE_REQUIRED
    assert "brand" in job.error_message


@pytest.mark.asyncio
async def test_park_and_resume(db_session):
    job, _ = await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()
    claimed = await _claim(db_session)

    parked = await job_queue.park(db_session, claimed.job_id, claimed.lease_id, VerificationRequired("verify device"))
    await db_session.commit()
    assert parked.status == "pending_verification"
    assert parked.lease_id is None

    # parked jobs are never picked up by the dispatcher
    assert await _claim(db_session) is None

    resumed = await job_queue.resume(db_session, job.id, actor="api")
    await db_session.commit()
    assert resumed.status == "queued"
    assert resumed.attempts == 0
    assert resumed.error_message is None

    actions = (await db_session.execute(select(AuditLog.action))).scalars().all()
    assert "job.resumed" in actions

    with pytest.raises(InvalidTransition):
        await job_queue.resume(db_session, job.id)
    with pytest.raises(LookupError):
        await job_queue.resume(db_session, "job-missing")


@pytest.mark.asyncio
async def test_release_returns_job_without_counting_attempt(db_session):
    await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()
    claimed = await _claim(db_session)

    assert await job_queue.release(db_session, claimed.job_id, claimed.lease_id, reason="broker unavailable")
    await db_session.commit()

    job = await _job(db_session, claimed.job_id)
    assert job.status == "queued"
    assert job.attempts == 0
    assert job.lease_id is None
    assert await job_queue.renew_lease(db_session, claimed.job_id, claimed.lease_id) is None


@pytest.mark.asyncio
async def test_expired_leases_are_requeued(db_session):
    await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()
    claimed = await _claim(db_session)

    assert await job_queue.requeue_expired_leases(db_session) == 0

    await db_session.execute(
        update(Job).where(Job.id == claimed.job_id).values(lease_expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
    )
    await db_session.commit()
    assert await job_queue.renew_lease(db_session, claimed.job_id, claimed.lease_id) is None

    assert await job_queue.requeue_expired_leases(db_session) == 1
    await db_session.commit()
    job = await _job(db_session, claimed.job_id)
    assert job.status == "queued"
    assert job.attempts == 1


@pytest.mark.asyncio
async def test_lease_expiry_counts_toward_attempt_ceiling(db_session, monkeypatch):
    monkeypatch.setattr(settings, "max_job_attempts", 2)
    job, _ = await job_queue.enqueue(db_session, _job_in())
    await db_session.commit()

    async def _lose_worker():
        claimed = await _claim(db_session)
        await db_session.execute(
            update(Job).where(Job.id == claimed.job_id).values(lease_expires_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        )
        await db_session.commit()
        return claimed

    await _lose_worker()
    assert await job_queue.requeue_expired_leases(db_session) == 1
    await db_session.commit()
    requeued = await _job(db_session, job.id)
    assert (requeued.status, requeued.error_code) == ("queued", "LEASE_EXPIRED")
    assert requeued.next_attempt_at is None

    claimed = await _lose_worker()
    assert claimed.attempt == 2
    assert await job_queue.requeue_expired_leases(db_session) == 0
    await db_session.commit()

    failed = await _job(db_session, job.id)
    assert failed.status == "failed"
    assert failed.error_code == "LEASE_EXPIRED"
    assert failed.completed_at is not None
    assert failed.lease_id is None

    outcomes = (await db_session.execute(
        select(JobAttempt.outcome).where(JobAttempt.job_id == job.id).order_by(JobAttempt.attempt)
    )).scalars().all()
    assert outcomes == ["lease_expired", "failed"]


@pytest.mark.asyncio
@pytest.mark.skipif(
    not os.getenv("DATABASE_URL_TEST", "").startswith("postgresql"),
    reason="row and advisory locks need Postgres; set DATABASE_URL_TEST",
)
async def test_concurrent_claims_never_double_book(session_factory):
    async with session_factory() as db:
        for i in range(6):
            await job_queue.enqueue(db, _job_in(listingId=f"L-{i}"))
        # same target as L-0: may never run beside it
        await job_queue.enqueue(db, _job_in(listingId="L-0"))
        await db.commit()

    limiter = _limiter()

    async def _claim_in_own_session(worker_id):
        async with session_factory() as db:
            claimed = await job_queue.claim(db, worker_id, limiter=limiter, max_concurrent=3)
            await db.commit()
            return claimed

    results = await asyncio.gather(*[_claim_in_own_session(f"w-{i}") for i in range(10)])
    job_ids = [c.job_id for c in results if c is not None]

    assert job_ids
    assert len(job_ids) == len(set(job_ids))
    assert len(job_ids) <= 3

    async with session_factory() as db:
        running = (await db.execute(
            select(Job.id, Job.listing_id).where(Job.status == "processing")
        )).all()
    assert sorted(r.id for r in running) == sorted(job_ids)
    assert len({r.listing_id for r in running}) == len(running)
