from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

from sqlalchemy import case, exists, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from crosslister.adapters.base import CreateResult
from crosslister.adapters.registry import get_adapter
from crosslister.core.config import settings
from crosslister.core.errors import (
    ADAPTER_UPDATE_REQUIRED,
    LEASE_EXPIRED,
    CrosslistError,
    ElementNotFound,
    InvalidTransition,
    ValidationRejected,
)
from crosslister.core.ids import gen_id, gen_lease_id
from crosslister.models.job import Job
from crosslister.schemas.job import JobIn
from crosslister.services import reporter
from crosslister.services.audit import audit
from crosslister.services.rate_limit import SlidingWindowRateLimiter
from crosslister.services.retry import compute_backoff_seconds
from crosslister.services.upsert import insert_ignore

log = logging.getLogger(__name__)

# pg_advisory_xact_lock key serialising claimers across dispatcher processes
CLAIM_LOCK_KEY = 0x63726F73


@dataclass(frozen=True)
class ClaimedJob:
    job_id: str
    lease_id: str
    attempt: int


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def enqueue(db: AsyncSession, job_in: JobIn) -> tuple[Job, bool]:
    """
    Store a job as `queued`. Idempotent on job id: a repeated submission
    returns the existing row untouched. Returns (job, created).
    """
    get_adapter(job_in.platform)
    if job_in.operation == "create" and job_in.normalized_listing_data is None:
        raise ValidationRejected("normalizedListingData is required for create jobs", field="normalizedListingData")

    if job_in.job_id:
        existing = (await db.execute(select(Job).where(Job.id == job_in.job_id))).scalar_one_or_none()
        if existing:
            return existing, False

    now = _now()
    job_id = job_in.job_id or gen_id("job")
    created = await insert_ignore(
        db,
        Job,
        values=dict(
            id=job_id,
            user_id=job_in.user_id,
            listing_id=job_in.listing_id,
            platform=job_in.platform.lower().strip(),
            operation=job_in.operation,
            payload=job_in.normalized_listing_data.model_dump(mode="json") if job_in.normalized_listing_data else {},
            encrypted_credentials=job_in.encrypted_credentials,
            platform_listing_id=job_in.platform_listing_id,
            status="queued",
            attempts=0,
            warnings=[],
            created_at=now,
            updated_at=now,
        ),
        conflict_columns=("id",),
    )
    job = (await db.execute(
        select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
    )).scalar_one()
    if not created:
        # concurrent submission of the same job id
        return job, False

    log.info("job %s: queued %s/%s listing=%s", job.id, job.platform, job.operation, job.listing_id)
    return job, True


async def claim(
    db: AsyncSession,
    worker_id: str,
    *,
    limiter: SlidingWindowRateLimiter,
    max_concurrent: int | None = None,
    lease_minutes: float | None = None,
) -> ClaimedJob | None:
    """
    Atomically move the oldest due job to `processing`.

    Returns None when the concurrency ceiling is reached, the rate window is
    full, or nothing is due. Must run in its own transaction; the caller
    commits.
    """
    max_concurrent = settings.max_concurrent_jobs if max_concurrent is None else max_concurrent
    lease_minutes = settings.lease_minutes if lease_minutes is None else lease_minutes

    if db.get_bind().dialect.name == "postgresql":
        # held until commit; the count below cannot go stale under us
        await db.execute(select(func.pg_advisory_xact_lock(CLAIM_LOCK_KEY)))

    running = await db.scalar(select(func.count()).select_from(Job).where(Job.status == "processing"))
    if running >= max_concurrent:
        log.debug("claim: %d/%d jobs running", running, max_concurrent)
        return None

    now = _now()
    other = aliased(Job)
    busy = exists().where(
        other.status == "processing",
        other.listing_id == Job.listing_id,
        other.platform == Job.platform,
        other.operation == Job.operation,
    )
    stmt = (
        select(Job.id)
        .where(
            Job.status == "queued",
            or_(Job.next_attempt_at.is_(None), Job.next_attempt_at <= now),
            ~busy,
        )
        .order_by(Job.created_at.asc(), Job.id.asc())
        .with_for_update(skip_locked=True, of=Job)
        .limit(1)
    )
    job_id = (await db.execute(stmt)).scalar_one_or_none()
    if job_id is None:
        return None

    rate = await limiter.try_acquire()
    if not rate.allowed:
        log.info("claim: rate window full, next start in %ds", rate.reset_seconds)
        return None

    lease_id = gen_lease_id()
    result = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == "queued")
        .values(
            status="processing",
            worker_id=worker_id,
            lease_id=lease_id,
            lease_expires_at=now + timedelta(minutes=lease_minutes),
            attempts=Job.attempts + 1,
            next_attempt_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        return None

    attempt = await db.scalar(select(Job.attempts).where(Job.id == job_id))
    log.info("claim: job %s -> %s lease=%s attempt=%d", job_id, worker_id, lease_id, attempt)
    return ClaimedJob(job_id=job_id, lease_id=lease_id, attempt=int(attempt))


async def _owned(db: AsyncSession, job_id: str, lease_id: str) -> bool:
    found = await db.scalar(
        select(Job.id)
        .where(Job.id == job_id, Job.lease_id == lease_id, Job.status == "processing")
        .with_for_update()
    )
    if found is None:
        log.warning("job %s: lease %s lost, outcome not recorded", job_id, lease_id)
        return False
    return True


async def ack(
    db: AsyncSession,
    job_id: str,
    lease_id: str,
    result: CreateResult | None,
    *,
    warnings: Sequence[str] = (),
    callback: reporter.StatusCallback | None = None,
) -> Job | None:
    if not await _owned(db, job_id, lease_id):
        return None
    return await reporter.record_success(db, job_id, result, warnings=warnings, callback=callback)


async def nack(
    db: AsyncSession,
    job_id: str,
    lease_id: str,
    error: CrosslistError,
    *,
    retryable: bool | None = None,
    warnings: Sequence[str] = (),
    callback: reporter.StatusCallback | None = None,
) -> Job | None:
    """
    Retryable errors go back to `queued` with backoff until the attempt
    ceiling; everything else (and exhausted retries) ends in `failed`.
    """
    if not await _owned(db, job_id, lease_id):
        return None

    retryable = error.retryable if retryable is None else retryable
    attempts = int(await db.scalar(select(Job.attempts).where(Job.id == job_id)) or 0)
    detail = error.to_detail()

    if retryable and attempts < settings.max_job_attempts:
        delay = compute_backoff_seconds(attempts)
        return await reporter.record_retry(
            db,
            job_id,
            code=error.code,
            message=error.message,
            next_attempt_at=_now() + timedelta(seconds=delay),
            detail=detail,
            warnings=warnings,
            callback=callback,
        )

    code, message = error.code, error.message
    if isinstance(error, ElementNotFound) and retryable:
        # the same selector kept missing: the page changed under the adapter
        code = ADAPTER_UPDATE_REQUIRED
        message = f"The {error.field or 'form'} step could not be completed; the marketplace page has changed. {error.message}"

    return await reporter.record_failure(
        db,
        job_id,
        code=code,
        message=message,
        detail=detail | {"attempts": attempts},
        warnings=warnings,
        callback=callback,
    )


async def park(
    db: AsyncSession,
    job_id: str,
    lease_id: str,
    error: CrosslistError,
    *,
    warnings: Sequence[str] = (),
    callback: reporter.StatusCallback | None = None,
) -> Job | None:
    if not await _owned(db, job_id, lease_id):
        return None
    return await reporter.record_verification(
        db,
        job_id,
        code=error.code,
        message=error.message,
        detail=error.to_detail(),
        warnings=warnings,
        callback=callback,
    )


async def resume(
    db: AsyncSession,
    job_id: str,
    *,
    actor: str | None = None,
    callback: reporter.StatusCallback | None = None,
) -> Job:
    """
    Seller finished the marketplace challenge: back to `queued` with a fresh
    attempt budget. Raises InvalidTransition from any other state.
    """
    job = (await db.execute(select(Job).where(Job.id == job_id).with_for_update())).scalar_one_or_none()
    if job is None:
        raise LookupError(f"job {job_id} not found")
    if job.status != "pending_verification":
        raise InvalidTransition(job.status, "queued")

    await db.execute(update(Job).where(Job.id == job_id).values(attempts=0))
    job = await reporter.update_status(db, job_id, "queued", callback=callback)
    await audit(
        db,
        action="job.resumed",
        user_id=job.user_id,
        platform=job.platform,
        actor=actor,
        target_type="crosslisting_job",
        target_id=job.id,
    )
    log.info("job %s: resumed by %s", job.id, actor or "caller")
    return job


async def release(db: AsyncSession, job_id: str, lease_id: str, *, reason: str) -> bool:
    """Hand a claimed job back without counting the attempt (e.g. broker send failed)."""
    result = await db.execute(
        update(Job)
        .where(Job.id == job_id, Job.lease_id == lease_id, Job.status == "processing")
        .values(
            status="queued",
            lease_id=None,
            lease_expires_at=None,
            worker_id=None,
            attempts=case((Job.attempts > 0, Job.attempts - 1), else_=0),
            error_message=f"released: {reason}",
            updated_at=_now(),
        )
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


async def renew_lease(
    db: AsyncSession,
    job_id: str,
    lease_id: str,
    *,
    lease_minutes: float | None = None,
) -> datetime | None:
    """
    Push the lease deadline out by a full lease. Returns the new deadline, or
    None when the lease is not ours any more or has already run out. An
    expired lease is never revived.
    """
    lease_minutes = settings.lease_minutes if lease_minutes is None else lease_minutes
    now = _now()
    expires_at = now + timedelta(minutes=lease_minutes)
    result = await db.execute(
        update(Job)
        .where(
            Job.id == job_id,
            Job.lease_id == lease_id,
            Job.status == "processing",
            or_(Job.lease_expires_at.is_(None), Job.lease_expires_at > now),
        )
        .values(lease_expires_at=expires_at, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return None
    return expires_at


async def requeue_expired_leases(db: AsyncSession) -> int:
    """
    Recover jobs whose worker stopped renewing its lease. Jobs with attempts
    left go back to `queued`; the rest end in `failed`. Returns the number
    requeued.
    """
    now = _now()
    expired = (await db.execute(
        select(Job.id, Job.attempts)
        .where(
            Job.status == "processing",
            Job.lease_expires_at.is_not(None),
            Job.lease_expires_at < now,
        )
        .with_for_update(skip_locked=True)
    )).all()

    requeued = 0
    for job_id, attempts in expired:
        message = f"Worker lost on attempt {attempts}: lease expired"
        if attempts >= settings.max_job_attempts:
            await reporter.record_failure(db, job_id, code=LEASE_EXPIRED, message=message, detail={"attempts": attempts})
            continue
        job = (await db.execute(
            select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        )).scalar_one()
        await reporter.record_attempt(db, job, outcome="lease_expired", error_code=LEASE_EXPIRED, error_message=message)
        await reporter.update_status(db, job_id, "queued", error_code=LEASE_EXPIRED, error_message=message)
        requeued += 1

    if expired:
        log.warning("expired leases: %d requeued, %d failed", requeued, len(expired) - requeued)
    return requeued
