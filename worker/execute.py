from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.adapters.base import CreateResult, PlatformAdapter
from crosslister.adapters.capabilities import fit_listing
from crosslister.adapters.registry import get_adapter
from crosslister.automation.browser import BrowserPool
from crosslister.automation.context import ExecutionContext
from crosslister.automation.timing import ExecutionMode
from crosslister.core.config import settings
from crosslister.core.errors import (
    AuthenticationFailure,
    CrosslistError,
    NetworkError,
    OperationTimeout,
    ValidationRejected,
    VerificationRequired,
)
from crosslister.core.telemetry import tracer
from crosslister.models.job import Job
from crosslister.models.platform_listing import PlatformListing
from crosslister.schemas.listing import NormalizedListing
from crosslister.services import job_queue, reporter
from crosslister.services.http_client import CrosslistHttpClient
from crosslister.sessions.manager import SessionManager
from crosslister.sessions.types import Session

log = logging.getLogger(__name__)

# a run stops this long before its lease would expire
LEASE_SAFETY_MARGIN_SECONDS = 30


async def _platform_listing_id(db: AsyncSession, job: Job) -> tuple[str, str | None]:
    if job.platform_listing_id:
        return job.platform_listing_id, job.platform_url
    row = (await db.execute(
        select(PlatformListing).where(
            PlatformListing.listing_id == job.listing_id,
            PlatformListing.platform == job.platform,
        )
    )).scalar_one_or_none()
    if not row or not row.platform_listing_id:
        raise ValidationRejected(
            f"No {job.platform} listing is known for {job.listing_id}; nothing to delete",
            field="platformListingId",
        )
    return row.platform_listing_id, row.platform_url


async def _perform(
    db: AsyncSession,
    job: Job,
    adapter: PlatformAdapter,
    session: Session,
    listing: NormalizedListing | None,
    ctx: ExecutionContext,
) -> CreateResult:
    if job.operation == "delete":
        if not adapter.capabilities().supports_delete:
            raise ValidationRejected(f"{job.platform} does not support delete")
        platform_listing_id, url = await _platform_listing_id(db, job)
        await adapter.delete_listing(session, platform_listing_id, ctx)
        return CreateResult(platform_listing_id=platform_listing_id, platform_url=url)

    return await adapter.create_listing(session, listing, ctx)


async def _run(
    db: AsyncSession,
    job: Job,
    adapter: PlatformAdapter,
    sessions: SessionManager,
    ctx: ExecutionContext,
) -> CreateResult:
    listing = None
    if job.operation == "create":
        try:
            listing = NormalizedListing.model_validate(job.payload)
        except ValidationError as e:
            raise ValidationRejected(f"Listing data is invalid: {e.error_count()} error(s)", detail={"errors": e.errors(include_url=False, include_context=False, include_input=False)}) from None
        listing = fit_listing(adapter.capabilities(), listing, ctx.warn)

    who = dict(
        user_id=job.user_id,
        platform=job.platform,
        encrypted_credentials=job.encrypted_credentials,
        adapter=adapter,
        ctx=ctx,
        actor=f"job:{job.id}",
    )
    session = await sessions.resolve(db, **who)
    try:
        return await _perform(db, job, adapter, session, listing, ctx)
    except AuthenticationFailure as e:
        # the platform rejected a session we believed valid: one fresh login, then give up
        log.info("job %s: %s rejected the session (%s), logging in again", job.id, job.platform, e.message)
        session = await sessions.refresh(db, **who)
        return await _perform(db, job, adapter, session, listing, ctx)


def run_budget_seconds(lease_expires_at: datetime) -> float:
    """Time a run may take so that it is over well before its lease expires."""
    remaining = (lease_expires_at - datetime.now(timezone.utc)).total_seconds()
    return max(remaining - LEASE_SAFETY_MARGIN_SECONDS, remaining / 2)


async def execute_job(
    db: AsyncSession,
    job_id: str,
    lease_id: str,
    *,
    pool: BrowserPool,
    http: CrosslistHttpClient,
    sessions: SessionManager | None = None,
    callback: reporter.StatusCallback | None = None,
    mode: ExecutionMode | None = None,
) -> Job | None:
    """
    Runs one claimed job end to end and records the outcome.

    The lease is renewed on start and the run is cut off before the renewed
    lease can expire, so lease recovery never hands a job that is still
    running to a second worker.

    Returns None when the lease is no longer ours (another dispatcher
    reclaimed the job after expiry); nothing is recorded in that case.
    """
    lease_expires_at = await job_queue.renew_lease(db, job_id, lease_id)
    if lease_expires_at is None:
        log.info("job %s: lease %s not held, skipping", job_id, lease_id)
        await db.rollback()
        return None

    job = await reporter.mark_in_progress(db, job_id, callback=callback)
    await db.commit()

    sessions = sessions or SessionManager()
    mode = mode or ExecutionMode(settings.execution_mode)
    budget = run_budget_seconds(lease_expires_at)
    warnings: list[str] = []
    cut_off = False

    span_attrs = {
        "crosslisting.platform": job.platform,
        "crosslisting.operation": job.operation,
        "crosslisting.attempt": job.attempts,
    }
    try:
        adapter = get_adapter(job.platform)
        with tracer.start_as_current_span("crosslisting.job", attributes=span_attrs) as span:
            async with pool.execution_context(mode=mode, http=http) as ctx:
                try:
                    result = await asyncio.wait_for(_run(db, job, adapter, sessions, ctx), timeout=budget)
                except asyncio.TimeoutError:
                    cut_off = True
                    span.set_attribute("crosslisting.error_code", OperationTimeout.code)
                    raise OperationTimeout(
                        f"Job did not finish within {budget:.0f}s and was stopped before its lease ran out",
                        detail={"budget_seconds": round(budget, 1)},
                    ) from None
                except CrosslistError as e:
                    span.set_attribute("crosslisting.error_code", e.code)
                    raise
                finally:
                    warnings = list(ctx.warnings)
    except VerificationRequired as e:
        await job_queue.park(db, job_id, lease_id, e, warnings=warnings, callback=callback)
    except CrosslistError as e:
        if cut_off:
            # the cancelled run may have left a statement half done
            await db.rollback()
        await job_queue.nack(db, job_id, lease_id, e, warnings=warnings, callback=callback)
    except Exception as e:
        # unknown failure: assume transient, the attempt ceiling bounds it
        log.exception("job %s: unexpected error", job_id)
        await db.rollback()
        err = NetworkError(f"Unexpected error: {type(e).__name__}: {e}", detail={"exception": type(e).__name__})
        await job_queue.nack(db, job_id, lease_id, err, warnings=warnings, callback=callback)
    else:
        await job_queue.ack(db, job_id, lease_id, result, warnings=warnings, callback=callback)

    await db.commit()
    return (await db.execute(
        select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
    )).scalar_one()
