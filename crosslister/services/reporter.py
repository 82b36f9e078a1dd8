from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.adapters.base import CreateResult
from crosslister.core.config import settings
from crosslister.models.job import Job, JobAttempt
from crosslister.models.platform_listing import PlatformListing
from crosslister.schemas.job import JobResult, StatusUpdate
from crosslister.services.http_client import CrosslistHttpClient
from crosslister.services.job_state import transition
from crosslister.services.redaction import redact_payload
from crosslister.services.upsert import upsert

log = logging.getLogger(__name__)


class StatusCallback:
    """
    Pushes status changes to the host application.

    Best effort: a failed push is logged and never changes job state, the
    host can always poll GET /v1/jobs/{id}.
    """

    def __init__(self, http: CrosslistHttpClient, url: str | None = None, *, api_key: str | None = None):
        self.http = http
        self.url = url if url is not None else settings.status_callback_url
        self.api_key = api_key if api_key is not None else settings.internal_api_key

    async def push(self, update: StatusUpdate) -> bool:
        if not self.url:
            return False
        res = await self.http.post_json(
            url=self.url,
            headers={"X-Internal-Key": self.api_key},
            json_body=update.model_dump(mode="json", by_alias=True),
        )
        if not res.ok:
            log.warning(
                "status callback failed job=%s status=%s code=%s err=%s",
                update.job_id, update.status, res.status_code, res.error_message,
            )
        return res.ok


def _now() -> datetime:
    return datetime.now(timezone.utc)


async def _load(db: AsyncSession, job_id: str) -> Job:
    job = (await db.execute(
        select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if job is None:
        raise LookupError(f"job {job_id} not found")
    return job


async def _push(callback: StatusCallback | None, job: Job) -> None:
    if callback is None:
        return
    await callback.push(StatusUpdate(
        job_id=job.id,
        status=job.status,
        platform_listing_id=job.platform_listing_id,
        platform_url=job.platform_url,
        error_message=job.error_message,
        started_at=job.started_at,
        completed_at=job.completed_at,
    ))


async def mark_in_progress(db: AsyncSession, job_id: str, *, callback: StatusCallback | None = None) -> Job:
    job = await _load(db, job_id)
    if job.started_at is None:
        job.started_at = _now()
    job.updated_at = _now()
    await db.flush()
    log.info("job %s: in progress (attempt %d, %s/%s)", job.id, job.attempts, job.platform, job.operation)
    await _push(callback, job)
    return job


async def update_status(
    db: AsyncSession,
    job_id: str,
    status: str,
    *,
    platform_listing_id: str | None = None,
    platform_url: str | None = None,
    error_message: str | None = None,
    error_code: str | None = None,
    started_at: datetime | None = None,
    completed_at: datetime | None = None,
    next_attempt_at: datetime | None = None,
    warnings: Sequence[str] | None = None,
    callback: StatusCallback | None = None,
) -> Job:
    job = await _load(db, job_id)
    if status != job.status:
        job.status = transition(job.status, status)

    if platform_listing_id is not None:
        job.platform_listing_id = platform_listing_id
    if platform_url is not None:
        job.platform_url = platform_url
    if started_at is not None:
        job.started_at = started_at
    if completed_at is not None:
        job.completed_at = completed_at
    if warnings is not None:
        job.warnings = list(warnings)

    job.error_message = error_message
    job.error_code = error_code
    job.next_attempt_at = next_attempt_at

    if status != "processing":
        # leaving processing frees the (listing, platform, operation) slot
        job.lease_id = None
        job.lease_expires_at = None

    job.updated_at = _now()
    await db.flush()
    await _push(callback, job)
    return job


async def record_attempt(
    db: AsyncSession,
    job: Job,
    *,
    outcome: str,
    error_code: str | None = None,
    error_message: str | None = None,
    detail: dict[str, Any] | None = None,
) -> None:
    db.add(JobAttempt(
        job_id=job.id,
        attempt=job.attempts,
        worker_id=job.worker_id,
        outcome=outcome,
        error_code=error_code,
        error_message=error_message,
        detail=redact_payload(detail or {}),
        created_at=_now(),
    ))


async def record_success(
    db: AsyncSession,
    job_id: str,
    result: CreateResult | None,
    *,
    warnings: Sequence[str] = (),
    callback: StatusCallback | None = None,
) -> Job:
    now = _now()
    job = await _load(db, job_id)

    listing_id = result.platform_listing_id if result else job.platform_listing_id
    url = result.platform_url if result else job.platform_url
    listing_status = "deleted" if job.operation == "delete" else "active"

    await upsert(
        db,
        PlatformListing,
        values={
            "listing_id": job.listing_id,
            "user_id": job.user_id,
            "platform": job.platform,
            "platform_listing_id": listing_id,
            "platform_url": url,
            "status": listing_status,
            "last_synced_at": now,
            "updated_at": now,
        },
        conflict_columns=("listing_id", "platform"),
        update_columns=("user_id", "platform_listing_id", "platform_url", "status", "last_synced_at", "updated_at"),
    )

    await record_attempt(db, job, outcome="completed", detail=(result.detail if result else {}) | {"warnings": list(warnings)})
    job = await update_status(
        db,
        job_id,
        "completed",
        platform_listing_id=listing_id,
        platform_url=url,
        completed_at=now,
        warnings=warnings,
        callback=callback,
    )
    log.info("job %s: completed %s/%s platform_listing_id=%s", job.id, job.platform, job.operation, listing_id)
    return job


async def record_failure(
    db: AsyncSession,
    job_id: str,
    *,
    code: str,
    message: str,
    detail: dict[str, Any] | None = None,
    warnings: Sequence[str] = (),
    callback: StatusCallback | None = None,
) -> Job:
    job = await _load(db, job_id)
    await record_attempt(db, job, outcome="failed", error_code=code, error_message=message, detail=detail)
    job = await update_status(
        db,
        job_id,
        "failed",
        error_code=code,
        error_message=message,
        completed_at=_now(),
        warnings=warnings,
        callback=callback,
    )
    log.warning("job %s: failed code=%s msg=%s", job.id, code, message)
    return job


async def record_retry(
    db: AsyncSession,
    job_id: str,
    *,
    code: str,
    message: str,
    next_attempt_at: datetime,
    detail: dict[str, Any] | None = None,
    warnings: Sequence[str] = (),
    callback: StatusCallback | None = None,
) -> Job:
    job = await _load(db, job_id)
    await record_attempt(db, job, outcome="retry_scheduled", error_code=code, error_message=message, detail=detail)
    job = await update_status(
        db,
        job_id,
        "queued",
        error_code=code,
        error_message=message,
        next_attempt_at=next_attempt_at,
        warnings=warnings,
        callback=callback,
    )
    log.info("job %s: retry %d scheduled at %s (%s)", job.id, job.attempts, next_attempt_at.isoformat(), code)
    return job


async def record_verification(
    db: AsyncSession,
    job_id: str,
    *,
    code: str,
    message: str,
    detail: dict[str, Any] | None = None,
    warnings: Sequence[str] = (),
    callback: StatusCallback | None = None,
) -> Job:
    job = await _load(db, job_id)
    await record_attempt(db, job, outcome="parked", error_code=code, error_message=message, detail=detail)
    job = await update_status(
        db,
        job_id,
        "pending_verification",
        error_code=code,
        error_message=message,
        warnings=warnings,
        callback=callback,
    )
    log.warning("job %s: parked pending verification on %s", job.id, job.platform)
    return job


def build_result(job: Job) -> JobResult:
    return JobResult(
        success=job.status == "completed",
        listing_id=job.listing_id,
        platform=job.platform,
        platform_listing_id=job.platform_listing_id,
        platform_url=job.platform_url,
        error=None if job.status == "completed" else job.error_message,
    )
