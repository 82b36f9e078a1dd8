from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.api.deps import require_internal_key
from crosslister.core.db import get_db
from crosslister.core.errors import InvalidTransition, UnsupportedPlatform, ValidationRejected
from crosslister.models.job import Job, JobAttempt
from crosslister.schemas.job import JobAttemptOut, JobIn, JobOut, JobResult
from crosslister.services import job_queue
from crosslister.services.job_state import has_result
from crosslister.services.reporter import build_result

router = APIRouter(dependencies=[Depends(require_internal_key)])


def _job_out(j: Job) -> JobOut:
    return JobOut(
        id=j.id,
        user_id=j.user_id,
        listing_id=j.listing_id,
        platform=j.platform,
        operation=j.operation,
        status=j.status,
        attempts=j.attempts,
        error_code=j.error_code,
        error_message=j.error_message,
        warnings=list(j.warnings or []),
        platform_listing_id=j.platform_listing_id,
        platform_url=j.platform_url,
        next_attempt_at=j.next_attempt_at,
        created_at=j.created_at,
        started_at=j.started_at,
        completed_at=j.completed_at,
    )


async def _get_job(db: AsyncSession, job_id: str) -> Job:
    job = (await db.execute(select(Job).where(Job.id == job_id))).scalar_one_or_none()
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


@router.post("/jobs", response_model=JobOut, status_code=202, response_model_by_alias=True)
async def submit_job(payload: JobIn, response: Response, db: AsyncSession = Depends(get_db)) -> JobOut:
    try:
        job, created = await job_queue.enqueue(db, payload)
    except (UnsupportedPlatform, ValidationRejected) as e:
        raise HTTPException(status_code=422, detail=e.to_detail())
    if not created:
        response.headers["X-Idempotent-Replay"] = "true"
    return _job_out(job)


@router.get("/jobs/{job_id}", response_model=JobOut, response_model_by_alias=True)
async def get_job(job_id: str, db: AsyncSession = Depends(get_db)) -> JobOut:
    return _job_out(await _get_job(db, job_id))


@router.get("/jobs/{job_id}/result", response_model=JobResult, response_model_by_alias=True)
async def get_job_result(job_id: str, db: AsyncSession = Depends(get_db)) -> JobResult:
    job = await _get_job(db, job_id)
    if not has_result(job.status):
        raise HTTPException(status_code=409, detail=f"Job is {job.status}; no result yet")
    return build_result(job)


@router.get("/jobs/{job_id}/attempts", response_model=list[JobAttemptOut], response_model_by_alias=True)
async def list_job_attempts(job_id: str, db: AsyncSession = Depends(get_db)) -> list[JobAttemptOut]:
    await _get_job(db, job_id)
    rows = (await db.execute(
        select(JobAttempt).where(JobAttempt.job_id == job_id).order_by(JobAttempt.attempt.asc(), JobAttempt.created_at.asc())
    )).scalars().all()
    return [
        JobAttemptOut(
            id=a.id,
            job_id=a.job_id,
            attempt=a.attempt,
            worker_id=a.worker_id,
            outcome=a.outcome,
            error_code=a.error_code,
            error_message=a.error_message,
            detail=a.detail or {},
            created_at=a.created_at,
        )
        for a in rows
    ]


@router.post("/jobs/{job_id}/resume", response_model=JobOut, response_model_by_alias=True)
async def resume_job(job_id: str, db: AsyncSession = Depends(get_db)) -> JobOut:
    await _get_job(db, job_id)
    try:
        job = await job_queue.resume(db, job_id, actor="api")
    except InvalidTransition as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _job_out(job)
