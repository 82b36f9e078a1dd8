import asyncio
import logging
import os
import socket

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from crosslister.core.config import settings
import crosslister.models  # noqa: F401
from crosslister.services.job_queue import claim, release, requeue_expired_leases
from crosslister.services.rate_limit import SlidingWindowRateLimiter, build_rate_limiter
from worker.celery_app import celery


log = logging.getLogger(__name__)


def _worker_id() -> str:
    return f"dispatcher:{socket.gethostname()}:{os.getpid()}"


async def _tick(Session: async_sessionmaker, limiter: SlidingWindowRateLimiter, worker_id: str) -> int:
    async with Session() as db:
        await requeue_expired_leases(db)
        await db.commit()

    dispatched = 0
    while True:
        # one claim per transaction: the advisory lock is released on commit
        async with Session() as db:
            claimed = await claim(db, worker_id, limiter=limiter)
            await db.commit()
        if claimed is None:
            break

        try:
            celery.send_task("worker.tasks.run_job", args=[claimed.job_id, claimed.lease_id], queue="crosslisting")
            dispatched += 1
        except Exception as e:
            log.exception("tick: enqueue of job %s failed", claimed.job_id)
            async with Session() as db:
                await release(db, claimed.job_id, claimed.lease_id, reason=f"enqueue failed: {type(e).__name__}: {e}")
                await db.commit()
            break

    if dispatched:
        log.info("tick: dispatched %d jobs", dispatched)
    return dispatched


async def main():
    celery.connection().ensure_connection(max_retries=3)

    logging.basicConfig(level=logging.INFO)
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    limiter = build_rate_limiter()
    worker_id = _worker_id()

    log.info("dispatcher: started as %s", worker_id)
    try:
        while True:
            try:
                await _tick(Session, limiter, worker_id)
            except Exception:
                log.exception("dispatcher: tick crashed")
            await asyncio.sleep(settings.dispatcher_poll_seconds)
    finally:
        await limiter.aclose()
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
