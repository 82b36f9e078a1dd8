import asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from worker.celery_app import celery
from crosslister.core.config import settings
import crosslister.models  # noqa: F401  # ensures Models are registered
from crosslister.automation.browser import BrowserPool, timing_from_settings
from crosslister.services.http_client import CrosslistHttpClient
from crosslister.services.reporter import StatusCallback
from worker.execute import execute_job


async def _run_job(job_id: str, lease_id: str) -> None:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    pool = BrowserPool(headless=settings.browser_headless, timing=timing_from_settings())

    try:
        async with CrosslistHttpClient(timeout_seconds=settings.http_timeout_seconds) as http:
            async with Session() as db:
                await execute_job(
                    db,
                    job_id,
                    lease_id,
                    pool=pool,
                    http=http,
                    callback=StatusCallback(http),
                )
    finally:
        # browser and engine never outlive the task
        await pool.aclose()
        await engine.dispose()


@celery.task(name="worker.tasks.run_job", bind=True)
def run_job(self, job_id: str, lease_id: str) -> None:
    asyncio.run(_run_job(job_id, lease_id))
