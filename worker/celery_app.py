from celery import Celery
from celery.signals import worker_process_init

from crosslister.core.config import settings
from crosslister.core.telemetry import setup_worker_telemetry

celery = Celery(
    "crosslister-worker",
    broker=settings.rabbitmq_url,
    backend=settings.redis_url,
    include=["worker.tasks"],
)

celery.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # one browser-driven job per worker slot
    worker_concurrency=settings.max_concurrent_jobs,
    task_default_queue="default",
    task_routes={
        "worker.tasks.run_job": {"queue": "crosslisting"},
    },
)


@worker_process_init.connect
def _init_worker_process(**kwargs) -> None:
    setup_worker_telemetry()
