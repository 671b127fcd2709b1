from celery import Celery
from celery.signals import worker_process_init

from app.config import get_settings
from app.logging_config import configure_logging

settings = get_settings()

ARCHIVE_QUEUE = "archive.extract"

celery_app = Celery("bizdev", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.include = ["app.workers.archive_tasks"]

hard_limit = max(300, int(settings.archive_task_time_limit_seconds))
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_time_limit=hard_limit,
    task_soft_time_limit=hard_limit - 60,
    task_default_queue=ARCHIVE_QUEUE,
    task_routes={"app.workers.archive_tasks.*": {"queue": ARCHIVE_QUEUE}},
)


@worker_process_init.connect
def _configure_worker_logging(**_kwargs):
    configure_logging()
