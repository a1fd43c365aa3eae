from celery import Celery
from celery.schedules import crontab

from keyword_engine.core.config import settings

celery_app = Celery(
    "keyword_engine",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

# Celery Beat schedule
celery_app.conf.beat_schedule = {
    "purge-finished-jobs": {
        "task": "purge_finished_jobs",
        "schedule": crontab(hour=3, minute=30),  # daily at 03:30
    },
}

# Auto-discover tasks from tasks modules
celery_app.autodiscover_tasks(["keyword_engine.tasks"])

# Explicit include as fallback for autodiscover (needed for CLI worker startup)
celery_app.conf.include = [
    "keyword_engine.tasks.discovery_tasks",
    "keyword_engine.tasks.maintenance_tasks",
]
