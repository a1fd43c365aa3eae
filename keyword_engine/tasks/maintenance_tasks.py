"""Celery tasks for data retention."""

import logging

from keyword_engine.tasks.celery_app import celery_app
from keyword_engine.tasks.discovery_tasks import _make_engine, _run_async

logger = logging.getLogger(__name__)


async def _purge_finished_jobs_async(retention_days: int | None = None, engine=None) -> int:
    engine = engine or _make_engine()
    try:
        return await engine.purge_finished_jobs(retention_days)
    finally:
        await engine.stop()


@celery_app.task(name="purge_finished_jobs")
def purge_finished_jobs_task(retention_days: int | None = None):
    """Delete terminal discovery jobs past the retention window.

    Runs daily at 03:30 UTC via Celery Beat. Keywords, snapshots and
    volume estimates are never purged.
    """
    logger.info("Purging finished discovery jobs...")
    try:
        deleted = _run_async(_purge_finished_jobs_async(retention_days))
        return {"status": "ok", "deleted": deleted}
    except Exception as exc:
        logger.error("Failed to purge discovery jobs: %s", exc)
        return {"status": "error", "error": str(exc)}
