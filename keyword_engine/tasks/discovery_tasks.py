"""Celery tasks that run discovery jobs submitted through the API."""

import asyncio
import logging

from keyword_engine.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def _make_store():
    """Create a fresh async engine + SQL store for Celery worker context.

    The module-level engine from keyword_engine.db.postgres is bound to
    uvicorn's event loop and cannot be reused in a new event loop created by
    _run_async().
    """
    from sqlalchemy.ext.asyncio import create_async_engine

    from keyword_engine.core.config import settings
    from keyword_engine.storage.sql import SqlStore

    engine = create_async_engine(
        settings.postgres_url,
        echo=settings.app_debug,
        pool_size=5,
        max_overflow=5,
        pool_pre_ping=True,
    )
    return SqlStore(engine)


def _make_engine(store=None):
    from keyword_engine.core.config import settings
    from keyword_engine.services.engine import KeywordEngine

    # The worker is the runner: execute in this process, never re-dispatch
    return KeywordEngine.from_settings(settings, store=store or _make_store(), inline=True)


def _run_async(coro):
    """Run an async coroutine from sync Celery task context.

    Creates a fresh event loop each time to avoid conflicts with
    the module-level SQLAlchemy engine (which may be bound to a
    different loop created by uvicorn).
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _run_discovery_job_async(job_id: str, engine=None) -> dict:
    engine = engine or _make_engine()
    try:
        job = await engine.run_job(job_id)
        return {
            "job_id": job.id,
            "status": job.status.value,
            "reason": job.reason.value if job.reason else None,
            "succeeded": len(job.succeeded),
            "failed": len(job.failed),
        }
    finally:
        await engine.stop()


@celery_app.task(name="run_discovery_job")
def run_discovery_job(job_id: str):
    """Celery task: run one discovery job to a terminal state.

    Not retried: the job records its own failure reason, and a job that is
    no longer pending is skipped.
    """
    logger.info("Starting discovery job %s", job_id)
    result = _run_async(_run_discovery_job_async(job_id))
    logger.info("Discovery job %s finished: %s", job_id, result)
    return result
