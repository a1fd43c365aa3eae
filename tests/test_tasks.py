"""Tests for the Celery task bodies, run against an in-memory engine."""

from datetime import timedelta
from unittest.mock import patch

import pytest

from keyword_engine.analysis.types import Candidate, DiscoveryMethod
from keyword_engine.scheduler.types import AnalysisDepth, DiscoveryJob, DiscoveryRequest, JobStatus
from keyword_engine.services.engine import KeywordEngine
from keyword_engine.tasks.celery_app import celery_app
from keyword_engine.tasks.discovery_tasks import _run_discovery_job_async
from keyword_engine.tasks.maintenance_tasks import _purge_finished_jobs_async, purge_finished_jobs_task
from tests.conftest import FIXED_NOW, TARGET_APP_ID, TENANT_ID, FixedGenerator


@pytest.fixture
def task_engine(store, make_scheduler) -> KeywordEngine:
    """Engine as a worker builds it: external dispatch, no inline dispatcher."""
    generator = FixedGenerator([Candidate(term="step counter", method=DiscoveryMethod.METADATA_EXTRACTION, relevance=5.0)])
    scheduler = make_scheduler(generator=generator, dispatch=lambda job_id: None)
    return KeywordEngine(store, scheduler, clock=lambda: FIXED_NOW)


# ==========================================================================
# Test: Discovery task
# ==========================================================================


class TestRunDiscoveryJob:
    async def test_runs_pending_job(self, task_engine, store, fake_client):
        fake_client.serps["step counter"] = ["2000", TARGET_APP_ID]
        job_id = await task_engine.submit(
            DiscoveryRequest(tenant_id=TENANT_ID, app_id=TARGET_APP_ID, target_count=10, depth=AnalysisDepth.QUICK)
        )

        result = await _run_discovery_job_async(job_id, engine=task_engine)

        assert result == {
            "job_id": job_id,
            "status": "completed",
            "reason": None,
            "succeeded": 1,
            "failed": 0,
        }
        stored = await store.get_job(job_id)
        assert stored.results[0].position == 2

    async def test_redelivered_job_is_skipped(self, task_engine, fake_client):
        job_id = await task_engine.submit(DiscoveryRequest(tenant_id=TENANT_ID, app_id=TARGET_APP_ID, target_count=10))
        await _run_discovery_job_async(job_id, engine=task_engine)
        calls = len(fake_client.calls)

        result = await _run_discovery_job_async(job_id, engine=task_engine)
        assert result["status"] == "completed"
        assert len(fake_client.calls) == calls


# ==========================================================================
# Test: Maintenance tasks
# ==========================================================================


class TestPurgeFinishedJobs:
    async def test_purges_old_terminal_jobs(self, task_engine, store):
        old = DiscoveryJob(request=DiscoveryRequest(tenant_id=TENANT_ID, app_id=TARGET_APP_ID))
        await store.create_job(old)
        old.status = JobStatus.FAILED
        old.finished_at = FIXED_NOW - timedelta(days=30)
        await store.transition_job(old, JobStatus.PENDING)

        assert await _purge_finished_jobs_async(engine=task_engine) == 1
        assert await store.get_job(old.id) is None

    def test_task_reports_errors(self):
        with patch(
            "keyword_engine.tasks.maintenance_tasks._make_engine",
            side_effect=RuntimeError("database down"),
        ):
            result = purge_finished_jobs_task.run()
        assert result == {"status": "error", "error": "database down"}

    def test_beat_schedule(self):
        entry = celery_app.conf.beat_schedule["purge-finished-jobs"]
        assert entry["task"] == "purge_finished_jobs"
