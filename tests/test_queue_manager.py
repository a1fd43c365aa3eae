"""Tests for the in-process job queue and scheduler DTOs."""

import asyncio

import pytest

from keyword_engine.analysis.types import DiscoveryMethod, Trend
from keyword_engine.core.exceptions import InvalidRequest, ReasonCode
from keyword_engine.scheduler.queue_manager import JobPriority, JobQueue
from keyword_engine.scheduler.types import (
    AnalysisDepth,
    CandidateResult,
    CandidateStatus,
    DiscoveryJob,
    DiscoveryRequest,
    JobProgress,
    JobStatus,
)


# ==========================================================================
# Test: JobQueue
# ==========================================================================


class TestJobQueue:
    async def test_priority_then_fifo(self):
        queue = JobQueue()
        await queue.enqueue("standard-1", JobPriority.NORMAL)
        await queue.enqueue("deep", JobPriority.LOW)
        await queue.enqueue("quick", JobPriority.HIGH)
        await queue.enqueue("standard-2", JobPriority.NORMAL)

        order = [await queue.dequeue() for _ in range(4)]
        assert order == ["quick", "standard-1", "standard-2", "deep"]
        assert await queue.dequeue() is None

    async def test_remove(self):
        queue = JobQueue()
        await queue.enqueue("a")
        await queue.enqueue("b")

        assert await queue.remove("a")
        assert not await queue.remove("a")
        assert not await queue.remove("missing")
        assert queue.size() == 1
        assert await queue.dequeue() == "b"
        assert await queue.dequeue() is None

    async def test_wait_next_blocks_until_enqueue(self):
        queue = JobQueue()
        waiter = asyncio.create_task(queue.wait_next())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await queue.enqueue("late")
        assert await asyncio.wait_for(waiter, timeout=1.0) == "late"

    async def test_stats(self):
        queue = JobQueue()
        await queue.enqueue("a", JobPriority.HIGH)
        await queue.enqueue("b", JobPriority.LOW)
        await queue.enqueue("c", JobPriority.LOW)
        await queue.remove("c")

        stats = queue.get_stats()
        assert stats["total"] == 2
        assert stats["by_priority"] == {"high": 1, "normal": 0, "low": 1}

    def test_priority_for_depth(self):
        assert JobPriority.for_depth(AnalysisDepth.QUICK) is JobPriority.HIGH
        assert JobPriority.for_depth("standard") is JobPriority.NORMAL
        assert JobPriority.for_depth(AnalysisDepth.COMPREHENSIVE) is JobPriority.LOW


# ==========================================================================
# Test: Request and job types
# ==========================================================================


class TestDiscoveryRequest:
    def test_region_normalized(self):
        request = DiscoveryRequest(tenant_id="t", app_id="1", region=" GB ")
        assert request.region == "gb"
        request.validate()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"target_count": 7},
            {"region": "usa"},
            {"region": "1x"},
            {"app_id": ""},
            {"tenant_id": " "},
            {"competitor_app_ids": ["1"]},
        ],
    )
    def test_invalid(self, kwargs):
        fields = {"tenant_id": "t", "app_id": "1"}
        fields.update(kwargs)
        with pytest.raises(InvalidRequest):
            DiscoveryRequest(**fields).validate()

    def test_dict_round_trip(self):
        request = DiscoveryRequest(
            tenant_id="t",
            app_id="1",
            target_count=50,
            depth="comprehensive",
            include_competitors=True,
            seed_keywords=["yoga"],
            competitor_app_ids=["2"],
        )
        assert DiscoveryRequest.from_dict(request.to_dict()) == request

    def test_depth_methods(self):
        assert DiscoveryMethod.CATEGORY_TRENDING not in AnalysisDepth.QUICK.methods
        assert set(AnalysisDepth.COMPREHENSIVE.methods) == set(DiscoveryMethod)
        assert AnalysisDepth.QUICK.max_pages < AnalysisDepth.COMPREHENSIVE.max_pages


class TestJobState:
    def test_progress_never_moves_backwards(self):
        progress = JobProgress(total=10)
        assert progress.advance_to(4)
        assert not progress.advance_to(2)
        assert progress.current == 4
        assert progress.advance_to(50)
        assert progress.current == 10
        assert progress.percent == 100.0

    def test_terminal_statuses(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.RUNNING.is_terminal

    def test_result_payload_round_trip(self):
        job = DiscoveryJob(request=DiscoveryRequest(tenant_id="t", app_id="1"))
        job.results = [
            CandidateResult(
                term="yoga",
                method=DiscoveryMethod.SEMANTIC_VARIATION,
                status=CandidateStatus.SUCCEEDED,
                position=3,
                trend=Trend.NEW,
                keyword_id=7,
            ),
            CandidateResult(
                term="pilates",
                method=DiscoveryMethod.METADATA_EXTRACTION,
                status=CandidateStatus.FAILED,
                reason=ReasonCode.FETCH_TRANSIENT,
                attempts=4,
            ),
        ]
        payload = job.result_payload()
        assert payload["succeeded"] == 1
        assert payload["failed"] == 1

        restored = DiscoveryJob(request=job.request, id=job.id)
        restored.load_result_payload(payload)
        assert restored.results == job.results

    def test_to_dict(self):
        job = DiscoveryJob(request=DiscoveryRequest(tenant_id="t", app_id="1", region="de"))
        data = job.to_dict()
        assert data["id"] == job.id
        assert data["status"] == "pending"
        assert data["region"] == "de"
        assert data["progress"] == {"current": 0, "total": 0, "percent": 0.0}
        assert data["started_at"] is None
