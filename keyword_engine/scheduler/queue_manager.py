"""Job Queue — in-process priority queue of pending discovery jobs.

Used when jobs run inline in the API process. Supports:
  - Priority ordering by analysis depth (quick jobs first)
  - FIFO within the same priority
  - Removal of jobs cancelled while still queued
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from heapq import heappop, heappush

from keyword_engine.scheduler.types import AnalysisDepth

logger = logging.getLogger(__name__)


class JobPriority(int, Enum):
    """Lower = dequeued first."""

    HIGH = 0
    NORMAL = 1
    LOW = 2

    @classmethod
    def for_depth(cls, depth: AnalysisDepth) -> JobPriority:
        return {
            AnalysisDepth.QUICK: cls.HIGH,
            AnalysisDepth.STANDARD: cls.NORMAL,
            AnalysisDepth.COMPREHENSIVE: cls.LOW,
        }[AnalysisDepth(depth)]


@dataclass(order=True)
class _PriorityItem:
    """Wrapper for heap queue ordering."""

    priority: int
    sequence: int  # Tie-breaker for FIFO within same priority
    job_id: str = field(compare=False)


class JobQueue:
    """Priority queue of job ids.

    Usage:
        queue = JobQueue()
        await queue.enqueue(job.id, JobPriority.for_depth(job.request.depth))

        job_id = await queue.wait_next()   # blocks until a job is available
        job_id = await queue.dequeue()     # None if empty
    """

    def __init__(self):
        self._heap: list[_PriorityItem] = []
        self._sequence: int = 0
        self._removed: set[str] = set()
        self._lock = asyncio.Lock()
        self._available = asyncio.Event()

    async def enqueue(self, job_id: str, priority: JobPriority = JobPriority.NORMAL) -> None:
        async with self._lock:
            self._sequence += 1
            heappush(self._heap, _PriorityItem(priority=int(priority), sequence=self._sequence, job_id=job_id))
            self._removed.discard(job_id)
            self._available.set()

        logger.debug("Enqueued job %s (priority=%s)", job_id, JobPriority(priority).name)

    async def dequeue(self) -> str | None:
        """Next job id, or None if the queue is empty."""
        async with self._lock:
            while self._heap:
                item = heappop(self._heap)
                if item.job_id in self._removed:
                    self._removed.discard(item.job_id)
                    continue
                if not self._heap:
                    self._available.clear()
                return item.job_id
            self._available.clear()
            return None

    async def wait_next(self) -> str:
        """Block (cancellably) until a job id is available."""
        while True:
            job_id = await self.dequeue()
            if job_id is not None:
                return job_id
            await self._available.wait()

    async def remove(self, job_id: str) -> bool:
        """Drop a queued job. Returns False if it is not queued."""
        async with self._lock:
            if any(item.job_id == job_id for item in self._heap) and job_id not in self._removed:
                self._removed.add(job_id)
                return True
            return False

    def size(self) -> int:
        return len(self._heap) - len(self._removed)

    def get_stats(self) -> dict:
        by_priority = {p.name.lower(): 0 for p in JobPriority}
        for item in self._heap:
            if item.job_id not in self._removed:
                by_priority[JobPriority(item.priority).name.lower()] += 1
        return {"total": self.size(), "by_priority": by_priority}
