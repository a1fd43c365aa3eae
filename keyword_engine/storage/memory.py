"""In-process store. Used by tests and single-process development runs.

All state sits behind one asyncio.Lock; records are copied on the way in and
out so callers never alias stored state.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import itertools
from collections.abc import Sequence
from datetime import date, datetime, timezone

from keyword_engine.analysis.types import (
    CompetitorKeywordEntry,
    Platform,
    RankingSnapshot,
    TrackedKeyword,
    VolumeEstimate,
)
from keyword_engine.core.exceptions import SchedulerFault
from keyword_engine.scheduler.types import DiscoveryJob, JobStatus
from keyword_engine.storage.base import EngineStore


class MemoryStore(EngineStore):
    def __init__(self):
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._keywords: dict[int, TrackedKeyword] = {}
        self._keyword_index: dict[tuple[str, str, str, str], int] = {}
        self._snapshots: dict[tuple[int, date], RankingSnapshot] = {}
        self._volumes: dict[tuple[str, str, str], VolumeEstimate] = {}
        self._competitors: dict[tuple[int, str, date], CompetitorKeywordEntry] = {}
        self._jobs: dict[str, DiscoveryJob] = {}

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    async def upsert_keyword(self, keyword: TrackedKeyword) -> TrackedKeyword:
        async with self._lock:
            existing_id = self._keyword_index.get(keyword.natural_key)
            if existing_id is not None:
                stored = self._keywords[existing_id]
                stored.last_tracked_at = keyword.last_tracked_at or datetime.now(timezone.utc)
                return dataclasses.replace(stored)

            stored = dataclasses.replace(keyword, id=next(self._ids))
            self._keywords[stored.id] = stored
            self._keyword_index[stored.natural_key] = stored.id
            return dataclasses.replace(stored)

    async def get_keyword(self, keyword_id: int) -> TrackedKeyword | None:
        stored = self._keywords.get(keyword_id)
        return dataclasses.replace(stored) if stored else None

    async def list_keywords(
        self,
        tenant_id: str,
        app_id: str,
        *,
        region: str | None = None,
        platform: Platform | None = None,
        tracked_only: bool = True,
    ) -> list[TrackedKeyword]:
        found = [
            dataclasses.replace(k)
            for k in self._keywords.values()
            if k.tenant_id == str(tenant_id)
            and k.app_id == str(app_id)
            and (region is None or k.region == region.lower())
            and (platform is None or k.platform == platform)
            and (k.is_tracked or not tracked_only)
        ]
        return sorted(found, key=lambda k: (k.term, k.region, k.id))

    async def set_tracked(self, keyword_id: int, is_tracked: bool) -> TrackedKeyword | None:
        async with self._lock:
            stored = self._keywords.get(keyword_id)
            if stored is None:
                return None
            stored.is_tracked = is_tracked
            return dataclasses.replace(stored)

    # ------------------------------------------------------------------
    # Ranking snapshots
    # ------------------------------------------------------------------

    async def get_latest_snapshot(self, keyword_id: int, before: date | None = None) -> RankingSnapshot | None:
        candidates = [
            s
            for (kid, day), s in self._snapshots.items()
            if kid == keyword_id and (before is None or day < before)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.snapshot_date)

    async def insert_snapshot(self, snapshot: RankingSnapshot) -> RankingSnapshot:
        async with self._lock:
            key = (snapshot.keyword_id, snapshot.snapshot_date)
            existing = self._snapshots.get(key)
            if existing is not None:
                return existing
            stored = dataclasses.replace(snapshot, id=next(self._ids))
            self._snapshots[key] = stored
            return stored

    async def list_snapshots(self, keyword_id: int, since: date | None = None) -> list[RankingSnapshot]:
        found = [
            s
            for (kid, day), s in self._snapshots.items()
            if kid == keyword_id and (since is None or day >= since)
        ]
        return sorted(found, key=lambda s: s.snapshot_date)

    # ------------------------------------------------------------------
    # Volume estimates
    # ------------------------------------------------------------------

    async def get_volume(self, term: str, platform: Platform, region: str) -> VolumeEstimate | None:
        stored = self._volumes.get((term, Platform(platform).value, region.lower()))
        return copy.deepcopy(stored) if stored else None

    async def upsert_volume_if_stale(self, estimate: VolumeEstimate, stale_before: datetime) -> VolumeEstimate:
        async with self._lock:
            existing = self._volumes.get(estimate.natural_key)
            if existing is None or existing.last_updated_at < stale_before:
                self._volumes[estimate.natural_key] = copy.deepcopy(estimate)
            return copy.deepcopy(self._volumes[estimate.natural_key])

    # ------------------------------------------------------------------
    # Competitor entries
    # ------------------------------------------------------------------

    async def add_competitor_entries(self, entries: Sequence[CompetitorKeywordEntry]) -> int:
        inserted = 0
        async with self._lock:
            for entry in entries:
                key = (entry.keyword_id, entry.competitor_app_id, entry.snapshot_date)
                if key in self._competitors:
                    continue
                self._competitors[key] = dataclasses.replace(entry, id=next(self._ids))
                inserted += 1
        return inserted

    async def list_competitor_entries(
        self,
        keyword_ids: Sequence[int],
        competitor_app_ids: Sequence[str] | None = None,
    ) -> list[CompetitorKeywordEntry]:
        wanted_keywords = set(keyword_ids)
        wanted_competitors = set(competitor_app_ids) if competitor_app_ids else None
        found = [
            dataclasses.replace(e)
            for (kid, comp, _), e in self._competitors.items()
            if kid in wanted_keywords and (wanted_competitors is None or comp in wanted_competitors)
        ]
        return sorted(found, key=lambda e: (e.keyword_id, e.competitor_app_id, e.snapshot_date))

    # ------------------------------------------------------------------
    # Discovery jobs
    # ------------------------------------------------------------------

    async def create_job(self, job: DiscoveryJob) -> None:
        async with self._lock:
            if job.id in self._jobs:
                raise SchedulerFault(f"Duplicate job id {job.id}")
            self._jobs[job.id] = copy.deepcopy(job)

    async def get_job(self, job_id: str) -> DiscoveryJob | None:
        stored = self._jobs.get(job_id)
        return copy.deepcopy(stored) if stored else None

    async def save_job(self, job: DiscoveryJob) -> None:
        async with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None:
                return
            stored.progress.total = job.progress.total
            stored.progress.advance_to(job.progress.current)
            stored.results = copy.deepcopy(job.results)
            stored.clusters = copy.deepcopy(job.clusters)
            stored.by_method = dict(job.by_method)

    async def transition_job(self, job: DiscoveryJob, expected: JobStatus) -> bool:
        if not expected.can_transition_to(job.status):
            raise SchedulerFault(f"Illegal job transition {expected.value} -> {job.status.value}")
        async with self._lock:
            stored = self._jobs.get(job.id)
            if stored is None or stored.status is not expected:
                return False
            current = max(stored.progress.current, job.progress.current)
            cancel_requested = stored.cancel_requested or job.cancel_requested
            replacement = copy.deepcopy(job)
            replacement.progress.current = current
            replacement.cancel_requested = cancel_requested
            self._jobs[job.id] = replacement
            return True

    async def update_progress(self, job_id: str, current: int) -> None:
        async with self._lock:
            stored = self._jobs.get(job_id)
            if stored is not None:
                stored.progress.advance_to(current)

    async def request_cancel(self, job_id: str) -> bool:
        async with self._lock:
            stored = self._jobs.get(job_id)
            if stored is None or stored.status.is_terminal:
                return False
            stored.cancel_requested = True
            return True

    async def is_cancel_requested(self, job_id: str) -> bool:
        stored = self._jobs.get(job_id)
        return bool(stored and stored.cancel_requested)

    async def list_jobs(self, tenant_id: str, app_id: str | None = None, limit: int = 20) -> list[DiscoveryJob]:
        found = [
            j
            for j in self._jobs.values()
            if j.tenant_id == str(tenant_id) and (app_id is None or j.request.app_id == str(app_id))
        ]
        found.sort(key=lambda j: j.created_at, reverse=True)
        return [copy.deepcopy(j) for j in found[:limit]]

    async def purge_jobs(self, finished_before: datetime) -> int:
        async with self._lock:
            doomed = [
                job_id
                for job_id, j in self._jobs.items()
                if j.status.is_terminal and j.finished_at is not None and j.finished_at < finished_before
            ]
            for job_id in doomed:
                del self._jobs[job_id]
        return len(doomed)
