"""Persistence interface for the keyword engine.

Every write is keyed by the natural uniqueness constraints of its record:

  - keywords:        (app_id, term, platform, region)  get-or-create
  - rankings:        (keyword_id, snapshot_date)       insert-only, first write wins
  - search volumes:  (term, platform, region)          upsert only when stale
  - competitor rows: (keyword_id, competitor, date)    insert-only
  - jobs:            id                                compare-and-set on status

Implementations raise ``PersistenceUnavailable`` when the backing store
cannot be reached. That error is fatal to a running job.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from datetime import date, datetime

from keyword_engine.analysis.types import (
    CompetitorKeywordEntry,
    Platform,
    RankingSnapshot,
    TrackedKeyword,
    VolumeEstimate,
)
from keyword_engine.scheduler.types import DiscoveryJob, JobStatus

logger = logging.getLogger(__name__)


class EngineStore(ABC):
    """Table-shaped read/write access used by the scheduler and the read services."""

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_keyword(self, keyword: TrackedKeyword) -> TrackedKeyword:
        """Get-or-create by natural key. An existing row keeps its attributes;
        only ``last_tracked_at`` is refreshed."""
        ...

    @abstractmethod
    async def get_keyword(self, keyword_id: int) -> TrackedKeyword | None: ...

    @abstractmethod
    async def list_keywords(
        self,
        tenant_id: str,
        app_id: str,
        *,
        region: str | None = None,
        platform: Platform | None = None,
        tracked_only: bool = True,
    ) -> list[TrackedKeyword]: ...

    @abstractmethod
    async def set_tracked(self, keyword_id: int, is_tracked: bool) -> TrackedKeyword | None:
        """Soft removal / re-add. The only mutation a keyword ever sees."""
        ...

    # ------------------------------------------------------------------
    # Ranking snapshots
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_latest_snapshot(self, keyword_id: int, before: date | None = None) -> RankingSnapshot | None:
        """Most recent snapshot, optionally strictly before ``before``."""
        ...

    @abstractmethod
    async def insert_snapshot(self, snapshot: RankingSnapshot) -> RankingSnapshot:
        """Insert unless one exists for (keyword, date). Returns the stored row."""
        ...

    @abstractmethod
    async def list_snapshots(self, keyword_id: int, since: date | None = None) -> list[RankingSnapshot]:
        """Snapshots on or after ``since``, ordered by date ascending."""
        ...

    # ------------------------------------------------------------------
    # Volume estimates (shared across tenants)
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_volume(self, term: str, platform: Platform, region: str) -> VolumeEstimate | None: ...

    @abstractmethod
    async def upsert_volume_if_stale(self, estimate: VolumeEstimate, stale_before: datetime) -> VolumeEstimate:
        """Write ``estimate`` if no row exists or the stored row was updated
        before ``stale_before``. Returns whatever is stored afterwards."""
        ...

    async def get_volumes(self, terms: Iterable[str], platform: Platform, region: str) -> dict[str, VolumeEstimate]:
        found: dict[str, VolumeEstimate] = {}
        for term in terms:
            estimate = await self.get_volume(term, platform, region)
            if estimate is not None:
                found[term] = estimate
        return found

    # ------------------------------------------------------------------
    # Competitor entries
    # ------------------------------------------------------------------

    @abstractmethod
    async def add_competitor_entries(self, entries: Sequence[CompetitorKeywordEntry]) -> int:
        """Insert entries, skipping existing (keyword, competitor, date). Returns inserted count."""
        ...

    @abstractmethod
    async def list_competitor_entries(
        self,
        keyword_ids: Sequence[int],
        competitor_app_ids: Sequence[str] | None = None,
    ) -> list[CompetitorKeywordEntry]: ...

    # ------------------------------------------------------------------
    # Discovery jobs
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_job(self, job: DiscoveryJob) -> None:
        """Persist a new job. A duplicate id raises ``SchedulerFault``."""
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> DiscoveryJob | None: ...

    @abstractmethod
    async def save_job(self, job: DiscoveryJob) -> None:
        """Persist progress and results without touching the status."""
        ...

    @abstractmethod
    async def transition_job(self, job: DiscoveryJob, expected: JobStatus) -> bool:
        """Write ``job`` (status included) only if the stored status is ``expected``."""
        ...

    @abstractmethod
    async def update_progress(self, job_id: str, current: int) -> None:
        """Raise the stored progress counter to ``current``; never lowers it."""
        ...

    @abstractmethod
    async def request_cancel(self, job_id: str) -> bool:
        """Flag a non-terminal job for cancellation. False if terminal or missing."""
        ...

    @abstractmethod
    async def is_cancel_requested(self, job_id: str) -> bool: ...

    @abstractmethod
    async def list_jobs(self, tenant_id: str, app_id: str | None = None, limit: int = 20) -> list[DiscoveryJob]:
        """Most recent first."""
        ...

    @abstractmethod
    async def purge_jobs(self, finished_before: datetime) -> int:
        """Delete terminal jobs finished before the cut-off. Returns deleted count."""
        ...

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def keyword_stats(self, tenant_id: str, app_id: str, region: str | None = None) -> dict:
        """Position distribution of an app's tracked keywords, from each keyword's latest snapshot."""
        keywords = await self.list_keywords(tenant_id, app_id, region=region)
        positions: list[int] = []
        traffic = 0.0
        visibility = 0.0
        for keyword in keywords:
            snapshot = await self.get_latest_snapshot(keyword.id)
            if snapshot is None:
                continue
            traffic += snapshot.estimated_traffic
            visibility += snapshot.visibility_score
            if snapshot.position is not None:
                positions.append(snapshot.position)

        return {
            "app_id": app_id,
            "region": region,
            "total_tracked": len(keywords),
            "ranking": len(positions),
            "top_10": sum(1 for p in positions if p <= 10),
            "top_30": sum(1 for p in positions if p <= 30),
            "top_50": sum(1 for p in positions if p <= 50),
            "avg_position": round(sum(positions) / len(positions), 1) if positions else None,
            "total_visibility": round(visibility, 2),
            "total_estimated_traffic": round(traffic, 2),
        }

    async def close(self) -> None:
        """Release connections. No-op by default."""
        return None
