"""SQLAlchemy-backed store (PostgreSQL in production, SQLite in tests).

Upserts use the dialect's native ``INSERT ... ON CONFLICT`` so every write is
atomic per row even with several workers touching the same natural key.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from keyword_engine.analysis.types import (
    CompetitionTier,
    CompetitorKeywordEntry,
    DiscoveryMethod,
    KeywordSource,
    Platform,
    RankingSnapshot,
    TrackedKeyword,
    Trend,
    VolumeEstimate,
)
from keyword_engine.core.exceptions import PersistenceUnavailable, ReasonCode, SchedulerFault
from keyword_engine.db.base import Base
from keyword_engine.models import (
    CompetitorKeyword,
    DiscoveryJobRecord,
    Keyword,
    KeywordRanking,
    KeywordSearchVolume,
)
from keyword_engine.scheduler.types import DiscoveryJob, DiscoveryRequest, JobProgress, JobStatus
from keyword_engine.storage.base import EngineStore

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = [s.value for s in JobStatus if s.is_terminal]
_ACTIVE_STATUSES = [s.value for s in JobStatus if not s.is_terminal]


def _aware(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; everything in this schema is UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Row ↔ record conversion
# ---------------------------------------------------------------------------


def _to_keyword(row: Keyword) -> TrackedKeyword:
    return TrackedKeyword(
        id=row.id,
        tenant_id=row.tenant_id,
        app_id=row.app_id,
        term=row.keyword,
        platform=Platform(row.platform),
        region=row.region,
        is_tracked=row.is_tracked,
        discovery_method=KeywordSource(row.discovery_method),
        generation_method=DiscoveryMethod(row.generation_method) if row.generation_method else None,
        created_at=_aware(row.created_at),
        last_tracked_at=_aware(row.last_tracked_at),
    )


def _to_snapshot(row: KeywordRanking) -> RankingSnapshot:
    return RankingSnapshot(
        id=row.id,
        keyword_id=row.keyword_id,
        snapshot_date=row.snapshot_date,
        position=row.position,
        trend=Trend(row.trend),
        position_change=row.position_change,
        visibility_score=row.visibility_score,
        estimated_search_volume=row.estimated_search_volume,
        estimated_traffic=row.estimated_traffic,
        max_tracked_position=row.max_tracked_position,
        serp_app_ids=tuple(row.serp_snapshot or ()),
    )


def _to_volume(row: KeywordSearchVolume) -> VolumeEstimate:
    return VolumeEstimate(
        term=row.keyword,
        platform=Platform(row.platform),
        region=row.region,
        popularity_score=row.popularity_score,
        competition_tier=CompetitionTier(row.competition_level),
        estimated_monthly_searches=row.estimated_monthly_searches,
        last_updated_at=_aware(row.last_updated_at),
        signals=dict(row.signals or {}),
        data_source=row.data_source,
    )


def _to_competitor(row: CompetitorKeyword) -> CompetitorKeywordEntry:
    return CompetitorKeywordEntry(
        id=row.id,
        keyword_id=row.keyword_id,
        competitor_app_id=row.competitor_app_id,
        competitor_name=row.competitor_name or "",
        position=row.position,
        snapshot_date=row.snapshot_date,
    )


def _to_job(row: DiscoveryJobRecord) -> DiscoveryJob:
    request = DiscoveryRequest.from_dict(
        row.request
        or {
            "tenant_id": row.tenant_id,
            "app_id": row.app_id,
            "target_count": row.target_count,
            "depth": row.depth,
            "region": row.region,
            "include_competitors": row.include_competitors,
            "platform": row.platform,
        }
    )
    job = DiscoveryJob(
        request=request,
        id=row.id,
        status=JobStatus(row.status),
        progress=JobProgress(current=row.progress_current, total=row.progress_total),
        reason=ReasonCode(row.reason) if row.reason else None,
        error_detail=row.error_detail,
        cancel_requested=row.cancel_requested,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        finished_at=_aware(row.finished_at),
    )
    job.load_result_payload(row.result)
    return job


def _job_state(job: DiscoveryJob) -> dict:
    """Mutable job columns written on a status transition."""
    return {
        "status": job.status.value,
        "progress_total": job.progress.total,
        "reason": job.reason.value if job.reason else None,
        "error_detail": job.error_detail,
        "result": job.result_payload(),
        "started_at": job.started_at,
        "finished_at": job.finished_at,
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlStore(EngineStore):
    """Store over an AsyncEngine. One short session per operation."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._dialect = engine.dialect.name
        self._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def create_all(self) -> None:
        """Create tables directly (tests, local dev). Production uses Alembic."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.exception("Persistence operation failed")
            raise PersistenceUnavailable("Persistence store unavailable") from e

    def _insert(self, model):
        if self._dialect == "sqlite":
            return sqlite_insert(model)
        return pg_insert(model)

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    async def upsert_keyword(self, keyword: TrackedKeyword) -> TrackedKeyword:
        touched_at = keyword.last_tracked_at or datetime.now(timezone.utc)
        stmt = (
            self._insert(Keyword)
            .values(
                tenant_id=str(keyword.tenant_id),
                app_id=str(keyword.app_id),
                keyword=keyword.term,
                platform=keyword.platform.value,
                region=keyword.region,
                is_tracked=keyword.is_tracked,
                discovery_method=keyword.discovery_method.value,
                generation_method=keyword.generation_method.value if keyword.generation_method else None,
                created_at=keyword.created_at,
                last_tracked_at=touched_at,
            )
            .on_conflict_do_update(
                index_elements=["app_id", "keyword", "platform", "region"],
                set_={"last_tracked_at": touched_at},
            )
        )
        async with self._session() as session:
            await session.execute(stmt)
            row = (
                await session.execute(
                    select(Keyword).where(
                        Keyword.app_id == str(keyword.app_id),
                        Keyword.keyword == keyword.term,
                        Keyword.platform == keyword.platform.value,
                        Keyword.region == keyword.region,
                    )
                )
            ).scalar_one()
            await session.commit()
            return _to_keyword(row)

    async def get_keyword(self, keyword_id: int) -> TrackedKeyword | None:
        async with self._session() as session:
            row = await session.get(Keyword, keyword_id)
            return _to_keyword(row) if row else None

    async def list_keywords(
        self,
        tenant_id: str,
        app_id: str,
        *,
        region: str | None = None,
        platform: Platform | None = None,
        tracked_only: bool = True,
    ) -> list[TrackedKeyword]:
        stmt = select(Keyword).where(Keyword.tenant_id == str(tenant_id), Keyword.app_id == str(app_id))
        if region is not None:
            stmt = stmt.where(Keyword.region == region.lower())
        if platform is not None:
            stmt = stmt.where(Keyword.platform == Platform(platform).value)
        if tracked_only:
            stmt = stmt.where(Keyword.is_tracked.is_(True))
        stmt = stmt.order_by(Keyword.keyword, Keyword.region, Keyword.id)

        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_keyword(r) for r in rows]

    async def set_tracked(self, keyword_id: int, is_tracked: bool) -> TrackedKeyword | None:
        async with self._session() as session:
            row = await session.get(Keyword, keyword_id)
            if row is None:
                return None
            row.is_tracked = is_tracked
            await session.commit()
            return _to_keyword(row)

    # ------------------------------------------------------------------
    # Ranking snapshots
    # ------------------------------------------------------------------

    async def get_latest_snapshot(self, keyword_id: int, before: date | None = None) -> RankingSnapshot | None:
        stmt = select(KeywordRanking).where(KeywordRanking.keyword_id == keyword_id)
        if before is not None:
            stmt = stmt.where(KeywordRanking.snapshot_date < before)
        stmt = stmt.order_by(KeywordRanking.snapshot_date.desc()).limit(1)

        async with self._session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_snapshot(row) if row else None

    async def insert_snapshot(self, snapshot: RankingSnapshot) -> RankingSnapshot:
        stmt = (
            self._insert(KeywordRanking)
            .values(
                keyword_id=snapshot.keyword_id,
                snapshot_date=snapshot.snapshot_date,
                position=snapshot.position,
                is_ranking=snapshot.is_ranking,
                serp_snapshot=list(snapshot.serp_app_ids),
                estimated_search_volume=snapshot.estimated_search_volume,
                visibility_score=snapshot.visibility_score,
                estimated_traffic=snapshot.estimated_traffic,
                position_change=snapshot.position_change,
                trend=snapshot.trend.value,
                max_tracked_position=snapshot.max_tracked_position,
                created_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=["keyword_id", "snapshot_date"])
        )
        async with self._session() as session:
            await session.execute(stmt)
            row = (
                await session.execute(
                    select(KeywordRanking).where(
                        KeywordRanking.keyword_id == snapshot.keyword_id,
                        KeywordRanking.snapshot_date == snapshot.snapshot_date,
                    )
                )
            ).scalar_one()
            await session.commit()
            return _to_snapshot(row)

    async def list_snapshots(self, keyword_id: int, since: date | None = None) -> list[RankingSnapshot]:
        stmt = select(KeywordRanking).where(KeywordRanking.keyword_id == keyword_id)
        if since is not None:
            stmt = stmt.where(KeywordRanking.snapshot_date >= since)
        stmt = stmt.order_by(KeywordRanking.snapshot_date.asc())

        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_snapshot(r) for r in rows]

    # ------------------------------------------------------------------
    # Volume estimates
    # ------------------------------------------------------------------

    async def get_volume(self, term: str, platform: Platform, region: str) -> VolumeEstimate | None:
        stmt = select(KeywordSearchVolume).where(
            KeywordSearchVolume.keyword == term,
            KeywordSearchVolume.platform == Platform(platform).value,
            KeywordSearchVolume.region == region.lower(),
        )
        async with self._session() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _to_volume(row) if row else None

    async def upsert_volume_if_stale(self, estimate: VolumeEstimate, stale_before: datetime) -> VolumeEstimate:
        stmt = self._insert(KeywordSearchVolume).values(
            keyword=estimate.term,
            platform=estimate.platform.value,
            region=estimate.region,
            estimated_monthly_searches=estimate.estimated_monthly_searches,
            popularity_score=estimate.popularity_score,
            competition_level=estimate.competition_tier.value,
            signals=dict(estimate.signals),
            data_source=estimate.data_source,
            last_updated_at=estimate.last_updated_at,
        )
        updatable = (
            "estimated_monthly_searches",
            "popularity_score",
            "competition_level",
            "signals",
            "data_source",
            "last_updated_at",
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["keyword", "platform", "region"],
            set_={col: stmt.excluded[col] for col in updatable},
            where=KeywordSearchVolume.__table__.c.last_updated_at < stale_before,
        )
        async with self._session() as session:
            await session.execute(stmt)
            row = (
                await session.execute(
                    select(KeywordSearchVolume).where(
                        KeywordSearchVolume.keyword == estimate.term,
                        KeywordSearchVolume.platform == estimate.platform.value,
                        KeywordSearchVolume.region == estimate.region,
                    )
                )
            ).scalar_one()
            await session.commit()
            return _to_volume(row)

    # ------------------------------------------------------------------
    # Competitor entries
    # ------------------------------------------------------------------

    async def add_competitor_entries(self, entries: Sequence[CompetitorKeywordEntry]) -> int:
        if not entries:
            return 0
        inserted = 0
        async with self._session() as session:
            for entry in entries:
                stmt = (
                    self._insert(CompetitorKeyword)
                    .values(
                        keyword_id=entry.keyword_id,
                        competitor_app_id=entry.competitor_app_id,
                        competitor_name=entry.competitor_name or None,
                        position=entry.position,
                        snapshot_date=entry.snapshot_date,
                        collected_at=datetime.now(timezone.utc),
                    )
                    .on_conflict_do_nothing(index_elements=["keyword_id", "competitor_app_id", "snapshot_date"])
                )
                result = await session.execute(stmt)
                inserted += max(result.rowcount or 0, 0)
            await session.commit()
        return inserted

    async def list_competitor_entries(
        self,
        keyword_ids: Sequence[int],
        competitor_app_ids: Sequence[str] | None = None,
    ) -> list[CompetitorKeywordEntry]:
        if not keyword_ids:
            return []
        stmt = select(CompetitorKeyword).where(CompetitorKeyword.keyword_id.in_(list(keyword_ids)))
        if competitor_app_ids:
            stmt = stmt.where(CompetitorKeyword.competitor_app_id.in_(list(competitor_app_ids)))
        stmt = stmt.order_by(
            CompetitorKeyword.keyword_id, CompetitorKeyword.competitor_app_id, CompetitorKeyword.snapshot_date
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_competitor(r) for r in rows]

    # ------------------------------------------------------------------
    # Discovery jobs
    # ------------------------------------------------------------------

    async def create_job(self, job: DiscoveryJob) -> None:
        request = job.request
        record = DiscoveryJobRecord(
            id=job.id,
            tenant_id=str(request.tenant_id),
            app_id=str(request.app_id),
            platform=request.platform.value,
            region=request.region,
            target_count=request.target_count,
            depth=request.depth.value,
            include_competitors=request.include_competitors,
            request=request.to_dict(),
            progress_current=job.progress.current,
            cancel_requested=job.cancel_requested,
            created_at=job.created_at,
            **_job_state(job),
        )
        async with self._session() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise SchedulerFault(f"Duplicate job id {job.id}") from e

    async def get_job(self, job_id: str) -> DiscoveryJob | None:
        async with self._session() as session:
            row = await session.get(DiscoveryJobRecord, job_id)
            return _to_job(row) if row else None

    async def save_job(self, job: DiscoveryJob) -> None:
        async with self._session() as session:
            await session.execute(
                update(DiscoveryJobRecord)
                .where(DiscoveryJobRecord.id == job.id)
                .values(progress_total=job.progress.total, result=job.result_payload())
            )
            await session.execute(self._progress_stmt(job.id, job.progress.current))
            await session.commit()

    async def transition_job(self, job: DiscoveryJob, expected: JobStatus) -> bool:
        if not expected.can_transition_to(job.status):
            raise SchedulerFault(f"Illegal job transition {expected.value} -> {job.status.value}")
        async with self._session() as session:
            result = await session.execute(
                update(DiscoveryJobRecord)
                .where(DiscoveryJobRecord.id == job.id, DiscoveryJobRecord.status == expected.value)
                .values(**_job_state(job))
            )
            if result.rowcount != 1:
                await session.rollback()
                return False
            await session.execute(self._progress_stmt(job.id, job.progress.current))
            await session.commit()
            return True

    async def update_progress(self, job_id: str, current: int) -> None:
        async with self._session() as session:
            await session.execute(self._progress_stmt(job_id, current))
            await session.commit()

    @staticmethod
    def _progress_stmt(job_id: str, current: int):
        # Conditional update keeps the counter monotonic across writers
        return (
            update(DiscoveryJobRecord)
            .where(DiscoveryJobRecord.id == job_id, DiscoveryJobRecord.progress_current < current)
            .values(progress_current=current)
        )

    async def request_cancel(self, job_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(DiscoveryJobRecord)
                .where(DiscoveryJobRecord.id == job_id, DiscoveryJobRecord.status.in_(_ACTIVE_STATUSES))
                .values(cancel_requested=True)
            )
            await session.commit()
            return result.rowcount > 0

    async def is_cancel_requested(self, job_id: str) -> bool:
        async with self._session() as session:
            flag = (
                await session.execute(
                    select(DiscoveryJobRecord.cancel_requested).where(DiscoveryJobRecord.id == job_id)
                )
            ).scalar_one_or_none()
            return bool(flag)

    async def list_jobs(self, tenant_id: str, app_id: str | None = None, limit: int = 20) -> list[DiscoveryJob]:
        stmt = select(DiscoveryJobRecord).where(DiscoveryJobRecord.tenant_id == str(tenant_id))
        if app_id is not None:
            stmt = stmt.where(DiscoveryJobRecord.app_id == str(app_id))
        stmt = stmt.order_by(DiscoveryJobRecord.created_at.desc()).limit(limit)
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_job(r) for r in rows]

    async def purge_jobs(self, finished_before: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                delete(DiscoveryJobRecord).where(
                    DiscoveryJobRecord.status.in_(_TERMINAL_STATUSES),
                    DiscoveryJobRecord.finished_at < finished_before,
                )
            )
            await session.commit()
            return result.rowcount or 0
