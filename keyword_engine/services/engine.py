"""Keyword engine facade — wires store, budget, SERP clients and scheduler.

The API layer and the Celery tasks both talk to the engine through this
class; nothing outside it constructs infrastructure.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from keyword_engine.analysis.types import GapReport, Platform, RankingSnapshot, TrackedKeyword
from keyword_engine.collectors.app_store import AppStoreSerpClient
from keyword_engine.collectors.base import BaseSerpClient
from keyword_engine.core.exceptions import InvalidRequest
from keyword_engine.gateway.rate_limiter import TokenBucketRateLimiter
from keyword_engine.gateway.redis_rate_limiter import RedisTokenBucketRateLimiter
from keyword_engine.scheduler.scheduler import DiscoveryScheduler
from keyword_engine.scheduler.types import CancelResult, DiscoveryJob, DiscoveryRequest
from keyword_engine.services.gap_service import build_gap_report
from keyword_engine.storage.base import EngineStore
from keyword_engine.storage.memory import MemoryStore

logger = logging.getLogger(__name__)

MAX_TREND_WINDOW_DAYS = 365


def build_store(settings) -> EngineStore:
    if settings.storage_backend == "memory":
        return MemoryStore()

    from keyword_engine.db.postgres import engine
    from keyword_engine.storage.sql import SqlStore

    return SqlStore(engine)


def build_rate_limiter(settings, shared: bool):
    """Process-local budget for inline runs, Redis budget when workers share it."""
    if shared:
        return RedisTokenBucketRateLimiter.from_settings(settings)
    return TokenBucketRateLimiter.from_settings(settings)


def _celery_dispatch(job_id: str) -> None:
    from keyword_engine.tasks.discovery_tasks import run_discovery_job

    run_discovery_job.delay(job_id)


class KeywordEngine:
    def __init__(
        self,
        store: EngineStore,
        scheduler: DiscoveryScheduler,
        *,
        gap_tolerance_days: int = 3,
        job_retention_days: int = 7,
        clock=None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.rate_limiter = scheduler.rate_limiter
        self.gap_tolerance_days = gap_tolerance_days
        self.job_retention_days = job_retention_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        store: EngineStore | None = None,
        serp_clients: dict[Platform, BaseSerpClient] | None = None,
        inline: bool | None = None,
        **scheduler_kwargs,
    ) -> KeywordEngine:
        """Build the engine.

        Args:
            settings: Application settings.
            store: Overrides the configured storage backend.
            serp_clients: Overrides the default iOS client.
            inline: Force inline (True) or external (False) job dispatch;
                defaults to ``settings.scheduler_mode``.
        """
        store = store or build_store(settings)
        serp_clients = serp_clients or {Platform.IOS: AppStoreSerpClient()}
        if inline is None:
            inline = settings.scheduler_mode != "celery"
        rate_limiter = build_rate_limiter(settings, shared=settings.scheduler_mode == "celery")
        scheduler_kwargs.setdefault("dispatch", None if inline else _celery_dispatch)

        scheduler = DiscoveryScheduler.from_settings(settings, store, serp_clients, rate_limiter, **scheduler_kwargs)
        return cls(
            store,
            scheduler,
            gap_tolerance_days=settings.gap_stale_tolerance_days,
            job_retention_days=settings.job_retention_days,
            clock=scheduler_kwargs.get("clock"),
        )

    async def start(self) -> None:
        await self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.rate_limiter.close()
        await self.store.close()

    # ------------------------------------------------------------------
    # Discovery jobs
    # ------------------------------------------------------------------

    async def submit(self, request: DiscoveryRequest) -> str:
        return await self.scheduler.submit(request)

    async def get_status(self, job_id: str) -> DiscoveryJob:
        return await self.scheduler.get_status(job_id)

    async def cancel(self, job_id: str) -> CancelResult:
        return await self.scheduler.cancel(job_id)

    async def list_jobs(self, tenant_id: str, app_id: str | None = None, limit: int = 20) -> list[DiscoveryJob]:
        return await self.scheduler.list_jobs(tenant_id, app_id=app_id, limit=limit)

    async def run_job(self, job_id: str) -> DiscoveryJob:
        return await self.scheduler.run_job(job_id)

    async def purge_finished_jobs(self, retention_days: int | None = None) -> int:
        days = self.job_retention_days if retention_days is None else retention_days
        deleted = await self.store.purge_jobs(self._clock() - timedelta(days=days))
        if deleted:
            logger.info("Purged %d finished discovery jobs older than %d days", deleted, days)
        return deleted

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_keyword(self, tenant_id: str, keyword_id: int) -> TrackedKeyword | None:
        keyword = await self.store.get_keyword(keyword_id)
        if keyword is None or keyword.tenant_id != str(tenant_id):
            return None
        return keyword

    async def get_ranking_trend(self, keyword_id: int, window_days: int = 30) -> list[RankingSnapshot]:
        """Snapshots from the last ``window_days`` calendar days, today included, oldest first."""
        if not 1 <= window_days <= MAX_TREND_WINDOW_DAYS:
            raise InvalidRequest(f"window_days must be between 1 and {MAX_TREND_WINDOW_DAYS}")
        since = self._clock().date() - timedelta(days=window_days - 1)
        return await self.store.list_snapshots(keyword_id, since=since)

    async def get_gap_report(
        self,
        tenant_id: str,
        app_id: str,
        competitor_app_ids: Sequence[str] | None = None,
        region: str = "us",
        platform: Platform = Platform.IOS,
    ) -> GapReport:
        return await build_gap_report(
            self.store,
            tenant_id,
            app_id,
            competitor_app_ids,
            region=region,
            platform=platform,
            tolerance_days=self.gap_tolerance_days,
        )

    async def list_keywords(
        self,
        tenant_id: str,
        app_id: str,
        region: str | None = None,
        include_untracked: bool = False,
    ) -> list[TrackedKeyword]:
        return await self.store.list_keywords(tenant_id, app_id, region=region, tracked_only=not include_untracked)

    async def set_tracked(self, tenant_id: str, keyword_id: int, is_tracked: bool) -> TrackedKeyword | None:
        if await self.get_keyword(tenant_id, keyword_id) is None:
            return None
        return await self.store.set_tracked(keyword_id, is_tracked)

    async def keyword_stats(self, tenant_id: str, app_id: str, region: str | None = None) -> dict:
        return await self.store.keyword_stats(tenant_id, app_id, region=region)
