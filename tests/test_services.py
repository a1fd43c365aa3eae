"""Tests for the read-side services and the engine facade."""

from datetime import timedelta

import pytest

from keyword_engine.analysis.types import (
    CompetitorKeywordEntry,
    KeywordSource,
    Platform,
    RankedApp,
    RankingSnapshot,
    TrackedKeyword,
    Trend,
)
from keyword_engine.analysis.volume import category_context_for
from keyword_engine.core.exceptions import InvalidRequest
from keyword_engine.scheduler.types import DiscoveryJob, DiscoveryRequest, JobStatus
from keyword_engine.services.gap_service import build_gap_report
from keyword_engine.services.volume_service import VolumeService
from tests.conftest import FIXED_NOW, TARGET_APP_ID, TENANT_ID

TODAY = FIXED_NOW.date()


def _strong_serp() -> list[RankedApp]:
    return [RankedApp(app_id=str(i), position=i, rating=4.8, rating_count=250_000) for i in range(1, 11)]


def _weak_serp() -> list[RankedApp]:
    return [RankedApp(app_id=str(i), position=i, rating=3.1, rating_count=12) for i in range(1, 4)]


async def _track(store, term: str, position: int | None, day=TODAY, tenant: str = TENANT_ID) -> TrackedKeyword:
    keyword = await store.upsert_keyword(
        TrackedKeyword(tenant_id=tenant, app_id=TARGET_APP_ID, term=term, discovery_method=KeywordSource.MANUAL)
    )
    trend = Trend.NEW if position is not None else Trend.NOT_RANKING
    await store.insert_snapshot(
        RankingSnapshot(keyword_id=keyword.id, snapshot_date=day, position=position, trend=trend)
    )
    return keyword


# ==========================================================================
# Test: Volume refresh
# ==========================================================================


class TestVolumeService:
    async def test_new_term_is_estimated_and_stored(self, store):
        service = VolumeService(store, staleness_days=7)
        estimate = await service.get_or_refresh(
            "step counter", Platform.IOS, "us", _strong_serp(), category_context_for("Health & Fitness"), FIXED_NOW
        )
        assert 1 <= estimate.popularity_score <= 100
        assert await store.get_volume("step counter", Platform.IOS, "us") == estimate

    async def test_fresh_estimate_reused(self, store):
        service = VolumeService(store, staleness_days=7)
        first = await service.get_or_refresh("yoga", Platform.IOS, "us", _weak_serp(), None, FIXED_NOW)
        second = await service.get_or_refresh(
            "yoga", Platform.IOS, "us", _strong_serp(), None, FIXED_NOW + timedelta(days=2)
        )
        assert second.popularity_score == first.popularity_score
        assert second.last_updated_at == FIXED_NOW

    async def test_stale_estimate_recomputed(self, store):
        service = VolumeService(store, staleness_days=7)
        first = await service.get_or_refresh("yoga", Platform.IOS, "us", _weak_serp(), None, FIXED_NOW)
        later = FIXED_NOW + timedelta(days=8)
        refreshed = await service.get_or_refresh("yoga", Platform.IOS, "us", _strong_serp(), None, later)

        assert refreshed.last_updated_at == later
        assert refreshed.popularity_score > first.popularity_score


# ==========================================================================
# Test: Gap report assembly
# ==========================================================================


class TestGapService:
    async def test_report_from_stored_positions(self, store):
        step = await _track(store, "step counter", None)
        yoga = await _track(store, "yoga", 2)
        await store.add_competitor_entries(
            [
                CompetitorKeywordEntry(keyword_id=step.id, competitor_app_id="2000", snapshot_date=TODAY, position=3),
                CompetitorKeywordEntry(keyword_id=yoga.id, competitor_app_id="2000", snapshot_date=TODAY, position=6),
            ]
        )

        report = await build_gap_report(store, TENANT_ID, TARGET_APP_ID)

        assert [i.term for i in report.opportunities] == ["step counter"]
        assert [i.term for i in report.strengths] == ["yoga"]
        assert report.competitor_app_ids == ["2000"]
        assert report.app_id == TARGET_APP_ID

    async def test_named_competitor_without_data(self, store):
        step = await _track(store, "step counter", None)
        await store.add_competitor_entries(
            [CompetitorKeywordEntry(keyword_id=step.id, competitor_app_id="2000", snapshot_date=TODAY, position=3)]
        )

        report = await build_gap_report(store, TENANT_ID, TARGET_APP_ID, ["3000"])
        assert report.opportunities == []
        assert report.competitor_app_ids == ["3000"]

    async def test_other_tenant_keywords_ignored(self, store):
        await _track(store, "step counter", 4, tenant="tenant-b")
        report = await build_gap_report(store, TENANT_ID, TARGET_APP_ID)
        assert not (report.opportunities or report.strengths or report.contested)

    async def test_stale_competitor_data_flagged(self, store):
        step = await _track(store, "step counter", None)
        await store.add_competitor_entries(
            [
                CompetitorKeywordEntry(
                    keyword_id=step.id,
                    competitor_app_id="2000",
                    snapshot_date=TODAY - timedelta(days=20),
                    position=3,
                )
            ]
        )
        report = await build_gap_report(store, TENANT_ID, TARGET_APP_ID, tolerance_days=3)
        assert report.is_stale
        assert report.opportunities == []


# ==========================================================================
# Test: Engine facade
# ==========================================================================


class TestKeywordEngine:
    async def test_trend_window(self, engine, store):
        keyword = await store.upsert_keyword(
            TrackedKeyword(tenant_id=TENANT_ID, app_id=TARGET_APP_ID, term="yoga")
        )
        for offset in (40, 10, 0):
            await store.insert_snapshot(
                RankingSnapshot(
                    keyword_id=keyword.id,
                    snapshot_date=TODAY - timedelta(days=offset),
                    position=5,
                    trend=Trend.STABLE,
                )
            )

        snapshots = await engine.get_ranking_trend(keyword.id, window_days=30)
        assert [s.snapshot_date for s in snapshots] == [TODAY - timedelta(days=10), TODAY]

    async def test_trend_window_counts_today(self, engine, store):
        keyword = await store.upsert_keyword(
            TrackedKeyword(tenant_id=TENANT_ID, app_id=TARGET_APP_ID, term="yoga")
        )
        for offset in (7, 6, 0):
            await store.insert_snapshot(
                RankingSnapshot(
                    keyword_id=keyword.id,
                    snapshot_date=TODAY - timedelta(days=offset),
                    position=5,
                    trend=Trend.STABLE,
                )
            )

        week = await engine.get_ranking_trend(keyword.id, window_days=7)
        assert [s.snapshot_date for s in week] == [TODAY - timedelta(days=6), TODAY]
        assert [s.snapshot_date for s in await engine.get_ranking_trend(keyword.id, window_days=1)] == [TODAY]

    @pytest.mark.parametrize("window", [0, 366])
    async def test_trend_window_bounds(self, engine, window):
        with pytest.raises(InvalidRequest):
            await engine.get_ranking_trend(1, window_days=window)

    async def test_keyword_access_is_tenant_scoped(self, engine, store):
        keyword = await store.upsert_keyword(
            TrackedKeyword(tenant_id=TENANT_ID, app_id=TARGET_APP_ID, term="yoga")
        )
        assert (await engine.get_keyword(TENANT_ID, keyword.id)).term == "yoga"
        assert await engine.get_keyword("tenant-b", keyword.id) is None
        assert await engine.set_tracked("tenant-b", keyword.id, False) is None

        updated = await engine.set_tracked(TENANT_ID, keyword.id, False)
        assert updated.is_tracked is False
        assert await engine.list_keywords(TENANT_ID, TARGET_APP_ID) == []
        assert len(await engine.list_keywords(TENANT_ID, TARGET_APP_ID, include_untracked=True)) == 1

    async def test_purge_finished_jobs(self, engine, store):
        old = DiscoveryJob(request=DiscoveryRequest(tenant_id=TENANT_ID, app_id=TARGET_APP_ID))
        await store.create_job(old)
        old.status = JobStatus.FAILED
        old.finished_at = FIXED_NOW - timedelta(days=10)
        await store.transition_job(old, JobStatus.PENDING)

        assert await engine.purge_finished_jobs() == 1
        assert await engine.purge_finished_jobs(retention_days=0) == 0
        assert await store.get_job(old.id) is None

    async def test_keyword_stats(self, engine, store):
        await _track(store, "yoga", 3)
        await _track(store, "pilates", None)
        stats = await engine.keyword_stats(TENANT_ID, TARGET_APP_ID)
        assert stats["total_tracked"] == 2
        assert stats["top_10"] == 1
