"""Tests for the HTTP API: discovery jobs, keywords, app reports."""

import asyncio
from datetime import timedelta

import pytest
from httpx import AsyncClient

from keyword_engine.analysis.types import (
    CompetitorKeywordEntry,
    RankingSnapshot,
    TrackedKeyword,
    Trend,
)
from keyword_engine.scheduler.types import DiscoveryJob, DiscoveryRequest
from tests.conftest import FIXED_NOW, TARGET_APP_ID, TENANT_ID

TODAY = FIXED_NOW.date()
OTHER_TENANT = {"X-Tenant-ID": "tenant-b"}


async def _wait_terminal(client: AsyncClient, job_id: str, headers: dict, timeout: float = 5.0) -> dict:
    async def _poll():
        while True:
            resp = await client.get(f"/api/v1/discovery/jobs/{job_id}", headers=headers)
            data = resp.json()
            if data["status"] in ("completed", "failed"):
                return data
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(_poll(), timeout=timeout)


async def _tracked(store, term: str, position: int | None, day=TODAY) -> TrackedKeyword:
    keyword = await store.upsert_keyword(TrackedKeyword(tenant_id=TENANT_ID, app_id=TARGET_APP_ID, term=term))
    trend = Trend.NEW if position is not None else Trend.NOT_RANKING
    await store.insert_snapshot(RankingSnapshot(keyword_id=keyword.id, snapshot_date=day, position=position, trend=trend))
    return keyword


# ==========================================================================
# Test: Discovery jobs
# ==========================================================================


@pytest.mark.asyncio
async def test_submit_and_run_job(client: AsyncClient, tenant_headers):
    """Submitted job is accepted immediately and runs to completion."""
    resp = await client.post(
        "/api/v1/discovery/jobs",
        json={"app_id": TARGET_APP_ID, "target_count": 10, "depth": "quick", "region": "US"},
        headers=tenant_headers,
    )
    assert resp.status_code == 202
    body = resp.json()
    assert body["status"] == "pending"

    data = await _wait_terminal(client, body["job_id"], tenant_headers)
    assert data["status"] == "completed"
    assert data["region"] == "us"
    assert data["progress"]["current"] == data["progress"]["total"]
    assert 0 < data["result"]["succeeded"] <= 10
    assert data["result"]["clusters"]

    # Job appears in the tenant's list
    resp = await client.get("/api/v1/discovery/jobs", params={"app_id": TARGET_APP_ID}, headers=tenant_headers)
    assert resp.status_code == 200
    assert [j["id"] for j in resp.json()] == [body["job_id"]]

    # Discovered keywords are now tracked
    resp = await client.get("/api/v1/keywords", params={"app_id": TARGET_APP_ID}, headers=tenant_headers)
    assert resp.status_code == 200
    assert len(resp.json()) == data["result"]["succeeded"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"app_id": TARGET_APP_ID, "target_count": 7},
        {"app_id": TARGET_APP_ID, "region": "usa"},
        {"app_id": TARGET_APP_ID, "depth": "exhaustive"},
        {"app_id": ""},
    ],
)
async def test_submit_invalid_payload(client: AsyncClient, tenant_headers, payload):
    resp = await client.post("/api/v1/discovery/jobs", json=payload, headers=tenant_headers)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_submit_self_competitor_rejected(client: AsyncClient, tenant_headers):
    resp = await client.post(
        "/api/v1/discovery/jobs",
        json={"app_id": TARGET_APP_ID, "competitor_app_ids": [TARGET_APP_ID]},
        headers=tenant_headers,
    )
    assert resp.status_code == 422
    assert resp.json()["reason"] == "invalid_request"


@pytest.mark.asyncio
async def test_missing_tenant_header(client: AsyncClient):
    resp = await client.post("/api/v1/discovery/jobs", json={"app_id": TARGET_APP_ID})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_blank_tenant_header(client: AsyncClient):
    resp = await client.get("/api/v1/discovery/jobs", headers={"X-Tenant-ID": "   "})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_unknown_job_is_404(client: AsyncClient, tenant_headers):
    resp = await client.get("/api/v1/discovery/jobs/does-not-exist", headers=tenant_headers)
    assert resp.status_code == 404
    assert resp.json()["reason"] == "job_not_found"


@pytest.mark.asyncio
async def test_job_hidden_from_other_tenant(client: AsyncClient, engine, tenant_headers):
    job = DiscoveryJob(request=DiscoveryRequest(tenant_id=TENANT_ID, app_id=TARGET_APP_ID))
    await engine.store.create_job(job)

    resp = await client.get(f"/api/v1/discovery/jobs/{job.id}", headers=OTHER_TENANT)
    assert resp.status_code == 404
    resp = await client.post(f"/api/v1/discovery/jobs/{job.id}/cancel", headers=OTHER_TENANT)
    assert resp.status_code == 404
    resp = await client.get("/api/v1/discovery/jobs", headers=OTHER_TENANT)
    assert resp.json() == []


@pytest.mark.asyncio
async def test_cancel_pending_job(client: AsyncClient, engine, tenant_headers):
    """A job that has not started is cancelled outright; a second cancel is a no-op."""
    job = DiscoveryJob(request=DiscoveryRequest(tenant_id=TENANT_ID, app_id=TARGET_APP_ID))
    await engine.store.create_job(job)

    resp = await client.post(f"/api/v1/discovery/jobs/{job.id}/cancel", headers=tenant_headers)
    assert resp.status_code == 200
    assert resp.json() == {"job_id": job.id, "result": "ok"}

    resp = await client.get(f"/api/v1/discovery/jobs/{job.id}", headers=tenant_headers)
    data = resp.json()
    assert data["status"] == "failed"
    assert data["reason"] == "cancelled"

    resp = await client.post(f"/api/v1/discovery/jobs/{job.id}/cancel", headers=tenant_headers)
    assert resp.json()["result"] == "already_terminal"


# ==========================================================================
# Test: Keywords
# ==========================================================================


@pytest.mark.asyncio
async def test_untrack_keyword(client: AsyncClient, store, tenant_headers):
    keyword = await _tracked(store, "yoga", 4)

    resp = await client.patch(f"/api/v1/keywords/{keyword.id}", json={"is_tracked": False}, headers=tenant_headers)
    assert resp.status_code == 200
    assert resp.json()["is_tracked"] is False

    resp = await client.get("/api/v1/keywords", params={"app_id": TARGET_APP_ID}, headers=tenant_headers)
    assert resp.json() == []
    resp = await client.get(
        "/api/v1/keywords",
        params={"app_id": TARGET_APP_ID, "include_untracked": True},
        headers=tenant_headers,
    )
    assert [k["keyword"] for k in resp.json()] == ["yoga"]


@pytest.mark.asyncio
async def test_keyword_of_other_tenant_is_404(client: AsyncClient, store):
    keyword = await _tracked(store, "yoga", 4)
    resp = await client.patch(f"/api/v1/keywords/{keyword.id}", json={"is_tracked": False}, headers=OTHER_TENANT)
    assert resp.status_code == 404
    resp = await client.get(f"/api/v1/keywords/{keyword.id}/trend", headers=OTHER_TENANT)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_ranking_trend(client: AsyncClient, store, tenant_headers):
    keyword = await _tracked(store, "yoga", 9, day=TODAY - timedelta(days=2))
    await store.insert_snapshot(
        RankingSnapshot(keyword_id=keyword.id, snapshot_date=TODAY, position=4, trend=Trend.UP, position_change=-5)
    )

    resp = await client.get(f"/api/v1/keywords/{keyword.id}/trend", params={"window_days": 7}, headers=tenant_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["keyword"] == "yoga"
    assert [s["position"] for s in data["snapshots"]] == [9, 4]
    assert data["snapshots"][-1]["trend"] == "up"
    assert data["snapshots"][-1]["position_change"] == -5


@pytest.mark.asyncio
@pytest.mark.parametrize("window", [0, 400])
async def test_ranking_trend_window_bounds(client: AsyncClient, store, tenant_headers, window):
    keyword = await _tracked(store, "yoga", 9)
    resp = await client.get(
        f"/api/v1/keywords/{keyword.id}/trend", params={"window_days": window}, headers=tenant_headers
    )
    assert resp.status_code == 422


# ==========================================================================
# Test: App reports
# ==========================================================================


@pytest.mark.asyncio
async def test_gap_report(client: AsyncClient, store, tenant_headers):
    step = await _tracked(store, "step counter", None)
    yoga = await _tracked(store, "yoga", 2)
    await store.add_competitor_entries(
        [
            CompetitorKeywordEntry(keyword_id=step.id, competitor_app_id="2000", snapshot_date=TODAY, position=3),
            CompetitorKeywordEntry(keyword_id=yoga.id, competitor_app_id="2000", snapshot_date=TODAY, position=1),
        ]
    )

    resp = await client.get(
        f"/api/v1/apps/{TARGET_APP_ID}/gap-report",
        params={"competitor_app_ids": "2000"},
        headers=tenant_headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert [i["term"] for i in data["opportunities"]] == ["step counter"]
    assert [i["term"] for i in data["contested"]] == ["yoga"]
    assert data["strengths"] == []
    assert data["competitor_app_ids"] == ["2000"]
    assert data["is_stale"] is False


@pytest.mark.asyncio
async def test_keyword_stats(client: AsyncClient, store, tenant_headers):
    await _tracked(store, "yoga", 2)
    await _tracked(store, "pilates", 35)
    await _tracked(store, "step counter", None)

    resp = await client.get(f"/api/v1/apps/{TARGET_APP_ID}/keyword-stats", headers=tenant_headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total_tracked"] == 3
    assert data["ranking"] == 2
    assert data["top_10"] == 1
    assert data["top_50"] == 2
    assert data["avg_position"] == 18.5


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["queue"] == {"total": 0, "by_priority": {"high": 0, "normal": 0, "low": 0}}
