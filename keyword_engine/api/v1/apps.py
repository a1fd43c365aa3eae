from fastapi import APIRouter, Depends, Query

from keyword_engine.analysis.types import Platform
from keyword_engine.core.dependencies import get_current_tenant_id, get_engine
from keyword_engine.schemas.gap import GapReportResponse
from keyword_engine.schemas.keyword import KeywordStatsResponse
from keyword_engine.services.engine import KeywordEngine

router = APIRouter(prefix="/apps/{app_id}", tags=["apps"])


@router.get("/gap-report", response_model=GapReportResponse)
async def get_gap_report(
    app_id: str,
    competitor_app_ids: list[str] | None = Query(None),
    region: str = Query("us", min_length=2, max_length=2),
    platform: Platform = Query(Platform.IOS),
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    # Accept both repeated params and a single comma-separated value
    competitors = [c.strip() for raw in competitor_app_ids or [] for c in raw.split(",") if c.strip()]
    report = await engine.get_gap_report(tenant_id, app_id, competitors, region=region.lower(), platform=platform)
    return GapReportResponse.from_report(report)


@router.get("/keyword-stats", response_model=KeywordStatsResponse)
async def get_keyword_stats(
    app_id: str,
    region: str | None = Query(None, min_length=2, max_length=2),
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    return await engine.keyword_stats(tenant_id, app_id, region=region.lower() if region else None)
