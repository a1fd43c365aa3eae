from fastapi import APIRouter, Depends, Query

from keyword_engine.core.dependencies import get_current_tenant_id, get_engine
from keyword_engine.core.exceptions import NotFoundError
from keyword_engine.schemas.keyword import (
    KeywordResponse,
    KeywordUpdate,
    RankingSnapshotResponse,
    RankingTrendResponse,
)
from keyword_engine.services.engine import MAX_TREND_WINDOW_DAYS, KeywordEngine

router = APIRouter(prefix="/keywords", tags=["keywords"])


@router.get("", response_model=list[KeywordResponse])
async def list_keywords(
    app_id: str = Query(..., min_length=1, max_length=64),
    region: str | None = Query(None, min_length=2, max_length=2),
    include_untracked: bool = Query(False),
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    keywords = await engine.list_keywords(
        tenant_id, app_id, region=region.lower() if region else None, include_untracked=include_untracked
    )
    return [KeywordResponse.from_keyword(k) for k in keywords]


@router.patch("/{keyword_id}", response_model=KeywordResponse)
async def update_keyword(
    keyword_id: int,
    body: KeywordUpdate,
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    keyword = await engine.set_tracked(tenant_id, keyword_id, body.is_tracked)
    if keyword is None:
        raise NotFoundError("Keyword not found")
    return KeywordResponse.from_keyword(keyword)


@router.get("/{keyword_id}/trend", response_model=RankingTrendResponse)
async def get_ranking_trend(
    keyword_id: int,
    window_days: int = Query(30, ge=1, le=MAX_TREND_WINDOW_DAYS),
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    keyword = await engine.get_keyword(tenant_id, keyword_id)
    if keyword is None:
        raise NotFoundError("Keyword not found")

    snapshots = await engine.get_ranking_trend(keyword_id, window_days)
    return RankingTrendResponse(
        keyword_id=keyword_id,
        keyword=keyword.term,
        window_days=window_days,
        snapshots=[RankingSnapshotResponse.from_snapshot(s) for s in snapshots],
    )
