from fastapi import APIRouter, Depends, Query, Request

from keyword_engine.core.config import settings
from keyword_engine.core.dependencies import get_current_tenant_id, get_engine
from keyword_engine.core.exceptions import NotFoundError
from keyword_engine.core.rate_limit import limiter
from keyword_engine.scheduler.types import DiscoveryJob
from keyword_engine.schemas.discovery import (
    CancelResponse,
    DiscoveryJobCreate,
    DiscoveryJobCreated,
    DiscoveryJobResponse,
    DiscoveryJobSummary,
)
from keyword_engine.services.engine import KeywordEngine

router = APIRouter(prefix="/discovery/jobs", tags=["discovery"])


async def _get_job(job_id: str, tenant_id: str, engine: KeywordEngine) -> DiscoveryJob:
    job = await engine.get_status(job_id)
    if job.tenant_id != tenant_id:
        raise NotFoundError("Job not found")
    return job


@router.post("", response_model=DiscoveryJobCreated, status_code=202)
@limiter.limit(settings.submit_rate_limit)
async def submit_discovery_job(
    request: Request,
    body: DiscoveryJobCreate,
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    job_id = await engine.submit(body.to_request(tenant_id))
    return DiscoveryJobCreated(job_id=job_id, status="pending")


@router.get("", response_model=list[DiscoveryJobSummary])
async def list_discovery_jobs(
    app_id: str | None = Query(None, max_length=64),
    limit: int = Query(20, ge=1, le=100),
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    jobs = await engine.list_jobs(tenant_id, app_id=app_id, limit=limit)
    return [DiscoveryJobSummary.from_job(j) for j in jobs]


@router.get("/{job_id}", response_model=DiscoveryJobResponse)
async def get_discovery_job(
    job_id: str,
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    job = await _get_job(job_id, tenant_id, engine)
    return DiscoveryJobResponse.from_job(job)


@router.post("/{job_id}/cancel", response_model=CancelResponse)
async def cancel_discovery_job(
    job_id: str,
    tenant_id: str = Depends(get_current_tenant_id),
    engine: KeywordEngine = Depends(get_engine),
):
    await _get_job(job_id, tenant_id, engine)
    result = await engine.cancel(job_id)
    return CancelResponse(job_id=job_id, result=result.value)
