from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from keyword_engine.analysis.types import Platform
from keyword_engine.scheduler.types import AnalysisDepth, DiscoveryJob, DiscoveryRequest


class DiscoveryJobCreate(BaseModel):
    app_id: str = Field(min_length=1, max_length=64)
    target_count: Literal[10, 30, 50, 100] = 30
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    region: str = Field("us", min_length=2, max_length=2)
    include_competitors: bool = False
    platform: Platform = Platform.IOS
    seed_keywords: list[str] = Field(default_factory=list, max_length=50)
    competitor_app_ids: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("region")
    @classmethod
    def _lower_region(cls, v: str) -> str:
        return v.lower()

    def to_request(self, tenant_id: str) -> DiscoveryRequest:
        return DiscoveryRequest(
            tenant_id=tenant_id,
            app_id=self.app_id,
            target_count=self.target_count,
            depth=self.depth,
            region=self.region,
            include_competitors=self.include_competitors,
            platform=self.platform,
            seed_keywords=list(self.seed_keywords),
            competitor_app_ids=list(self.competitor_app_ids),
        )


class DiscoveryJobCreated(BaseModel):
    job_id: str
    status: str


class JobProgressResponse(BaseModel):
    current: int
    total: int
    percent: float


class CandidateResultResponse(BaseModel):
    term: str
    method: str
    status: str
    relevance: float
    keyword_id: int | None
    position: int | None
    trend: str | None
    visibility_score: float
    popularity_score: int
    estimated_monthly_searches: int
    attempts: int
    reason: str | None


class KeywordClusterResponse(BaseModel):
    label: str
    primary_keyword: str
    keywords: list[str]
    total_search_volume: int
    avg_popularity: float
    opportunity_score: float


class DiscoveryResultResponse(BaseModel):
    candidates: list[CandidateResultResponse]
    clusters: list[KeywordClusterResponse]
    by_method: dict[str, int]
    succeeded: int
    failed: int


class DiscoveryJobResponse(BaseModel):
    id: str
    tenant_id: str
    app_id: str
    platform: str
    region: str
    target_count: int
    depth: str
    include_competitors: bool
    seed_keywords: list[str]
    competitor_app_ids: list[str]
    status: str
    progress: JobProgressResponse
    reason: str | None
    error_detail: str | None
    result: DiscoveryResultResponse
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None

    @classmethod
    def from_job(cls, job: DiscoveryJob) -> "DiscoveryJobResponse":
        return cls.model_validate(job.to_dict())


class DiscoveryJobSummary(BaseModel):
    id: str
    app_id: str
    region: str
    depth: str
    target_count: int
    status: str
    reason: str | None
    progress: JobProgressResponse
    created_at: datetime
    finished_at: datetime | None

    @classmethod
    def from_job(cls, job: DiscoveryJob) -> "DiscoveryJobSummary":
        return cls.model_validate(job.to_dict())


class CancelResponse(BaseModel):
    job_id: str
    result: Literal["ok", "already_terminal"]
