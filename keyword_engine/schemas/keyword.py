from datetime import date, datetime

from pydantic import BaseModel, Field

from keyword_engine.analysis.types import RankingSnapshot, TrackedKeyword


class KeywordResponse(BaseModel):
    id: int
    app_id: str
    keyword: str
    platform: str
    region: str
    is_tracked: bool
    discovery_method: str
    generation_method: str | None
    created_at: datetime
    last_tracked_at: datetime | None

    @classmethod
    def from_keyword(cls, kw: TrackedKeyword) -> "KeywordResponse":
        return cls(
            id=kw.id,
            app_id=kw.app_id,
            keyword=kw.term,
            platform=kw.platform.value,
            region=kw.region,
            is_tracked=kw.is_tracked,
            discovery_method=kw.discovery_method.value,
            generation_method=kw.generation_method.value if kw.generation_method else None,
            created_at=kw.created_at,
            last_tracked_at=kw.last_tracked_at,
        )


class KeywordUpdate(BaseModel):
    is_tracked: bool


class RankingSnapshotResponse(BaseModel):
    id: int | None
    keyword_id: int
    snapshot_date: date
    position: int | None
    is_ranking: bool
    trend: str
    position_change: int | None
    visibility_score: float
    estimated_search_volume: int
    estimated_traffic: float
    max_tracked_position: int

    @classmethod
    def from_snapshot(cls, snapshot: RankingSnapshot) -> "RankingSnapshotResponse":
        return cls.model_validate(snapshot.to_dict())


class RankingTrendResponse(BaseModel):
    keyword_id: int
    keyword: str
    window_days: int = Field(ge=1)
    snapshots: list[RankingSnapshotResponse]


class KeywordStatsResponse(BaseModel):
    app_id: str
    region: str | None
    total_tracked: int
    ranking: int
    top_10: int
    top_30: int
    top_50: int
    avg_position: float | None
    total_visibility: float
    total_estimated_traffic: float
