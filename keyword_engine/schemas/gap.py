from datetime import date

from pydantic import BaseModel

from keyword_engine.analysis.types import GapReport


class GapItemResponse(BaseModel):
    term: str
    target_position: int | None
    best_competitor_position: int | None
    competitor_app_ids: list[str]
    popularity_score: int
    ease_score: float
    tier: str | None
    opportunity_type: str | None


class StaleComparisonResponse(BaseModel):
    term: str
    competitor_app_id: str
    target_date: date
    competitor_date: date
    days_apart: int


class GapReportResponse(BaseModel):
    app_id: str
    region: str
    competitor_app_ids: list[str]
    opportunities: list[GapItemResponse]
    strengths: list[GapItemResponse]
    contested: list[GapItemResponse]
    stale: list[StaleComparisonResponse]
    is_stale: bool

    @classmethod
    def from_report(cls, report: GapReport) -> "GapReportResponse":
        return cls.model_validate(report.to_dict())
