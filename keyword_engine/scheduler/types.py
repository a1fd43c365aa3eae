"""Core types and DTOs for the discovery job scheduler."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from keyword_engine.analysis.types import DiscoveryMethod, Platform, Trend
from keyword_engine.core.exceptions import InvalidRequest, ReasonCode


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class JobStatus(str, Enum):
    """pending → running → {completed, failed}. Terminal states are final."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, other: JobStatus) -> bool:
        return other in ALLOWED_TRANSITIONS[self]


# Allowed status transitions (from → to)
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class AnalysisDepth(str, Enum):
    """Controls enabled generation methods and how deep each SERP is read."""

    QUICK = "quick"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"

    @property
    def methods(self) -> tuple[DiscoveryMethod, ...]:
        if self is AnalysisDepth.QUICK:
            return (DiscoveryMethod.METADATA_EXTRACTION, DiscoveryMethod.SEMANTIC_VARIATION)
        return tuple(DiscoveryMethod)

    @property
    def max_pages(self) -> int:
        return _DEPTH_PAGES[self]


_DEPTH_PAGES: dict[AnalysisDepth, int] = {
    AnalysisDepth.QUICK: 1,
    AnalysisDepth.STANDARD: 2,
    AnalysisDepth.COMPREHENSIVE: 4,
}

ALLOWED_TARGET_COUNTS: tuple[int, ...] = (10, 30, 50, 100)


class CandidateStatus(str, Enum):
    """Terminal per-candidate outcome inside a job."""

    SUCCEEDED = "succeeded"
    FAILED = "candidate_failed"  # Retry budget exhausted
    DISCARDED = "discarded"  # Invalid term, never retried


class CancelResult(str, Enum):
    OK = "ok"
    ALREADY_TERMINAL = "already_terminal"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------


@dataclass
class DiscoveryRequest:
    """One bulk-discovery request for a target app."""

    tenant_id: str
    app_id: str
    target_count: int = 30
    depth: AnalysisDepth = AnalysisDepth.STANDARD
    region: str = "us"
    include_competitors: bool = False
    platform: Platform = Platform.IOS
    seed_keywords: list[str] = field(default_factory=list)
    competitor_app_ids: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.region = (self.region or "").strip().lower()
        self.depth = AnalysisDepth(self.depth)
        self.platform = Platform(self.platform)

    def validate(self) -> None:
        if not str(self.tenant_id or "").strip():
            raise InvalidRequest("tenant_id is required")
        if not str(self.app_id or "").strip():
            raise InvalidRequest("app_id is required")
        if self.target_count not in ALLOWED_TARGET_COUNTS:
            raise InvalidRequest(f"target_count must be one of {list(ALLOWED_TARGET_COUNTS)}")
        if len(self.region) != 2 or not self.region.isalpha():
            raise InvalidRequest("region must be a two-letter country code")
        if str(self.app_id) in {str(c) for c in self.competitor_app_ids}:
            raise InvalidRequest("app_id cannot be listed as its own competitor")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "app_id": str(self.app_id),
            "target_count": self.target_count,
            "depth": self.depth.value,
            "region": self.region,
            "include_competitors": self.include_competitors,
            "platform": self.platform.value,
            "seed_keywords": list(self.seed_keywords),
            "competitor_app_ids": list(self.competitor_app_ids),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DiscoveryRequest:
        return cls(
            tenant_id=data["tenant_id"],
            app_id=data["app_id"],
            target_count=int(data.get("target_count", 30)),
            depth=AnalysisDepth(data.get("depth", AnalysisDepth.STANDARD.value)),
            region=data.get("region", "us"),
            include_competitors=bool(data.get("include_competitors", False)),
            platform=Platform(data.get("platform", Platform.IOS.value)),
            seed_keywords=list(data.get("seed_keywords") or []),
            competitor_app_ids=[str(c) for c in data.get("competitor_app_ids") or []],
        )


# ---------------------------------------------------------------------------
# Job state
# ---------------------------------------------------------------------------


@dataclass
class JobProgress:
    current: int = 0
    total: int = 0

    def advance_to(self, value: int) -> bool:
        """Move forward only. Returns True if the counter changed."""
        if value <= self.current:
            return False
        self.current = min(value, self.total) if self.total else value
        return True

    @property
    def percent(self) -> float:
        if not self.total:
            return 0.0
        return round(100.0 * self.current / self.total, 1)


@dataclass
class CandidateResult:
    """Terminal outcome for one candidate, keyed by term."""

    term: str
    method: DiscoveryMethod
    status: CandidateStatus
    relevance: float = 0.0
    keyword_id: int | None = None
    position: int | None = None
    trend: Trend | None = None
    visibility_score: float = 0.0
    popularity_score: int = 0
    estimated_monthly_searches: int = 0
    attempts: int = 0
    reason: ReasonCode | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "term": self.term,
            "method": self.method.value,
            "status": self.status.value,
            "relevance": self.relevance,
            "keyword_id": self.keyword_id,
            "position": self.position,
            "trend": self.trend.value if self.trend else None,
            "visibility_score": self.visibility_score,
            "popularity_score": self.popularity_score,
            "estimated_monthly_searches": self.estimated_monthly_searches,
            "attempts": self.attempts,
            "reason": self.reason.value if self.reason else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CandidateResult:
        return cls(
            term=data["term"],
            method=DiscoveryMethod(data["method"]),
            status=CandidateStatus(data["status"]),
            relevance=data.get("relevance", 0.0),
            keyword_id=data.get("keyword_id"),
            position=data.get("position"),
            trend=Trend(data["trend"]) if data.get("trend") else None,
            visibility_score=data.get("visibility_score", 0.0),
            popularity_score=data.get("popularity_score", 0),
            estimated_monthly_searches=data.get("estimated_monthly_searches", 0),
            attempts=data.get("attempts", 0),
            reason=ReasonCode(data["reason"]) if data.get("reason") else None,
        )


@dataclass
class DiscoveryJob:
    """One bulk-discovery request and its lifecycle. Owned by the scheduler."""

    request: DiscoveryRequest
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PENDING
    progress: JobProgress = field(default_factory=JobProgress)
    reason: ReasonCode | None = None
    error_detail: str | None = None
    results: list[CandidateResult] = field(default_factory=list)
    clusters: list[dict[str, Any]] = field(default_factory=list)
    by_method: dict[str, int] = field(default_factory=dict)
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def tenant_id(self) -> str:
        return str(self.request.tenant_id)

    @property
    def succeeded(self) -> list[CandidateResult]:
        return [r for r in self.results if r.status is CandidateStatus.SUCCEEDED]

    @property
    def failed(self) -> list[CandidateResult]:
        return [r for r in self.results if r.status is not CandidateStatus.SUCCEEDED]

    def result_payload(self) -> dict[str, Any]:
        """JSON-safe result blob persisted with the job."""
        return {
            "candidates": [r.to_dict() for r in self.results],
            "clusters": list(self.clusters),
            "by_method": dict(self.by_method),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
        }

    def load_result_payload(self, payload: dict[str, Any] | None) -> None:
        payload = payload or {}
        self.results = [CandidateResult.from_dict(r) for r in payload.get("candidates", [])]
        self.clusters = list(payload.get("clusters", []))
        self.by_method = dict(payload.get("by_method", {}))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            **self.request.to_dict(),
            "status": self.status.value,
            "progress": {
                "current": self.progress.current,
                "total": self.progress.total,
                "percent": self.progress.percent,
            },
            "reason": self.reason.value if self.reason else None,
            "error_detail": self.error_detail,
            "result": self.result_payload(),
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
