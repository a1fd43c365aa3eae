"""Core types and DTOs for the keyword analysis engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Platform(str, Enum):
    IOS = "ios"
    ANDROID = "android"


class Trend(str, Enum):
    """Direction of a keyword's position between two snapshots."""

    UP = "up"  # Position improved (numerically decreased)
    DOWN = "down"
    STABLE = "stable"
    NEW = "new"  # Ranks now, did not rank before
    LOST = "lost"  # Ranked before, does not rank now
    NOT_RANKING = "not_ranking"  # Absent in both (including first observation)


class CompetitionTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class KeywordSource(str, Enum):
    """How a keyword entered the tracked set."""

    MANUAL = "manual"
    GENERATED = "generated"
    TRENDING = "trending"


class DiscoveryMethod(str, Enum):
    """Closed set of candidate generation methods, each with a fixed weight."""

    METADATA_EXTRACTION = "metadata_extraction"
    SEMANTIC_VARIATION = "semantic_variation"
    CATEGORY_TRENDING = "category_trending"

    @property
    def weight(self) -> float:
        return _METHOD_WEIGHTS[self]

    @property
    def keyword_source(self) -> KeywordSource:
        if self is DiscoveryMethod.CATEGORY_TRENDING:
            return KeywordSource.TRENDING
        return KeywordSource.GENERATED


_METHOD_WEIGHTS: dict[DiscoveryMethod, float] = {
    DiscoveryMethod.METADATA_EXTRACTION: 1.0,
    DiscoveryMethod.SEMANTIC_VARIATION: 0.8,
    DiscoveryMethod.CATEGORY_TRENDING: 0.65,
}


class OpportunityTier(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class OpportunityType(str, Enum):
    QUICK_WIN = "quick_win"  # Competitor in top 10, easy to reach
    HIGH_POTENTIAL = "high_potential"  # Popular term, worth a longer push
    LONG_TERM = "long_term"


# ---------------------------------------------------------------------------
# SERP data
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RankedApp:
    """One app in a search results page, in source order."""

    app_id: str
    position: int  # 1-indexed
    name: str = ""
    developer: str = ""
    rating: float = 0.0
    rating_count: int = 0
    category: str = ""

    def to_dict(self) -> dict:
        return {
            "app_id": self.app_id,
            "position": self.position,
            "name": self.name,
            "developer": self.developer,
            "rating": self.rating,
            "rating_count": self.rating_count,
            "category": self.category,
        }


@dataclass
class SerpResult:
    """Ranked result set for one term in one region."""

    term: str
    region: str
    apps: list[RankedApp] = field(default_factory=list)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    max_position: int = 50  # max_pages * page_size


@dataclass
class AppMetadata:
    """Store listing metadata used as generation input."""

    app_id: str
    name: str
    subtitle: str = ""
    description: str = ""
    category: str = ""
    developer: str = ""
    platform: Platform = Platform.IOS


@dataclass
class CategoryContext:
    """Category baseline used by the volume estimator."""

    name: str = ""
    baseline_popularity: float = 40.0  # 0–100, typical popularity of terms in this category


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


@dataclass
class Candidate:
    """A proposed keyword not yet confirmed by a ranking fetch."""

    term: str
    method: DiscoveryMethod
    relevance: float
    origin: str = ""  # e.g. "name", "subtitle", "synonym:workout", "peers"

    def to_dict(self) -> dict:
        return {
            "term": self.term,
            "method": self.method.value,
            "relevance": self.relevance,
            "origin": self.origin,
        }


# ---------------------------------------------------------------------------
# Persistent records
# ---------------------------------------------------------------------------


@dataclass
class TrackedKeyword:
    """Identity: (tenant, app, term, platform, region)."""

    tenant_id: str
    app_id: str
    term: str
    platform: Platform = Platform.IOS
    region: str = "us"
    is_tracked: bool = True
    discovery_method: KeywordSource = KeywordSource.MANUAL
    generation_method: DiscoveryMethod | None = None
    id: int | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_tracked_at: datetime | None = None

    @property
    def natural_key(self) -> tuple[str, str, str, str]:
        return (self.app_id, self.term, self.platform.value, self.region)


@dataclass(frozen=True)
class RankingSnapshot:
    """Dated, immutable ranking observation for one keyword."""

    keyword_id: int
    snapshot_date: date
    position: int | None
    trend: Trend
    position_change: int | None = None
    visibility_score: float = 0.0
    estimated_search_volume: int = 0
    estimated_traffic: float = 0.0
    max_tracked_position: int = 50
    serp_app_ids: tuple[str, ...] = ()
    id: int | None = None

    @property
    def is_ranking(self) -> bool:
        return self.position is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "keyword_id": self.keyword_id,
            "snapshot_date": self.snapshot_date.isoformat(),
            "position": self.position,
            "is_ranking": self.is_ranking,
            "trend": self.trend.value,
            "position_change": self.position_change,
            "visibility_score": self.visibility_score,
            "estimated_search_volume": self.estimated_search_volume,
            "estimated_traffic": self.estimated_traffic,
            "max_tracked_position": self.max_tracked_position,
        }


@dataclass
class VolumeEstimate:
    """Directional popularity estimate shared per (term, platform, region).

    Values are estimates derived from public SERP composition, not
    ground-truth search volume.
    """

    term: str
    platform: Platform
    region: str
    popularity_score: int  # 0–100
    competition_tier: CompetitionTier
    estimated_monthly_searches: int
    last_updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    signals: dict[str, float] = field(default_factory=dict)
    data_source: str = "serp_heuristic"

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.term, self.platform.value, self.region)

    def is_stale(self, now: datetime, max_age_days: int) -> bool:
        return now - self.last_updated_at > timedelta(days=max_age_days)


@dataclass
class CompetitorKeywordEntry:
    """A competitor app's observed position for a keyword on a date."""

    keyword_id: int
    competitor_app_id: str
    snapshot_date: date
    position: int | None
    competitor_name: str = ""
    id: int | None = None


# ---------------------------------------------------------------------------
# Gap analysis
# ---------------------------------------------------------------------------


@dataclass
class TargetKeywordPosition:
    """Target app's position for a term on a snapshot date."""

    term: str
    position: int | None
    snapshot_date: date
    popularity_score: int = 0
    estimated_monthly_searches: int = 0


@dataclass
class CompetitorPosition:
    """One competitor's position for a term on a snapshot date."""

    competitor_app_id: str
    term: str
    position: int | None
    snapshot_date: date
    competitor_name: str = ""


@dataclass
class GapItem:
    term: str
    target_position: int | None
    best_competitor_position: int | None
    competitor_app_ids: list[str] = field(default_factory=list)
    popularity_score: int = 0
    ease_score: float = 0.0  # 0–100, opportunities only
    tier: OpportunityTier | None = None
    opportunity_type: OpportunityType | None = None

    def to_dict(self) -> dict:
        return {
            "term": self.term,
            "target_position": self.target_position,
            "best_competitor_position": self.best_competitor_position,
            "competitor_app_ids": list(self.competitor_app_ids),
            "popularity_score": self.popularity_score,
            "ease_score": self.ease_score,
            "tier": self.tier.value if self.tier else None,
            "opportunity_type": self.opportunity_type.value if self.opportunity_type else None,
        }


@dataclass
class StaleComparison:
    term: str
    competitor_app_id: str
    target_date: date
    competitor_date: date

    @property
    def days_apart(self) -> int:
        return abs((self.target_date - self.competitor_date).days)

    def to_dict(self) -> dict:
        return {
            "term": self.term,
            "competitor_app_id": self.competitor_app_id,
            "target_date": self.target_date.isoformat(),
            "competitor_date": self.competitor_date.isoformat(),
            "days_apart": self.days_apart,
        }


@dataclass
class GapReport:
    app_id: str = ""
    region: str = "us"
    competitor_app_ids: list[str] = field(default_factory=list)
    opportunities: list[GapItem] = field(default_factory=list)  # Competitor ranks, target does not
    strengths: list[GapItem] = field(default_factory=list)  # Target outranks every competitor
    contested: list[GapItem] = field(default_factory=list)  # Both rank, a competitor is level or ahead
    stale: list[StaleComparison] = field(default_factory=list)

    @property
    def is_stale(self) -> bool:
        return bool(self.stale)

    def to_dict(self) -> dict:
        return {
            "app_id": self.app_id,
            "region": self.region,
            "competitor_app_ids": list(self.competitor_app_ids),
            "opportunities": [i.to_dict() for i in self.opportunities],
            "strengths": [i.to_dict() for i in self.strengths],
            "contested": [i.to_dict() for i in self.contested],
            "stale": [s.to_dict() for s in self.stale],
            "is_stale": self.is_stale,
        }


# ---------------------------------------------------------------------------
# Clustering
# ---------------------------------------------------------------------------


UNCLUSTERED_LABEL = "unclustered"


@dataclass
class KeywordCluster:
    """Thematic group of keywords. A view, not a persisted entity."""

    label: str
    primary_keyword: str
    keywords: list[str] = field(default_factory=list)
    total_search_volume: int = 0
    avg_popularity: float = 0.0
    opportunity_score: float = 0.0

    @property
    def is_unclustered(self) -> bool:
        return self.label == UNCLUSTERED_LABEL

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "primary_keyword": self.primary_keyword,
            "keywords": list(self.keywords),
            "total_search_volume": self.total_search_volume,
            "avg_popularity": self.avg_popularity,
            "opportunity_score": self.opportunity_score,
        }
