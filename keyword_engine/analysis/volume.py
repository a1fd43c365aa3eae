"""Volume Estimator — 0–100 popularity and competition tier from SERP composition.

Uses only public signals visible in the search results page:
  - authority: share of top results with a large rating count
  - quality: share of top results rated above 4.0
  - leader strength: log-scaled rating count of the strongest result
  - depth: how full the observed result window is
  - category baseline: typical popularity of terms in the app's category

The output is a directional estimate, not ground-truth search volume. It is
monotonic in the authority and quality signals: a SERP full of big,
well-rated apps never scores lower than a weaker one in the same category.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from datetime import datetime, timezone

from keyword_engine.analysis.types import (
    CategoryContext,
    CompetitionTier,
    Platform,
    RankedApp,
    VolumeEstimate,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

TOP_N = 10
HIGH_AUTHORITY_RATINGS = 10_000
QUALITY_RATING = 4.0
LEADER_SATURATION_LOG = 6.0  # log10(1M ratings) saturates leader strength
DEPTH_SATURATION = 50

SIGNAL_WEIGHTS = {
    "authority": 0.30,
    "quality": 0.20,
    "leader": 0.20,
    "depth": 0.10,
    "baseline": 0.20,
}

MIN_SCORE = 1
MAX_SCORE = 100

# Popularity score → estimated daily searches, interpolated linearly
_POP_TO_DAILY_SEARCHES = [
    (5, 1),
    (10, 2),
    (15, 5),
    (20, 10),
    (25, 20),
    (30, 35),
    (35, 60),
    (40, 100),
    (45, 170),
    (50, 300),
    (55, 480),
    (60, 700),
    (65, 1_000),
    (70, 1_500),
    (75, 2_500),
    (80, 4_000),
    (85, 6_500),
    (90, 10_000),
    (95, 16_000),
    (100, 25_000),
]

# Category name (lowercase) → baseline popularity
_CATEGORY_BASELINES: dict[str, float] = {
    "games": 65.0,
    "social networking": 60.0,
    "photo & video": 55.0,
    "entertainment": 55.0,
    "shopping": 55.0,
    "health & fitness": 50.0,
    "finance": 50.0,
    "music": 50.0,
    "productivity": 45.0,
    "education": 45.0,
    "lifestyle": 45.0,
    "travel": 45.0,
    "utilities": 40.0,
}


def category_context_for(category: str) -> CategoryContext:
    """Baseline context for a store category name; unknown categories get the default."""
    key = (category or "").strip().lower()
    baseline = _CATEGORY_BASELINES.get(key, 40.0)
    return CategoryContext(name=category or "", baseline_popularity=baseline)


def competition_tier(popularity_score: float) -> CompetitionTier:
    if popularity_score >= 75:
        return CompetitionTier.VERY_HIGH
    if popularity_score >= 50:
        return CompetitionTier.HIGH
    if popularity_score >= 25:
        return CompetitionTier.MEDIUM
    return CompetitionTier.LOW


def estimated_monthly_searches(popularity_score: float) -> int:
    """Piecewise-linear popularity → daily searches, times 30."""
    pts = _POP_TO_DAILY_SEARCHES
    if popularity_score <= 0:
        return 0
    if popularity_score <= pts[0][0]:
        daily = pts[0][1] * (popularity_score / pts[0][0])
    elif popularity_score >= pts[-1][0]:
        daily = pts[-1][1]
    else:
        daily = pts[-1][1]
        for i in range(1, len(pts)):
            p0, s0 = pts[i - 1]
            p1, s1 = pts[i]
            if popularity_score <= p1:
                ratio = (popularity_score - p0) / (p1 - p0)
                daily = s0 + ratio * (s1 - s0)
                break
    return max(1, round(daily * 30))


class VolumeEstimator:
    """Deterministic weighted-signal popularity estimator."""

    def __init__(
        self,
        weights: dict[str, float] | None = None,
        high_authority_ratings: int = HIGH_AUTHORITY_RATINGS,
    ):
        self.weights = dict(weights or SIGNAL_WEIGHTS)
        self.high_authority_ratings = high_authority_ratings

    def signals(self, apps: Sequence[RankedApp], context: CategoryContext) -> dict[str, float]:
        """Raw signals, each normalized to 0..1."""
        top = list(apps[:TOP_N])
        if not top:
            return {"authority": 0.0, "quality": 0.0, "leader": 0.0, "depth": 0.0,
                    "baseline": context.baseline_popularity / 100}

        authority = sum(1 for a in top if a.rating_count >= self.high_authority_ratings) / len(top)
        quality = sum(1 for a in top if a.rating > QUALITY_RATING) / len(top)
        strongest = max(a.rating_count for a in top)
        leader = min(1.0, math.log10(1 + strongest) / LEADER_SATURATION_LOG)
        depth = min(1.0, len(apps) / DEPTH_SATURATION)
        baseline = max(0.0, min(1.0, context.baseline_popularity / 100))

        return {
            "authority": round(authority, 4),
            "quality": round(quality, 4),
            "leader": round(leader, 4),
            "depth": round(depth, 4),
            "baseline": round(baseline, 4),
        }

    def score(self, signals: dict[str, float]) -> int:
        raw = sum(self.weights.get(name, 0.0) * value for name, value in signals.items())
        return int(max(MIN_SCORE, min(MAX_SCORE, round(raw * 100))))

    def estimate(
        self,
        apps: Sequence[RankedApp],
        category_context: CategoryContext | None = None,
        *,
        term: str = "",
        platform: Platform = Platform.IOS,
        region: str = "us",
        now: datetime | None = None,
    ) -> VolumeEstimate:
        context = category_context or CategoryContext()
        signals = self.signals(apps, context)
        popularity = self.score(signals)

        return VolumeEstimate(
            term=term,
            platform=platform,
            region=region,
            popularity_score=popularity,
            competition_tier=competition_tier(popularity),
            estimated_monthly_searches=estimated_monthly_searches(popularity),
            last_updated_at=now or datetime.now(timezone.utc),
            signals=signals,
        )


def needs_refresh(existing: VolumeEstimate | None, now: datetime, max_age_days: int) -> bool:
    """Recompute only when no estimate exists or it is older than the staleness window."""
    return existing is None or existing.is_stale(now, max_age_days)
