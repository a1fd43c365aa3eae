"""Competitor Gap Analyzer.

Classifies each of the target's keywords against named competitors:
  - opportunity: a competitor ranks, the target does not
  - strength: the target ranks and beats every ranking competitor
  - contested: both rank and some competitor is level with or ahead of the target

Comparisons use the competitor snapshot nearest to the target's snapshot
date. If that is still further apart than ``tolerance_days`` the pair goes
to ``report.stale`` instead of being classified.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from keyword_engine.analysis.ranking import DEFAULT_MAX_TRACKED_POSITION
from keyword_engine.analysis.text import normalize_term
from keyword_engine.analysis.types import (
    CompetitorPosition,
    GapItem,
    GapReport,
    OpportunityTier,
    OpportunityType,
    StaleComparison,
    TargetKeywordPosition,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_DAYS = 3

# Ease score weights (sum to 1)
POSITION_WEIGHT = 0.5
POPULARITY_WEIGHT = 0.5


def ease_score(
    best_competitor_position: int,
    popularity_score: float,
    max_tracked_position: int = DEFAULT_MAX_TRACKED_POSITION,
) -> float:
    """0–100: inverse of the best competitor's position blended with popularity."""
    position = min(max(best_competitor_position, 1), max_tracked_position)
    position_factor = (max_tracked_position + 1 - position) / max_tracked_position
    popularity_factor = max(0.0, min(1.0, popularity_score / 100))
    return round(100 * (POSITION_WEIGHT * position_factor + POPULARITY_WEIGHT * popularity_factor), 2)


def opportunity_tier(score: float) -> OpportunityTier:
    if score >= 70:
        return OpportunityTier.HIGH
    if score >= 45:
        return OpportunityTier.MEDIUM
    return OpportunityTier.LOW


def opportunity_type(best_competitor_position: int, popularity_score: int) -> OpportunityType:
    if best_competitor_position <= 10 and popularity_score < 50:
        return OpportunityType.QUICK_WIN
    if popularity_score >= 50:
        return OpportunityType.HIGH_POTENTIAL
    return OpportunityType.LONG_TERM


def analyze_gap(
    target_keywords: Sequence[TargetKeywordPosition],
    competitor_results: Sequence[CompetitorPosition],
    *,
    tolerance_days: int = DEFAULT_TOLERANCE_DAYS,
    max_tracked_position: int = DEFAULT_MAX_TRACKED_POSITION,
    app_id: str = "",
    region: str = "us",
) -> GapReport:
    competitor_ids = sorted({c.competitor_app_id for c in competitor_results})
    report = GapReport(app_id=app_id, region=region, competitor_app_ids=competitor_ids)

    # term → competitor → observations
    observations: dict[str, dict[str, list[CompetitorPosition]]] = {}
    for obs in competitor_results:
        by_comp = observations.setdefault(normalize_term(obs.term), {})
        by_comp.setdefault(obs.competitor_app_id, []).append(obs)

    for target in sorted(target_keywords, key=lambda t: normalize_term(t.term)):
        term = normalize_term(target.term)
        ranking_competitors: list[tuple[int, str]] = []
        compared = 0

        for competitor_id in sorted(observations.get(term, {})):
            nearest = min(
                observations[term][competitor_id],
                key=lambda o: (abs((o.snapshot_date - target.snapshot_date).days), o.snapshot_date),
            )
            if abs((nearest.snapshot_date - target.snapshot_date).days) > tolerance_days:
                report.stale.append(
                    StaleComparison(
                        term=term,
                        competitor_app_id=competitor_id,
                        target_date=target.snapshot_date,
                        competitor_date=nearest.snapshot_date,
                    )
                )
                continue
            compared += 1
            if nearest.position is not None:
                ranking_competitors.append((nearest.position, competitor_id))

        if not ranking_competitors:
            if target.position is not None and compared:
                report.strengths.append(_item(target, term, None, []))
            continue

        ranking_competitors.sort()
        best_position = ranking_competitors[0][0]
        ranked_ids = [cid for _, cid in ranking_competitors]

        if target.position is None:
            item = _item(target, term, best_position, ranked_ids)
            item.ease_score = ease_score(best_position, target.popularity_score, max_tracked_position)
            item.tier = opportunity_tier(item.ease_score)
            item.opportunity_type = opportunity_type(best_position, target.popularity_score)
            report.opportunities.append(item)
        elif target.position < best_position:
            report.strengths.append(_item(target, term, best_position, ranked_ids))
        else:
            report.contested.append(_item(target, term, best_position, ranked_ids))

    # Highest-value easiest wins first
    report.opportunities.sort(key=lambda i: (-i.ease_score, i.term))
    report.strengths.sort(key=lambda i: (i.target_position or 0, i.term))
    report.contested.sort(key=lambda i: (i.target_position or 0, i.term))

    if report.stale:
        logger.info(
            "Gap report for %s: %d stale comparisons beyond %d days",
            app_id or "<app>",
            len(report.stale),
            tolerance_days,
        )
    return report


def _item(
    target: TargetKeywordPosition,
    term: str,
    best_position: int | None,
    competitor_ids: list[str],
) -> GapItem:
    return GapItem(
        term=term,
        target_position=target.position,
        best_competitor_position=best_position,
        competitor_app_ids=competitor_ids,
        popularity_score=target.popularity_score,
    )
