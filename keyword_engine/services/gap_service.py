"""Gap report assembly — loads target and competitor positions from the store."""

import logging
from collections.abc import Sequence

from keyword_engine.analysis.gap import analyze_gap
from keyword_engine.analysis.ranking import DEFAULT_MAX_TRACKED_POSITION
from keyword_engine.analysis.types import (
    CompetitorPosition,
    GapReport,
    Platform,
    TargetKeywordPosition,
)
from keyword_engine.storage.base import EngineStore

logger = logging.getLogger(__name__)


async def build_gap_report(
    store: EngineStore,
    tenant_id: str,
    app_id: str,
    competitor_app_ids: Sequence[str] | None = None,
    region: str = "us",
    platform: Platform = Platform.IOS,
    tolerance_days: int = 3,
) -> GapReport:
    """Compare an app's latest keyword positions with its competitors'.

    With no competitor ids every competitor recorded for the app's keywords
    takes part in the comparison.
    """
    region = region.lower()
    keywords = await store.list_keywords(tenant_id, app_id, region=region, platform=platform)

    targets: list[TargetKeywordPosition] = []
    terms_by_id: dict[int, str] = {}
    max_tracked = DEFAULT_MAX_TRACKED_POSITION
    for keyword in keywords:
        snapshot = await store.get_latest_snapshot(keyword.id)
        if snapshot is None:
            continue
        volume = await store.get_volume(keyword.term, keyword.platform, keyword.region)
        terms_by_id[keyword.id] = keyword.term
        max_tracked = max(max_tracked, snapshot.max_tracked_position)
        targets.append(
            TargetKeywordPosition(
                term=keyword.term,
                position=snapshot.position,
                snapshot_date=snapshot.snapshot_date,
                popularity_score=volume.popularity_score if volume else 0,
                estimated_monthly_searches=volume.estimated_monthly_searches if volume else 0,
            )
        )

    competitor_ids = [str(c) for c in competitor_app_ids or [] if str(c) != str(app_id)]
    entries = await store.list_competitor_entries(list(terms_by_id), competitor_ids or None)
    competitor_results = [
        CompetitorPosition(
            competitor_app_id=e.competitor_app_id,
            term=terms_by_id[e.keyword_id],
            position=e.position,
            snapshot_date=e.snapshot_date,
            competitor_name=e.competitor_name,
        )
        for e in entries
    ]

    report = analyze_gap(
        targets,
        competitor_results,
        tolerance_days=tolerance_days,
        max_tracked_position=max_tracked,
        app_id=str(app_id),
        region=region,
    )
    if competitor_ids:
        report.competitor_app_ids = sorted(set(competitor_ids))

    logger.info(
        "Gap report for app %s/%s: %d opportunities, %d strengths, %d contested, %d stale",
        app_id,
        region,
        len(report.opportunities),
        len(report.strengths),
        len(report.contested),
        len(report.stale),
    )
    return report
