"""Ranking Calculator — position, trend and visibility for one keyword.

Pure functions: identical inputs always produce an identical snapshot, so
backfills can be replayed and tests can assert exact values.

Trend rules (previous position → current position):
  None → None : NOT_RANKING
  None → p    : NEW
  p    → None : LOST
  p    → q    : STABLE (q == p), UP (q < p), DOWN (q > p)

Visibility:
  (max_tracked + 1 - position) * estimated_volume / max_tracked, or 0 when not ranking.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from keyword_engine.analysis.types import RankedApp, RankingSnapshot, Trend

DEFAULT_MAX_TRACKED_POSITION = 50

# Position → tap-through rate (fraction of searchers who tap the result)
_TAP_THROUGH = {
    1: 0.30,
    2: 0.15,
    3: 0.10,
    4: 0.07,
    5: 0.05,
    6: 0.035,
    7: 0.025,
    8: 0.018,
    9: 0.013,
    10: 0.010,
    11: 0.007,
    12: 0.005,
    13: 0.004,
    14: 0.003,
    15: 0.0025,
    16: 0.002,
    17: 0.0015,
    18: 0.001,
    19: 0.0008,
    20: 0.0006,
}
_TAIL_TAP_THROUGH = 0.0004

SERP_REFERENCE_DEPTH = 10  # how many top app ids a snapshot keeps
MIN_VOLUME = 1.0


def find_position(
    current: Sequence[RankedApp],
    target_app_id: str,
    max_tracked_position: int = DEFAULT_MAX_TRACKED_POSITION,
) -> int | None:
    """1-indexed rank of ``target_app_id`` in source order, capped at ``max_tracked_position``."""
    for index, app in enumerate(current):
        if index >= max_tracked_position:
            break
        if app.app_id == target_app_id:
            return index + 1
    return None


def determine_trend(previous_position: int | None, current_position: int | None) -> Trend:
    if previous_position is None:
        return Trend.NOT_RANKING if current_position is None else Trend.NEW
    if current_position is None:
        return Trend.LOST
    if current_position == previous_position:
        return Trend.STABLE
    if current_position < previous_position:
        return Trend.UP
    return Trend.DOWN


def position_change(previous_position: int | None, current_position: int | None) -> int | None:
    """Signed delta (negative = improved); None unless both positions are known."""
    if previous_position is None or current_position is None:
        return None
    return current_position - previous_position


def visibility_score(
    position: int | None,
    estimated_volume: float,
    max_tracked_position: int = DEFAULT_MAX_TRACKED_POSITION,
) -> float:
    if position is None or position > max_tracked_position:
        return 0.0
    # A ranking term is never worth zero
    volume = max(float(estimated_volume), MIN_VOLUME)
    score = (max_tracked_position + 1 - position) * volume / max_tracked_position
    return round(score, 4)


def tap_through_rate(position: int | None) -> float:
    if position is None or position < 1:
        return 0.0
    return _TAP_THROUGH.get(position, _TAIL_TAP_THROUGH)


def estimated_traffic(position: int | None, monthly_searches: float) -> float:
    return round(max(monthly_searches, 0) * tap_through_rate(position), 2)


def compute_snapshot(
    previous: RankingSnapshot | None,
    current: Sequence[RankedApp],
    target_app_id: str,
    *,
    keyword_id: int,
    snapshot_date: date,
    estimated_volume: int = 0,
    max_tracked_position: int = DEFAULT_MAX_TRACKED_POSITION,
) -> RankingSnapshot:
    """Diff the previous snapshot against the current result set.

    Args:
        previous: Latest snapshot before ``snapshot_date`` (None on first sight).
        current: Ranked apps in source order.
        target_app_id: App whose position is tracked.
        keyword_id: Keyword the snapshot belongs to.
        snapshot_date: Date the snapshot is recorded for.
        estimated_volume: Estimated monthly searches for the term.
        max_tracked_position: Observation window (max_pages * page_size).
    """
    if max_tracked_position < 1:
        raise ValueError("max_tracked_position must be positive")

    position = find_position(current, target_app_id, max_tracked_position)
    previous_position = previous.position if previous is not None else None

    return RankingSnapshot(
        keyword_id=keyword_id,
        snapshot_date=snapshot_date,
        position=position,
        trend=determine_trend(previous_position, position),
        position_change=position_change(previous_position, position),
        visibility_score=visibility_score(position, estimated_volume, max_tracked_position),
        estimated_search_volume=max(int(estimated_volume), 0),
        estimated_traffic=estimated_traffic(position, estimated_volume),
        max_tracked_position=max_tracked_position,
        serp_app_ids=tuple(a.app_id for a in current[:SERP_REFERENCE_DEPTH]),
    )
