"""Volume estimate refresh — staleness-driven, shared across tenants."""

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from keyword_engine.analysis.types import CategoryContext, Platform, RankedApp, VolumeEstimate
from keyword_engine.analysis.volume import VolumeEstimator, needs_refresh
from keyword_engine.storage.base import EngineStore

logger = logging.getLogger(__name__)


class VolumeService:
    """Return the current estimate for a term, recomputing it only when stale.

    The recompute reuses the SERP the caller already fetched, so a refresh
    never costs an extra request. Concurrent refreshers of the same term are
    serialized by the store's conditional upsert: the first writer past the
    staleness cut-off wins and later writers read its row back.
    """

    def __init__(self, store: EngineStore, estimator: VolumeEstimator | None = None, staleness_days: int = 7):
        self.store = store
        self.estimator = estimator or VolumeEstimator()
        self.staleness_days = staleness_days

    async def get_or_refresh(
        self,
        term: str,
        platform: Platform,
        region: str,
        apps: Sequence[RankedApp],
        category_context: CategoryContext | None,
        now: datetime,
    ) -> VolumeEstimate:
        existing = await self.store.get_volume(term, platform, region)
        if not needs_refresh(existing, now, self.staleness_days):
            return existing

        estimate = self.estimator.estimate(
            apps, category_context, term=term, platform=platform, region=region, now=now
        )
        stored = await self.store.upsert_volume_if_stale(estimate, stale_before=now - timedelta(days=self.staleness_days))
        logger.debug(
            "Volume for %r/%s/%s: popularity=%d (%s)",
            term,
            platform.value,
            region,
            stored.popularity_score,
            "refreshed" if existing else "new",
        )
        return stored
