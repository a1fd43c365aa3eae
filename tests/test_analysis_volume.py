"""Tests for the SERP-composition volume estimator."""

from datetime import datetime, timedelta, timezone

from keyword_engine.analysis.types import CategoryContext, CompetitionTier, RankedApp
from keyword_engine.analysis.volume import (
    VolumeEstimator,
    category_context_for,
    competition_tier,
    estimated_monthly_searches,
    needs_refresh,
)

NOW = datetime(2026, 10, 17, tzinfo=timezone.utc)


def _serp(rating: float, rating_count: int, size: int = 10) -> list[RankedApp]:
    return [
        RankedApp(app_id=str(i), position=i + 1, rating=rating, rating_count=rating_count) for i in range(size)
    ]


class TestVolumeEstimator:
    def test_scores_within_bounds(self):
        est = VolumeEstimator().estimate(_serp(4.8, 2_000_000, 50), term="fitness")
        assert 1 <= est.popularity_score <= 100
        empty = VolumeEstimator().estimate([], term="obscure")
        assert 1 <= empty.popularity_score <= 100

    def test_strong_serp_outscores_weak_serp(self):
        estimator = VolumeEstimator()
        context = CategoryContext(baseline_popularity=45)
        strong = estimator.estimate(_serp(4.7, 500_000), context, term="t")
        weak = estimator.estimate(_serp(3.2, 40), context, term="t")
        assert strong.popularity_score > weak.popularity_score
        assert strong.estimated_monthly_searches > weak.estimated_monthly_searches

    def test_monotonic_in_authority(self):
        estimator = VolumeEstimator()
        context = CategoryContext()
        scores = []
        for big in range(0, 11):
            apps = [
                RankedApp(app_id=str(i), position=i + 1, rating=4.5, rating_count=50_000 if i < big else 100)
                for i in range(10)
            ]
            scores.append(estimator.estimate(apps, context).popularity_score)
        assert scores == sorted(scores)

    def test_category_baseline_raises_score(self):
        estimator = VolumeEstimator()
        apps = _serp(4.0, 1_000)
        games = estimator.estimate(apps, category_context_for("Games"))
        utilities = estimator.estimate(apps, category_context_for("Utilities"))
        assert games.popularity_score > utilities.popularity_score

    def test_estimate_carries_identity_and_signals(self):
        est = VolumeEstimator().estimate(_serp(4.5, 20_000), term="step counter", region="gb", now=NOW)
        assert est.term == "step counter"
        assert est.region == "gb"
        assert est.last_updated_at == NOW
        assert set(est.signals) == {"authority", "quality", "leader", "depth", "baseline"}

    def test_deterministic(self):
        apps = _serp(4.4, 12_345)
        a = VolumeEstimator().estimate(apps, term="x", now=NOW)
        b = VolumeEstimator().estimate(apps, term="x", now=NOW)
        assert a == b


class TestMappings:
    def test_competition_tiers(self):
        assert competition_tier(10) is CompetitionTier.LOW
        assert competition_tier(30) is CompetitionTier.MEDIUM
        assert competition_tier(60) is CompetitionTier.HIGH
        assert competition_tier(90) is CompetitionTier.VERY_HIGH

    def test_monthly_searches_monotonic(self):
        values = [estimated_monthly_searches(p) for p in range(0, 101, 5)]
        assert values == sorted(values)
        assert estimated_monthly_searches(0) == 0
        assert estimated_monthly_searches(100) == 25_000 * 30

    def test_unknown_category_gets_default_baseline(self):
        assert category_context_for("Something Else").baseline_popularity == 40.0


class TestStaleness:
    def test_missing_needs_refresh(self):
        assert needs_refresh(None, NOW, 7)

    def test_fresh_and_stale(self):
        est = VolumeEstimator().estimate([], now=NOW - timedelta(days=3))
        assert not needs_refresh(est, NOW, 7)
        old = VolumeEstimator().estimate([], now=NOW - timedelta(days=8))
        assert needs_refresh(old, NOW, 7)
