"""Tests for lexical keyword clustering."""

import random

import pytest

from keyword_engine.analysis.clustering import cluster_keywords
from keyword_engine.analysis.types import UNCLUSTERED_LABEL, CompetitionTier, Platform, VolumeEstimate

KEYWORDS = [
    "step counter",
    "step counter app",
    "pedometer step counter",
    "budget planner",
    "monthly budget planner",
    "budget planner app",
    "meditation",
]


def _volume(term: str, searches: int, popularity: int) -> VolumeEstimate:
    return VolumeEstimate(
        term=term,
        platform=Platform.IOS,
        region="us",
        popularity_score=popularity,
        competition_tier=CompetitionTier.MEDIUM,
        estimated_monthly_searches=searches,
    )


class TestClusterKeywords:
    def test_plural_forms_grouped(self):
        clusters = cluster_keywords(["step counter", "step counters"], min_cluster_size=2)
        assert len(clusters) == 1
        assert clusters[0].keywords == ["step counter", "step counters"]

    def test_disjoint_terms_unclustered(self):
        clusters = cluster_keywords(["budget", "yoga"], min_cluster_size=2)
        assert [c.label for c in clusters] == [UNCLUSTERED_LABEL]

    def test_groups_related_terms(self):
        clusters = cluster_keywords(KEYWORDS, min_cluster_size=2, similarity_threshold=0.3)
        by_label = {c.label: c for c in clusters}
        # Ties between equally frequent stems resolve alphabetically
        assert set(by_label["counter"].keywords) == {"step counter", "step counter app", "pedometer step counter"}
        assert set(by_label["budget"].keywords) == {"budget planner", "monthly budget planner", "budget planner app"}
        assert [c.label for c in clusters] == ["budget", "counter", UNCLUSTERED_LABEL]
        assert by_label[UNCLUSTERED_LABEL].keywords == ["meditation"]

    def test_every_keyword_in_exactly_one_cluster(self):
        clusters = cluster_keywords(KEYWORDS)
        members = [k for c in clusters for k in c.keywords]
        assert sorted(members) == sorted(KEYWORDS)

    def test_order_independent(self):
        baseline = [c.to_dict() for c in cluster_keywords(KEYWORDS)]
        shuffled = list(KEYWORDS)
        for seed in range(5):
            random.Random(seed).shuffle(shuffled)
            assert [c.to_dict() for c in cluster_keywords(shuffled)] == baseline

    def test_unclustered_last(self):
        clusters = cluster_keywords(KEYWORDS)
        assert clusters[-1].is_unclustered
        assert not any(c.is_unclustered for c in clusters[:-1])

    def test_primary_keyword_by_volume(self):
        volumes = {
            "step counter": _volume("step counter", 9000, 60),
            "step tracker": _volume("step tracker", 3000, 40),
        }
        clusters = cluster_keywords(["step counter", "step tracker"], volumes=volumes)
        assert len(clusters) == 1
        assert clusters[0].primary_keyword == "step counter"
        assert clusters[0].total_search_volume == 12000
        assert clusters[0].avg_popularity == 50.0

    def test_high_min_size_leaves_everything_unclustered(self):
        clusters = cluster_keywords(KEYWORDS, min_cluster_size=10)
        assert len(clusters) == 1
        assert clusters[0].is_unclustered

    def test_duplicates_merged_case_insensitively(self):
        clusters = cluster_keywords(["Step Counter", "step counter", "step  counter"])
        assert [k for c in clusters for k in c.keywords] == ["step counter"]

    def test_empty_input(self):
        assert cluster_keywords([]) == []

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            cluster_keywords(KEYWORDS, similarity_threshold=1.5)
