"""Tests for competitor gap analysis."""

from datetime import date, timedelta

from keyword_engine.analysis.gap import analyze_gap, ease_score, opportunity_type
from keyword_engine.analysis.types import (
    CompetitorPosition,
    OpportunityType,
    TargetKeywordPosition,
)

DAY = date(2026, 10, 17)


def _target(term: str, position: int | None, popularity: int = 40, day: date = DAY) -> TargetKeywordPosition:
    return TargetKeywordPosition(term=term, position=position, snapshot_date=day, popularity_score=popularity)


def _comp(app_id: str, term: str, position: int | None, day: date = DAY) -> CompetitorPosition:
    return CompetitorPosition(competitor_app_id=app_id, term=term, position=position, snapshot_date=day)


class TestAnalyzeGap:
    def test_classification(self):
        targets = [
            _target("step counter", None),
            _target("home workout", 2),
            _target("yoga", 8),
        ]
        competitors = [
            _comp("c1", "step counter", 3),
            _comp("c1", "home workout", 5),
            _comp("c2", "yoga", 4),
        ]
        report = analyze_gap(targets, competitors, app_id="1000")

        assert [i.term for i in report.opportunities] == ["step counter"]
        assert [i.term for i in report.strengths] == ["home workout"]
        assert [i.term for i in report.contested] == ["yoga"]
        assert report.competitor_app_ids == ["c1", "c2"]
        assert not report.is_stale

    def test_competitor_ahead_and_target_absent(self):
        targets = [_target("fitness tracker", 3), _target("step counter", None)]
        competitors = [_comp("c1", "fitness tracker", 1), _comp("c1", "step counter", 5)]
        report = analyze_gap(targets, competitors)
        assert [i.term for i in report.opportunities] == ["step counter"]
        assert [i.term for i in report.contested] == ["fitness tracker"]
        assert report.strengths == []

    def test_term_appears_in_at_most_one_list(self):
        targets = [_target("a", 1), _target("b", None), _target("c", 10)]
        competitors = [_comp("x", "a", 2), _comp("y", "b", 1), _comp("x", "c", 10), _comp("y", "c", 30)]
        report = analyze_gap(targets, competitors)
        terms = [i.term for lst in (report.opportunities, report.strengths, report.contested) for i in lst]
        assert len(terms) == len(set(terms))

    def test_tie_is_contested(self):
        report = analyze_gap([_target("a", 4)], [_comp("x", "a", 4)])
        assert [i.term for i in report.contested] == ["a"]

    def test_target_ranks_alone_is_strength(self):
        report = analyze_gap([_target("a", 7)], [_comp("x", "a", None)])
        assert [i.term for i in report.strengths] == ["a"]
        assert report.strengths[0].best_competitor_position is None

    def test_nobody_ranks_is_unclassified(self):
        report = analyze_gap([_target("a", None)], [_comp("x", "a", None)])
        assert not (report.opportunities or report.strengths or report.contested)

    def test_no_competitor_data_is_unclassified(self):
        report = analyze_gap([_target("a", 3)], [])
        assert not (report.opportunities or report.strengths or report.contested)

    def test_stale_comparison_listed_not_classified(self):
        old = DAY - timedelta(days=10)
        report = analyze_gap([_target("a", None)], [_comp("x", "a", 2, day=old)], tolerance_days=3)
        assert report.opportunities == []
        assert report.is_stale
        assert report.stale[0].days_apart == 10

    def test_nearest_competitor_snapshot_used(self):
        competitors = [
            _comp("x", "a", 40, day=DAY - timedelta(days=20)),
            _comp("x", "a", 2, day=DAY - timedelta(days=1)),
        ]
        report = analyze_gap([_target("a", None)], competitors, tolerance_days=3)
        assert report.opportunities[0].best_competitor_position == 2
        assert not report.is_stale

    def test_opportunities_ranked_by_ease(self):
        targets = [_target("hard", None, popularity=10), _target("easy", None, popularity=90)]
        competitors = [_comp("x", "hard", 45), _comp("x", "easy", 1)]
        report = analyze_gap(targets, competitors)
        assert [i.term for i in report.opportunities] == ["easy", "hard"]
        assert report.opportunities[0].ease_score > report.opportunities[1].ease_score
        assert report.opportunities[0].tier is not None

    def test_terms_matched_case_insensitively(self):
        report = analyze_gap([_target("Step Counter", None)], [_comp("x", "step counter", 3)])
        assert [i.term for i in report.opportunities] == ["step counter"]


class TestScores:
    def test_ease_bounds(self):
        assert ease_score(1, 100) == 100.0
        assert 0 <= ease_score(50, 0) <= 100

    def test_ease_prefers_better_competitor_position(self):
        assert ease_score(1, 50) > ease_score(30, 50)

    def test_opportunity_types(self):
        assert opportunity_type(3, 20) is OpportunityType.QUICK_WIN
        assert opportunity_type(3, 70) is OpportunityType.HIGH_POTENTIAL
        assert opportunity_type(30, 20) is OpportunityType.LONG_TERM
