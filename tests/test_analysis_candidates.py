"""Tests for the keyword candidate generator."""

from keyword_engine.analysis.candidates import CandidateGenerator, detect_context
from keyword_engine.analysis.text import is_valid_term, normalize_term
from keyword_engine.analysis.types import AppMetadata, DiscoveryMethod

FITNESS_APP = AppMetadata(
    app_id="1000",
    name="FitTrack: Workout Planner",
    subtitle="Home workout and step counter",
    description=(
        "Plan your home workout in minutes. Log every workout and follow your progress. "
        "The step counter runs all day. Home workout plans for beginners."
    ),
    category="Health & Fitness",
)

PEERS = [
    AppMetadata(app_id="2001", name="Step Counter Pro", subtitle="Pedometer and walking tracker"),
    AppMetadata(app_id="2002", name="Walk More: Step Counter", subtitle="Walking tracker"),
    AppMetadata(app_id="2003", name="Yoga Daily", subtitle="Stretching routines"),
]


class TestCandidateGenerator:
    def test_respects_cap(self):
        for cap in (10, 30, 50, 100):
            candidates = CandidateGenerator().generate(FITNESS_APP, max_candidates=cap)
            assert len(candidates) <= cap

    def test_zero_cap(self):
        assert CandidateGenerator().generate(FITNESS_APP, max_candidates=0) == []

    def test_terms_unique_and_normalized(self):
        candidates = CandidateGenerator().generate(FITNESS_APP, seed_keywords=["Home Workout", "HOME WORKOUT"])
        terms = [c.term for c in candidates]
        assert len(terms) == len(set(terms))
        assert all(t == normalize_term(t) for t in terms)
        assert all(is_valid_term(t) for t in terms)

    def test_metadata_terms_present(self):
        terms = {c.term for c in CandidateGenerator().generate(FITNESS_APP, max_candidates=100)}
        assert "home workout" in terms
        assert "step counter" in terms

    def test_sorted_by_relevance(self):
        candidates = CandidateGenerator().generate(FITNESS_APP, max_candidates=50)
        keys = [(-c.relevance, c.term) for c in candidates]
        assert keys == sorted(keys)

    def test_deterministic(self):
        a = CandidateGenerator().generate(FITNESS_APP, competitor_apps=PEERS, max_candidates=50)
        b = CandidateGenerator().generate(FITNESS_APP, competitor_apps=list(PEERS), max_candidates=50)
        assert [(c.term, c.method, c.relevance) for c in a] == [(c.term, c.method, c.relevance) for c in b]

    def test_quick_methods_exclude_trending(self):
        methods = (DiscoveryMethod.METADATA_EXTRACTION, DiscoveryMethod.SEMANTIC_VARIATION)
        candidates = CandidateGenerator().generate(FITNESS_APP, competitor_apps=PEERS, methods=methods)
        assert candidates
        assert all(c.method in methods for c in candidates)

    def test_peer_terms_shared_by_two_apps(self):
        candidates = CandidateGenerator().generate(
            FITNESS_APP, competitor_apps=PEERS, methods=[DiscoveryMethod.CATEGORY_TRENDING], max_candidates=100
        )
        peer_terms = {c.term for c in candidates if c.origin == "peers"}
        assert "walking tracker" in peer_terms
        # Only one peer mentions yoga
        assert "yoga" not in peer_terms

    def test_semantic_variation_swaps_synonyms(self):
        candidates = CandidateGenerator().generate(
            FITNESS_APP, methods=[DiscoveryMethod.SEMANTIC_VARIATION], max_candidates=100
        )
        terms = {c.term for c in candidates}
        assert "home exercise" in terms
        assert all(c.method is DiscoveryMethod.SEMANTIC_VARIATION for c in candidates)

    def test_empty_metadata_does_not_crash(self):
        bare = AppMetadata(app_id="1", name="")
        assert CandidateGenerator().generate(bare, max_candidates=10) == []

    def test_boilerplate_rejected(self):
        app = AppMetadata(app_id="1", name="Download Now", subtitle="Privacy Policy")
        terms = {c.term for c in CandidateGenerator().generate(app, max_candidates=30)}
        assert "download now" not in terms
        assert "privacy policy" not in terms


class TestDetectContext:
    def test_by_category(self):
        assert detect_context(FITNESS_APP) == "fitness"

    def test_by_keywords(self):
        app = AppMetadata(app_id="1", name="Budget Buddy", subtitle="Expense and money manager")
        assert detect_context(app) == "finance"

    def test_general_fallback(self):
        assert detect_context(AppMetadata(app_id="1", name="Zzz")) == "general"
