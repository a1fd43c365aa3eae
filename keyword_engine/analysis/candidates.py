"""Keyword Candidate Generator.

Proposes search terms for an app from three closed generation methods:
  - metadata_extraction: app name, subtitle, description phrases, seed keywords
  - semantic_variation: synonym swaps and singular/plural forms of metadata terms
  - category_trending: terms shared by category peers plus curated trending terms

Output is deduplicated case-insensitively, ranked by a deterministic
method-weighted relevance score and capped at ``max_candidates``. The
generator never touches the network; fetching and scoring happen downstream.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from collections.abc import Iterable, Sequence

from keyword_engine.analysis.text import (
    content_tokens,
    is_stopword,
    is_valid_term,
    is_valuable_phrase,
    ngrams,
    normalize_term,
    pluralize,
    singularize,
    tokenize,
)
from keyword_engine.analysis.types import AppMetadata, Candidate, DiscoveryMethod

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

# Share of max_candidates reserved per method; unused quota is refilled by relevance
METHOD_QUOTAS: dict[DiscoveryMethod, float] = {
    DiscoveryMethod.METADATA_EXTRACTION: 0.60,
    DiscoveryMethod.SEMANTIC_VARIATION: 0.25,
    DiscoveryMethod.CATEGORY_TRENDING: 0.15,
}

# Base relevance by origin, before the method weight is applied
BASE_RELEVANCE: dict[str, float] = {
    "name": 10.0,
    "seed": 9.0,
    "name_word": 8.0,
    "description": 7.0,
    "subtitle": 6.5,
    "subtitle_word": 6.0,
    "synonym": 7.5,
    "plural": 7.0,
    "peers": 6.5,
    "trending": 6.0,
}

BRAND_BONUS = 1.5
DESCRIPTION_PHRASE_LIMIT = 15
SEMANTIC_SOURCE_LIMIT = 20  # top metadata terms used as variation sources
PEER_MIN_APPS = 2  # a peer term must appear in at least this many peer apps
MAX_TERM_TOKENS = 4

_NAME_SPLIT_RE = re.compile(r"\s*[:|\-–—•·,]\s*")

# Context detection: store category → context, then keyword overlap as fallback
_CATEGORY_CONTEXT: dict[str, str] = {
    "health & fitness": "fitness",
    "sports": "fitness",
    "medical": "fitness",
    "productivity": "productivity",
    "business": "productivity",
    "education": "education",
    "reference": "education",
    "finance": "finance",
    "photo & video": "photo",
    "graphics & design": "photo",
    "games": "games",
}

_CONTEXT_SIGNALS: dict[str, frozenset[str]] = {
    "fitness": frozenset(
        {"workout", "fitness", "exercise", "gym", "run", "running", "step", "yoga", "training",
         "calorie", "weight", "diet", "health", "meditation", "sleep"}
    ),
    "productivity": frozenset(
        {"task", "todo", "note", "calendar", "planner", "focus", "habit", "organize", "reminder",
         "schedule", "project", "list", "timer"}
    ),
    "education": frozenset(
        {"learn", "learning", "language", "study", "course", "lesson", "quiz", "vocabulary",
         "math", "school", "flashcard", "word"}
    ),
    "finance": frozenset(
        {"budget", "money", "expense", "finance", "bank", "invest", "saving", "bill", "tax",
         "crypto", "wallet", "spending"}
    ),
    "photo": frozenset(
        {"photo", "camera", "edit", "editor", "filter", "video", "collage", "selfie", "picture"}
    ),
    "games": frozenset({"game", "puzzle", "play", "arcade", "racing", "strategy", "level", "match"}),
}

SYNONYMS: dict[str, tuple[str, ...]] = {
    "workout": ("exercise", "training"),
    "exercise": ("workout",),
    "tracker": ("log", "monitor"),
    "counter": ("tracker",),
    "planner": ("organizer", "schedule"),
    "todo": ("task list", "checklist"),
    "task": ("todo",),
    "budget": ("expense", "money"),
    "expense": ("spending", "budget"),
    "learn": ("study",),
    "learning": ("study",),
    "language": ("vocabulary",),
    "photo": ("picture", "image"),
    "editor": ("maker",),
    "note": ("notebook", "journal"),
    "journal": ("diary",),
    "habit": ("routine",),
    "meditation": ("mindfulness",),
    "step": ("pedometer",),
    "run": ("jog",),
    "running": ("jogging",),
    "diet": ("nutrition", "meal"),
    "calendar": ("schedule",),
    "game": ("puzzle",),
    "timer": ("clock",),
}

TRENDING_BY_CONTEXT: dict[str, tuple[str, ...]] = {
    "fitness": ("home workout", "step counter", "calorie counter", "intermittent fasting",
                "running tracker", "yoga for beginners"),
    "productivity": ("habit tracker", "daily planner", "focus timer", "todo list", "note taking"),
    "education": ("language learning", "flashcards", "vocabulary builder", "math practice",
                  "study timer"),
    "finance": ("budget planner", "expense tracker", "bill reminder", "savings goal",
                "net worth tracker"),
    "photo": ("photo editor", "video editor", "collage maker", "background remover", "photo filters"),
    "games": ("puzzle game", "offline games", "word game", "brain games", "idle games"),
    "general": (),
}


def detect_context(app: AppMetadata) -> str:
    """Map an app to a generation context. Ties resolve alphabetically."""
    by_category = _CATEGORY_CONTEXT.get((app.category or "").strip().lower())
    if by_category:
        return by_category

    stems = {singularize(t) for t in content_tokens(f"{app.name} {app.subtitle} {app.description}")}
    best, best_overlap = "general", 0
    for context in sorted(_CONTEXT_SIGNALS):
        overlap = len(stems & _CONTEXT_SIGNALS[context])
        if overlap > best_overlap:
            best, best_overlap = context, overlap
    return best


def _acceptable(term: str) -> bool:
    """Searchable, not boilerplate, not a stopword on its own, not too long."""
    if not is_valid_term(term):
        return False
    tokens = tokenize(term)
    if not tokens or len(tokens) > MAX_TERM_TOKENS:
        return False
    if len(tokens) == 1:
        return len(tokens[0]) >= 3 and not is_stopword(tokens[0])
    return is_valuable_phrase(term)


class CandidateGenerator:
    """Deterministic keyword candidate generator."""

    def __init__(
        self,
        quotas: dict[DiscoveryMethod, float] | None = None,
        base_relevance: dict[str, float] | None = None,
    ):
        self.quotas = dict(quotas or METHOD_QUOTAS)
        self.base_relevance = dict(base_relevance or BASE_RELEVANCE)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(
        self,
        app: AppMetadata,
        seed_keywords: Sequence[str] | None = None,
        competitor_apps: Sequence[AppMetadata] | None = None,
        region: str = "us",
        max_candidates: int = 50,
        methods: Iterable[DiscoveryMethod] | None = None,
    ) -> list[Candidate]:
        if max_candidates <= 0:
            return []
        enabled = set(methods) if methods is not None else set(DiscoveryMethod)
        brand_tokens = set(content_tokens(_NAME_SPLIT_RE.split(app.name or "")[0]))

        pool: dict[str, Candidate] = {}

        metadata = self._metadata_terms(app, seed_keywords or ())
        if DiscoveryMethod.METADATA_EXTRACTION in enabled:
            self._merge(pool, metadata, DiscoveryMethod.METADATA_EXTRACTION, brand_tokens)

        if DiscoveryMethod.SEMANTIC_VARIATION in enabled:
            sources = self._top_sources(metadata, brand_tokens)
            self._merge(pool, self._semantic_terms(sources), DiscoveryMethod.SEMANTIC_VARIATION, brand_tokens)

        if DiscoveryMethod.CATEGORY_TRENDING in enabled:
            context = detect_context(app)
            trending = self._trending_terms(app, competitor_apps or (), context)
            self._merge(pool, trending, DiscoveryMethod.CATEGORY_TRENDING, brand_tokens)

        selected = self._select(list(pool.values()), max_candidates)
        logger.info(
            "Generated %d candidates for app %s (region=%s, pool=%d, cap=%d)",
            len(selected),
            app.app_id,
            region,
            len(pool),
            max_candidates,
        )
        return selected

    # ------------------------------------------------------------------
    # Method: metadata extraction
    # ------------------------------------------------------------------

    def _metadata_terms(self, app: AppMetadata, seeds: Iterable[str]) -> list[tuple[str, float, str]]:
        terms: list[tuple[str, float, str]] = []

        for seed in seeds:
            terms.append((normalize_term(seed), self.base_relevance["seed"], "seed"))

        for part in _NAME_SPLIT_RE.split(app.name or ""):
            terms.append((normalize_term(part), self.base_relevance["name"], "name"))
        for token in content_tokens(app.name):
            terms.append((token, self.base_relevance["name_word"], "name_word"))

        for part in _NAME_SPLIT_RE.split(app.subtitle or ""):
            terms.append((normalize_term(part), self.base_relevance["subtitle"], "subtitle"))
        subtitle_tokens = content_tokens(app.subtitle)
        for token in subtitle_tokens:
            terms.append((token, self.base_relevance["subtitle_word"], "subtitle_word"))
        for bigram in ngrams(subtitle_tokens, 2):
            terms.append((bigram, self.base_relevance["subtitle"], "subtitle"))

        for phrase, count in self._description_phrases(app.description):
            bonus = min(1.0, 0.25 * (count - 1))
            terms.append((phrase, self.base_relevance["description"] + bonus, "description"))

        return terms

    @staticmethod
    def _description_phrases(description: str) -> list[tuple[str, int]]:
        """Most frequent valuable 2–3 word phrases, sentence-bounded."""
        counts: Counter[str] = Counter()
        for sentence in re.split(r"[.!?\n;]+", description or ""):
            tokens = tokenize(sentence)
            for n in (2, 3):
                for phrase in ngrams(tokens, n):
                    if is_valuable_phrase(phrase, min_length=6, max_length=25):
                        counts[phrase] += 1
        ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
        return ranked[:DESCRIPTION_PHRASE_LIMIT]

    # ------------------------------------------------------------------
    # Method: semantic variation
    # ------------------------------------------------------------------

    def _top_sources(self, metadata: list[tuple[str, float, str]], brand_tokens: set[str]) -> list[str]:
        best: dict[str, float] = {}
        for term, relevance, _origin in metadata:
            if not _acceptable(term) or set(tokenize(term)) <= brand_tokens:
                continue
            best[term] = max(relevance, best.get(term, 0.0))
        ranked = sorted(best.items(), key=lambda kv: (-kv[1], kv[0]))
        return [term for term, _ in ranked[:SEMANTIC_SOURCE_LIMIT]]

    def _semantic_terms(self, sources: list[str]) -> list[tuple[str, float, str]]:
        terms: list[tuple[str, float, str]] = []
        for source in sources:
            tokens = tokenize(source)
            if len(tokens) > 3:
                continue
            for i, token in enumerate(tokens):
                for synonym in SYNONYMS.get(singularize(token), ()):
                    swapped = " ".join(tokens[:i] + [synonym] + tokens[i + 1 :])
                    terms.append((swapped, self.base_relevance["synonym"], f"synonym:{token}"))

            last = tokens[-1]
            singular = singularize(last)
            other = pluralize(last) if singular == last else singular
            if other != last:
                terms.append((" ".join(tokens[:-1] + [other]), self.base_relevance["plural"], "plural"))
        return terms

    # ------------------------------------------------------------------
    # Method: category trending
    # ------------------------------------------------------------------

    def _trending_terms(
        self,
        app: AppMetadata,
        peers: Sequence[AppMetadata],
        context: str,
    ) -> list[tuple[str, float, str]]:
        terms: list[tuple[str, float, str]] = []

        peer_ids = {p.app_id for p in peers if p.app_id != app.app_id}
        if peer_ids:
            counts: Counter[str] = Counter()
            for peer in peers:
                if peer.app_id == app.app_id:
                    continue
                tokens = content_tokens(f"{peer.name} {peer.subtitle}")
                # Count each term once per peer app
                counts.update(set(tokens) | set(ngrams(tokens, 2)))
            for term, count in sorted(counts.items()):
                if count < PEER_MIN_APPS:
                    continue
                share = count / len(peer_ids)
                terms.append((term, round(self.base_relevance["peers"] * (0.5 + 0.5 * share), 3), "peers"))

        for term in TRENDING_BY_CONTEXT.get(context, ()):
            terms.append((term, self.base_relevance["trending"], f"trending:{context}"))
        return terms

    # ------------------------------------------------------------------
    # Ranking, dedupe and quota selection
    # ------------------------------------------------------------------

    @staticmethod
    def _merge(
        pool: dict[str, Candidate],
        terms: list[tuple[str, float, str]],
        method: DiscoveryMethod,
        brand_tokens: set[str],
    ) -> None:
        """Add terms to the pool keyed by normalized term; the higher relevance wins."""
        for raw, base, origin in terms:
            term = normalize_term(raw)
            if not _acceptable(term):
                continue
            relevance = base * method.weight
            if brand_tokens & set(tokenize(term)):
                relevance += BRAND_BONUS
            candidate = Candidate(term=term, method=method, relevance=round(relevance, 3), origin=origin)
            existing = pool.get(term)
            if existing is None or candidate.relevance > existing.relevance:
                pool[term] = candidate

    def _select(self, pool: list[Candidate], max_candidates: int) -> list[Candidate]:
        def rank(c: Candidate) -> tuple[float, str]:
            return (-c.relevance, c.term)

        by_method: dict[DiscoveryMethod, list[Candidate]] = {m: [] for m in DiscoveryMethod}
        for candidate in pool:
            by_method[candidate.method].append(candidate)

        selected: list[Candidate] = []
        for method in DiscoveryMethod:
            quota = int(max_candidates * self.quotas.get(method, 0.0))
            selected.extend(sorted(by_method[method], key=rank)[:quota])

        chosen = {c.term for c in selected}
        leftovers = sorted((c for c in pool if c.term not in chosen), key=rank)
        selected.extend(leftovers[: max(0, max_candidates - len(selected))])

        return sorted(selected, key=rank)[:max_candidates]
