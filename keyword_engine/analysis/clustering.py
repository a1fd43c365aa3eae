"""Semantic Clustering Engine — lexical hierarchical clustering of keywords.

Similarity is token-set Jaccard over singular-form content tokens, so
"step counter" and "step counters" are identical and "fitness tracker" and
"step tracker" share one of three tokens. Clusters come from average-linkage
agglomerative clustering cut at ``1 - similarity_threshold``.

Order independence: keywords are deduplicated and sorted alphabetically
before the distance matrix is built, so any permutation of the input yields
the same clusters. Output clusters are sorted by size (desc) then label.
Groups smaller than ``min_cluster_size`` go to the "unclustered" bucket.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping, Sequence

import numpy as np
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import pdist

from keyword_engine.analysis.text import normalize_term, stem_tokens
from keyword_engine.analysis.types import UNCLUSTERED_LABEL, KeywordCluster, VolumeEstimate

logger = logging.getLogger(__name__)

DEFAULT_MIN_CLUSTER_SIZE = 2
DEFAULT_SIMILARITY_THRESHOLD = 0.3


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def cluster_keywords(
    keywords: Sequence[str],
    min_cluster_size: int = DEFAULT_MIN_CLUSTER_SIZE,
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
    volumes: Mapping[str, VolumeEstimate] | None = None,
) -> list[KeywordCluster]:
    """Group keywords into labeled thematic clusters.

    Args:
        keywords: Terms to cluster (case-insensitive duplicates are merged).
        min_cluster_size: Groups below this size are moved to "unclustered".
        similarity_threshold: Minimum average Jaccard similarity to join a group.
        volumes: Optional estimates keyed by normalized term, used for the
            primary keyword and cluster totals.
    """
    if not 0.0 <= similarity_threshold <= 1.0:
        raise ValueError("similarity_threshold must be within [0, 1]")

    terms = sorted({normalize_term(k) for k in keywords if normalize_term(k)})
    if not terms:
        return []

    volumes = volumes or {}
    groups = _group_terms(terms, similarity_threshold)

    clusters: list[KeywordCluster] = []
    unclustered: list[str] = []
    for members in groups:
        if len(members) < max(min_cluster_size, 1):
            unclustered.extend(members)
            continue
        clusters.append(_summarize(_label_for(members), members, volumes))

    clusters.sort(key=lambda c: (-len(c.keywords), c.label, c.primary_keyword))
    if unclustered:
        clusters.append(_summarize(UNCLUSTERED_LABEL, sorted(unclustered), volumes))

    logger.debug(
        "Clustered %d keywords into %d clusters (%d unclustered)",
        len(terms),
        len(clusters) - (1 if unclustered else 0),
        len(unclustered),
    )
    return clusters


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------


def _token_matrix(terms: list[str]) -> np.ndarray:
    """Boolean term × vocabulary matrix; vocabulary in sorted order."""
    token_sets = [set(stem_tokens(t)) for t in terms]
    vocabulary = sorted(set().union(*token_sets))
    index = {tok: i for i, tok in enumerate(vocabulary)}
    matrix = np.zeros((len(terms), len(vocabulary)), dtype=bool)
    for row, tokens in enumerate(token_sets):
        for tok in tokens:
            matrix[row, index[tok]] = True
    return matrix


def _group_terms(terms: list[str], similarity_threshold: float) -> list[list[str]]:
    """Average-linkage clustering; returns groups in first-member alphabetical order."""
    if len(terms) == 1:
        return [list(terms)]

    matrix = _token_matrix(terms)
    distances = pdist(matrix, metric="jaccard")
    distances = np.nan_to_num(distances, nan=0.0)

    Z = linkage(distances, method="average")
    # Small epsilon so a pair exactly at the threshold still merges
    labels = fcluster(Z, t=(1.0 - similarity_threshold) + 1e-9, criterion="distance")

    label_groups: dict[int, list[str]] = {}
    for term, label in zip(terms, labels):
        label_groups.setdefault(int(label), []).append(term)

    return sorted((sorted(g) for g in label_groups.values()), key=lambda g: g[0])


def _label_for(members: list[str]) -> str:
    """Most frequent stem across members; ties resolve alphabetically."""
    counts: Counter[str] = Counter()
    for term in members:
        counts.update(set(stem_tokens(term)))
    if not counts:
        return members[0]
    return min(counts.items(), key=lambda kv: (-kv[1], kv[0]))[0]


def _summarize(label: str, members: list[str], volumes: Mapping[str, VolumeEstimate]) -> KeywordCluster:
    def searches(term: str) -> int:
        est = volumes.get(term)
        return est.estimated_monthly_searches if est else 0

    def popularity(term: str) -> int:
        est = volumes.get(term)
        return est.popularity_score if est else 0

    # Primary: highest volume, then shortest, then alphabetical
    primary = min(members, key=lambda t: (-searches(t), len(t), t))
    total = sum(searches(t) for t in members)
    avg_pop = round(sum(popularity(t) for t in members) / len(members), 2)
    # Popular themes with many variants score higher; capped at 100
    opportunity = round(min(100.0, avg_pop * (1 + 0.1 * (len(members) - 1))), 2)

    return KeywordCluster(
        label=label,
        primary_keyword=primary,
        keywords=list(members),
        total_search_volume=total,
        avg_popularity=avg_pop,
        opportunity_score=opportunity,
    )
