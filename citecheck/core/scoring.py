"""
Relevance scoring.

Combines the two normalized similarity signals into a single 0-100
relevance score and maps it to a tier:

    score = round((0.7 * cosine + 0.3 * chamfer) * 100)

Cosine captures direct topical relevance, the dominant retrieval signal.
Chamfer captures whether all aspects of a multi-part query are covered,
so a passage that nails one facet but ignores the others is pulled down.

Every function here is total: out-of-range and non-finite inputs are
clamped, never rejected.
"""

import math
from typing import List, Sequence, Tuple

from citecheck.core.config import SCORE_WEIGHTS, TIER_THRESHOLDS
from citecheck.core.models import PassageScores, SimilarityPair, Tier


def clamp_unit(value: float) -> float:
    """
    Clamp a similarity value into [0, 1].

    NaN maps to 0.0; +inf to 1.0; -inf to 0.0. Anything that cannot be
    read as a float is treated as 0.0.
    """
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def passage_score(cosine: float, chamfer: float) -> int:
    """
    Compute the relevance score for one (passage, query) pair.

    Args:
        cosine: Cosine similarity (clamped to 0-1)
        chamfer: Chamfer similarity (clamped to 0-1)

    Returns:
        Integer relevance score in [0, 100]

    Example:
        >>> passage_score(0.9, 0.5)
        78
    """
    weighted = (
        clamp_unit(cosine) * SCORE_WEIGHTS["cosine"]
        + clamp_unit(chamfer) * SCORE_WEIGHTS["chamfer"]
    )
    return max(0, min(100, _round_half_up(weighted * 100)))


def score_pair(pair: SimilarityPair) -> int:
    """Relevance score of a SimilarityPair."""
    return passage_score(pair.cosine, pair.chamfer)


def normalized_to_score(value: float) -> int:
    """Convert a normalized 0-1 score back to the 0-100 scale."""
    return max(0, min(100, _round_half_up(clamp_unit(value) * 100)))


def score_tier(score: float) -> Tier:
    """
    Map a 0-100 relevance score to its tier.

    Non-decreasing step function: excellent >= 90, good >= 75,
    moderate >= 60, weak >= 40, poor below.
    """
    if score >= TIER_THRESHOLDS["excellent"]:
        return Tier.EXCELLENT
    elif score >= TIER_THRESHOLDS["good"]:
        return Tier.GOOD
    elif score >= TIER_THRESHOLDS["moderate"]:
        return Tier.MODERATE
    elif score >= TIER_THRESHOLDS["weak"]:
        return Tier.WEAK
    else:
        return Tier.POOR


def is_already_optimal(score: float) -> bool:
    """Whether a score sits in the good or excellent tier."""
    return score_tier(score) in (Tier.GOOD, Tier.EXCELLENT)


_TIER_INTERPRETATIONS = {
    Tier.EXCELLENT: "High retrieval probability. Very likely to make the top 5 results in RAG systems.",
    Tier.GOOD: "Good retrieval probability. Strong candidate for the top 10 results.",
    Tier.MODERATE: "Moderate retrieval probability. Competitive but depends on other content.",
    Tier.WEAK: "Weak retrieval probability. May be retrieved if competition is low.",
    Tier.POOR: "Poor retrieval probability. Likely filtered out during initial retrieval.",
}

_TIER_RECOMMENDATIONS = {
    Tier.EXCELLENT: "Content is well-optimized. Monitor for changes and maintain quality.",
    Tier.GOOD: "Content performs well. Consider minor improvements to reach the excellent tier.",
    Tier.MODERATE: "Optimize passage boundaries, add context, or improve semantic relevance.",
    Tier.WEAK: "Significant restructuring needed. Review heading hierarchy and passage atomicity.",
    Tier.POOR: "Major optimization required. Content may not be relevant to the query or is poorly structured.",
}


def interpret_score(score: float) -> str:
    """Human-readable interpretation of a relevance score."""
    return _TIER_INTERPRETATIONS[score_tier(score)]


def recommend_for_score(score: float) -> str:
    """Action recommendation for a relevance score."""
    return _TIER_RECOMMENDATIONS[score_tier(score)]


def build_passage_scores(
    similarities: Sequence[Sequence[Tuple[str, SimilarityPair]]],
) -> List[PassageScores]:
    """
    Convert raw similarity pairs into normalized per-passage scores.

    Args:
        similarities: One row per passage (in passage index order), each a
                      sequence of (query_text, SimilarityPair)

    Returns:
        PassageScores per passage with scores in [0, 1]
        (relevance score / 100)
    """
    return [
        PassageScores(
            passage_index=index,
            scores=tuple(
                (query, score_pair(pair) / 100) for query, pair in row
            ),
        )
        for index, row in enumerate(similarities)
    ]
