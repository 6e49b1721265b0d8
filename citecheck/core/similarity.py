"""
Vector similarity calculations.

Two signals feed the relevance score:

Cosine similarity measures the angle between two vectors:
    cos(theta) = (A . B) / (||A|| * ||B||)

For L2-normalized vectors (which sentence-transformers produces by default),
this simplifies to the dot product.

Chamfer similarity compares two SETS of vectors (all passage vectors and
all query vectors of a document). For each vector in one set the nearest
vector in the other set is found by cosine distance (1 - cosine), the
nearest distances are averaged per direction, and both directions are
summed:

    d = mean_a min_b dist(a, b) + mean_b min_a dist(a, b)

Cosine distance ranges 0-2, so d ranges 0-4 and is converted with
``max(0, 1 - d / 4)``. A document whose passages cover every query (and
whose passages all serve some query) scores close to 1.
"""

from typing import List, Protocol, Sequence

import numpy as np

from citecheck.core.models import Passage, Query, SimilarityPair, Vector


def _as_matrix(vectors: Sequence[Vector], name: str) -> np.ndarray:
    if len(vectors) == 0:
        raise ValueError(f"{name} must contain at least one vector")
    dims = {np.shape(v) for v in vectors}
    if len(dims) != 1:
        raise ValueError(f"{name} vectors have mixed dimensions: {sorted(dims)}")
    matrix = np.vstack([np.asarray(v, dtype=np.float64) for v in vectors])
    if matrix.shape[1] == 0:
        raise ValueError(f"{name} vectors are zero-length")
    return matrix


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    if np.any(norms == 0):
        raise ValueError("Cannot compute similarity with zero-magnitude vector")
    return matrix / norms


def cosine_matrix(set_a: Sequence[Vector], set_b: Sequence[Vector]) -> np.ndarray:
    """
    Pairwise cosine similarities between two sets of vectors.

    Returns:
        Array of shape (len(set_a), len(set_b)), clipped to [-1, 1]
    """
    a = _normalize_rows(_as_matrix(set_a, "set_a"))
    b = _normalize_rows(_as_matrix(set_b, "set_b"))
    if a.shape[1] != b.shape[1]:
        raise ValueError(
            f"Vector dimension mismatch: {a.shape[1]} vs {b.shape[1]}"
        )
    return np.clip(a @ b.T, -1.0, 1.0)


def chamfer_distance(set_a: Sequence[Vector], set_b: Sequence[Vector]) -> float:
    """
    Bidirectional chamfer distance between two vector sets (0-4).

    Raises:
        ValueError: If either set is empty or dimensions disagree
    """
    distances = 1.0 - cosine_matrix(set_a, set_b)
    forward = distances.min(axis=1).mean()
    backward = distances.min(axis=0).mean()
    return float(forward + backward)


def chamfer_similarity(set_a: Sequence[Vector], set_b: Sequence[Vector]) -> float:
    """
    Chamfer distance mapped onto [0, 1] (higher = better coverage).

    Empty sets have no coverage and return 0.0 instead of raising.
    """
    if len(set_a) == 0 or len(set_b) == 0:
        return 0.0
    return max(0.0, 1.0 - chamfer_distance(set_a, set_b) / 4.0)


def compute_similarity_pairs(
    passage_vecs: Sequence[Vector],
    query_vecs: Sequence[Vector],
) -> List[List[SimilarityPair]]:
    """
    Build the similarity grid the scoring layer consumes.

    Cosine is computed per (passage, query) pair. Chamfer is a single
    document-level value shared by every pair.

    Args:
        passage_vecs: One vector per passage, in passage index order
        query_vecs: One vector per query, in query order

    Returns:
        One row per passage, one SimilarityPair per query
    """
    if len(passage_vecs) == 0 or len(query_vecs) == 0:
        return [[] for _ in passage_vecs]

    cosines = cosine_matrix(passage_vecs, query_vecs)
    chamfer = chamfer_similarity(passage_vecs, query_vecs)
    return [
        [SimilarityPair(cosine=float(value), chamfer=chamfer) for value in row]
        for row in cosines
    ]


class SimilarityProvider(Protocol):
    """Anything that can produce a passage x query similarity grid."""

    def similarities(
        self,
        passages: Sequence[Passage],
        queries: Sequence[Query],
    ) -> List[List[SimilarityPair]]:
        ...
