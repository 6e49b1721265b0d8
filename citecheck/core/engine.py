"""
Passage analysis engine orchestrating the full scoring pipeline.

This module provides the high-level API for analyzing a set of passages
against a set of target queries. It coordinates:
1. Relevance scoring of every (passage, query) pair
2. One-to-one query assignment
3. Diagnostics for underperforming passages
4. Optimization target selection

The primary entry point is analyze_passages(), which takes precomputed
similarity signals and returns a PassageAnalysisReport. analyze_document()
wraps it with a SimilarityProvider for callers that only have text.

Design Principles:
- Single responsibility: orchestration only, delegates to specialized modules
- Fail-fast on wiring defects: a similarity grid of the wrong shape raises
- Deterministic: same inputs produce same outputs
- No side effects: overrides return a new report
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from citecheck.core.assignment import (
    QueryLike,
    normalize_queries,
    reassign_query,
    resolve_assignments,
    select_optimization_targets,
)
from citecheck.core.config import (
    DEFAULT_ASSIGNMENT_THRESHOLD,
    DEFAULT_ENGINE_CONFIG,
    EngineConfig,
)
from citecheck.core.diagnostics import diagnose_assignments
from citecheck.core.embeddings import EmbeddingSimilarityProvider
from citecheck.core.models import (
    AssignmentMap,
    Diagnosis,
    OptimizationTarget,
    Passage,
    PassageScores,
    Query,
    Record,
    SimilarityPair,
)
from citecheck.core.scoring import score_pair
from citecheck.core.similarity import SimilarityProvider

logger = logging.getLogger(__name__)


class EngineError(Exception):
    """Raised when the analysis pipeline is wired with inconsistent inputs."""
    pass


@dataclass(frozen=True)
class PassageAnalysisReport(Record):
    """
    Complete analysis of a document's passages against its queries.

    Attributes:
        passages: Analyzed passages, in index order
        queries: Normalized queries (deduplicated, one primary)
        scores: Relevance score (0-100) keyed by (passage_index, query)
        passage_scores: Normalized scores per passage (resolver input)
        assignment_map: Query-to-passage assignments and content gaps
        diagnoses: One diagnosis per passage, in index order
        targets: Optimization targets per assigned query
        force_include: Passage indices forced into optimization
    """
    passages: Tuple[Passage, ...]
    queries: Tuple[Query, ...]
    scores: Dict[Tuple[int, str], int]
    passage_scores: Tuple[PassageScores, ...]
    assignment_map: AssignmentMap
    diagnoses: Tuple[Diagnosis, ...]
    targets: Tuple[OptimizationTarget, ...]
    force_include: Tuple[int, ...] = field(default=())

    def score_for(self, passage_index: int, query: str) -> Optional[int]:
        return self.scores.get((passage_index, query))

    @property
    def content_gaps(self) -> Tuple[str, ...]:
        return self.assignment_map.unassigned_queries

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["scores"] = [
            {"passage_index": index, "query": query, "score": score}
            for (index, query), score in sorted(self.scores.items())
        ]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PassageAnalysisReport":
        data = dict(data)
        data["scores"] = {
            (entry["passage_index"], entry["query"]): entry["score"]
            for entry in data.get("scores", ())
        }
        return super().from_dict(data)


def _score_grid(
    passages: Sequence[Passage],
    query_texts: Sequence[str],
    similarities: Sequence[Sequence[SimilarityPair]],
) -> Tuple[Dict[Tuple[int, str], int], List[PassageScores]]:
    if len(similarities) != len(passages):
        raise EngineError(
            f"Expected {len(passages)} similarity rows (one per passage), "
            f"got {len(similarities)}"
        )

    scores: Dict[Tuple[int, str], int] = {}
    passage_scores: List[PassageScores] = []
    for passage, row in zip(passages, similarities):
        if len(row) != len(query_texts):
            raise EngineError(
                f"Passage {passage.index}: expected {len(query_texts)} similarity "
                f"values (one per query), got {len(row)}"
            )
        pairs = []
        for query, pair in zip(query_texts, row):
            if (passage.index, query) in scores:
                continue
            score = score_pair(pair)
            scores[(passage.index, query)] = score
            pairs.append((query, score / 100))
        passage_scores.append(PassageScores(passage.index, tuple(pairs)))
    return scores, passage_scores


def _build_report(
    passages: Tuple[Passage, ...],
    queries: Tuple[Query, ...],
    scores: Dict[Tuple[int, str], int],
    passage_scores: Tuple[PassageScores, ...],
    assignment_map: AssignmentMap,
    force_include: Tuple[int, ...],
) -> PassageAnalysisReport:
    return PassageAnalysisReport(
        passages=passages,
        queries=queries,
        scores=scores,
        passage_scores=passage_scores,
        assignment_map=assignment_map,
        diagnoses=tuple(diagnose_assignments(passages, assignment_map, scores)),
        targets=tuple(select_optimization_targets(assignment_map, force_include)),
        force_include=force_include,
    )


def analyze_passages(
    passages: Sequence[Passage],
    queries: Sequence[QueryLike],
    similarities: Sequence[Sequence[SimilarityPair]],
    threshold: float = DEFAULT_ASSIGNMENT_THRESHOLD,
    force_include: Iterable[int] = (),
) -> PassageAnalysisReport:
    """
    Score, assign and diagnose passages against target queries.

    Args:
        passages: Document passages (any order; indices must be unique)
        queries: Target queries as Query objects or strings, in priority order
        similarities: One row per passage (same order as ``passages``), one
                      SimilarityPair per query (same order as ``queries``)
        threshold: Minimum normalized score for an assignment
        force_include: Passage indices to optimize even when already optimal

    Returns:
        PassageAnalysisReport

    Raises:
        EngineError: If passage indices repeat or the similarity grid does
                     not match the passages and queries

    Example:
        >>> passages = [Passage.from_text(0, "Install Node.js with apt.", ["Install"])]
        >>> report = analyze_passages(
        ...     passages, ["install nodejs"], [[SimilarityPair(0.9, 0.8)]]
        ... )
        >>> report.assignment_map.assignments[0].assigned_passage_index
        0
    """
    indices = [p.index for p in passages]
    if len(indices) != len(set(indices)):
        raise EngineError("Passage indices must be unique")

    query_texts = [q if isinstance(q, str) else q.text for q in queries]
    scores, passage_scores = _score_grid(passages, query_texts, similarities)

    ordered = sorted(zip(passages, passage_scores), key=lambda item: item[0].index)
    sorted_passages = tuple(p for p, _ in ordered)
    sorted_scores = tuple(ps for _, ps in ordered)
    normalized = tuple(normalize_queries(queries))

    assignment_map = resolve_assignments(sorted_scores, normalized, threshold)
    report = _build_report(
        sorted_passages,
        normalized,
        scores,
        sorted_scores,
        assignment_map,
        tuple(force_include),
    )

    logger.info(
        "Analyzed %d passages against %d queries: %d assigned, %d gaps, %d need fixes",
        len(sorted_passages),
        len(normalized),
        len(assignment_map.assigned),
        len(assignment_map.unassigned_queries),
        sum(1 for d in report.diagnoses if d.needs_fix),
    )
    return report


def analyze_with_config(
    passages: Sequence[Passage],
    queries: Sequence[QueryLike],
    similarities: Sequence[Sequence[SimilarityPair]],
    config: EngineConfig,
) -> PassageAnalysisReport:
    """analyze_passages() with threshold and force-include taken from an EngineConfig."""
    return analyze_passages(
        passages,
        queries,
        similarities,
        threshold=config.assignment_threshold,
        force_include=config.force_include,
    )


def analyze_document(
    passages: Sequence[Passage],
    queries: Sequence[QueryLike],
    provider: Optional[SimilarityProvider] = None,
    config: Optional[EngineConfig] = None,
) -> PassageAnalysisReport:
    """
    Analyze passages, computing similarities with a SimilarityProvider.

    The provider defaults to the local sentence-transformers provider.
    """
    if provider is None:
        provider = EmbeddingSimilarityProvider()

    query_objects = [Query(text=q) if isinstance(q, str) else q for q in queries]
    similarities = provider.similarities(passages, query_objects)
    return analyze_with_config(passages, query_objects, similarities, config or DEFAULT_ENGINE_CONFIG)


def reassign(
    report: PassageAnalysisReport,
    query: str,
    passage_index: int,
) -> PassageAnalysisReport:
    """
    Apply a manual query-to-passage override to a report.

    Any query displaced from the passage becomes a content gap. Diagnoses
    and optimization targets are recomputed; scores are untouched.
    Unknown queries or passages return an equivalent report.
    """
    assignment_map = reassign_query(
        report.assignment_map, query, passage_index, report.passage_scores
    )
    return _build_report(
        report.passages,
        report.queries,
        report.scores,
        report.passage_scores,
        assignment_map,
        report.force_include,
    )


def set_force_include(
    report: PassageAnalysisReport,
    force_include: Iterable[int],
) -> PassageAnalysisReport:
    """Return a report with optimization targets recomputed for new force-includes."""
    return _build_report(
        report.passages,
        report.queries,
        report.scores,
        report.passage_scores,
        report.assignment_map,
        tuple(force_include),
    )
