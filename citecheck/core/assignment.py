"""
Query-to-passage assignment.

Each target query is matched to at most one passage and each passage serves
at most one query. A pair is only eligible when its normalized score meets
the threshold; queries left without a passage are content gaps.

Matching is greedy best-first over every eligible pair:

1. Collect (query, passage, score) candidates with score >= threshold.
2. Sort by score descending. Ties go to the primary query, then to the
   query listed first, then to the lower passage index.
3. Walk the list once, committing a candidate when neither its query nor
   its passage is already claimed.

Design Principles:
- Deterministic: identical inputs give identical AssignmentMaps
- Total: empty or malformed inputs resolve to gaps, never exceptions
- Immutable: overrides return a new AssignmentMap

This module does NOT:
- Compute similarity or relevance scores
- Decide what to do with gaps (content briefs are generated elsewhere)
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from citecheck.core.config import DEFAULT_ASSIGNMENT_THRESHOLD
from citecheck.core.models import (
    AssignmentMap,
    OptimizationTarget,
    PassageAssignment,
    PassageScores,
    Query,
    QueryAssignment,
)
from citecheck.core.scoring import (
    clamp_unit,
    is_already_optimal,
    normalized_to_score,
    score_tier,
)

logger = logging.getLogger(__name__)


class AssignmentInvariantError(AssertionError):
    """Raised when an AssignmentMap breaks injectivity or completeness."""
    pass


QueryLike = Union[Query, str]


def normalize_queries(queries: Iterable[QueryLike]) -> List[Query]:
    """
    Coerce query inputs into an ordered, de-duplicated list of Query.

    Plain strings become Query objects. Duplicate texts keep their first
    occurrence. Exactly one query ends up primary: the first one flagged,
    or the first query in the list when none is flagged.

    Args:
        queries: Query objects and/or query strings

    Returns:
        List of Query in input order
    """
    seen: Set[str] = set()
    normalized: List[Query] = []
    for item in queries:
        query = Query(text=item) if isinstance(item, str) else item
        if query.text in seen:
            logger.warning("Ignoring duplicate query %r", query.text)
            continue
        seen.add(query.text)
        normalized.append(query)

    if not normalized:
        return []

    primary_index = next(
        (i for i, q in enumerate(normalized) if q.is_primary),
        0,
    )
    return [
        Query(text=q.text, intent_type=q.intent_type, is_primary=(i == primary_index))
        for i, q in enumerate(normalized)
    ]


def _build_candidates(
    passage_scores: Sequence[PassageScores],
    queries: List[Query],
    threshold: float,
) -> List[Tuple[float, bool, int, int, str]]:
    """
    Collect eligible pairs as sortable tuples.

    Tuple layout: (score, is_primary, query_order, passage_index, query_text)
    """
    candidates = []
    for order, query in enumerate(queries):
        for ps in passage_scores:
            raw = ps.score_for(query.text)
            if raw is None:
                continue
            score = clamp_unit(raw)
            if score >= threshold:
                candidates.append((score, query.is_primary, order, ps.passage_index, query.text))
    return candidates


def _build_map(
    passage_indices: Sequence[int],
    assignments: List[QueryAssignment],
) -> AssignmentMap:
    """Derive passage assignments and gaps from the query assignments."""
    by_passage: Dict[int, str] = {
        a.assigned_passage_index: a.query
        for a in assignments
        if a.assigned_passage_index is not None
    }
    return AssignmentMap(
        assignments=tuple(assignments),
        passage_assignments=tuple(
            PassageAssignment(passage_index=i, assigned_query=by_passage.get(i))
            for i in passage_indices
        ),
        unassigned_queries=tuple(a.query for a in assignments if not a.is_assigned),
    )


def check_assignment_invariants(
    assignment_map: AssignmentMap,
    queries: Optional[Sequence[QueryLike]] = None,
    passage_count: Optional[int] = None,
) -> None:
    """
    Verify that an AssignmentMap is injective and complete.

    A failure here means the resolver itself is broken; it is not an input
    problem and should not be caught in production code.

    Raises:
        AssignmentInvariantError: If any invariant is violated
    """
    assigned = assignment_map.assigned

    query_texts = [a.query for a in assignment_map.assignments]
    if len(query_texts) != len(set(query_texts)):
        raise AssignmentInvariantError("A query appears more than once in assignments")

    passage_hits = [a.assigned_passage_index for a in assigned]
    if len(passage_hits) != len(set(passage_hits)):
        raise AssignmentInvariantError("A passage serves more than one query")

    gaps = list(assignment_map.unassigned_queries)
    if len(gaps) != len(set(gaps)):
        raise AssignmentInvariantError("Duplicate entries in unassigned queries")

    assigned_texts = {a.query for a in assigned}
    if assigned_texts & set(gaps):
        raise AssignmentInvariantError("A query is both assigned and a gap")

    if queries is not None:
        expected = {q.text for q in normalize_queries(queries)}
        if assigned_texts | set(gaps) != expected:
            raise AssignmentInvariantError("Assigned queries and gaps do not cover the input queries")

    passage_indices = [pa.passage_index for pa in assignment_map.passage_assignments]
    if len(passage_indices) != len(set(passage_indices)):
        raise AssignmentInvariantError("A passage has more than one passage assignment")
    if passage_count is not None and len(passage_indices) != passage_count:
        raise AssignmentInvariantError(
            f"Expected {passage_count} passage assignments, got {len(passage_indices)}"
        )

    for pa in assignment_map.passage_assignments:
        if pa.assigned_query is None:
            continue
        qa = assignment_map.assignment_for(pa.assigned_query)
        if qa is None or qa.assigned_passage_index != pa.passage_index:
            raise AssignmentInvariantError(
                f"Passage {pa.passage_index} and query {pa.assigned_query!r} disagree"
            )


def resolve_assignments(
    passage_scores: Sequence[PassageScores],
    queries: Sequence[QueryLike],
    threshold: float = DEFAULT_ASSIGNMENT_THRESHOLD,
) -> AssignmentMap:
    """
    Assign each query to its best available passage, one-to-one.

    Args:
        passage_scores: Normalized (0-1) scores per passage
        queries: Target queries, in priority order
        threshold: Minimum score for a valid assignment (clamped to 0-1)

    Returns:
        AssignmentMap with one assignment per query, one passage assignment
        per passage, and the content gaps

    Example:
        >>> scores = [
        ...     PassageScores(0, (("q1", 0.9), ("q2", 0.2))),
        ...     PassageScores(1, (("q1", 0.5), ("q2", 0.8))),
        ... ]
        >>> result = resolve_assignments(scores, ["q1", "q2"])
        >>> [(a.query, a.assigned_passage_index) for a in result.assignments]
        [('q1', 0), ('q2', 1)]
    """
    threshold = clamp_unit(threshold)
    normalized = normalize_queries(queries)
    ordered_scores: List[PassageScores] = []
    seen_passages: Set[int] = set()
    for ps in sorted(passage_scores, key=lambda ps: ps.passage_index):
        if ps.passage_index in seen_passages:
            logger.warning("Ignoring duplicate scores for passage %s", ps.passage_index)
            continue
        seen_passages.add(ps.passage_index)
        ordered_scores.append(ps)

    candidates = _build_candidates(ordered_scores, normalized, threshold)
    candidates.sort(key=lambda c: (-c[0], not c[1], c[2], c[3]))

    claimed_queries: Dict[str, Tuple[int, float]] = {}
    claimed_passages: Set[int] = set()
    for score, _, _, passage_index, query_text in candidates:
        if query_text in claimed_queries or passage_index in claimed_passages:
            continue
        claimed_queries[query_text] = (passage_index, score)
        claimed_passages.add(passage_index)

    assignments = []
    for query in normalized:
        passage_index, score = claimed_queries.get(query.text, (None, 0.0))
        assignments.append(QueryAssignment(
            query=query.text,
            assigned_passage_index=passage_index,
            score=score,
            is_primary=query.is_primary,
            intent_type=query.intent_type,
        ))

    result = _build_map([ps.passage_index for ps in ordered_scores], assignments)
    check_assignment_invariants(result, normalized, len(ordered_scores))

    if result.unassigned_queries:
        logger.info(
            "Resolved %d of %d queries; %d content gaps",
            len(normalized) - len(result.unassigned_queries),
            len(normalized),
            len(result.unassigned_queries),
        )
    return result


def reassign_query(
    assignment_map: AssignmentMap,
    query: str,
    passage_index: int,
    passage_scores: Sequence[PassageScores],
) -> AssignmentMap:
    """
    Manually assign a query to a passage, bypassing the solver.

    The query takes the passage with the stored score for that pair
    (0.0 if the pair was never scored). If another query held the passage,
    that query becomes a content gap. Passage assignments and gaps are
    rebuilt from scratch afterwards.

    Idempotent, and overrides on different queries and passages commute.
    Unknown queries and passage indices leave the map unchanged.

    Args:
        assignment_map: Current assignments
        query: Query text to move
        passage_index: Target passage index
        passage_scores: Scores used to look up the new pair's score

    Returns:
        New AssignmentMap
    """
    current = assignment_map.assignment_for(query)
    passage_indices = [pa.passage_index for pa in assignment_map.passage_assignments]

    if current is None:
        logger.warning("Cannot reassign unknown query %r", query)
        return assignment_map
    if passage_index not in passage_indices:
        logger.warning("Cannot reassign %r to missing passage %s", query, passage_index)
        return assignment_map

    scores_by_passage = {ps.passage_index: ps for ps in passage_scores}
    ps = scores_by_passage.get(passage_index)
    raw = ps.score_for(query) if ps is not None else None
    new_score = clamp_unit(raw) if raw is not None else 0.0

    assignments = []
    for a in assignment_map.assignments:
        if a.query == query:
            a = QueryAssignment(
                query=a.query,
                assigned_passage_index=passage_index,
                score=new_score,
                is_primary=a.is_primary,
                intent_type=a.intent_type,
            )
        elif a.assigned_passage_index == passage_index:
            logger.info("Query %r displaced from passage %s", a.query, passage_index)
            a = QueryAssignment(
                query=a.query,
                assigned_passage_index=None,
                score=0.0,
                is_primary=a.is_primary,
                intent_type=a.intent_type,
            )
        assignments.append(a)

    result = _build_map(passage_indices, assignments)
    check_assignment_invariants(result, passage_count=len(passage_indices))
    return result


def unassign_query(assignment_map: AssignmentMap, query: str) -> AssignmentMap:
    """Turn a query into a content gap. Unknown queries are ignored."""
    if assignment_map.assignment_for(query) is None:
        return assignment_map

    assignments = [
        QueryAssignment(
            query=a.query,
            assigned_passage_index=None,
            score=0.0,
            is_primary=a.is_primary,
            intent_type=a.intent_type,
        ) if a.query == query else a
        for a in assignment_map.assignments
    ]
    return _build_map(
        [pa.passage_index for pa in assignment_map.passage_assignments],
        assignments,
    )


def select_optimization_targets(
    assignment_map: AssignmentMap,
    force_include: Iterable[int] = (),
) -> List[OptimizationTarget]:
    """
    Mark which assigned passages should be optimized.

    Passages already scoring in the good/excellent tier are flagged
    already_optimal and excluded, unless their index is force-included.
    This is advisory metadata; the AssignmentMap is not modified.

    Args:
        assignment_map: Current assignments
        force_include: Passage indices to optimize regardless of score

    Returns:
        One OptimizationTarget per assigned query, in query order
    """
    forced = set(force_include)
    targets = []
    for a in assignment_map.assigned:
        score = normalized_to_score(a.score)
        optimal = is_already_optimal(score)
        targets.append(OptimizationTarget(
            passage_index=a.assigned_passage_index,
            query=a.query,
            score=score,
            tier=score_tier(score),
            already_optimal=optimal,
            excluded=optimal and a.assigned_passage_index not in forced,
        ))
    return targets
