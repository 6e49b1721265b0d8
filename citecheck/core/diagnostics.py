"""
Passage-level diagnostics.

This module answers "why does this passage score poorly for its query?"
rather than "what is the score?". It runs a fixed set of text heuristics
over a passage body and condenses them into a primary failure mode, a fix
priority and an estimated achievable improvement.

Only passages below the moderate tier (score < 60) are diagnosed; anything
at or above it is reported as already optimized.

Design Principles:
- Pure transformation: no recomputation of embeddings or similarity
- Exhaustive: every applicable check runs; the first hit does not short-circuit
- Total: always returns a Diagnosis, even for empty or odd input

This module does NOT:
- Rewrite passage text
- Generate free-text recommendations beyond fixed guidance strings
"""

import math
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from citecheck.core.config import (
    DIAGNOSIS_SCORE_CEILING,
    EXPECTED_IMPROVEMENT_POINTS,
    MAX_LISTED_MISSING_TERMS,
    MIN_QUERY_TERM_LENGTH,
    PRONOUN_LIMIT,
    SHORT_CONTENT_CHARS,
)
from citecheck.core.models import (
    AssignmentMap,
    Diagnosis,
    FailureMode,
    FixPriority,
    Issue,
    IssueSeverity,
    Passage,
)


# Most severe first. A mode earlier in this list wins when several trigger.
FAILURE_MODE_PRECEDENCE = (
    FailureMode.TOPIC_MISMATCH,
    FailureMode.VOCABULARY_GAP,
    FailureMode.MISSING_SPECIFICS,
    FailureMode.STRUCTURE_PROBLEM,
    FailureMode.BURIED_ANSWER,
    FailureMode.NO_DIRECT_ANSWER,
)

RECOMMENDED_FIXES = {
    FailureMode.TOPIC_MISMATCH: "Rewrite the passage around the target query or move the query to a better-matching passage.",
    FailureMode.VOCABULARY_GAP: "Use the query's own terms explicitly in the heading and first sentence.",
    FailureMode.MISSING_SPECIFICS: "Add concrete specifics: numbers, named tools, people or products.",
    FailureMode.STRUCTURE_PROBLEM: "Add a descriptive heading so the passage carries its own context.",
    FailureMode.BURIED_ANSWER: "Move the direct answer to the first sentence.",
    FailureMode.NO_DIRECT_ANSWER: "State a direct answer to the query in one self-contained sentence.",
    FailureMode.ALREADY_OPTIMIZED: "No changes needed; preserve the current wording.",
}

_PRONOUN_RE = re.compile(r"\b(this|that|it|they|these|those)\b", re.IGNORECASE)
_NUMBER_RE = re.compile(r"\d+")
_PROPER_NOUN_RE = re.compile(r"[A-Z][a-z]+\s[A-Z][a-z]+")
_TERM_PUNCTUATION = ".,!?;:\"'()[]{}"


def query_terms(query: str) -> List[str]:
    """
    Extract the query words a passage is expected to contain.

    Words are split on whitespace, lowercased, stripped of surrounding
    punctuation, and kept only when longer than three characters.
    Order is preserved; duplicates are dropped.
    """
    terms: List[str] = []
    for raw in query.lower().split():
        term = raw.strip(_TERM_PUNCTUATION)
        if len(term) < MIN_QUERY_TERM_LENGTH or term in terms:
            continue
        terms.append(term)
    return terms


def count_pronouns(text: str) -> int:
    """Count case-insensitive whole-word backward-referring pronouns."""
    return len(_PRONOUN_RE.findall(text))


def has_specifics(text: str) -> bool:
    """Whether text contains a number or a two-word proper noun."""
    return bool(_NUMBER_RE.search(text) or _PROPER_NOUN_RE.search(text))


def _clamp_score(score: float) -> int:
    """Clamp a 0-100 score; NaN and -inf map to 0, +inf to 100."""
    try:
        value = float(score)
    except (TypeError, ValueError):
        return 0
    if math.isnan(value):
        return 0
    if math.isinf(value):
        return 100 if value > 0 else 0
    return max(0, min(100, int(value)))


def _select_primary_mode(candidates: Iterable[FailureMode]) -> FailureMode:
    triggered = set(candidates)
    for mode in FAILURE_MODE_PRECEDENCE:
        if mode in triggered:
            return mode
    return FailureMode.NO_DIRECT_ANSWER


def _fix_priority(mode: FailureMode, issues: Sequence[Issue]) -> FixPriority:
    if mode in (FailureMode.TOPIC_MISMATCH, FailureMode.VOCABULARY_GAP):
        return FixPriority.CRITICAL
    severities = {issue.severity for issue in issues}
    if IssueSeverity.ERROR in severities:
        return FixPriority.HIGH
    if IssueSeverity.WARNING in severities:
        return FixPriority.MEDIUM
    return FixPriority.LOW


def _expected_improvement(mode: FailureMode, score: int) -> int:
    return max(0, min(EXPECTED_IMPROVEMENT_POINTS[mode.value], 100 - score))


def diagnose(
    passage: Passage,
    assigned_query: Optional[str],
    score: int,
) -> Diagnosis:
    """
    Diagnose why a passage underperforms for its assigned query.

    Args:
        passage: The passage to inspect
        assigned_query: Query the passage serves (None if unassigned)
        score: Current relevance score (0-100, clamped)

    Returns:
        Diagnosis with every triggered issue, in check order

    Example:
        >>> passage = Passage.from_text(0, "This topic is great. It really matters.")
        >>> diagnosis = diagnose(passage, "install nodejs on linux", 30)
        >>> diagnosis.primary_failure_mode
        <FailureMode.VOCABULARY_GAP: 'vocabulary_gap'>
    """
    score = _clamp_score(score)

    if score >= DIAGNOSIS_SCORE_CEILING:
        return Diagnosis(
            passage_index=passage.index,
            assigned_query=assigned_query,
            score=score,
            issues=(),
            primary_failure_mode=FailureMode.ALREADY_OPTIMIZED,
            fix_priority=FixPriority.NONE,
            expected_improvement=0,
            recommended_fix=RECOMMENDED_FIXES[FailureMode.ALREADY_OPTIMIZED],
        )

    body = passage.body
    issues: List[Issue] = []
    modes: List[FailureMode] = []
    missing: List[str] = []

    if not assigned_query:
        issues.append(Issue(
            IssueSeverity.ERROR,
            "No query assigned: chunk may be off-topic or unoptimizable",
        ))
        modes.append(FailureMode.TOPIC_MISMATCH)

    if len(body) < SHORT_CONTENT_CHARS:
        issues.append(Issue(
            IssueSeverity.WARNING,
            f"Very short content (< {SHORT_CONTENT_CHARS} chars): may lack sufficient detail for RAG systems",
        ))

    if not passage.heading_path:
        issues.append(Issue(
            IssueSeverity.WARNING,
            "No heading context: missing semantic structure signals",
        ))
        modes.append(FailureMode.STRUCTURE_PROBLEM)

    pronouns = count_pronouns(body)
    if pronouns > PRONOUN_LIMIT:
        issues.append(Issue(
            IssueSeverity.WARNING,
            f"High pronoun usage ({pronouns}): reduces atomicity and self-containment",
        ))

    if assigned_query:
        body_lower = body.lower()
        missing = [term for term in query_terms(assigned_query) if term not in body_lower]
        if missing:
            listed = ", ".join(missing[:MAX_LISTED_MISSING_TERMS])
            more = "..." if len(missing) > MAX_LISTED_MISSING_TERMS else ""
            issues.append(Issue(
                IssueSeverity.ERROR,
                f"Query keywords not found: {listed}{more}",
            ))
            modes.append(FailureMode.VOCABULARY_GAP)

    if not has_specifics(body):
        issues.append(Issue(
            IssueSeverity.INFO,
            "No specific data (numbers, names): content may be too vague",
        ))
        modes.append(FailureMode.MISSING_SPECIFICS)

    mode = _select_primary_mode(modes)
    return Diagnosis(
        passage_index=passage.index,
        assigned_query=assigned_query,
        score=score,
        issues=tuple(issues),
        primary_failure_mode=mode,
        fix_priority=_fix_priority(mode, issues),
        expected_improvement=_expected_improvement(mode, score),
        missing_terms=tuple(missing),
        recommended_fix=RECOMMENDED_FIXES[mode],
    )


def diagnose_assignments(
    passages: Sequence[Passage],
    assignment_map: AssignmentMap,
    scores: Dict[Tuple[int, str], int],
) -> List[Diagnosis]:
    """
    Diagnose every passage against the query it was assigned.

    Unassigned passages are diagnosed without a query, using their best
    score across all queries (0 if they were never scored).

    Args:
        passages: Document passages
        assignment_map: Current query assignments
        scores: Relevance score (0-100) keyed by (passage_index, query)

    Returns:
        One Diagnosis per passage, in passage order
    """
    best_by_passage: Dict[int, int] = {}
    for (index, _), value in scores.items():
        best_by_passage[index] = max(best_by_passage.get(index, 0), value)

    diagnoses = []
    for passage in sorted(passages, key=lambda p: p.index):
        query = assignment_map.query_for_passage(passage.index)
        if query is not None:
            score = scores.get((passage.index, query), 0)
        else:
            score = best_by_passage.get(passage.index, 0)
        diagnoses.append(diagnose(passage, query, score))
    return diagnoses


def summarize_fix_priorities(diagnoses: Iterable[Diagnosis]) -> Dict[str, int]:
    """Count diagnoses per fix priority (all priorities present, zero-filled)."""
    counts = {priority.value: 0 for priority in FixPriority}
    for diagnosis in diagnoses:
        counts[diagnosis.fix_priority.value] += 1
    return counts
