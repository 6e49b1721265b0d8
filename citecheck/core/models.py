"""
Data models for the passage relevance engine.

These dataclasses define the structured values passed between the scoring,
assignment, diagnostic and architecture stages. They are frozen: every
analysis run builds fresh records, and user overrides return new records
instead of editing existing ones.

Every record exposes ``to_dict()`` which yields plain JSON-compatible data
(enums as their string values, tuples as lists). ``from_dict()`` rebuilds the
record from that data, so exported results can be re-imported without loss.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from functools import lru_cache
import re
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from numpy.typing import NDArray
from pydantic import TypeAdapter


# Type alias for embedding vectors
Vector = NDArray[np.float32]


def _to_plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return {f.name: _to_plain(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    return value


@lru_cache(maxsize=None)
def _adapter(cls: type) -> TypeAdapter:
    return TypeAdapter(cls)


class Record:
    """Mixin giving frozen dataclasses a plain-data view."""

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        """
        Rebuild a record from ``to_dict()`` output.

        Raises:
            pydantic.ValidationError: If the data does not fit the record
        """
        return _adapter(cls).validate_python(data)


# =============================================================================
# Passages and queries
# =============================================================================

_LEADING_HEADINGS_RE = re.compile(r"^((?:#{1,6}\s+[^\n]+\n+)+)")


def strip_heading_echo(text: str) -> str:
    """
    Remove leading Markdown heading lines echoed at the top of a passage.

    Passages are usually embedded with their heading cascade prepended
    ("# Guide\\n## Install\\nbody..."). Diagnostics look at the body only.
    """
    if not text:
        return ""
    match = _LEADING_HEADINGS_RE.match(text)
    if match:
        return text[match.end():].strip()
    return text.strip()


def estimate_tokens(text: str) -> int:
    """Approximate token count (~4 characters per token for English)."""
    if not text:
        return 0
    return max(1, len(text) // 4)


@dataclass(frozen=True)
class Passage(Record):
    """
    A heading-scoped span of document text, the atomic unit of retrieval.

    Attributes:
        index: Position of this passage in the document (0-indexed, stable)
        heading_path: Ancestor headings, outermost first (may be empty)
        text: Full text including any heading echo
        body_text: Text with the leading heading echo stripped
        token_estimate: Approximate token count of the body
    """
    index: int
    heading_path: Tuple[str, ...]
    text: str
    body_text: str
    token_estimate: int

    @classmethod
    def from_text(
        cls,
        index: int,
        text: str,
        heading_path: Optional[List[str]] = None,
    ) -> "Passage":
        """Build a passage, deriving the body and token estimate from text."""
        body = strip_heading_echo(text)
        return cls(
            index=index,
            heading_path=tuple(heading_path or ()),
            text=text,
            body_text=body,
            token_estimate=estimate_tokens(body),
        )

    @property
    def heading(self) -> Optional[str]:
        """Innermost heading, if any."""
        return self.heading_path[-1] if self.heading_path else None

    @property
    def body(self) -> str:
        """Body text, falling back to the stripped full text."""
        return self.body_text or strip_heading_echo(self.text)


@dataclass(frozen=True)
class Query(Record):
    """
    A target query the document should be retrieved for.

    Attributes:
        text: The query text (also its identity within a run)
        intent_type: Optional intent tag (e.g. "how_to", "comparison")
        is_primary: Whether this is the run's primary query
    """
    text: str
    intent_type: Optional[str] = None
    is_primary: bool = False


@dataclass(frozen=True)
class SimilarityPair(Record):
    """
    Raw similarity signals for one (passage, query) pair.

    Values are expected in [0, 1] but are not validated here; the scorer
    clamps them before use.

    Attributes:
        cosine: Direct semantic relevance
        chamfer: Multi-aspect coverage
    """
    cosine: float
    chamfer: float


# =============================================================================
# Scores
# =============================================================================

class Tier(Enum):
    """Relevance tier, a step function of the 0-100 relevance score."""
    EXCELLENT = "excellent"  # >= 90
    GOOD = "good"            # >= 75
    MODERATE = "moderate"    # >= 60
    WEAK = "weak"            # >= 40
    POOR = "poor"            # < 40


@dataclass(frozen=True)
class PassageScores(Record):
    """
    Normalized relevance (0-1) of one passage against each query.

    Scores are an ordered tuple of (query_text, score) pairs rather than a
    free-form mapping; queries missing from the tuple have no score.
    """
    passage_index: int
    scores: Tuple[Tuple[str, float], ...]

    def score_for(self, query: str) -> Optional[float]:
        """Return the score for a query, or None if it was not scored."""
        for text, score in self.scores:
            if text == query:
                return score
        return None


# =============================================================================
# Assignment
# =============================================================================

@dataclass(frozen=True)
class QueryAssignment(Record):
    """
    Where a query landed after resolution.

    Attributes:
        query: Query text
        assigned_passage_index: Passage serving this query (None = content gap)
        score: Normalized score of the winning pair (0-1), 0.0 for gaps
        is_primary: Whether this is the primary query
        intent_type: Optional intent tag carried from the Query
    """
    query: str
    assigned_passage_index: Optional[int]
    score: float
    is_primary: bool = False
    intent_type: Optional[str] = None

    @property
    def is_assigned(self) -> bool:
        return self.assigned_passage_index is not None


@dataclass(frozen=True)
class PassageAssignment(Record):
    """The query (if any) a passage serves."""
    passage_index: int
    assigned_query: Optional[str] = None


@dataclass(frozen=True)
class AssignmentMap(Record):
    """
    Complete result of query-to-passage resolution.

    Invariant: no query claims two passages and no passage serves two
    queries.

    Attributes:
        assignments: One entry per input query, in input order
        passage_assignments: One entry per input passage, in index order
        unassigned_queries: Queries with no passage meeting the threshold
    """
    assignments: Tuple[QueryAssignment, ...]
    passage_assignments: Tuple[PassageAssignment, ...]
    unassigned_queries: Tuple[str, ...]

    def assignment_for(self, query: str) -> Optional[QueryAssignment]:
        for assignment in self.assignments:
            if assignment.query == query:
                return assignment
        return None

    def query_for_passage(self, passage_index: int) -> Optional[str]:
        for pa in self.passage_assignments:
            if pa.passage_index == passage_index:
                return pa.assigned_query
        return None

    @property
    def assigned(self) -> List[QueryAssignment]:
        """Assignments that landed on a passage."""
        return [a for a in self.assignments if a.is_assigned]


@dataclass(frozen=True)
class OptimizationTarget(Record):
    """
    Advisory metadata for one assigned (passage, query) pair.

    Passages already in the good/excellent tier are marked excluded from
    downstream optimization unless the caller force-includes them.
    """
    passage_index: int
    query: str
    score: int
    tier: Tier
    already_optimal: bool
    excluded: bool


# =============================================================================
# Diagnostics
# =============================================================================

class IssueSeverity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FailureMode(Enum):
    """Dominant reason a passage underperforms for its query."""
    TOPIC_MISMATCH = "topic_mismatch"        # Passage is about the wrong topic
    VOCABULARY_GAP = "vocabulary_gap"        # Missing the query's terms
    MISSING_SPECIFICS = "missing_specifics"  # Right topic but vague
    STRUCTURE_PROBLEM = "structure_problem"  # Content present, poorly organized
    BURIED_ANSWER = "buried_answer"          # Answer exists but not prominent
    NO_DIRECT_ANSWER = "no_direct_answer"    # Doesn't actually answer the query
    ALREADY_OPTIMIZED = "already_optimized"  # Score is fine, leave alone


class FixPriority(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


@dataclass(frozen=True)
class Issue(Record):
    severity: IssueSeverity
    message: str


@dataclass(frozen=True)
class Diagnosis(Record):
    """
    Why a passage scores the way it does for its assigned query.

    Attributes:
        passage_index: Diagnosed passage
        assigned_query: Query the passage serves (None if unassigned)
        score: Relevance score the diagnosis was computed for (0-100)
        issues: Every triggered heuristic, in check order
        primary_failure_mode: Most severe triggered failure mode
        fix_priority: Urgency of addressing the weakness
        expected_improvement: Estimated achievable score gain (points)
        missing_terms: Query terms absent from the passage body
        recommended_fix: One-sentence guidance for the primary failure mode
    """
    passage_index: int
    assigned_query: Optional[str]
    score: int
    issues: Tuple[Issue, ...]
    primary_failure_mode: FailureMode
    fix_priority: FixPriority
    expected_improvement: int
    missing_terms: Tuple[str, ...] = ()
    recommended_fix: str = ""

    @property
    def needs_fix(self) -> bool:
        return self.fix_priority != FixPriority.NONE


# =============================================================================
# Architecture
# =============================================================================

class ArchitectureIssueType(Enum):
    MISPLACED_CONTENT = "MISPLACED_CONTENT"  # Content in the wrong section
    REDUNDANCY = "REDUNDANCY"                # Same information repeated
    BROKEN_ATOMICITY = "BROKEN_ATOMICITY"    # Passage can't stand alone
    TOPIC_INCOHERENCE = "TOPIC_INCOHERENCE"  # One passage, several topics
    COVERAGE_GAP = "COVERAGE_GAP"            # Queries with no good passage
    ORPHANED_MENTION = "ORPHANED_MENTION"    # Topic mentioned, never developed


class Severity(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ArchitectureIssue(Record):
    """
    A document-wide structural defect spanning one or more passages.

    Attributes:
        id: Issue identifier
        type: Defect category
        severity: high/medium/low
        chunk_indices: Affected passage indices (non-empty, ordered, unique)
        description: What is wrong
        recommendation: How to fix it
        impact: Expected effect of the fix
        related_queries: Queries affected by the defect (may be empty)
    """
    id: str
    type: ArchitectureIssueType
    severity: Severity
    chunk_indices: Tuple[int, ...]
    description: str
    recommendation: str
    impact: str
    related_queries: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ArchitectureSummary(Record):
    total_issues: int
    high_priority: int
    medium_priority: int
    low_priority: int
    architecture_score: int
    top_recommendation: Optional[str] = None


@dataclass(frozen=True)
class ArchitectureAnalysis(Record):
    issues: Tuple[ArchitectureIssue, ...]
    summary: ArchitectureSummary


class TaskType(Enum):
    MOVE_CONTENT = "move_content"
    REMOVE_REDUNDANCY = "remove_redundancy"
    REPLACE_PRONOUN = "replace_pronoun"
    ADD_CONTEXT = "add_context"
    SPLIT_PARAGRAPH = "split_paragraph"
    ADD_HEADING = "add_heading"


@dataclass(frozen=True)
class TaskLocation(Record):
    chunk_index: int
    position: Optional[str] = None


@dataclass(frozen=True)
class TaskDetails(Record):
    suggested_heading: Optional[str] = None


@dataclass(frozen=True)
class ArchitectureTask(Record):
    """
    An actionable remediation step derived from an architecture issue.

    ``issue_id`` is a back-reference; tasks do not own their issue.
    """
    id: str
    type: TaskType
    issue_id: str
    description: str
    location: TaskLocation
    priority: Severity
    expected_impact: str
    is_selected: bool = False
    details: TaskDetails = field(default_factory=TaskDetails)
