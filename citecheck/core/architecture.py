"""
Document architecture analysis.

Structural defects (misplaced content, redundancy, broken atomicity, topic
incoherence, coverage gaps, orphaned mentions) need whole-document judgment,
which is delegated to an external reasoning service. This module owns
everything around that call:

1. Build the request deterministically from the document, passages,
   queries and scores.
2. Validate the response issue by issue, dropping anything malformed.
3. Summarize the validated issues.
4. Guard the asynchronous call with an epoch counter so only the most
   recently triggered analysis can commit, and a failure never replaces
   a previously accepted analysis.

This module does NOT:
- Decide what counts as a structural defect (the service does)
- Turn issues into tasks (see citecheck.core.tasks)
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from citecheck.core.assignment import QueryLike, normalize_queries
from citecheck.core.config import ARCHITECTURE_SEVERITY_PENALTY, get_settings
from citecheck.core.logging import log_with_context
from citecheck.core.models import (
    ArchitectureAnalysis,
    ArchitectureIssue,
    ArchitectureIssueType,
    ArchitectureSummary,
    Passage,
    PassageScores,
    Record,
    Severity,
)
from citecheck.core.scoring import clamp_unit

logger = logging.getLogger(__name__)


class ArchitectureAnalysisError(Exception):
    """
    Raised when an architecture analysis cannot be completed.

    Attributes:
        retryable: Whether re-running the same analysis may succeed
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class AnalysisCancelledError(Exception):
    """Raised when an analysis was superseded or cancelled before committing."""
    pass


# =============================================================================
# Request
# =============================================================================

@dataclass(frozen=True)
class ArchitectureRequest(Record):
    """
    Everything the reasoning service needs about one document.

    Attributes:
        document_text: Original document text (not reassembled from passages)
        chunk_bodies: Passage bodies, in passage index order
        chunk_heading_paths: Heading path per passage
        queries: Target query texts, in run order
        per_chunk_scores: Per passage, (query, normalized score) in query order
    """
    document_text: str
    chunk_bodies: Tuple[str, ...]
    chunk_heading_paths: Tuple[Tuple[str, ...], ...]
    queries: Tuple[str, ...]
    per_chunk_scores: Tuple[Tuple[Tuple[str, float], ...], ...]

    def to_payload(self) -> dict:
        """JSON request body for the reasoning service."""
        return {
            "documentText": self.document_text,
            "chunkBodies": list(self.chunk_bodies),
            "chunkHeadingPaths": [list(path) for path in self.chunk_heading_paths],
            "queries": list(self.queries),
            "perChunkScores": [
                {query: score for query, score in row}
                for row in self.per_chunk_scores
            ],
        }


def build_architecture_request(
    document_text: str,
    passages: Sequence[Passage],
    queries: Sequence[QueryLike],
    score_matrix: Sequence[PassageScores],
) -> ArchitectureRequest:
    """
    Package the analysis inputs into a deterministic request.

    Passages are ordered by index; scores are listed in query order and
    scores for unknown queries are ignored. Missing scores are sent as 0.0.

    Args:
        document_text: The original document text
        passages: Document passages
        queries: Target queries
        score_matrix: Normalized scores per passage

    Returns:
        ArchitectureRequest
    """
    ordered = sorted(passages, key=lambda p: p.index)
    query_texts = tuple(q.text for q in normalize_queries(queries))
    scores_by_passage = {ps.passage_index: ps for ps in score_matrix}

    per_chunk = []
    for passage in ordered:
        ps = scores_by_passage.get(passage.index)
        row = []
        for query in query_texts:
            raw = ps.score_for(query) if ps is not None else None
            row.append((query, clamp_unit(raw) if raw is not None else 0.0))
        per_chunk.append(tuple(row))

    return ArchitectureRequest(
        document_text=document_text or "",
        chunk_bodies=tuple(p.body for p in ordered),
        chunk_heading_paths=tuple(p.heading_path for p in ordered),
        queries=query_texts,
        per_chunk_scores=tuple(per_chunk),
    )


# =============================================================================
# Response validation
# =============================================================================

class _IssuePayload(BaseModel):
    """Wire shape of one issue returned by the reasoning service."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    type: ArchitectureIssueType
    severity: Severity
    chunk_indices: List[int] = Field(alias="chunkIndices", min_length=1)
    description: str
    recommendation: str = ""
    impact: str = ""
    related_queries: List[str] = Field(default_factory=list, alias="relatedQueries")

    @field_validator("type", mode="before")
    @classmethod
    def _upper_type(cls, value: Any) -> Any:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("severity", mode="before")
    @classmethod
    def _lower_severity(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


def _strip_code_fences(raw_output: str) -> str:
    """Strip Markdown code fences (```json ... ```) from a text response."""
    cleaned = raw_output.strip()
    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        return fence_match.group(1).strip()
    return cleaned


def _coerce_issue(raw: Any, position: int, chunk_count: int) -> Optional[ArchitectureIssue]:
    """Validate one raw issue; returns None when it must be dropped."""
    try:
        payload = _IssuePayload.model_validate(raw)
    except ValidationError as e:
        log_with_context(
            logger, logging.WARNING, "Dropping malformed architecture issue",
            position=position, errors=e.error_count(),
        )
        return None

    indices: List[int] = []
    for index in payload.chunk_indices:
        if index not in indices:
            indices.append(index)
    out_of_range = [i for i in indices if i < 0 or i >= chunk_count]
    if out_of_range:
        log_with_context(
            logger, logging.WARNING, "Dropping architecture issue with out-of-range chunks",
            position=position, chunks=out_of_range,
        )
        return None

    return ArchitectureIssue(
        id=payload.id or f"issue-{position}",
        type=payload.type,
        severity=payload.severity,
        chunk_indices=tuple(indices),
        description=payload.description,
        recommendation=payload.recommendation,
        impact=payload.impact,
        related_queries=tuple(payload.related_queries),
    )


def summarize_issues(issues: Sequence[ArchitectureIssue]) -> ArchitectureSummary:
    """
    Compute summary statistics purely from a validated issue list.

    The architecture score starts at 100 and loses a fixed number of points
    per issue by severity, floored at 0.
    """
    counts = {severity: 0 for severity in Severity}
    for issue in issues:
        counts[issue.severity] += 1

    penalty = sum(
        counts[severity] * ARCHITECTURE_SEVERITY_PENALTY[severity.value]
        for severity in Severity
    )

    top = next((i for i in issues if i.severity == Severity.HIGH), None)
    if top is None and issues:
        top = issues[0]

    return ArchitectureSummary(
        total_issues=len(issues),
        high_priority=counts[Severity.HIGH],
        medium_priority=counts[Severity.MEDIUM],
        low_priority=counts[Severity.LOW],
        architecture_score=max(0, min(100, 100 - penalty)),
        top_recommendation=top.recommendation if top is not None else None,
    )


def parse_architecture_response(
    raw: Union[Mapping[str, Any], str],
    chunk_count: int,
) -> ArchitectureAnalysis:
    """
    Turn a reasoning-service response into a validated analysis.

    Accepts either a decoded mapping or raw text (optionally wrapped in a
    Markdown code fence). A top-level ``result`` wrapper is unwrapped.
    Individual malformed issues are dropped; a response without an
    ``issues`` list is rejected as a whole.

    Args:
        raw: Service response
        chunk_count: Number of passages the request described

    Returns:
        ArchitectureAnalysis built only from valid issues

    Raises:
        ArchitectureAnalysisError: If the response cannot be parsed
    """
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        try:
            data = json.loads(_strip_code_fences(text))
        except json.JSONDecodeError as e:
            raise ArchitectureAnalysisError(f"Reasoning service returned invalid JSON: {e}")

    if isinstance(data, Mapping) and isinstance(data.get("result"), Mapping):
        data = data["result"]

    if not isinstance(data, Mapping) or not isinstance(data.get("issues"), list):
        raise ArchitectureAnalysisError("Reasoning service response has no issues list")

    issues = []
    for position, raw_issue in enumerate(data["issues"]):
        issue = _coerce_issue(raw_issue, position, chunk_count)
        if issue is not None:
            issues.append(issue)

    dropped = len(data["issues"]) - len(issues)
    if dropped:
        logger.warning("Dropped %d of %d architecture issues", dropped, len(data["issues"]))

    return ArchitectureAnalysis(issues=tuple(issues), summary=summarize_issues(issues))


# =============================================================================
# Reasoning service
# =============================================================================

class StructuralReasoningService(Protocol):
    """External service that judges document structure."""

    async def analyze(self, request: ArchitectureRequest) -> Union[Mapping[str, Any], str]:
        ...


class HttpReasoningService:
    """
    Reasoning service reached over HTTP.

    Posts the request payload with ``type: analyze_architecture`` and
    returns the decoded JSON body.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.url = url or settings.REASONING_URL
        self.api_key = api_key or settings.REASONING_API_KEY
        self.timeout = timeout or settings.REASONING_TIMEOUT

    async def analyze(self, request: ArchitectureRequest) -> Mapping[str, Any]:
        """
        Send one analysis request.

        Raises:
            ArchitectureAnalysisError: If no endpoint is configured
            httpx.HTTPStatusError: If the service answers with an error status
        """
        if not self.url:
            raise ArchitectureAnalysisError(
                "CITECHECK_REASONING_URL not configured", retryable=False
            )

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        body = {"type": "analyze_architecture", **request.to_payload()}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, headers=headers, json=body)
            response.raise_for_status()
            return response.json()


# =============================================================================
# Analyzer
# =============================================================================

class ArchitectureAnalyzer:
    """
    Runs architecture analyses for one document, last-triggered-wins.

    Every call to analyze() starts a new epoch and cancels the call in
    flight. A response is committed to ``current`` only if its epoch is
    still the latest, so a slow stale response can never overwrite a newer
    one. Failures leave ``current`` untouched.
    """

    def __init__(self, service: StructuralReasoningService):
        self._service = service
        self._epoch = 0
        self._inflight: Optional[asyncio.Future] = None
        self.current: Optional[ArchitectureAnalysis] = None

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_analyzing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def cancel(self) -> None:
        """Invalidate the in-flight analysis, if any. Committed state is kept."""
        self._epoch += 1
        if self.is_analyzing:
            self._inflight.cancel()
            logger.info("Architecture analysis cancelled")

    async def analyze(
        self,
        document_text: str,
        passages: Sequence[Passage],
        queries: Sequence[QueryLike],
        score_matrix: Sequence[PassageScores],
    ) -> ArchitectureAnalysis:
        """
        Analyze the document's structure and commit the result.

        Args:
            document_text: Original document text
            passages: Document passages
            queries: Target queries
            score_matrix: Normalized scores per passage

        Returns:
            The committed ArchitectureAnalysis

        Raises:
            ArchitectureAnalysisError: If the service fails or its response
                                       cannot be parsed
            AnalysisCancelledError: If a newer analysis or cancel() superseded
                                    this one
        """
        request = build_architecture_request(document_text, passages, queries, score_matrix)

        if self.is_analyzing:
            self._inflight.cancel()
        self._epoch += 1
        epoch = self._epoch

        call = asyncio.ensure_future(self._service.analyze(request))
        self._inflight = call
        log_with_context(
            logger, logging.INFO, "Architecture analysis started",
            epoch=epoch, chunks=len(request.chunk_bodies), queries=len(request.queries),
        )

        try:
            raw = await call
        except asyncio.CancelledError:
            if epoch != self._epoch:
                raise AnalysisCancelledError(f"Analysis {epoch} was superseded")
            raise
        except ArchitectureAnalysisError:
            if epoch != self._epoch:
                raise AnalysisCancelledError(f"Analysis {epoch} was superseded")
            raise
        except Exception as e:
            if epoch != self._epoch:
                raise AnalysisCancelledError(f"Analysis {epoch} was superseded")
            logger.error("Architecture analysis failed: %s", e)
            raise ArchitectureAnalysisError(f"Reasoning service failed: {e}") from e
        finally:
            if self._inflight is call:
                self._inflight = None

        if epoch != self._epoch:
            logger.debug("Discarding stale architecture response for epoch %d", epoch)
            raise AnalysisCancelledError(f"Analysis {epoch} was superseded")

        analysis = parse_architecture_response(raw, len(request.chunk_bodies))
        self.current = analysis
        log_with_context(
            logger, logging.INFO, "Architecture analysis committed",
            epoch=epoch, issues=analysis.summary.total_issues,
        )
        return analysis
