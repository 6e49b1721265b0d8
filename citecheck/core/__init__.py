"""
Core passage relevance engine.

This module provides the foundational logic for:
- Relevance scoring and tiers
- One-to-one query-to-passage assignment
- Passage diagnostics
- Document architecture analysis and remediation tasks
- Bounded-concurrency batch processing
"""

from citecheck.core.scoring import passage_score, score_tier
from citecheck.core.assignment import resolve_assignments, reassign_query
from citecheck.core.diagnostics import diagnose
from citecheck.core.engine import analyze_passages, reassign, EngineError
from citecheck.core.architecture import ArchitectureAnalyzer
from citecheck.core.tasks import generate_tasks
from citecheck.core.batch import run_batch
from citecheck.core.models import (
    Passage,
    Query,
    SimilarityPair,
    AssignmentMap,
    Diagnosis,
    ArchitectureAnalysis,
    ArchitectureTask,
)

__all__ = [
    # Scoring and assignment
    "passage_score",
    "score_tier",
    "resolve_assignments",
    "reassign_query",
    "analyze_passages",
    "reassign",
    "EngineError",
    "Passage",
    "Query",
    "SimilarityPair",
    "AssignmentMap",
    # Diagnostics
    "diagnose",
    "Diagnosis",
    # Architecture
    "ArchitectureAnalyzer",
    "ArchitectureAnalysis",
    "generate_tasks",
    "ArchitectureTask",
    # Batch
    "run_batch",
]
