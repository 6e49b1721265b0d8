"""
CiteCheck - Passage Relevance and Document Architecture Engine

Scores how likely each passage of a document is to be retrieved for a set
of target queries, assigns queries to passages one-to-one, diagnoses weak
passages and turns structural analysis into selectable remediation tasks.
"""

from citecheck.core.engine import (
    analyze_passages,
    analyze_document,
    reassign,
    PassageAnalysisReport,
    EngineError,
)
from citecheck.core.models import (
    Passage,
    Query,
    SimilarityPair,
    Tier,
    AssignmentMap,
    QueryAssignment,
    PassageAssignment,
    OptimizationTarget,
    Diagnosis,
    FailureMode,
    FixPriority,
    ArchitectureIssue,
    ArchitectureAnalysis,
    ArchitectureTask,
    TaskType,
)
from citecheck.core.scoring import passage_score, score_tier
from citecheck.core.assignment import (
    resolve_assignments,
    reassign_query,
    select_optimization_targets,
    AssignmentInvariantError,
)
from citecheck.core.diagnostics import diagnose, diagnose_assignments
from citecheck.core.architecture import (
    ArchitectureAnalyzer,
    HttpReasoningService,
    ArchitectureAnalysisError,
    AnalysisCancelledError,
    parse_architecture_response,
)
from citecheck.core.tasks import generate_tasks
from citecheck.core.batch import run_batch, BatchPhase, BatchProgress, BatchResult
from citecheck.core.logging import configure_logging

__version__ = "0.1.0"
__all__ = [
    # Engine
    "analyze_passages",
    "analyze_document",
    "reassign",
    "PassageAnalysisReport",
    "EngineError",
    # Scoring
    "passage_score",
    "score_tier",
    "Tier",
    "Passage",
    "Query",
    "SimilarityPair",
    # Assignment
    "resolve_assignments",
    "reassign_query",
    "select_optimization_targets",
    "AssignmentInvariantError",
    "AssignmentMap",
    "QueryAssignment",
    "PassageAssignment",
    "OptimizationTarget",
    # Diagnostics
    "diagnose",
    "diagnose_assignments",
    "Diagnosis",
    "FailureMode",
    "FixPriority",
    # Architecture
    "ArchitectureAnalyzer",
    "HttpReasoningService",
    "ArchitectureAnalysisError",
    "AnalysisCancelledError",
    "parse_architecture_response",
    "ArchitectureIssue",
    "ArchitectureAnalysis",
    "ArchitectureTask",
    "TaskType",
    "generate_tasks",
    # Batch
    "run_batch",
    "BatchPhase",
    "BatchProgress",
    "BatchResult",
    # Logging
    "configure_logging",
]
