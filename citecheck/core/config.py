"""
Engine constants and environment settings.

Scoring weights, tier thresholds and diagnostic limits are module-level
constants so every caller sees the same numbers. They are heuristics
calibrated against observed retrieval behavior, not ground truth.

Runtime settings for the external services (reasoning endpoint, embedding
model, batch concurrency) are read from the environment with a
``CITECHECK_`` prefix.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Relevance scoring
# =============================================================================

# Weight of each similarity signal in the relevance score.
# Cosine carries direct topical relevance; chamfer penalizes passages that
# cover one facet of a multi-part query and ignore the rest.
SCORE_WEIGHTS = {
    "cosine": 0.7,
    "chamfer": 0.3,
}

# Lower bound (inclusive) of each tier on the 0-100 relevance scale
TIER_THRESHOLDS = {
    "excellent": 90,
    "good": 75,
    "moderate": 60,
    "weak": 40,
    # < 40: poor
}


# =============================================================================
# Query assignment
# =============================================================================

# Minimum normalized score (0-1) a pair needs to be assignable
DEFAULT_ASSIGNMENT_THRESHOLD = 0.3


# =============================================================================
# Diagnostics
# =============================================================================

# Passages scoring at or above this are not diagnosed
DIAGNOSIS_SCORE_CEILING = 60

SHORT_CONTENT_CHARS = 200
PRONOUN_LIMIT = 3
MIN_QUERY_TERM_LENGTH = 4
MAX_LISTED_MISSING_TERMS = 3

# Estimated achievable gain per primary failure mode.
# Strictly decreasing with failure-mode precedence.
EXPECTED_IMPROVEMENT_POINTS = {
    "topic_mismatch": 30,
    "vocabulary_gap": 25,
    "missing_specifics": 18,
    "structure_problem": 12,
    "buried_answer": 8,
    "no_direct_answer": 5,
    "already_optimized": 0,
}


# =============================================================================
# Architecture analysis
# =============================================================================

# Points deducted from the architecture score per issue severity
ARCHITECTURE_SEVERITY_PENALTY = {
    "high": 15,
    "medium": 8,
    "low": 3,
}


@dataclass(frozen=True)
class EngineConfig:
    """
    Per-run overrides for the analysis engine.

    Attributes:
        assignment_threshold: Minimum normalized score for an assignment (0-1)
        force_include: Passage indices to keep as optimization targets even
                       when they already score in the good/excellent tier
    """
    assignment_threshold: float = DEFAULT_ASSIGNMENT_THRESHOLD
    force_include: Tuple[int, ...] = ()


DEFAULT_ENGINE_CONFIG = EngineConfig()


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CITECHECK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    REASONING_URL: Optional[str] = Field(
        default=None, description="Endpoint of the structural reasoning service"
    )
    REASONING_API_KEY: Optional[str] = Field(
        default=None, description="Bearer token for the reasoning service"
    )
    REASONING_TIMEOUT: float = Field(
        default=60.0, gt=0.0, description="Reasoning request timeout in seconds"
    )
    EMBEDDING_MODEL: str = Field(
        default="BAAI/bge-base-en-v1.5", description="sentence-transformers model"
    )
    BATCH_CONCURRENCY: int = Field(
        default=3, ge=1, description="Max queries optimized at once"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Log level for citecheck loggers")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
