"""
Embedding generation using sentence-transformers.

This module turns passages and queries into vector embeddings with local
sentence-transformer models and exposes them as a SimilarityProvider.
All processing is done locally with no external API calls.

The model defaults to ``CITECHECK_EMBEDDING_MODEL`` (BAAI/bge-base-en-v1.5,
768 dimensions). Embeddings are L2-normalized, so cosine similarity equals
the dot product.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np
from sentence_transformers import SentenceTransformer

from citecheck.core.config import get_settings
from citecheck.core.models import Passage, Query, SimilarityPair, Vector
from citecheck.core.similarity import compute_similarity_pairs

logger = logging.getLogger(__name__)

# Module-level model cache to avoid reloading
_model_cache: dict[str, SentenceTransformer] = {}


class EmbeddingError(Exception):
    """Raised when embedding generation fails."""
    pass


def _resolve_model_name(model_name: Optional[str]) -> str:
    return model_name or get_settings().EMBEDDING_MODEL


def _get_model(model_name: str) -> SentenceTransformer:
    """
    Get or load a sentence-transformer model.

    Models are cached at module level. The first load downloads the model
    unless sentence-transformers already has it cached locally.

    Raises:
        EmbeddingError: If model cannot be loaded
    """
    if model_name not in _model_cache:
        logger.info("Loading embedding model %s", model_name)
        try:
            _model_cache[model_name] = SentenceTransformer(model_name)
        except Exception as e:
            raise EmbeddingError(f"Failed to load model '{model_name}': {e}")
    return _model_cache[model_name]


def embed_texts(
    texts: List[str],
    model_name: Optional[str] = None,
    batch_size: int = 32,
) -> List[Vector]:
    """
    Generate embedding vectors for multiple texts in one batched call.

    Args:
        texts: Texts to embed
        model_name: sentence-transformer model (default from settings)
        batch_size: Number of texts to process at once

    Returns:
        List of embedding vectors, same order as input texts

    Raises:
        EmbeddingError: If any text is empty or embedding fails
    """
    if not texts:
        raise EmbeddingError("Cannot embed empty list of texts")

    for i, text in enumerate(texts):
        if not text or not text.strip():
            raise EmbeddingError(f"Text at index {i} is empty")

    model = _get_model(_resolve_model_name(model_name))

    try:
        embeddings = model.encode(
            texts,
            convert_to_numpy=True,
            normalize_embeddings=True,
            batch_size=batch_size,
            show_progress_bar=False,
        )
        return [np.asarray(emb).astype(np.float32) for emb in embeddings]
    except Exception as e:
        raise EmbeddingError(f"Failed to generate embeddings: {e}")


class EmbeddingSimilarityProvider:
    """
    SimilarityProvider backed by local sentence-transformer embeddings.

    Passages are embedded with their heading context (``Passage.text``).
    Cosine is per pair; chamfer is the document-level coverage value
    computed across all passages and queries.
    """

    def __init__(self, model_name: Optional[str] = None, batch_size: int = 32):
        self.model_name = _resolve_model_name(model_name)
        self.batch_size = batch_size

    def similarities(
        self,
        passages: Sequence[Passage],
        queries: Sequence[Query],
    ) -> List[List[SimilarityPair]]:
        if not passages:
            return []
        if not queries:
            return [[] for _ in passages]

        passage_vecs = embed_texts(
            [p.text for p in passages], self.model_name, self.batch_size
        )
        query_vecs = embed_texts(
            [q.text for q in queries], self.model_name, self.batch_size
        )
        logger.debug(
            "Embedded %d passages and %d queries with %s",
            len(passage_vecs), len(query_vecs), self.model_name,
        )
        return compute_similarity_pairs(passage_vecs, query_vecs)
