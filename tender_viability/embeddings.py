"""
embeddings.py — Optional sentence-transformers embedder.

Nothing in the matching engine requires vectors. When EMBEDDINGS_ENABLED
is off, or the model cannot be loaded, callers pass embedder=None and the
lexical path runs on its own.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional, Protocol, Sequence

import numpy as np

from tender_viability.config import config

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    def embed(self, text: str) -> List[float]: ...

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]: ...


class SentenceTransformerEmbedder:
    """
    Lazy wrapper around SentenceTransformer.

    The model is loaded on first use, not at construction, so building a
    pipeline in tests or in the API process does not pull ~500MB of
    weights unless something actually embeds.
    """

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or config.embedding.model_name
        self._model = None
        self._lock = threading.Lock()

    def _get_model(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer

                logger.info("Loading embedding model: %s ...", self.model_name)
                self._model = SentenceTransformer(self.model_name)
                logger.info("Embedding model loaded (dim=%d).",
                            self._model.get_sentence_embedding_dimension())
        return self._model

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []
        vectors = self._get_model().encode(
            list(texts), normalize_embeddings=True, show_progress_bar=False,
        )
        return [v.tolist() for v in np.asarray(vectors, dtype="float32")]


def build_embedder() -> Optional[Embedder]:
    """The configured embedder, or None when vectors are switched off."""
    if not config.embedding.enabled:
        logger.info("Embeddings disabled; lexical matching only.")
        return None
    return SentenceTransformerEmbedder()


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of two vectors; 0.0 for empty or zero-norm input."""
    va = np.asarray(a, dtype="float32")
    vb = np.asarray(b, dtype="float32")
    if va.size == 0 or vb.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom < 1e-12:
        return 0.0
    return float(np.dot(va, vb) / denom)


def min_max_normalize(arr: np.ndarray) -> np.ndarray:
    """Normalize to [0, 1]. Returns zeros if all values identical."""
    if arr.size == 0:
        return arr
    mn, mx = arr.min(), arr.max()
    if mx - mn < 1e-9:
        return np.zeros_like(arr)
    return (arr - mn) / (mx - mn)
