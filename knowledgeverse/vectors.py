"""
Vector Embeddings - Semantic understanding with sentence-transformers.

This module provides:
- Lazy loading of the embedding model (shared across the process)
- Text -> embedding encoding
- An in-memory vector backend for single-process use and tests
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from sentence_transformers import SentenceTransformer
import numpy as np

from .config import settings

logger = logging.getLogger(__name__)

# Global model instance (lazy loaded)
_model: Optional[SentenceTransformer] = None


def _get_model() -> SentenceTransformer:
    """Get or create the embedding model."""
    global _model

    if _model is None:
        logger.info(f"Loading embedding model ({settings.embedding_model})...")
        _model = SentenceTransformer(settings.embedding_model)
        logger.info("Embedding model loaded.")

    return _model


def encode(text: str) -> List[float]:
    """Encode text to a vector embedding."""
    embedding = _get_model().encode(text, convert_to_numpy=True)
    return embedding.tolist()


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """Compute cosine similarity between two vectors."""
    a = np.array(vec1)
    b = np.array(vec2)

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a, b) / (norm_a * norm_b))


class InMemoryVectorStore:
    """
    Process-local vector backend.

    Stores vectors keyed by id and answers nearest-neighbour queries by
    brute-force cosine distance. Nothing survives a restart.
    """

    def __init__(self, embed: Optional[Callable[[str], List[float]]] = None):
        self._embed = embed or encode
        self.vectors: Dict[str, List[float]] = {}
        self.payloads: Dict[str, dict] = {}

    def upsert(self, point_id: str, text: str, metadata: dict) -> None:
        # Re-indexing overwrites in place
        self.vectors[point_id] = list(self._embed(text))
        self.payloads[point_id] = dict(metadata)

    def delete(self, point_id: str) -> None:
        self.vectors.pop(point_id, None)
        self.payloads.pop(point_id, None)

    def query(
        self, text: str, limit: int, owner_id: Optional[str] = None
    ) -> List[Tuple[str, float]]:
        """Return up to limit (id, distance) pairs, closest first."""
        candidates = {
            point_id: vec for point_id, vec in self.vectors.items()
            if owner_id is None or self.payloads[point_id].get("ownerId") == owner_id
        }
        if not candidates:
            return []

        query_vec = self._embed(text)
        results = [
            (point_id, 1.0 - cosine_similarity(query_vec, vec))
            for point_id, vec in candidates.items()
        ]
        results.sort(key=lambda x: x[1])
        return results[:limit]

    def count(self) -> int:
        return len(self.vectors)

    def close(self) -> None:
        self.vectors.clear()
        self.payloads.clear()

    def __len__(self) -> int:
        return len(self.vectors)
