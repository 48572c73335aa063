"""
Hybrid Search Engine - semantic retrieval with a substring fallback.

Results come in two strictly ordered tiers:

1. vector hits, most similar first (similarity = 1 - distance)
2. substring matches, newest first, filling whatever the vector tier left

Half the limit (rounded up) is offered to the vector index. When the index
is degraded the vector tier is empty and the text tier fills the whole
limit, so callers see a plain text search and no error. Scores from the two
tiers are never compared with each other.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import settings
from .embedding_store import EmbeddingStoreClient
from .entry_store import EntryStore
from .errors import EntryValidationError
from .models import KnowledgeEntry, entry_to_dict

logger = logging.getLogger(__name__)

SOURCE_VECTOR = "vector"
SOURCE_TEXT = "text"


@dataclass
class SearchResult:
    """One ranked hit. similarity is only set for vector-sourced hits."""
    entry: KnowledgeEntry
    source: str
    similarity: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = entry_to_dict(self.entry)
        result = {
            "id": data["id"],
            "title": data["title"],
            "tags": data["tags"],
            "contentType": data["contentType"],
            "createdAt": data["createdAt"],
            "source": self.source,
        }
        if self.similarity is not None:
            result["similarity"] = round(self.similarity, 4)
        return result


def validate_query(query: Any, limit: Any, max_limit: Optional[int] = None) -> str:
    """Reject malformed search input. Returns the stripped query."""
    max_limit = max_limit or settings.max_search_limit

    if not isinstance(query, str) or not query.strip():
        raise EntryValidationError("Search query is required")
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise EntryValidationError(f"limit must be an integer, got {limit!r}")
    if limit < 1 or limit > max_limit:
        raise EntryValidationError(f"limit must be between 1 and {max_limit}, got {limit}")

    return query.strip()


class HybridSearchEngine:
    """Combines vector and substring retrieval into one bounded ranking."""

    def __init__(self, entry_store: EntryStore, embedding_client: EmbeddingStoreClient):
        self.entries = entry_store
        self.vectors = embedding_client

    async def _vector_tier(self, query: str, owner_id: str, budget: int) -> List[SearchResult]:
        hits = self.vectors.query_nearest(query, budget, owner_id)
        if not hits:
            return []

        resolved = await self.entries.get_by_vector_ids((h.id for h in hits), owner_id)

        results: List[SearchResult] = []
        seen = set()
        for hit in hits:
            entry = resolved.get(hit.id)
            # Deleted, foreign, or stale vectors are skipped, not reported
            if entry is None or entry.id in seen:
                continue
            seen.add(entry.id)
            results.append(SearchResult(
                entry=entry,
                source=SOURCE_VECTOR,
                similarity=1.0 - hit.distance,
            ))

        skipped = len(hits) - len(results)
        if skipped:
            logger.debug(f"Skipped {skipped} vector hit(s) with no matching entry")

        # Stable sort keeps the backend's order among equal similarities
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results

    async def search(self, query: str, owner_id: str, limit: int = 10) -> List[SearchResult]:
        """
        Hybrid search for the owner's entries.

        Returns at most limit results, vector tier first, no id repeated.
        """
        query = validate_query(query, limit)

        vector_budget = math.ceil(limit / 2)
        results = await self._vector_tier(query, owner_id, vector_budget)

        remaining = limit - len(results)
        if remaining > 0:
            text_matches = await self.entries.find_by_text(
                owner_id,
                query,
                exclude_ids=[r.entry.id for r in results],
                limit=remaining,
            )
            results.extend(SearchResult(entry=e, source=SOURCE_TEXT) for e in text_matches)

        logger.info(
            f"Search '{query[:40]}' returned {len(results)} result(s) "
            f"(vector store {self.vectors.state.value})"
        )
        return results[:limit]

    async def vector_search(self, query: str, owner_id: str, limit: int = 10) -> List[SearchResult]:
        """Semantic-only search. Empty when the vector store is degraded."""
        query = validate_query(query, limit)
        results = await self._vector_tier(query, owner_id, limit)
        return results[:limit]
