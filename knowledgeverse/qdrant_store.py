"""
Qdrant Vector Store - Persistent vector backend for knowledge entries.

This module provides:
- Persistent vector storage using Qdrant (local file mode, or a remote server)
- Text-in, ids-out interface: embedding happens here, callers only pass text

The store uses sentence-transformers embeddings with cosine similarity.
Qdrant reports cosine *scores*; callers work in distances, so results are
converted with distance = 1 - score.
"""

import logging
from typing import Callable, List, Optional, Tuple

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from . import vectors

logger = logging.getLogger(__name__)


class QdrantVectorStore:
    """
    Vector storage backend using Qdrant.

    Point ids are the entry UUIDs, so re-upserting an entry overwrites its
    vector in place.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        collection: str = "knowledge_entries",
        dimension: int = 384,
        embed: Optional[Callable[[str], List[float]]] = None,
    ):
        """
        Initialize the Qdrant vector store.

        Args:
            path: Directory path for local Qdrant storage (file-based mode).
            url: Remote Qdrant URL. Takes precedence over path.
            api_key: API key for remote Qdrant.
            collection: Collection holding entry vectors.
            dimension: Embedding dimension of the configured model.
            embed: Text -> vector function; defaults to vectors.encode.
        """
        if url:
            logger.info(f"Connecting to remote Qdrant at: {url}")
            self.client = QdrantClient(url=url, api_key=api_key)
        else:
            logger.info(f"Initializing Qdrant vector store at: {path}")
            self.client = QdrantClient(path=path)

        self.collection = collection
        self.dimension = dimension
        self._embed = embed or vectors.encode
        self._ensure_collection()

    def _ensure_collection(self) -> None:
        """Ensure the collection exists with proper configuration."""
        collections = [c.name for c in self.client.get_collections().collections]

        if self.collection not in collections:
            logger.info(f"Creating collection: {self.collection}")
            self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(
                    size=self.dimension,
                    distance=Distance.COSINE
                )
            )

    def upsert(self, point_id: str, text: str, metadata: dict) -> None:
        """
        Store or update the vector for an entry.

        Args:
            point_id: Entry UUID used as the Qdrant point id.
            text: Text to embed.
            metadata: Payload data (title, contentType, tags, ownerId, ...).
        """
        self.client.upsert(
            collection_name=self.collection,
            points=[PointStruct(
                id=point_id,
                vector=self._embed(text),
                payload=metadata
            )]
        )

    def query(
        self, text: str, limit: int, owner_id: Optional[str] = None
    ) -> List[Tuple[str, float]]:
        """
        Nearest-neighbour search by text.

        Args:
            text: Query text to embed.
            limit: Maximum number of points to return.
            owner_id: Restrict to points whose ownerId payload matches.

        Returns:
            List of (point_id, distance) tuples, closest first.
        """
        query_filter = None
        if owner_id is not None:
            query_filter = Filter(must=[
                FieldCondition(key="ownerId", match=MatchValue(value=owner_id))
            ])

        response = self.client.query_points(
            collection_name=self.collection,
            query=self._embed(text),
            query_filter=query_filter,
            limit=limit
        )

        # Qdrant sorts by score descending, which is distance ascending
        return [(str(point.id), 1.0 - point.score) for point in response.points]

    def delete(self, point_id: str) -> None:
        """Remove an entry's vector from the store."""
        self.client.delete(
            collection_name=self.collection,
            points_selector=PointIdsList(points=[point_id])
        )

    def count(self) -> int:
        """Number of vectors in the collection."""
        info = self.client.get_collection(self.collection)
        return info.points_count or 0

    def close(self) -> None:
        """Close the Qdrant client connection."""
        self.client.close()
