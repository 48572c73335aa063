"""
Embedding Store Client - availability-guarding wrapper around a vector backend.

The vector index is an optional enhancement. Every method here is total:
backend failures are logged, flip the client to DEGRADED, and turn into a
neutral return value (the input id, None, or an empty hit list). Nothing
raises to the caller.

States:
    UNINITIALIZED -> AVAILABLE   first successful lazy connection
    any           -> DEGRADED    any backend exception (sticky for the process)

DEGRADED never recovers on its own; the process stays in text-only mode
until restart.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Tuple

from .config import Settings

logger = logging.getLogger(__name__)


class VectorStoreState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    AVAILABLE = "available"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class VectorHit:
    """A nearest-neighbour hit: vector id plus distance (smaller is closer)."""
    id: str
    distance: float


class VectorBackend(Protocol):
    """Contract any vector index must satisfy to sit behind the client."""

    def upsert(self, point_id: str, text: str, metadata: dict) -> None: ...

    def delete(self, point_id: str) -> None: ...

    def query(
        self, text: str, limit: int, owner_id: Optional[str] = None
    ) -> List[Tuple[str, float]]: ...

    def count(self) -> int: ...

    def close(self) -> None: ...


class EmbeddingStoreClient:
    """
    Single process-wide handle on the vector backend.

    Construct once and pass it explicitly to whatever indexes or searches.
    The state attribute is the only shared mutable field; concurrent
    failures may both flip it to DEGRADED, which is harmless.
    """

    def __init__(
        self,
        backend_factory: Optional[Callable[[], VectorBackend]],
        enabled: bool = True,
    ):
        self._factory = backend_factory
        self._backend: Optional[VectorBackend] = None
        self._state = VectorStoreState.UNINITIALIZED

        if not enabled or backend_factory is None:
            logger.info("Vector search disabled, running in text-only mode")
            self._state = VectorStoreState.DEGRADED

    @property
    def state(self) -> VectorStoreState:
        return self._state

    @property
    def is_available(self) -> bool:
        """True unless the client has degraded. UNINITIALIZED counts as available."""
        return self._state is not VectorStoreState.DEGRADED

    def _degrade(self, operation: str, error: Exception) -> None:
        if self._state is not VectorStoreState.DEGRADED:
            logger.warning(
                f"Vector store failed during {operation}, switching to text-only mode: {error}"
            )
        self._state = VectorStoreState.DEGRADED

    def _get_backend(self) -> Optional[VectorBackend]:
        """Connect lazily on first use. Returns None once degraded."""
        if self._state is VectorStoreState.DEGRADED:
            return None

        if self._backend is None:
            try:
                self._backend = self._factory()
            except Exception as e:
                self._degrade("connect", e)
                return None
            self._state = VectorStoreState.AVAILABLE
            logger.info("Vector store connected")

        return self._backend

    def upsert(self, entry_id: str, text: str, metadata: dict) -> str:
        """
        Store or overwrite the vector for entry_id.

        Always returns entry_id. Check is_available afterwards to learn
        whether the write actually reached the backend.
        """
        backend = self._get_backend()
        if backend is None:
            logger.debug(f"Vector store unavailable, skipping upsert for {entry_id}")
            return entry_id

        try:
            backend.upsert(entry_id, text, metadata)
        except Exception as e:
            self._degrade("upsert", e)

        return entry_id

    def remove(self, entry_id: str) -> None:
        """Best-effort delete of an entry's vector."""
        backend = self._get_backend()
        if backend is None:
            logger.debug(f"Vector store unavailable, skipping removal of {entry_id}")
            return

        try:
            backend.delete(entry_id)
        except Exception as e:
            self._degrade("remove", e)

    def query_nearest(
        self,
        text: str,
        limit: int,
        owner_id: Optional[str] = None
    ) -> List[VectorHit]:
        """
        Up to limit hits in ascending distance (most similar first).

        With owner_id set, only vectors whose payload carries that owner are
        considered, so other owners' entries do not use up the limit.

        Empty when the backend is unavailable or the query fails.
        """
        if limit <= 0:
            return []

        backend = self._get_backend()
        if backend is None:
            return []

        try:
            raw = backend.query(text, limit, owner_id)
        except Exception as e:
            self._degrade("query", e)
            return []

        return [VectorHit(id=str(point_id), distance=float(distance))
                for point_id, distance in raw[:limit]]

    def count(self) -> int:
        """Number of stored vectors, 0 when unavailable."""
        backend = self._get_backend()
        if backend is None:
            return 0

        try:
            return backend.count()
        except Exception as e:
            self._degrade("count", e)
            return 0

    def close(self) -> None:
        if self._backend is not None:
            try:
                self._backend.close()
            except Exception as e:
                logger.debug(f"Error closing vector store: {e}")
            self._backend = None


def build_embedding_client(config: Settings) -> EmbeddingStoreClient:
    """
    Create the process-wide client.

    vector_backend selects Qdrant (persistent) or the in-memory index, which
    starts empty in every process and suits single-session use and tests.
    """

    def _connect() -> VectorBackend:
        # Imported lazily: pulls in qdrant_client and sentence-transformers
        if config.vector_backend == "memory":
            from .vectors import InMemoryVectorStore

            logger.info("Using in-memory vector store (not persisted)")
            return InMemoryVectorStore()

        from .qdrant_store import QdrantVectorStore

        return QdrantVectorStore(
            path=config.get_qdrant_path(),
            url=config.qdrant_url,
            api_key=config.qdrant_api_key,
            collection=config.qdrant_collection,
            dimension=config.embedding_dimension,
        )

    return EmbeddingStoreClient(_connect, enabled=config.vector_enabled)
