"""
Entry Service - the write path, keeping the entry store and the vector
store in step.

Writes follow a two-step protocol with no transaction spanning both stores:

1. The entry store write. This is the durability boundary; its success or
   failure is what the caller sees.
2. A best-effort vector write. On success the entry's vector_id is recorded.
   On failure the entry stays searchable by text and vector_id stays empty
   until an update or reindex_entry() succeeds.

Between the two steps an entry may exist with an empty vector_id. That
window is expected; reindex_missing() repairs it.

Every successful update re-embeds the entry, whatever fields changed. The
vector payload carries title and tags as well as the body, so tag-only
edits would otherwise leave stale metadata behind.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from .config import settings
from .embedding_store import EmbeddingStoreClient, VectorStoreState
from .entry_store import EntryPage, EntryStore
from .errors import EntryValidationError, NotFoundOrForbidden
from .extraction import detect_content_type, extract_content
from .models import ContentType, KnowledgeEntry, normalize_tags, parse_content_type
from .search import HybridSearchEngine, SearchResult

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({
    "title",
    "text_for_embedding",
    "original_source",
    "content_type",
    "tags",
})


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise EntryValidationError(f"{name} is required and cannot be empty")
    return value


def _require_owner(owner_id: Any) -> str:
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise EntryValidationError("owner_id is required")
    return owner_id


def _vector_metadata(entry: KnowledgeEntry) -> Dict[str, Any]:
    return {
        "title": entry.title,
        "contentType": ContentType(entry.content_type).value,
        "originalSource": entry.original_source or "",
        "tags": list(entry.tags or []),
        "ownerId": entry.owner_id,
    }


class EntryService:
    """Create, update, delete and search knowledge entries for an owner."""

    def __init__(
        self,
        entry_store: EntryStore,
        embedding_client: EmbeddingStoreClient,
        search_engine: Optional[HybridSearchEngine] = None
    ):
        self.store = entry_store
        self.vectors = embedding_client
        self.engine = search_engine or HybridSearchEngine(entry_store, embedding_client)

    async def _index(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        """Upsert the entry's vector; record vector_id if the write landed."""
        stored_id = self.vectors.upsert(entry.id, entry.text_for_embedding, _vector_metadata(entry))

        if self.vectors.state is not VectorStoreState.AVAILABLE:
            logger.warning(f"Entry {entry.id} saved without vector index (text search only)")
            return entry

        if entry.vector_id != stored_id:
            entry = await self.store.update(entry.id, entry.owner_id, {"vector_id": stored_id})
        return entry

    async def create_entry(
        self,
        owner_id: str,
        title: str,
        text_for_embedding: str,
        content_type: Any = ContentType.TEXT,
        original_source: Optional[str] = None,
        tags: Optional[List[str]] = None
    ) -> KnowledgeEntry:
        """
        Persist a new entry, then index it.

        The entry exists once the store write returns, whether or not
        indexing succeeds.
        """
        entry = KnowledgeEntry(
            owner_id=_require_owner(owner_id),
            title=_require_text("title", title).strip(),
            text_for_embedding=_require_text("text_for_embedding", text_for_embedding),
            content_type=parse_content_type(content_type),
            original_source=original_source or None,
            tags=normalize_tags(tags),
        )

        entry = await self.store.create(entry)
        logger.info(f"Stored {entry.content_type.value} entry {entry.id}: {entry.title[:50]}")

        return await self._index(entry)

    async def capture(
        self,
        owner_id: str,
        source: str,
        tags: Optional[List[str]] = None
    ) -> KnowledgeEntry:
        """
        Create an entry from raw user input.

        Links are run through content extraction; if extraction fails the
        raw URL stands in as title and body. Plain text becomes the body,
        and its first characters the title.
        """
        _require_owner(owner_id)
        source = _require_text("source", source).strip()
        tags = normalize_tags(tags)
        content_type = detect_content_type(source)

        if content_type is ContentType.TEXT:
            return await self.create_entry(
                owner_id,
                title=source[:settings.max_title_length].strip(),
                text_for_embedding=source,
                content_type=content_type,
                original_source=source,
                tags=tags,
            )

        try:
            extracted = await asyncio.to_thread(extract_content, source)
            title, body = extracted.title, extracted.text_for_embedding
            content_type = extracted.content_type
        except Exception as e:
            logger.warning(f"Content extraction failed for {source}, storing raw URL: {e}")
            title, body = source[:settings.max_title_length].strip(), source

        return await self.create_entry(
            owner_id,
            title=title,
            text_for_embedding=body,
            content_type=content_type,
            original_source=source,
            tags=tags,
        )

    async def get_entry(self, entry_id: str, owner_id: str) -> KnowledgeEntry:
        entry = await self.store.get_by_id(entry_id, _require_owner(owner_id))
        if entry is None:
            raise NotFoundOrForbidden(entry_id)
        return entry

    async def list_entries(
        self,
        owner_id: str,
        limit: Optional[int] = None,
        cursor: Optional[str] = None
    ) -> EntryPage:
        limit = settings.default_page_size if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= settings.max_page_size:
            raise EntryValidationError(
                f"limit must be an integer between 1 and {settings.max_page_size}"
            )
        return await self.store.list(_require_owner(owner_id), limit, cursor or None)

    async def update_entry(self, entry_id: str, owner_id: str, **fields: Any) -> KnowledgeEntry:
        """
        Apply field changes, then re-embed.

        Raises:
            EntryValidationError: no fields, unknown fields, or invalid values.
            NotFoundOrForbidden: the owner has no such entry.
        """
        _require_owner(owner_id)
        if not fields:
            raise EntryValidationError("No fields to update")

        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise EntryValidationError(f"Cannot update field(s): {sorted(unknown)}")

        changes: Dict[str, Any] = dict(fields)
        if "title" in changes:
            changes["title"] = _require_text("title", changes["title"]).strip()
        if "text_for_embedding" in changes:
            _require_text("text_for_embedding", changes["text_for_embedding"])
        if "content_type" in changes:
            changes["content_type"] = parse_content_type(changes["content_type"])
        if "tags" in changes:
            changes["tags"] = normalize_tags(changes["tags"])
        if "original_source" in changes:
            changes["original_source"] = changes["original_source"] or None

        entry = await self.store.update(entry_id, owner_id, changes)
        logger.info(f"Updated entry {entry_id}: {sorted(changes)}")

        return await self._index(entry)

    async def delete_entry(self, entry_id: str, owner_id: str) -> None:
        """
        Delete the row, then best-effort remove its vector.

        The row deletion is authoritative and is not undone if the vector
        removal fails.
        """
        entry = await self.get_entry(entry_id, owner_id)

        await self.store.delete(entry_id, owner_id)
        logger.info(f"Deleted entry {entry_id}")

        if entry.vector_id:
            self.vectors.remove(entry.vector_id)

    async def reindex_entry(self, entry_id: str, owner_id: str) -> KnowledgeEntry:
        """Re-upsert one entry's vector. Safe to repeat."""
        entry = await self.get_entry(entry_id, owner_id)
        return await self._index(entry)

    async def reindex_missing(self, owner_id: str, limit: int = 100) -> Dict[str, int]:
        """
        Index entries whose vector_id is empty.

        Stops early once the vector store is degraded.
        """
        pending = await self.store.find_unindexed(_require_owner(owner_id), limit)

        attempted = 0
        indexed = 0
        for entry in pending:
            if not self.vectors.is_available:
                break
            attempted += 1
            entry = await self._index(entry)
            if entry.vector_id:
                indexed += 1

        logger.info(f"Reindexed {indexed}/{len(pending)} unindexed entries for {owner_id}")
        return {"pending": len(pending), "attempted": attempted, "indexed": indexed}

    async def search(self, query: str, owner_id: str, limit: Optional[int] = None) -> List[SearchResult]:
        limit = settings.default_search_limit if limit is None else limit
        return await self.engine.search(query, _require_owner(owner_id), limit)

    async def vector_search(
        self,
        query: str,
        owner_id: str,
        limit: Optional[int] = None
    ) -> List[SearchResult]:
        limit = settings.default_search_limit if limit is None else limit
        return await self.engine.vector_search(query, _require_owner(owner_id), limit)
