"""
Entry Store - owner-scoped CRUD over knowledge entries.

The relational store is authoritative: an entry exists iff its row exists.
Every query carries the owner id; rows of other owners are invisible and
indistinguishable from missing rows.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import String, and_, cast, delete, desc, func, or_, select

from .database import DatabaseManager
from .errors import EntryValidationError, NotFoundOrForbidden
from .models import TAGS, KnowledgeEntry

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "title",
    "text_for_embedding",
    "original_source",
    "content_type",
    "tags",
    "vector_id",
})


@dataclass
class EntryPage:
    """One page of a listing. next_cursor is set iff more rows follow."""
    entries: List[KnowledgeEntry] = field(default_factory=list)
    next_cursor: Optional[str] = None


def _escape_like(value: str) -> str:
    """Escape LIKE wildcards so the query is matched literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _newest_first():
    return (desc(KnowledgeEntry.created_at), desc(KnowledgeEntry.id))


class EntryStore:
    """Relational CRUD with cursor pagination and substring search."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def create(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        async with self.db.get_session() as session:
            session.add(entry)
            await session.flush()
            await session.refresh(entry)
        logger.debug(f"Created entry {entry.id} for owner {entry.owner_id}")
        return entry

    async def get_by_id(self, entry_id: str, owner_id: str) -> Optional[KnowledgeEntry]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(KnowledgeEntry).where(
                    KnowledgeEntry.id == entry_id,
                    KnowledgeEntry.owner_id == owner_id,
                )
            )
            return result.scalar_one_or_none()

    async def get_by_vector_ids(
        self,
        vector_ids: Iterable[str],
        owner_id: str
    ) -> Dict[str, KnowledgeEntry]:
        """
        Resolve vector ids to the owner's entries in one query.

        Ids with no row, or whose row belongs to another owner, are absent
        from the result.
        """
        ids = list(vector_ids)
        if not ids:
            return {}

        async with self.db.get_session() as session:
            result = await session.execute(
                select(KnowledgeEntry).where(
                    KnowledgeEntry.vector_id.in_(ids),
                    KnowledgeEntry.owner_id == owner_id,
                )
            )
            return {e.vector_id: e for e in result.scalars().all()}

    async def update(
        self,
        entry_id: str,
        owner_id: str,
        fields: Dict[str, Any]
    ) -> KnowledgeEntry:
        """
        Apply a partial update.

        Raises:
            EntryValidationError: a key is not an updatable field.
            NotFoundOrForbidden: no such entry for this owner.
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise EntryValidationError(f"Cannot update field(s): {sorted(unknown)}")

        async with self.db.get_session() as session:
            result = await session.execute(
                select(KnowledgeEntry).where(
                    KnowledgeEntry.id == entry_id,
                    KnowledgeEntry.owner_id == owner_id,
                )
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                raise NotFoundOrForbidden(entry_id)

            for key, value in fields.items():
                setattr(entry, key, value)

            await session.flush()
            await session.refresh(entry)
            return entry

    async def delete(self, entry_id: str, owner_id: str) -> None:
        """Delete an entry. Raises NotFoundOrForbidden if the owner has no such entry."""
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(KnowledgeEntry).where(
                    KnowledgeEntry.id == entry_id,
                    KnowledgeEntry.owner_id == owner_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundOrForbidden(entry_id)
        logger.debug(f"Deleted entry {entry_id}")

    async def list(
        self,
        owner_id: str,
        limit: int,
        cursor: Optional[str] = None
    ) -> EntryPage:
        """
        Page through an owner's entries, newest first.

        The cursor is the id of the last entry on the previous page.
        """
        async with self.db.get_session() as session:
            query = select(KnowledgeEntry).where(KnowledgeEntry.owner_id == owner_id)

            if cursor:
                anchor = await session.execute(
                    select(KnowledgeEntry.created_at, KnowledgeEntry.id).where(
                        KnowledgeEntry.id == cursor,
                        KnowledgeEntry.owner_id == owner_id,
                    )
                )
                row = anchor.first()
                if row is None:
                    raise EntryValidationError(f"Unknown cursor: {cursor}")
                anchor_created, anchor_id = row
                query = query.where(
                    or_(
                        KnowledgeEntry.created_at < anchor_created,
                        and_(
                            KnowledgeEntry.created_at == anchor_created,
                            KnowledgeEntry.id < anchor_id,
                        ),
                    )
                )

            # Fetch one extra row to learn whether another page exists
            result = await session.execute(
                query.order_by(*_newest_first()).limit(limit + 1)
            )
            rows = list(result.scalars().all())

        has_more = len(rows) > limit
        entries = rows[:limit]
        return EntryPage(
            entries=entries,
            next_cursor=entries[-1].id if has_more and entries else None,
        )

    async def find_by_text(
        self,
        owner_id: str,
        substring: str,
        exclude_ids: Iterable[str] = (),
        limit: int = 20
    ) -> List[KnowledgeEntry]:
        """
        Case-insensitive substring search over title, body and tags.

        A tag matches when the substring occurs in the tag name itself; the
        JSON punctuation around stored tags never matches. Results are
        newest first; ids in exclude_ids never appear.
        """
        if limit <= 0:
            return []

        pattern = f"%{_escape_like(substring)}%"
        excluded = list(exclude_ids)

        # Tags come from a closed vocabulary of quote-free names, so a quoted
        # name can only match a whole element of the stored JSON list
        needle = substring.lower()
        tag_matches = [
            cast(KnowledgeEntry.tags, String).like(f'%"{_escape_like(tag)}"%', escape="\\")
            for tag in TAGS if needle in tag.lower()
        ]

        conditions = [
            KnowledgeEntry.owner_id == owner_id,
            or_(
                KnowledgeEntry.title.ilike(pattern, escape="\\"),
                KnowledgeEntry.text_for_embedding.ilike(pattern, escape="\\"),
                *tag_matches,
            ),
        ]
        if excluded:
            conditions.append(KnowledgeEntry.id.not_in(excluded))

        async with self.db.get_session() as session:
            result = await session.execute(
                select(KnowledgeEntry)
                .where(*conditions)
                .order_by(*_newest_first())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def find_unindexed(self, owner_id: str, limit: int = 100) -> List[KnowledgeEntry]:
        """Entries that never made it into the vector store."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(KnowledgeEntry)
                .where(
                    KnowledgeEntry.owner_id == owner_id,
                    or_(KnowledgeEntry.vector_id.is_(None), KnowledgeEntry.vector_id == ""),
                )
                .order_by(*_newest_first())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def count(self, owner_id: str) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.count(KnowledgeEntry.id)).where(KnowledgeEntry.owner_id == owner_id)
            )
            return result.scalar() or 0
