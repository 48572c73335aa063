"""
Knowledgeverse Models - Schema for stored knowledge entries.

Tables:
- knowledge_entries: One row per user submission (text, video link or post link)
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import Column, String, Text, JSON, DateTime, Enum, Index
from sqlalchemy.orm import DeclarativeBase

from .errors import EntryValidationError


# Fixed tag vocabulary. Order here is the order tags are stored in.
TAGS = (
    "To Do Research On",
    "Important",
    "Learning",
    "Investing",
    "AI",
    "Finance",
)


class ContentType(str, enum.Enum):
    """Kinds of submission an entry can hold."""
    TEXT = "TEXT"
    YOUTUBE_LINK = "YOUTUBE_LINK"
    X_POST_LINK = "X_POST_LINK"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class KnowledgeEntry(Base):
    """
    A knowledge entry is the unit of storage and retrieval.

    text_for_embedding is the searchable body: it feeds both substring
    matching and the vector index. vector_id stays empty until a write to
    the vector store succeeds.
    """
    __tablename__ = "knowledge_entries"

    id = Column(String(36), primary_key=True, default=_new_id)

    title = Column(String, nullable=False)
    text_for_embedding = Column(Text, nullable=False)

    # Raw user input (URL or literal text)
    original_source = Column(Text, nullable=True)

    content_type = Column(Enum(ContentType), nullable=False, default=ContentType.TEXT)

    # Subset of TAGS
    tags = Column(JSON, default=list)

    # Key into the vector store; NULL means "not indexed"
    vector_id = Column(String(36), nullable=True, unique=True)

    owner_id = Column(String, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        # Listing and text search both walk an owner's entries newest first
        Index('ix_knowledge_entries_owner_created', 'owner_id', 'created_at'),
    )

    def __repr__(self) -> str:
        return f"<KnowledgeEntry id={self.id!r} title={self.title[:30]!r}>"


def normalize_tags(tags: Optional[Iterable[str]]) -> List[str]:
    """
    Validate tags against the vocabulary.

    Returns the distinct tags in vocabulary order. Raises
    EntryValidationError naming any tag outside TAGS.
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        raise EntryValidationError("tags must be a list of strings, not a single string")

    requested = list(tags)
    unknown = [t for t in requested if t not in TAGS]
    if unknown:
        raise EntryValidationError(
            f"Unknown tag(s): {unknown}. Must be drawn from: {list(TAGS)}"
        )
    wanted = set(requested)
    return [t for t in TAGS if t in wanted]


def parse_content_type(value: Any) -> ContentType:
    """Coerce a string or ContentType into a ContentType."""
    if isinstance(value, ContentType):
        return value
    try:
        return ContentType(value)
    except ValueError:
        raise EntryValidationError(
            f"Invalid content type {value!r}. Must be one of: {[c.value for c in ContentType]}"
        ) from None


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # SQLite hands back naive datetimes; they were written as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def entry_to_dict(entry: KnowledgeEntry) -> Dict[str, Any]:
    """Render an entry in the camelCase shape returned to tool callers."""
    return {
        "id": entry.id,
        "title": entry.title,
        "textForEmbedding": entry.text_for_embedding,
        "originalSource": entry.original_source,
        "contentType": ContentType(entry.content_type).value,
        "tags": list(entry.tags or []),
        "vectorId": entry.vector_id,
        "createdAt": _isoformat(entry.created_at),
        "updatedAt": _isoformat(entry.updated_at),
    }
