"""
Knowledgeverse Server - personal knowledge vault over MCP.

Provides:
1. Capture of text, YouTube links and X post links as knowledge entries
2. Hybrid search (semantic vectors first, substring matches after)
3. Cursor-paginated listing and owner-scoped CRUD
4. Vector index maintenance (status and re-index)

Tools:
- search_knowledge: Hybrid vector + text search
- vector_search: Semantic-only search
- get_knowledge_entries: Paginated listing, newest first
- get_knowledge_entry: Fetch one entry by id
- create_knowledge_entry: Store an entry from explicit fields
- capture_knowledge: Store an entry from raw text or a link
- update_knowledge_entry: Edit fields (re-embeds the entry)
- delete_knowledge_entry: Remove an entry and its vector
- reindex_knowledge: Re-index one entry, or every unindexed entry
- vector_store_status: Report the vector store state

Every tool is scoped to an owner. The server does not authenticate: it
trusts the owner_id it is given, falling back to KNOWLEDGEVERSE_OWNER_ID.
"""

import sys
import asyncio
import atexit
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

try:
    from mcp.server.fastmcp import FastMCP
except ImportError:
    print("ERROR: mcp not installed. Run: pip install mcp", file=sys.stderr)
    sys.exit(1)

from .config import settings
from .database import DatabaseManager
from .embedding_store import EmbeddingStoreClient, build_embedding_client
from .entries import EntryService
from .entry_store import EntryStore
from .errors import KnowledgeError
from .logging_config import configure_logging, with_request_id
from .models import entry_to_dict

logger = logging.getLogger(__name__)

mcp = FastMCP("Knowledgeverse")


# ============================================================================
# APPLICATION CONTEXT - built once per process, on first tool call
# ============================================================================
@dataclass
class AppContext:
    """Holds the database, the shared vector client and the services."""
    db_manager: DatabaseManager
    embedding_client: EmbeddingStoreClient
    entry_store: EntryStore
    service: EntryService


_context: Optional[AppContext] = None
_context_lock = asyncio.Lock()


async def get_app_context() -> AppContext:
    """Get or lazily create the process-wide AppContext."""
    global _context

    if _context is not None:
        return _context

    async with _context_lock:
        if _context is None:
            db = DatabaseManager(settings.get_storage_path(), settings.db_name)
            await db.init_db()
            client = build_embedding_client(settings)
            store = EntryStore(db)
            _context = AppContext(
                db_manager=db,
                embedding_client=client,
                entry_store=store,
                service=EntryService(store, client),
            )
    return _context


def set_app_context(context: Optional[AppContext]) -> None:
    """Install a prebuilt context (used by tests and embedding applications)."""
    global _context
    _context = context


def _missing_owner_error() -> Dict[str, Any]:
    return {
        "error": "MISSING_OWNER",
        "message": (
            "owner_id is required. Pass the authenticated user's id, "
            "or set KNOWLEDGEVERSE_OWNER_ID for single-user deployments."
        ),
    }


def _resolve_owner(owner_id: Optional[str]) -> Optional[str]:
    owner = owner_id or settings.owner_id
    return owner if owner and owner.strip() else None


# ============================================================================
# Search
# ============================================================================
@mcp.tool()
@with_request_id
async def search_knowledge(
    query: str,
    limit: int = 10,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Search the knowledge base using hybrid vector and text search.

    Semantic matches come first, ordered by similarity; substring matches
    fill the remaining slots, newest first.

    Args:
        query: Search query to find relevant knowledge entries
        limit: Maximum number of results to return (default: 10)
        owner_id: Owner whose entries to search
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    ctx = await get_app_context()
    try:
        results = await ctx.service.search(query, owner, limit)
    except KnowledgeError as e:
        return e.to_dict()

    return {"query": query, "count": len(results), "results": [r.to_dict() for r in results]}


@mcp.tool()
@with_request_id
async def vector_search(
    query: str,
    limit: int = 10,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Perform semantic vector search on the knowledge base.

    Returns nothing (rather than an error) when the vector store is down.

    Args:
        query: Query for semantic search
        limit: Maximum number of results (default: 10)
        owner_id: Owner whose entries to search
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    ctx = await get_app_context()
    try:
        results = await ctx.service.vector_search(query, owner, limit)
    except KnowledgeError as e:
        return e.to_dict()

    return {"query": query, "count": len(results), "results": [r.to_dict() for r in results]}


# ============================================================================
# Read
# ============================================================================
@mcp.tool()
@with_request_id
async def get_knowledge_entries(
    limit: int = 20,
    cursor: Optional[str] = None,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Get a page of knowledge entries, newest first.

    Args:
        limit: Number of entries to return (default: 20)
        cursor: nextCursor from the previous page
        owner_id: Owner whose entries to list
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    ctx = await get_app_context()
    try:
        page = await ctx.service.list_entries(owner, limit, cursor)
    except KnowledgeError as e:
        return e.to_dict()

    result: Dict[str, Any] = {"entries": [entry_to_dict(e) for e in page.entries]}
    if page.next_cursor:
        result["nextCursor"] = page.next_cursor
    return result


@mcp.tool()
@with_request_id
async def get_knowledge_entry(
    id: str,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Get a specific knowledge entry by ID.

    Args:
        id: The ID of the knowledge entry to retrieve
        owner_id: Owner of the entry
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    ctx = await get_app_context()
    try:
        entry = await ctx.service.get_entry(id, owner)
    except KnowledgeError as e:
        return e.to_dict()
    return entry_to_dict(entry)


# ============================================================================
# Write
# ============================================================================
@mcp.tool()
@with_request_id
async def create_knowledge_entry(
    title: str,
    text_for_embedding: str,
    content_type: str = "TEXT",
    original_source: Optional[str] = None,
    tags: Optional[List[str]] = None,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Create a new knowledge entry from explicit fields.

    Args:
        title: Title of the knowledge entry
        text_for_embedding: Text content for embedding and search
        content_type: TEXT, YOUTUBE_LINK or X_POST_LINK
        original_source: Original source URL or reference
        tags: Tags from: To Do Research On, Important, Learning, Investing, AI, Finance
        owner_id: Owner of the new entry
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    ctx = await get_app_context()
    try:
        entry = await ctx.service.create_entry(
            owner,
            title=title,
            text_for_embedding=text_for_embedding,
            content_type=content_type,
            original_source=original_source,
            tags=tags,
        )
    except KnowledgeError as e:
        return e.to_dict()
    return entry_to_dict(entry)


@mcp.tool()
@with_request_id
async def capture_knowledge(
    source: str,
    tags: Optional[List[str]] = None,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Store raw text, a YouTube link or an X post link.

    Links are fetched and their transcript or post text becomes the
    searchable body.

    Args:
        source: Literal text or a URL
        tags: Tags from the fixed vocabulary
        owner_id: Owner of the new entry
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    ctx = await get_app_context()
    try:
        entry = await ctx.service.capture(owner, source, tags)
    except KnowledgeError as e:
        return e.to_dict()
    return entry_to_dict(entry)


@mcp.tool()
@with_request_id
async def update_knowledge_entry(
    id: str,
    title: Optional[str] = None,
    text_for_embedding: Optional[str] = None,
    original_source: Optional[str] = None,
    content_type: Optional[str] = None,
    tags: Optional[List[str]] = None,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Update fields of an existing entry. Omitted fields are left unchanged.

    Args:
        id: The ID of the entry to update
        title: New title
        text_for_embedding: New searchable text
        original_source: New source reference
        content_type: New content type
        tags: Replacement tag list
        owner_id: Owner of the entry
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    fields = {
        key: value for key, value in {
            "title": title,
            "text_for_embedding": text_for_embedding,
            "original_source": original_source,
            "content_type": content_type,
            "tags": tags,
        }.items()
        if value is not None
    }

    ctx = await get_app_context()
    try:
        entry = await ctx.service.update_entry(id, owner, **fields)
    except KnowledgeError as e:
        return e.to_dict()
    return entry_to_dict(entry)


@mcp.tool()
@with_request_id
async def delete_knowledge_entry(
    id: str,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Delete a knowledge entry and, best-effort, its vector.

    Args:
        id: The ID of the entry to delete
        owner_id: Owner of the entry
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    ctx = await get_app_context()
    try:
        await ctx.service.delete_entry(id, owner)
    except KnowledgeError as e:
        return e.to_dict()
    return {"status": "deleted", "id": id}


# ============================================================================
# Index maintenance
# ============================================================================
@mcp.tool()
@with_request_id
async def reindex_knowledge(
    id: Optional[str] = None,
    owner_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Re-index one entry, or every entry missing from the vector store.

    Args:
        id: Entry to re-index; omit to repair all unindexed entries
        owner_id: Owner of the entries
    """
    owner = _resolve_owner(owner_id)
    if owner is None:
        return _missing_owner_error()

    ctx = await get_app_context()
    try:
        if id:
            entry = await ctx.service.reindex_entry(id, owner)
            return {"id": entry.id, "indexed": bool(entry.vector_id)}
        return await ctx.service.reindex_missing(owner)
    except KnowledgeError as e:
        return e.to_dict()


@mcp.tool()
@with_request_id
async def vector_store_status(owner_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Report whether semantic search is available and how many vectors are stored.

    When an owner is known, also reports how many entries they hold, so the
    two counts can be compared for drift.

    Args:
        owner_id: Owner whose entry count to include (optional)
    """
    ctx = await get_app_context()
    client = ctx.embedding_client
    status = {"state": client.state.value, "count": client.count()}

    owner = _resolve_owner(owner_id)
    if owner is not None:
        status["entries"] = await ctx.entry_store.count(owner)
    return status


# ============================================================================
# Cleanup
# ============================================================================
async def _close_context():
    if _context is not None:
        _context.embedding_client.close()
        await _context.db_manager.close()


def cleanup():
    """Cleanup on exit."""
    if _context is None:
        return
    try:
        try:
            loop = asyncio.get_running_loop()
            loop.create_task(_close_context())
        except RuntimeError:
            asyncio.run(_close_context())
    except Exception as e:
        logger.debug(f"Cleanup failed: {e}")


atexit.register(cleanup)


# ============================================================================
# Entry point
# ============================================================================
def main():
    """Run the MCP server."""
    import argparse

    parser = argparse.ArgumentParser(description="Knowledgeverse MCP Server")
    parser.add_argument(
        "--transport", "-t",
        choices=["stdio", "sse"],
        default="stdio",
        help="Transport type: stdio (default) or sse (HTTP server)"
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=8765,
        help="Port for SSE transport (default: 8765)"
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host for SSE transport (default: 127.0.0.1)"
    )
    args = parser.parse_args()

    configure_logging(settings.log_level, settings.log_json)

    logger.info("Starting Knowledgeverse server...")
    logger.info(f"Storage: {settings.get_storage_path()}")
    logger.info(f"Transport: {args.transport}")

    try:
        if args.transport == "sse":
            mcp.settings.host = args.host
            mcp.settings.port = args.port
            logger.info(f"SSE server at http://{args.host}:{args.port}/sse")
            mcp.run(transport="sse")
        else:
            mcp.run(transport="stdio")
    except KeyboardInterrupt:
        logger.info("Server shutdown requested")


if __name__ == "__main__":
    main()
