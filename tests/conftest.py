# tests/conftest.py
"""
Pytest configuration and shared fixtures for Knowledgeverse tests.
"""

import shutil
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from knowledgeverse.database import DatabaseManager
from knowledgeverse.embedding_store import EmbeddingStoreClient
from knowledgeverse.entries import EntryService
from knowledgeverse.entry_store import EntryStore
from knowledgeverse.models import ContentType, KnowledgeEntry

# Register pytest-asyncio plugin
pytest_plugins = ('pytest_asyncio',)

OWNER = "user-alice"
OTHER_OWNER = "user-bob"

BASE_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeVectorBackend:
    """
    Scriptable in-memory vector backend.

    - hits: if set, query() returns these (id, distance) pairs
    - fail_on: operation names ("upsert", "delete", "query", "count") that raise
    - calls: every call as (operation, argument)
    - query_owners: the owner_id passed to each query()
    """

    def __init__(self, hits=None, fail_on=()):
        self.hits = hits
        self.fail_on = set(fail_on)
        self.points = {}
        self.calls = []
        self.query_owners = []

    def _maybe_fail(self, op):
        if op in self.fail_on:
            raise RuntimeError(f"backend {op} exploded")

    def upsert(self, point_id, text, metadata):
        self.calls.append(("upsert", point_id))
        self._maybe_fail("upsert")
        self.points[point_id] = (text, dict(metadata))

    def delete(self, point_id):
        self.calls.append(("delete", point_id))
        self._maybe_fail("delete")
        self.points.pop(point_id, None)

    def query(self, text, limit, owner_id=None):
        self.calls.append(("query", text))
        self.query_owners.append(owner_id)
        self._maybe_fail("query")
        if self.hits is not None:
            return list(self.hits)[:limit]
        return []

    def count(self):
        self._maybe_fail("count")
        return len(self.points)

    def close(self):
        self.calls.append(("close", None))

    def ops(self, name):
        return [arg for op, arg in self.calls if op == name]


def make_client(backend):
    return EmbeddingStoreClient(lambda: backend)


def at(minutes):
    """A deterministic timestamp, `minutes` after BASE_TIME."""
    return BASE_TIME + timedelta(minutes=minutes)


async def add_entry(store, title, text, owner=OWNER, tags=None, vector_id=None,
                    created_at=None, content_type=ContentType.TEXT):
    """Insert a row directly through the entry store."""
    entry = KnowledgeEntry(
        owner_id=owner,
        title=title,
        text_for_embedding=text,
        content_type=content_type,
        tags=tags or [],
        vector_id=vector_id,
    )
    if created_at is not None:
        entry.created_at = created_at
    return await store.create(entry)


@pytest.fixture
def temp_storage():
    """Create a temporary storage directory."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
async def db(temp_storage):
    db = DatabaseManager(temp_storage)
    await db.init_db()
    yield db
    await db.close()


@pytest.fixture
def store(db):
    return EntryStore(db)


@pytest.fixture
def backend():
    return FakeVectorBackend()


@pytest.fixture
def client(backend):
    return make_client(backend)


@pytest.fixture
def service(store, client):
    return EntryService(store, client)
