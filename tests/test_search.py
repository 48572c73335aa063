"""Tests for the hybrid search engine."""

import pytest

from knowledgeverse.embedding_store import EmbeddingStoreClient, VectorStoreState
from knowledgeverse.errors import EntryValidationError
from knowledgeverse.search import HybridSearchEngine, SearchResult, validate_query
from knowledgeverse.vectors import InMemoryVectorStore

from conftest import OWNER, OTHER_OWNER, FakeVectorBackend, add_entry, at, make_client
from test_vectors import toy_embed


def engine_with(store, backend):
    client = make_client(backend)
    return HybridSearchEngine(store, client), client


class TestRankingScenario:

    @pytest.mark.asyncio
    async def test_vector_hits_then_text_matches(self, store):
        """Backend returns v1 (0.1) and v2 (0.4); t3 only matches textually."""
        v1 = await add_entry(store, "AI agents", "Agents that use tools", vector_id="v1", created_at=at(0))
        v2 = await add_entry(store, "AI safety", "Alignment reading", vector_id="v2", created_at=at(1))
        t3 = await add_entry(store, "Notes", "Read the AI index report", created_at=at(2))

        engine, _ = engine_with(store, FakeVectorBackend(hits=[("v1", 0.1), ("v2", 0.4)]))
        results = await engine.search("AI", OWNER, limit=4)

        assert [r.entry.id for r in results] == [v1.id, v2.id, t3.id]
        assert results[0].similarity == pytest.approx(0.9)
        assert results[1].similarity == pytest.approx(0.6)
        assert results[2].similarity is None
        assert [r.source for r in results] == ["vector", "vector", "text"]

    @pytest.mark.asyncio
    async def test_vector_budget_is_half_limit_rounded_up(self, store):
        """A limit of 5 offers 3 slots to the vector tier."""
        backend = FakeVectorBackend(hits=[(f"v{i}", 0.1 * i) for i in range(10)])
        for i in range(10):
            await add_entry(store, f"Entry {i}", "body", vector_id=f"v{i}")

        engine, _ = engine_with(store, backend)
        results = await engine.search("body", OWNER, limit=5)

        vector_results = [r for r in results if r.source == "vector"]
        assert len(vector_results) == 3
        assert len(results) == 5

    @pytest.mark.asyncio
    async def test_vector_tier_sorted_by_similarity(self, store):
        """Vector hits are re-sorted by similarity whatever the backend order."""
        await add_entry(store, "Far", "x", vector_id="far")
        await add_entry(store, "Near", "x", vector_id="near")
        # Backend hands results back out of order
        engine, _ = engine_with(store, FakeVectorBackend(hits=[("far", 0.5), ("near", 0.05)]))

        results = await engine.search("zzz", OWNER, limit=4)
        assert [r.entry.title for r in results] == ["Near", "Far"]

    @pytest.mark.asyncio
    async def test_ties_keep_backend_order(self, store):
        """Equal similarities keep the order the backend returned."""
        await add_entry(store, "First", "x", vector_id="a")
        await add_entry(store, "Second", "x", vector_id="b")
        engine, _ = engine_with(store, FakeVectorBackend(hits=[("a", 0.3), ("b", 0.3)]))

        results = await engine.search("zzz", OWNER, limit=4)
        assert [r.entry.title for r in results] == ["First", "Second"]

    @pytest.mark.asyncio
    async def test_vector_results_precede_newer_text_results(self, store):
        """Recency never lifts a text match above a vector hit."""
        await add_entry(store, "Old semantic hit", "crypto", vector_id="old", created_at=at(0))
        await add_entry(store, "Brand new crypto note", "crypto", created_at=at(100))
        engine, _ = engine_with(store, FakeVectorBackend(hits=[("old", 0.8)]))

        results = await engine.search("crypto", OWNER, limit=10)
        assert [r.source for r in results] == ["vector", "text"]
        assert results[0].entry.title == "Old semantic hit"


class TestDeduplication:

    @pytest.mark.asyncio
    async def test_vector_hit_not_repeated_by_text_search(self, store):
        """An entry found by vector is not listed again by text."""
        entry = await add_entry(store, "Investing basics", "Investing 101", vector_id="v1")
        engine, _ = engine_with(store, FakeVectorBackend(hits=[("v1", 0.2)]))

        results = await engine.search("investing", OWNER, limit=10)
        assert [r.entry.id for r in results] == [entry.id]
        assert results[0].source == "vector"

    @pytest.mark.asyncio
    async def test_duplicate_backend_hits_collapse(self, store):
        """Repeated backend hits produce one result."""
        await add_entry(store, "Once", "x", vector_id="v1")
        engine, _ = engine_with(store, FakeVectorBackend(hits=[("v1", 0.2), ("v1", 0.2)]))

        results = await engine.search("zzz", OWNER, limit=4)
        ids = [r.entry.id for r in results]
        assert len(ids) == len(set(ids)) == 1


class TestSkippedHits:

    @pytest.mark.asyncio
    async def test_stale_vector_is_skipped(self, store):
        """A vector whose entry was deleted is skipped, not an error."""
        kept = await add_entry(store, "Kept", "x", vector_id="kept")
        engine, _ = engine_with(store, FakeVectorBackend(hits=[("ghost", 0.1), ("kept", 0.2)]))

        results = await engine.search("zzz", OWNER, limit=4)
        assert [r.entry.id for r in results] == [kept.id]

    @pytest.mark.asyncio
    async def test_foreign_owner_vector_is_skipped(self, store):
        """A backend hit owned by someone else is dropped."""
        await add_entry(store, "Bob's secret", "secret", owner=OTHER_OWNER, vector_id="bob")
        engine, _ = engine_with(store, FakeVectorBackend(hits=[("bob", 0.01)]))

        results = await engine.search("secret", OWNER, limit=4)
        assert results == []

    @pytest.mark.asyncio
    async def test_skipped_hits_leave_room_for_text(self, store):
        """Slots freed by skipped hits go to text matches."""
        texts = []
        for i in range(3):
            texts.append(await add_entry(store, f"Match {i}", "keyword", created_at=at(i)))
        engine, _ = engine_with(store, FakeVectorBackend(hits=[("ghost1", 0.1), ("ghost2", 0.2)]))

        results = await engine.search("keyword", OWNER, limit=3)
        assert [r.entry.title for r in results] == ["Match 2", "Match 1", "Match 0"]
        assert all(r.source == "text" for r in results)


class TestOwnerFilteredVectors:

    @pytest.mark.asyncio
    async def test_query_carries_owner(self, store):
        """The vector query is restricted to the searching owner."""
        backend = FakeVectorBackend(hits=[])
        engine, _ = engine_with(store, backend)
        await engine.search("anything", OWNER, limit=4)
        assert backend.query_owners == [OWNER]

    @pytest.mark.asyncio
    async def test_other_owners_do_not_use_up_budget(self, store):
        """Other owners' vectors do not crowd the searcher out of the vector tier."""
        index = InMemoryVectorStore(embed=toy_embed)
        for i in range(3):
            await add_entry(store, f"Bob bread {i}", "bake bread", owner=OTHER_OWNER, vector_id=f"bob{i}")
            index.upsert(f"bob{i}", "bake bread", {"ownerId": OTHER_OWNER})
        mine = await add_entry(store, "Alice loaf", "sourdough", vector_id="alice")
        index.upsert("alice", "bread recipe notes", {"ownerId": OWNER})

        engine = HybridSearchEngine(store, EmbeddingStoreClient(lambda: index))
        results = await engine.search("bake bread", OWNER, limit=2)

        assert [r.entry.id for r in results] == [mine.id]
        assert results[0].source == "vector"


class TestDegradedBackend:

    @pytest.mark.asyncio
    async def test_backend_failure_falls_back_to_text(self, store):
        """A failing backend degrades to text-only search, once."""
        await add_entry(store, "Finance one", "budget", created_at=at(0))
        await add_entry(store, "Finance two", "budget", created_at=at(1))
        await add_entry(store, "Unrelated", "gardening", created_at=at(2))

        backend = FakeVectorBackend(fail_on={"query"})
        engine, client = engine_with(store, backend)

        results = await engine.search("budget", OWNER, limit=5)
        assert [r.entry.title for r in results] == ["Finance two", "Finance one"]
        assert all(r.source == "text" for r in results)
        assert client.state is VectorStoreState.DEGRADED

        # A second, unrelated search does not touch the backend again
        await engine.search("gardening", OWNER, limit=5)
        assert backend.ops("query") == ["budget"]

    @pytest.mark.asyncio
    async def test_degraded_results_equal_find_by_text(self, store):
        """Degraded search is exactly the text search."""
        for i in range(6):
            await add_entry(store, f"Note {i}", "learning material", created_at=at(i))
        backend = FakeVectorBackend(fail_on={"query"})
        engine, _ = engine_with(store, backend)

        results = await engine.search("learning", OWNER, limit=4)
        expected = await store.find_by_text(OWNER, "learning", limit=4)
        assert [r.entry.id for r in results] == [e.id for e in expected]


class TestBounds:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 2, 3, 7])
    async def test_never_exceeds_limit(self, store, limit):
        """Results are capped, tiered and free of duplicates."""
        hits = []
        for i in range(8):
            await add_entry(store, f"Entry {i}", "common", vector_id=f"v{i}", created_at=at(i))
            hits.append((f"v{i}", 0.1))
        for i in range(8):
            await add_entry(store, f"Text {i}", "common", created_at=at(10 + i))

        engine, _ = engine_with(store, FakeVectorBackend(hits=hits))
        results = await engine.search("common", OWNER, limit=limit)

        assert len(results) == limit
        sources = [r.source for r in results]
        assert sources == sorted(sources, key=lambda s: s != "vector")
        assert len({r.entry.id for r in results}) == len(results)

    @pytest.mark.asyncio
    async def test_no_matches_is_empty(self, store):
        """No vector hits and no text matches gives no results."""
        await add_entry(store, "Something", "else")
        engine, _ = engine_with(store, FakeVectorBackend(hits=[]))
        assert await engine.search("nothing-matches-this", OWNER, limit=5) == []


class TestValidation:

    @pytest.mark.parametrize("query", ["", "   ", None, 42])
    def test_invalid_query(self, query):
        """Blank or non-string queries are rejected."""
        with pytest.raises(EntryValidationError):
            validate_query(query, 10)

    @pytest.mark.parametrize("limit", [0, -1, 101, "10", 2.5, True])
    def test_invalid_limit(self, limit):
        """Limits must be integers within range."""
        with pytest.raises(EntryValidationError):
            validate_query("ok", limit)

    def test_query_is_stripped(self):
        """Surrounding whitespace is removed from the query."""
        assert validate_query("  hello ", 5) == "hello"

    @pytest.mark.asyncio
    async def test_invalid_input_touches_no_store(self, store):
        """Validation fails before any backend call."""
        backend = FakeVectorBackend(hits=[("v1", 0.1)])
        engine, _ = engine_with(store, backend)
        with pytest.raises(EntryValidationError):
            await engine.search("", OWNER, limit=5)
        assert backend.calls == []


class TestVectorSearch:

    @pytest.mark.asyncio
    async def test_uses_full_limit_and_no_text(self, store):
        """Vector-only search spends the whole limit and adds no text matches."""
        for i in range(4):
            await add_entry(store, f"Vec {i}", "shared", vector_id=f"v{i}")
        await add_entry(store, "Text only", "shared")
        engine, _ = engine_with(store, FakeVectorBackend(hits=[(f"v{i}", 0.1 * i) for i in range(4)]))

        results = await engine.vector_search("shared", OWNER, limit=4)
        assert [r.entry.title for r in results] == ["Vec 0", "Vec 1", "Vec 2", "Vec 3"]
        assert all(r.source == "vector" for r in results)

    @pytest.mark.asyncio
    async def test_empty_when_degraded(self, store):
        """Vector-only search is empty when the backend fails."""
        await add_entry(store, "Anything", "shared")
        engine, _ = engine_with(store, FakeVectorBackend(fail_on={"query"}))
        assert await engine.vector_search("shared", OWNER, limit=4) == []


class TestSearchResultDict:

    @pytest.mark.asyncio
    async def test_to_dict_shape(self, store):
        """Similarity is rounded and only present on vector results."""
        entry = await add_entry(store, "Title", "body", tags=["AI"])
        vector = SearchResult(entry=entry, source="vector", similarity=0.87654).to_dict()
        text = SearchResult(entry=entry, source="text").to_dict()

        assert vector["id"] == entry.id
        assert vector["tags"] == ["AI"]
        assert vector["contentType"] == "TEXT"
        assert vector["similarity"] == 0.8765
        assert vector["source"] == "vector"
        assert "similarity" not in text
