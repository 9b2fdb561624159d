"""Tests for the Qdrant guideline store (in-memory Qdrant) and its query cache."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import pytest
from qdrant_client import AsyncQdrantClient

from clinical_rag.errors import GuidelineStoreError
from clinical_rag.services.guideline_store import QdrantGuidelineStore, QueryCache, point_id

from conftest import DIMENSIONS, fake_vector, make_chunk

COLLECTION = "test_guidelines"


@pytest.fixture
async def qdrant() -> AsyncIterator[AsyncQdrantClient]:
    client = AsyncQdrantClient(location=":memory:")
    yield client
    await client.close()


@pytest.fixture
def cache() -> QueryCache:
    return QueryCache(ttl_seconds=60)


@pytest.fixture
async def guideline_store(qdrant: AsyncQdrantClient, cache: QueryCache) -> QdrantGuidelineStore:
    store = QdrantGuidelineStore(
        qdrant, collection=COLLECTION, dimensions=DIMENSIONS, insert_batch_size=2, cache=cache
    )
    await store.ensure_collection()
    return store


def _embedded(chunk_id: str, content: str):
    return make_chunk(chunk_id, content).model_copy(update={"embedding": fake_vector(content)})


class TestEnsureCollection:
    async def test_creates_collection(self, qdrant, guideline_store) -> None:
        collections = [c.name for c in (await qdrant.get_collections()).collections]
        assert COLLECTION in collections

    async def test_idempotent(self, qdrant, guideline_store) -> None:
        await guideline_store.ensure_collection()
        collections = [c.name for c in (await qdrant.get_collections()).collections]
        assert collections.count(COLLECTION) == 1


class TestInsertBatch:
    async def test_inserts_all_chunks(self, guideline_store) -> None:
        chunks = [_embedded(f"croup:{i}:0", f"paragraph {i}") for i in range(5)]
        ids = await guideline_store.insert_batch(chunks)
        assert ids == [point_id(c.id) for c in chunks]
        assert await guideline_store.count() == 5

    async def test_reinsert_replaces(self, guideline_store) -> None:
        chunk = _embedded("croup:0:0", "paragraph")
        await guideline_store.insert_batch([chunk])
        await guideline_store.insert_batch([chunk])
        assert await guideline_store.count() == 1

    async def test_missing_embedding_rejected(self, guideline_store) -> None:
        with pytest.raises(ValueError, match="no embedding"):
            await guideline_store.insert_batch([make_chunk()])

    async def test_wrong_dimensions_rejected(self, guideline_store) -> None:
        chunk = make_chunk().model_copy(update={"embedding": [0.1, 0.2]})
        with pytest.raises(ValueError, match="dimensions"):
            await guideline_store.insert_batch([chunk])

    async def test_failed_round_trip_rolls_back(self, qdrant, guideline_store, mocker) -> None:
        real_upsert = qdrant.upsert
        calls = 0

        async def flaky_upsert(**kwargs):
            nonlocal calls
            calls += 1
            if calls == 2:
                raise RuntimeError("connection reset")
            return await real_upsert(**kwargs)

        mocker.patch.object(qdrant, "upsert", side_effect=flaky_upsert)
        chunks = [_embedded(f"croup:{i}:0", f"paragraph {i}") for i in range(3)]

        with pytest.raises(GuidelineStoreError) as exc_info:
            await guideline_store.insert_batch(chunks)

        assert exc_info.value.code == "STORE_UNAVAILABLE"
        assert await guideline_store.count() == 0


class TestNearestNeighbors:
    async def test_most_similar_first(self, guideline_store) -> None:
        chunks = [_embedded(f"croup:{i}:0", f"paragraph {i}") for i in range(4)]
        await guideline_store.insert_batch(chunks)

        results = await guideline_store.nearest_neighbors(fake_vector("paragraph 2"), 3)

        assert len(results) == 3
        assert results[0].id == "croup:2:0"
        assert results[0].content == "paragraph 2"
        assert results[0].metadata.source == "croup.json"
        assert results[0].similarity == pytest.approx(1.0)
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)

    async def test_empty_collection(self, guideline_store) -> None:
        assert await guideline_store.nearest_neighbors(fake_vector("q"), 5) == []

    async def test_wrong_dimensions_rejected(self, guideline_store) -> None:
        with pytest.raises(ValueError):
            await guideline_store.nearest_neighbors([0.1], 5)

    async def test_repeat_query_served_from_cache(self, guideline_store, cache, mocker) -> None:
        await guideline_store.insert_batch([_embedded("croup:0:0", "paragraph")])
        spy = mocker.spy(guideline_store.client, "query_points")

        first = await guideline_store.nearest_neighbors(fake_vector("q"), 5)
        second = await guideline_store.nearest_neighbors(fake_vector("q"), 5)

        assert first == second
        assert spy.call_count == 1
        assert cache.stats()["hits"] == 1

    async def test_insert_invalidates_cache(self, guideline_store) -> None:
        await guideline_store.insert_batch([_embedded("croup:0:0", "paragraph 0")])
        before = await guideline_store.nearest_neighbors(fake_vector("paragraph 1"), 5)
        await guideline_store.insert_batch([_embedded("croup:1:0", "paragraph 1")])
        after = await guideline_store.nearest_neighbors(fake_vector("paragraph 1"), 5)

        assert len(before) == 1
        assert [c.id for c in after][0] == "croup:1:0"

    async def test_search_racing_insert_not_cached(self, qdrant, guideline_store, mocker) -> None:
        real_query = qdrant.query_points
        searched = asyncio.Event()
        release = asyncio.Event()

        async def slow_query(**kwargs):
            result = await real_query(**kwargs)
            searched.set()
            await release.wait()
            return result

        mocker.patch.object(qdrant, "query_points", side_effect=slow_query)
        vector = fake_vector("paragraph new")

        search = asyncio.create_task(guideline_store.nearest_neighbors(vector, 5))
        await searched.wait()
        await guideline_store.insert_batch([_embedded("croup:new:0", "paragraph new")])
        release.set()

        assert await search == []
        fresh = await guideline_store.nearest_neighbors(vector, 5)
        assert [c.id for c in fresh] == ["croup:new:0"]

    async def test_clear_empties_store_and_cache(self, guideline_store, cache) -> None:
        await guideline_store.insert_batch([_embedded("croup:0:0", "paragraph")])
        await guideline_store.nearest_neighbors(fake_vector("q"), 5)

        await guideline_store.clear()

        assert await guideline_store.count() == 0
        assert cache.stats()["size"] == 0
        assert await guideline_store.nearest_neighbors(fake_vector("q"), 5) == []


class TestQueryCache:
    def test_entries_expire(self) -> None:
        now = [0.0]
        cache = QueryCache(ttl_seconds=10, clock=lambda: now[0])
        cache.put([0.1, 0.2], 3, [make_chunk()])

        assert cache.get([0.1, 0.2], 3) == [make_chunk()]
        now[0] = 10.5
        assert cache.get([0.1, 0.2], 3) is None
        assert cache.stats() == {"size": 0, "hits": 1, "misses": 1, "ttl_seconds": 10}

    def test_expired_entries_swept_on_write(self) -> None:
        now = [0.0]
        cache = QueryCache(ttl_seconds=10, clock=lambda: now[0])
        for i in range(5):
            cache.put([float(i)], 3, [make_chunk()])
        assert len(cache._entries) == 5

        now[0] = 11.0
        cache.put([99.0], 3, [make_chunk()])

        assert len(cache._entries) == 1
        assert cache.get([99.0], 3) == [make_chunk()]

    def test_put_from_before_clear_is_dropped(self) -> None:
        cache = QueryCache()
        generation = cache.generation
        cache.clear()

        assert cache.put([0.1], 3, [make_chunk()], generation) is False
        assert cache.get([0.1], 3) is None
        assert cache.put([0.1], 3, [make_chunk()], cache.generation) is True

    def test_key_includes_k(self) -> None:
        cache = QueryCache()
        cache.put([0.1], 3, [make_chunk()])
        assert cache.get([0.1], 4) is None

    def test_returned_list_is_a_copy(self) -> None:
        cache = QueryCache()
        cache.put([0.1], 3, [make_chunk()])
        cache.get([0.1], 3).clear()
        assert len(cache.get([0.1], 3)) == 1


def test_point_id_is_deterministic() -> None:
    assert point_id("croup.json:1:0") == point_id("croup.json:1:0")
    assert point_id("croup.json:1:0") != point_id("croup.json:1:1")
