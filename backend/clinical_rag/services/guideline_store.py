"""Guideline store: Qdrant vector search with a short-lived query cache."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from typing import Protocol

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    PayloadSchemaType,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from clinical_rag.errors import GuidelineStoreError
from clinical_rag.models.rag import ChunkMetadata, GuidelineChunk

logger = logging.getLogger(__name__)


class GuidelineStore(Protocol):
    async def nearest_neighbors(
        self, vector: list[float], k: int
    ) -> list[GuidelineChunk]: ...

    async def insert_batch(self, chunks: Sequence[GuidelineChunk]) -> list[str]: ...

    async def clear(self) -> None: ...


def point_id(key: str) -> str:
    """Deterministic Qdrant point id for a chunk's natural key."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, key))


# --- Query cache ---


class QueryCache:
    """TTL cache of nearest-neighbour results keyed by (vector, k).

    Entries are immutable once written and expire by age only; expired
    entries are swept on every write. A lock guards the map so concurrent
    readers and writers see whole entries.

    ``generation`` advances on every ``clear()``. A result computed before a
    clear is dropped by ``put`` so a search racing a mutation cannot
    repopulate the cache with pre-mutation results.
    """

    def __init__(
        self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple, tuple[float, tuple[GuidelineChunk, ...]]] = {}
        self._lock = threading.Lock()
        self.generation = 0
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(vector: Sequence[float], k: int) -> tuple:
        return (tuple(vector), k)

    def get(self, vector: Sequence[float], k: int) -> list[GuidelineChunk] | None:
        key = self._key(vector, k)
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[0] <= now:
                if entry is not None:
                    del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return list(entry[1])

    def put(
        self,
        vector: Sequence[float],
        k: int,
        chunks: Sequence[GuidelineChunk],
        generation: int | None = None,
    ) -> bool:
        """Store a result; returns False when ``generation`` is stale."""
        now = self._clock()
        with self._lock:
            if generation is not None and generation != self.generation:
                return False
            self._purge_expired(now)
            self._entries[self._key(vector, k)] = (now + self.ttl_seconds, tuple(chunks))
            return True

    def _purge_expired(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.generation += 1

    def stats(self) -> dict[str, float]:
        now = self._clock()
        with self._lock:
            live = sum(1 for expires_at, _ in self._entries.values() if expires_at > now)
            return {
                "size": live,
                "hits": self.hits,
                "misses": self.misses,
                "ttl_seconds": self.ttl_seconds,
            }


# --- Qdrant store ---


class QdrantGuidelineStore:
    """Cosine-distance search over guideline chunks stored in Qdrant.

    Qdrant indexes vectors with HNSW, so queries stay sub-linear as the
    corpus grows.
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        *,
        collection: str,
        dimensions: int,
        insert_batch_size: int = 50,
        cache: QueryCache | None = None,
    ) -> None:
        self.client = client
        self.collection = collection
        self.dimensions = dimensions
        self.insert_batch_size = insert_batch_size
        self.cache = cache

    async def ensure_collection(self) -> None:
        """Create the collection if it doesn't exist."""
        try:
            collections = [c.name for c in (await self.client.get_collections()).collections]
            if self.collection in collections:
                logger.info("Qdrant collection '%s' already exists", self.collection)
                return
            await self.client.create_collection(
                collection_name=self.collection,
                vectors_config=VectorParams(
                    size=self.dimensions,
                    distance=Distance.COSINE,
                ),
            )
            await self.client.create_payload_index(
                collection_name=self.collection,
                field_name="metadata.source",
                field_schema=PayloadSchemaType.KEYWORD,
            )
        except Exception as e:
            raise GuidelineStoreError(f"Cannot prepare collection: {e}") from e
        logger.info("Created Qdrant collection '%s'", self.collection)

    def _check_dimensions(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimensions:
            raise ValueError(
                f"Vector has {len(vector)} dimensions, collection expects {self.dimensions}"
            )

    async def nearest_neighbors(
        self, vector: list[float], k: int
    ) -> list[GuidelineChunk]:
        """Return up to ``k`` chunks, most similar first."""
        self._check_dimensions(vector)
        generation = None
        if self.cache is not None:
            generation = self.cache.generation
            cached = self.cache.get(vector, k)
            if cached is not None:
                logger.debug("Query cache hit (k=%d)", k)
                return cached

        try:
            results = await self.client.query_points(
                collection_name=self.collection,
                query=vector,
                limit=k,
                with_payload=True,
            )
        except Exception as e:
            raise GuidelineStoreError(f"Vector search failed: {e}") from e

        chunks = []
        for point in results.points:
            payload = point.payload or {}
            chunks.append(
                GuidelineChunk(
                    id=payload.get("key") or str(point.id),
                    content=payload.get("content", ""),
                    metadata=ChunkMetadata(**payload.get("metadata", {})),
                    similarity=point.score,
                )
            )
        logger.info("Qdrant returned %d points (k=%d)", len(chunks), k)
        for c in chunks:
            logger.debug(
                "  score=%.3f title=%r section=%r", c.similarity, c.metadata.title, c.metadata.section
            )

        if self.cache is not None and not self.cache.put(vector, k, chunks, generation):
            logger.debug("Store changed during search, result not cached")
        return chunks

    async def insert_batch(self, chunks: Sequence[GuidelineChunk]) -> list[str]:
        """Store chunks with their embeddings; all of them or none.

        Writes go out ``insert_batch_size`` points per round-trip. If any
        round-trip fails, points already written by this call are deleted
        before the error is raised.
        """
        points = []
        for chunk in chunks:
            if chunk.embedding is None:
                raise ValueError(f"Chunk {chunk.id!r} has no embedding")
            self._check_dimensions(chunk.embedding)
            points.append(
                PointStruct(
                    id=point_id(chunk.id),
                    vector=chunk.embedding,
                    payload={
                        "key": chunk.id,
                        "content": chunk.content,
                        "metadata": chunk.metadata.model_dump(),
                    },
                )
            )

        if self.cache is not None:
            self.cache.clear()

        written: list[str] = []
        try:
            for start in range(0, len(points), self.insert_batch_size):
                batch = points[start : start + self.insert_batch_size]
                await self.client.upsert(
                    collection_name=self.collection, points=batch, wait=True
                )
                written.extend(str(p.id) for p in batch)
                logger.debug("Upserted %d/%d points", len(written), len(points))
        except Exception as e:
            await self._rollback(written)
            raise GuidelineStoreError(f"Batch insert failed: {e}") from e
        finally:
            if self.cache is not None:
                self.cache.clear()

        logger.info("Inserted %d chunks into '%s'", len(written), self.collection)
        return written

    async def _rollback(self, ids: list[str]) -> None:
        if not ids:
            return
        logger.warning("Rolling back %d points after failed insert", len(ids))
        try:
            await self.client.delete(
                collection_name=self.collection,
                points_selector=PointIdsList(points=ids),
                wait=True,
            )
        except Exception:
            logger.exception("Rollback of %d points failed", len(ids))

    async def clear(self) -> None:
        """Drop every stored chunk and recreate the empty collection."""
        if self.cache is not None:
            self.cache.clear()
        try:
            await self.client.delete_collection(collection_name=self.collection)
        except Exception as e:
            raise GuidelineStoreError(f"Cannot clear collection: {e}") from e
        await self.ensure_collection()
        logger.info("Cleared Qdrant collection '%s'", self.collection)

    async def count(self) -> int:
        try:
            result = await self.client.count(collection_name=self.collection, exact=True)
        except Exception as e:
            raise GuidelineStoreError(f"Count failed: {e}") from e
        return result.count
