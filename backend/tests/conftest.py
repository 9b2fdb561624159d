"""Test fixtures and fakes for the guideline pipeline."""

from __future__ import annotations

import hashlib
from collections.abc import AsyncIterator, Callable, Sequence

import pytest
from httpx import ASGITransport, AsyncClient

from clinical_rag.main import app
from clinical_rag.models.rag import ChunkMetadata, GuidelineChunk
from clinical_rag.models.schemas import Patient

DIMENSIONS = 8


class FakeLLM:
    """Scripted completion client.

    Replies are chosen by a marker phrase found in the user prompt. A list
    reply is consumed one item per call, repeating its last item.
    """

    FILTER = "Score each therapeutic guideline chunk"
    SYNTHESIS = "Synthesize the ranked therapeutic guideline chunks"
    RECOMMENDATION = "provide an evidence-based recommendation."
    EXTRACT = "Extract patient information"
    ASSESS = "determine the primary"
    PROPOSE = "Propose weight-based medication doses"
    PLAN = "Generate a management plan"
    REVIEW = "guideline review agent"

    def __init__(self) -> None:
        self.replies: dict[str, object] = {}
        self.calls: list[tuple[str, str]] = []

    def calls_for(self, marker: str) -> list[str]:
        return [user for _, user in self.calls if marker in user]

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        for marker, reply in self.replies.items():
            if marker not in user_prompt:
                continue
            if isinstance(reply, list):
                reply = reply.pop(0) if len(reply) > 1 else reply[0]
            if isinstance(reply, Exception):
                raise reply
            return reply
        raise AssertionError(f"Unscripted LLM call: {user_prompt[:80]!r}")


def fake_vector(text: str, dimensions: int = DIMENSIONS) -> list[float]:
    """Deterministic, non-zero vector derived from ``text``."""
    digest = hashlib.sha256(text.encode()).digest()
    return [b / 255 + 0.01 for b in digest[:dimensions]]


class FakeEmbedder:
    def __init__(self, dimensions: int = DIMENSIONS) -> None:
        self.dimensions = dimensions
        self.queries: list[str] = []
        self.batches: list[list[str]] = []
        self.error: Exception | None = None

    async def embed(self, text: str) -> list[float]:
        self.queries.append(text)
        if self.error is not None:
            raise self.error
        return fake_vector(text, self.dimensions)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batches.append(list(texts))
        if self.error is not None:
            raise self.error
        return [fake_vector(t, self.dimensions) for t in texts]


class FakeStore:
    """In-memory store returning its chunks in insertion order."""

    def __init__(self, chunks: Sequence[GuidelineChunk] = ()) -> None:
        self.chunks = list(chunks)
        self.searches: list[int] = []
        self.cleared = 0
        self.error: Exception | None = None

    async def nearest_neighbors(self, vector: list[float], k: int) -> list[GuidelineChunk]:
        self.searches.append(k)
        if self.error is not None:
            raise self.error
        return self.chunks[:k]

    async def insert_batch(self, chunks: Sequence[GuidelineChunk]) -> list[str]:
        if self.error is not None:
            raise self.error
        self.chunks.extend(chunks)
        return [c.id for c in chunks]

    async def clear(self) -> None:
        self.cleared += 1
        self.chunks = []


def make_chunk(
    chunk_id: str = "croup:0:0",
    content: str = "Give dexamethasone 0.15 mg/kg orally as a single dose for mild croup.",
    source: str = "croup.json",
    title: str = "Croup",
) -> GuidelineChunk:
    return GuidelineChunk(
        id=chunk_id,
        content=content,
        metadata=ChunkMetadata(title=title, section="Treatment", source=source),
    )


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def chunk_factory() -> Callable[..., GuidelineChunk]:
    return make_chunk


@pytest.fixture
def chunks() -> list[GuidelineChunk]:
    return [
        make_chunk(f"croup:{i}:0", f"Croup guideline paragraph {i}.") for i in range(5)
    ]


@pytest.fixture
def store(chunks: list[GuidelineChunk]) -> FakeStore:
    return FakeStore(chunks)


@pytest.fixture
def patient() -> Patient:
    return Patient(
        name="Sam Taylor",
        age=3,
        weight=14.2,
        sex="M",
        presenting_complaint="Barking cough and stridor at rest",
    )


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
