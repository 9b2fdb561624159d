"""Embedding gateway: Google embeddings normalized to the store's dimensionality."""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from google import genai
from google.genai import types

from clinical_rag.errors import EmbeddingFailure

logger = logging.getLogger(__name__)

_VERTEX_PREDICT_URL = (
    "https://{location}-aiplatform.googleapis.com/v1/projects/{project}"
    "/locations/{location}/publishers/google/models/{model}:predict"
)

QUERY_TASK = "RETRIEVAL_QUERY"
DOCUMENT_TASK = "RETRIEVAL_DOCUMENT"


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]: ...


def normalize_dimensions(vector: list[float], dimensions: int) -> list[float]:
    """Truncate ``vector`` to ``dimensions``; shorter vectors are an error."""
    if len(vector) < dimensions:
        raise EmbeddingFailure(
            f"Embedding has {len(vector)} dimensions, store requires {dimensions}"
        )
    if len(vector) > dimensions:
        logger.debug("Truncating embedding from %d to %d dims", len(vector), dimensions)
        return list(vector[:dimensions])
    return list(vector)


class EmbeddingGateway:
    """Embeds text through Vertex AI, either via the GenAI SDK (ADC) or a GCP API key.

    Batches are split into groups of ``batch_size`` to respect provider
    limits; output order always matches input order.
    """

    def __init__(
        self,
        *,
        model: str,
        dimensions: int,
        batch_size: int = 100,
        genai_client: genai.Client | None = None,
        api_key: str = "",
        gcp_project: str = "",
        gcp_location: str = "us-central1",
    ) -> None:
        if not api_key and genai_client is None:
            raise ValueError("EmbeddingGateway needs a GenAI client or an API key")
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.model = model
        self.dimensions = dimensions
        self.batch_size = batch_size
        self._genai_client = genai_client
        self._api_key = api_key
        self._gcp_project = gcp_project
        self._gcp_location = gcp_location

    async def _embed_via_api_key(
        self, texts: list[str], task_type: str
    ) -> list[list[float]]:
        url = _VERTEX_PREDICT_URL.format(
            location=self._gcp_location,
            project=self._gcp_project,
            model=self.model,
        )
        body = {
            "instances": [{"content": t, "task_type": task_type} for t in texts],
            "parameters": {"outputDimensionality": self.dimensions},
        }
        async with httpx.AsyncClient() as client:
            resp = await client.post(
                url, params={"key": self._api_key}, json=body, timeout=30
            )
        resp.raise_for_status()
        return [p["embeddings"]["values"] for p in resp.json()["predictions"]]

    async def _embed_via_sdk(
        self, texts: list[str], task_type: str
    ) -> list[list[float]]:
        response = await self._genai_client.aio.models.embed_content(
            model=self.model,
            contents=texts,
            config=types.EmbedContentConfig(
                output_dimensionality=self.dimensions,
                task_type=task_type,
            ),
        )
        return [list(e.values) for e in response.embeddings]

    async def _embed_group(self, texts: list[str], task_type: str) -> list[list[float]]:
        try:
            if self._api_key:
                vectors = await self._embed_via_api_key(texts, task_type)
            else:
                vectors = await self._embed_via_sdk(texts, task_type)
        except Exception as e:
            raise EmbeddingFailure(f"Embedding provider failed: {e}") from e
        if len(vectors) != len(texts):
            raise EmbeddingFailure(
                f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return [normalize_dimensions(v, self.dimensions) for v in vectors]

    async def embed(self, text: str) -> list[float]:
        """Embed a single query string."""
        logger.debug(
            "Embedding query (%d chars): %r",
            len(text),
            text[:100] + ("..." if len(text) > 100 else ""),
        )
        [vector] = await self._embed_group([text], QUERY_TASK)
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed documents for indexing, ``batch_size`` texts per provider call."""
        if not texts:
            return []
        logger.info(
            "Embedding batch of %d texts (model=%s, dims=%d, group=%d)",
            len(texts),
            self.model,
            self.dimensions,
            self.batch_size,
        )
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            group = texts[start : start + self.batch_size]
            vectors.extend(await self._embed_group(group, DOCUMENT_TASK))
        return vectors
