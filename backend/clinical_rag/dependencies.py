"""Composition root: build service objects from Settings and hand them to routes.

Services never read ``settings`` themselves; everything they need is passed
in here. The FastAPI lifespan stores one ``Components`` on ``app.state`` and
the ``get_*`` functions below expose its parts to route handlers, so tests
can swap any of them through ``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request
from google import genai
from qdrant_client import AsyncQdrantClient

from clinical_rag.agents.refinement import GuidelineReviewAgent
from clinical_rag.config import Settings
from clinical_rag.llm.client import ClaudeCompletionClient
from clinical_rag.services.clinical_decision_service import ClinicalDecisionService
from clinical_rag.services.embedding_service import EmbeddingGateway
from clinical_rag.services.guideline_store import QdrantGuidelineStore, QueryCache
from clinical_rag.services.rag_service import RAGOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Components:
    settings: Settings
    qdrant: AsyncQdrantClient
    store: QdrantGuidelineStore
    embedder: EmbeddingGateway
    orchestrator: RAGOrchestrator
    review_agent: GuidelineReviewAgent
    decision_service: ClinicalDecisionService

    async def aclose(self) -> None:
        await self.qdrant.close()


def build_qdrant_client(settings: Settings) -> AsyncQdrantClient:
    """In-process Qdrant when ``qdrant_location`` is set, otherwise a server."""
    if settings.qdrant_location:
        return AsyncQdrantClient(location=settings.qdrant_location)
    kwargs: dict = {"url": settings.qdrant_url}
    if settings.qdrant_api_key:
        kwargs["api_key"] = settings.qdrant_api_key
    return AsyncQdrantClient(**kwargs)


def build_embedder(settings: Settings) -> EmbeddingGateway:
    """API-key transport when GOOGLE_API_KEY is set, otherwise Vertex AI via ADC."""
    genai_client = None
    if not settings.google_api_key:
        genai_client = genai.Client(
            vertexai=True,
            project=settings.gcp_project_id,
            location=settings.gcp_location,
        )
    return EmbeddingGateway(
        model=settings.embedding_model,
        dimensions=settings.embedding_dimensions,
        batch_size=settings.embedding_batch_size,
        genai_client=genai_client,
        api_key=settings.google_api_key,
        gcp_project=settings.gcp_project_id,
        gcp_location=settings.gcp_location,
    )


def build_store(settings: Settings, client: AsyncQdrantClient) -> QdrantGuidelineStore:
    cache = None
    if settings.query_cache_enabled:
        cache = QueryCache(ttl_seconds=settings.query_cache_ttl_seconds)
    return QdrantGuidelineStore(
        client,
        collection=settings.qdrant_collection,
        dimensions=settings.embedding_dimensions,
        insert_batch_size=settings.store_insert_batch_size,
        cache=cache,
    )


def build_components(settings: Settings) -> Components:
    qdrant = build_qdrant_client(settings)
    store = build_store(settings, qdrant)
    embedder = build_embedder(settings)
    llm = ClaudeCompletionClient(settings.ai_model, max_turns=settings.llm_max_turns)
    orchestrator = RAGOrchestrator.from_llm(
        embedder,
        store,
        llm,
        relevance_threshold=settings.rag_relevance_threshold,
        preview_chars=settings.rag_chunk_preview_chars,
        concurrent_generation=settings.rag_concurrent_generation,
        max_chunks=settings.rag_max_chunks,
    )
    logger.info(
        "Components ready: model=%s collection=%s dims=%d",
        settings.ai_model,
        settings.qdrant_collection,
        settings.embedding_dimensions,
    )
    return Components(
        settings=settings,
        qdrant=qdrant,
        store=store,
        embedder=embedder,
        orchestrator=orchestrator,
        review_agent=GuidelineReviewAgent(
            llm,
            embedder,
            store,
            preview_chars=settings.rag_chunk_preview_chars,
        ),
        decision_service=ClinicalDecisionService(
            llm,
            orchestrator,
            essential_threshold=settings.essential_info_threshold,
        ),
    )


# --- FastAPI dependencies ---


def get_components(request: Request) -> Components:
    return request.app.state.components


def get_settings(request: Request) -> Settings:
    return get_components(request).settings


def get_orchestrator(request: Request) -> RAGOrchestrator:
    return get_components(request).orchestrator


def get_review_agent(request: Request) -> GuidelineReviewAgent:
    return get_components(request).review_agent


def get_decision_service(request: Request) -> ClinicalDecisionService:
    return get_components(request).decision_service


def get_embedder(request: Request) -> EmbeddingGateway:
    return get_components(request).embedder


def get_store(request: Request) -> QdrantGuidelineStore:
    return get_components(request).store
