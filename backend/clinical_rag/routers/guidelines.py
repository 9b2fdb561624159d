"""Guideline upload and query-cache management endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from clinical_rag.config import Settings
from clinical_rag.dependencies import get_embedder, get_settings, get_store
from clinical_rag.errors import ClinicalRAGError
from clinical_rag.models.rag import IngestionSummary
from clinical_rag.models.schemas import CacheStats, GuidelineUploadRequest
from clinical_rag.routers.errors import http_error, invalid_request
from clinical_rag.services.document_processor import parse_guideline_export
from clinical_rag.services.embedding_service import Embedder
from clinical_rag.services.guideline_store import QdrantGuidelineStore
from clinical_rag.services.ingestion_service import ingest_chunks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/guidelines", tags=["guidelines"])


@router.post("/upload", response_model=IngestionSummary)
async def upload_guidelines(
    body: GuidelineUploadRequest,
    embedder: Embedder = Depends(get_embedder),
    store: QdrantGuidelineStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> IngestionSummary:
    chunks, rejected = parse_guideline_export(body.chunks)
    if not chunks and not body.clear_existing:
        raise invalid_request(rejected or ["No guideline chunks in upload"])
    logger.info("Uploading %d guideline chunks (%d rejected)", len(chunks), len(rejected))
    try:
        return await ingest_chunks(
            chunks,
            embedder,
            store,
            batch_size=settings.store_insert_batch_size,
            clear_existing=body.clear_existing,
            rejected=rejected,
        )
    except ClinicalRAGError as e:
        logger.exception("Guideline upload failed")
        raise http_error(e)


def _cache_stats(store: QdrantGuidelineStore) -> CacheStats:
    if store.cache is None:
        return CacheStats(enabled=False, size=0, hits=0, misses=0, ttl_seconds=0)
    return CacheStats(enabled=True, **store.cache.stats())


@router.get("/cache", response_model=CacheStats)
async def cache_stats(store: QdrantGuidelineStore = Depends(get_store)) -> CacheStats:
    return _cache_stats(store)


@router.delete("/cache", response_model=CacheStats)
async def clear_cache(store: QdrantGuidelineStore = Depends(get_store)) -> CacheStats:
    if store.cache is not None:
        store.cache.clear()
        logger.info("Query cache cleared")
    return _cache_stats(store)
