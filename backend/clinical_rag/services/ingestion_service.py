"""Guideline ingestion: embed chunks and store them batch by batch."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

from clinical_rag.errors import ClinicalRAGError
from clinical_rag.models.rag import GuidelineChunk, IngestionSummary
from clinical_rag.services.embedding_service import Embedder
from clinical_rag.services.guideline_store import GuidelineStore

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


async def ingest_chunks(
    chunks: Sequence[GuidelineChunk],
    embedder: Embedder,
    store: GuidelineStore,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    clear_existing: bool = False,
    rejected: Sequence[str] = (),
) -> IngestionSummary:
    """Embed and insert ``chunks`` in batches of ``batch_size``.

    Each batch is embedded and inserted as a unit; a failed batch is counted
    and reported while later batches still run. ``rejected`` carries parse
    errors from the loader so the summary covers the whole upload.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")
    if clear_existing:
        logger.info("Clearing existing guidelines before ingestion")
        await store.clear()

    total_batches = math.ceil(len(chunks) / batch_size)
    successful = 0
    failed = len(rejected)
    errors = list(rejected)
    logger.info("Processing %d chunks in batches of %d", len(chunks), batch_size)

    for number, start in enumerate(range(0, len(chunks), batch_size), start=1):
        batch = chunks[start : start + batch_size]
        logger.info("Processing batch %d/%d", number, total_batches)
        try:
            vectors = await embedder.embed_batch([c.content for c in batch])
            embedded = [
                c.model_copy(update={"embedding": v})
                for c, v in zip(batch, vectors, strict=True)
            ]
            ids = await store.insert_batch(embedded)
        except ClinicalRAGError as e:
            logger.error("Batch %d/%d failed: %s", number, total_batches, e.message)
            failed += len(batch)
            errors.append(f"Batch {number}: {e.message}")
            continue
        successful += len(ids)

    summary = IngestionSummary(
        total=len(chunks) + len(rejected),
        successful=successful,
        failed=failed,
        batch_size=batch_size,
        total_batches=total_batches,
        errors=errors,
    )
    logger.info(
        "Ingestion done: %d/%d stored, %d failed",
        summary.successful,
        summary.total,
        summary.failed,
    )
    return summary
