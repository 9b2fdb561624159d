"""Relevance filter: LLM re-ranking of retrieved chunks for one clinical scenario."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from clinical_rag.errors import JSONExtractionError
from clinical_rag.llm.client import CompletionProvider
from clinical_rag.llm.json_extract import parse_llm_list, preview
from clinical_rag.models.rag import ChunkScore, GuidelineChunk, RankedChunk
from clinical_rag.models.schemas import Patient
from clinical_rag.prompts import FILTER_PROMPT, GUIDELINES_SYSTEM_PROMPT
from clinical_rag.services.prompt_context import format_chunks, format_patient

logger = logging.getLogger(__name__)

_CHUNK_FIELDS = set(GuidelineChunk.model_fields) - {"embedding"}

RELEVANCE_THRESHOLD = 50.0
FALLBACK_SCORE = 50.0
FALLBACK_REASONING = "Default relevance score due to parsing error"
UNSCORED_REASONING = "No relevance assessment available"


def fallback_ranking(chunks: Sequence[GuidelineChunk]) -> list[RankedChunk]:
    """Keep every chunk at a neutral score when the LLM ranking is unusable."""
    return [
        RankedChunk(
            **chunk.model_dump(include=_CHUNK_FIELDS),
            relevance_score=FALLBACK_SCORE,
            reasoning=FALLBACK_REASONING,
            key_points=[],
        )
        for chunk in chunks
    ]


def apply_scores(
    chunks: Sequence[GuidelineChunk],
    scores: Sequence[ChunkScore],
    threshold: float = RELEVANCE_THRESHOLD,
) -> list[RankedChunk]:
    """Join LLM scores back onto chunks by id, drop those below ``threshold``.

    Chunks the LLM did not score get 0. The result is sorted by descending
    score; ties keep retrieval order.
    """
    by_id: dict[str, ChunkScore] = {}
    for score in scores:
        by_id.setdefault(score.chunk_id, score)

    ranked = []
    for chunk in chunks:
        score = by_id.get(chunk.id)
        ranked.append(
            RankedChunk(
                **chunk.model_dump(include=_CHUNK_FIELDS),
                relevance_score=score.relevance_score if score else 0.0,
                reasoning=(score.reasoning if score else "") or UNSCORED_REASONING,
                key_points=score.key_points if score else [],
            )
        )
    kept = [c for c in ranked if c.relevance_score >= threshold]
    kept.sort(key=lambda c: c.relevance_score, reverse=True)
    return kept


class RelevanceFilter:
    def __init__(
        self,
        llm: CompletionProvider,
        *,
        threshold: float = RELEVANCE_THRESHOLD,
        preview_chars: int = 500,
    ) -> None:
        self.llm = llm
        self.threshold = threshold
        self.preview_chars = preview_chars

    async def rank(
        self,
        chunks: Sequence[GuidelineChunk],
        patient: Patient,
        condition: str,
        severity: str,
    ) -> list[RankedChunk]:
        """Score ``chunks`` for the scenario and keep the relevant ones, best first."""
        if not chunks:
            return []

        prompt = FILTER_PROMPT.format(
            patient_info=format_patient(patient),
            condition=condition,
            severity=severity,
            guideline_chunks=format_chunks(chunks, preview_chars=self.preview_chars),
        )
        response = await self.llm.complete(GUIDELINES_SYSTEM_PROMPT, prompt)

        try:
            scores = parse_llm_list(response, ChunkScore)
        except JSONExtractionError as e:
            logger.warning(
                "Relevance filter fallback (%s); keeping all %d chunks at score %.0f. "
                "Response: %s",
                e,
                len(chunks),
                FALLBACK_SCORE,
                preview(response),
            )
            return fallback_ranking(chunks)

        ranked = apply_scores(chunks, scores, self.threshold)
        logger.info(
            "Relevance filter kept %d/%d chunks (threshold=%.0f)",
            len(ranked),
            len(chunks),
            self.threshold,
        )
        return ranked
