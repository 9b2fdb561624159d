"""Recommendation generator: the final structured, evidence-backed recommendation."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from clinical_rag.errors import JSONExtractionError
from clinical_rag.llm.client import CompletionProvider
from clinical_rag.llm.json_extract import parse_llm_model, preview
from clinical_rag.models.rag import RankedChunk, Recommendation
from clinical_rag.models.schemas import Patient
from clinical_rag.prompts import GUIDELINES_SYSTEM_PROMPT, RECOMMENDATION_PROMPT
from clinical_rag.services.prompt_context import format_chunks, format_patient

logger = logging.getLogger(__name__)

PARSE_FAILURE_WARNING = "Recommendation parsing failed - clinical judgment required"


def no_guidelines_recommendation() -> Recommendation:
    return Recommendation(
        guideline_analysis="No relevant guidelines found for analysis",
        evidence_assessment="No evidence available for assessment",
        recommendations=[],
        safety_considerations=["No guidelines available for safety assessment"],
        monitoring=["No guidelines available for monitoring recommendations"],
        evidence_level="Unknown",
        confidence=0,
        guideline_sources=[],
        warnings=["No guidelines available - clinical judgment required"],
    )


def parse_failure_recommendation(chunks: Sequence[RankedChunk]) -> Recommendation:
    """Degraded recommendation that points the clinician back at the sources."""
    sources = list(dict.fromkeys(c.metadata.source for c in chunks))
    return Recommendation(
        guideline_analysis="Recommendation parsing failed. Review individual guidelines.",
        evidence_assessment="Unable to assess evidence due to parsing error",
        recommendations=[],
        safety_considerations=["Clinical judgment required - review individual guidelines"],
        monitoring=["Standard monitoring recommended - review individual guidelines"],
        evidence_level="Unknown",
        confidence=0,
        guideline_sources=sources,
        warnings=[PARSE_FAILURE_WARNING],
    )


class RecommendationGenerator:
    def __init__(self, llm: CompletionProvider) -> None:
        self.llm = llm

    async def generate(
        self,
        chunks: Sequence[RankedChunk],
        patient: Patient,
        condition: str,
        severity: str,
        presenting_complaint: str,
    ) -> Recommendation:
        if not chunks:
            logger.info("Recommendation skipped: no relevant guidelines")
            return no_guidelines_recommendation()

        prompt = RECOMMENDATION_PROMPT.format(
            patient_info=format_patient(patient),
            condition=condition,
            severity=severity,
            presenting_complaint=presenting_complaint,
            guideline_chunks=format_chunks(chunks),
        )
        response = await self.llm.complete(GUIDELINES_SYSTEM_PROMPT, prompt)

        try:
            recommendation = parse_llm_model(response, Recommendation)
        except JSONExtractionError as e:
            logger.warning(
                "Recommendation fallback (%s). Response: %s", e, preview(response)
            )
            return parse_failure_recommendation(chunks)

        logger.info(
            "Recommendation: %d medications, confidence=%.0f, evidence=%s",
            len(recommendation.recommendations),
            recommendation.confidence,
            recommendation.evidence_level,
        )
        return recommendation
