"""Synthesis engine: consensus and conflict resolution across ranked chunks."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from clinical_rag.errors import JSONExtractionError
from clinical_rag.llm.client import CompletionProvider
from clinical_rag.llm.json_extract import parse_llm_model, preview
from clinical_rag.models.rag import RankedChunk, SynthesisResult
from clinical_rag.models.schemas import Patient
from clinical_rag.prompts import GUIDELINES_SYSTEM_PROMPT, SYNTHESIS_PROMPT
from clinical_rag.services.prompt_context import format_chunks, format_patient

logger = logging.getLogger(__name__)

NO_GUIDELINES_SYNTHESIS = SynthesisResult(
    synthesis="No relevant guidelines found for synthesis",
    conflicts=[],
    consensus="No guidelines available for consensus analysis",
    patient_specific="No patient-specific recommendations available",
    final_recommendations="No recommendations available due to lack of relevant guidelines",
)

PARSE_FAILURE_SYNTHESIS = SynthesisResult(
    synthesis="Synthesis failed due to parsing error. Using available guideline information.",
    conflicts=["Unable to identify conflicts due to parsing error"],
    consensus="Unable to determine consensus due to parsing error",
    patient_specific="Unable to provide patient-specific analysis due to parsing error",
    final_recommendations="Please review individual guideline chunks for recommendations",
)


class SynthesisEngine:
    def __init__(self, llm: CompletionProvider) -> None:
        self.llm = llm

    async def synthesize(
        self,
        chunks: Sequence[RankedChunk],
        patient: Patient,
        condition: str,
        severity: str,
    ) -> SynthesisResult:
        """Reconcile the ranked chunks into one synthesis for the scenario.

        No chunks means no LLM call: the canned empty-evidence result is
        returned instead.
        """
        if not chunks:
            logger.info("Synthesis skipped: no relevant guidelines")
            return NO_GUIDELINES_SYNTHESIS.model_copy(deep=True)

        prompt = SYNTHESIS_PROMPT.format(
            patient_info=format_patient(patient),
            condition=condition,
            severity=severity,
            guideline_chunks=format_chunks(chunks),
        )
        response = await self.llm.complete(GUIDELINES_SYSTEM_PROMPT, prompt)

        try:
            result = parse_llm_model(response, SynthesisResult)
        except JSONExtractionError as e:
            logger.warning("Synthesis fallback (%s). Response: %s", e, preview(response))
            return PARSE_FAILURE_SYNTHESIS.model_copy(deep=True)

        logger.info(
            "Synthesized %d chunks (%d conflicts)", len(chunks), len(result.conflicts)
        )
        return result
