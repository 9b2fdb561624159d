"""Transcript -> patient, diagnosis, guideline evidence, doses and management plan."""

from __future__ import annotations

import datetime
import json
import logging
from collections.abc import Sequence

from clinical_rag.errors import ClinicalDecisionError, JSONExtractionError
from clinical_rag.llm.client import CompletionProvider
from clinical_rag.llm.json_extract import parse_llm_list, parse_llm_model, preview
from clinical_rag.models.dosing import DoseCalculationResult, MedicationProposal
from clinical_rag.models.rag import EssentialInfo
from clinical_rag.models.schemas import ClinicalDecision, ConditionAssessment, Patient
from clinical_rag.prompts import (
    CONDITION_ASSESSMENT_PROMPT,
    JSON_ONLY_SYSTEM_PROMPT,
    MANAGEMENT_PLAN_PROMPT,
    MANAGEMENT_PLAN_SYSTEM_PROMPT,
    MEDICATION_PROPOSAL_PROMPT,
    PATIENT_EXTRACTION_PROMPT,
)
from clinical_rag.services.dose_calculator import calculate_dose, validate_request
from clinical_rag.services.prompt_context import format_chunks, format_patient
from clinical_rag.services.rag_service import RAGOrchestrator, get_essential_info

logger = logging.getLogger(__name__)


def calculate_proposed_doses(
    proposals: Sequence[MedicationProposal], patient: Patient, condition: str
) -> tuple[list[DoseCalculationResult], list[str]]:
    """Validate and calculate each proposal; invalid ones become warnings."""
    results: list[DoseCalculationResult] = []
    rejected: list[str] = []
    for proposal in proposals:
        request = proposal.to_request(
            weight_kg=patient.weight, age_years=patient.age, condition=condition
        )
        errors = validate_request(request)
        if errors:
            name = proposal.medication or "unnamed medication"
            rejected.append(f"Dose for {name} not calculated: {'; '.join(errors)}")
            continue
        results.append(calculate_dose(request))
    return results, rejected


def overall_confidence(
    assessment_confidence: float, doses: Sequence[DoseCalculationResult]
) -> float:
    dose_confidence = (
        sum(d.confidence for d in doses) / len(doses) if doses else 0.0
    )
    return round((assessment_confidence + dose_confidence) / 2)


def _guideline_summary(info: EssentialInfo) -> str:
    recommendation = info.summary.final_recommendation
    return json.dumps(
        {
            "synthesis": info.summary.synthesis,
            "recommendations": [
                r.model_dump() for r in recommendation.recommendations
            ],
            "warnings": recommendation.warnings,
            "highly_relevant_chunks": json.loads(
                format_chunks(info.highly_relevant_chunks, preview_chars=500)
            ),
        },
        indent=2,
    )


class ClinicalDecisionService:
    def __init__(
        self,
        llm: CompletionProvider,
        orchestrator: RAGOrchestrator,
        *,
        essential_threshold: float = 0.7,
    ) -> None:
        self.llm = llm
        self.orchestrator = orchestrator
        self.essential_threshold = essential_threshold

    async def extract_patient(self, transcript: str) -> Patient:
        response = await self.llm.complete(
            JSON_ONLY_SYSTEM_PROMPT.format(
                task="extracts structured patient data from clinical transcripts"
            ),
            PATIENT_EXTRACTION_PROMPT.format(transcript=transcript),
        )
        try:
            return parse_llm_model(response, Patient)
        except JSONExtractionError as e:
            logger.error("Patient extraction failed: %s. Response: %s", e, preview(response))
            raise ClinicalDecisionError(
                "Failed to extract patient data from transcript", code="INVALID_TRANSCRIPT"
            ) from e

    async def assess_condition(self, patient: Patient, transcript: str) -> ConditionAssessment:
        response = await self.llm.complete(
            JSON_ONLY_SYSTEM_PROMPT.format(
                task="determines conditions and severity from clinical data"
            ),
            CONDITION_ASSESSMENT_PROMPT.format(
                patient_info=format_patient(patient), transcript=transcript
            ),
        )
        try:
            return parse_llm_model(response, ConditionAssessment)
        except JSONExtractionError as e:
            logger.error("Condition assessment failed: %s. Response: %s", e, preview(response))
            raise ClinicalDecisionError(
                "Failed to determine condition and severity", code="ASSESSMENT_FAILED"
            ) from e

    async def propose_medications(
        self, patient: Patient, assessment: ConditionAssessment, info: EssentialInfo
    ) -> list[MedicationProposal]:
        response = await self.llm.complete(
            JSON_ONLY_SYSTEM_PROMPT.format(
                task="generates evidence-based medication recommendations"
            ),
            MEDICATION_PROPOSAL_PROMPT.format(
                patient_info=format_patient(patient),
                condition=assessment.condition,
                severity=assessment.severity,
                guideline_summary=_guideline_summary(info),
            ),
        )
        try:
            return parse_llm_list(response, MedicationProposal)
        except JSONExtractionError as e:
            # No doses is a valid (if unhelpful) plan; carry on without them.
            logger.warning("Medication proposals unusable (%s). Response: %s", e, preview(response))
            return []

    async def decide(self, transcript: str, *, max_chunks: int | None = None) -> ClinicalDecision:
        logger.info("=== Clinical decision request (%d chars) ===", len(transcript))
        patient = await self.extract_patient(transcript)
        assessment = await self.assess_condition(patient, transcript)
        logger.info(
            "Assessment: %s (%s, confidence=%.0f)",
            assessment.condition,
            assessment.severity,
            assessment.confidence,
        )

        rag = await self.orchestrator.process_rag(
            patient,
            assessment.condition,
            assessment.severity,
            patient.presenting_complaint or assessment.condition,
            max_chunks,
        )
        info = get_essential_info(rag, self.essential_threshold)

        proposals = await self.propose_medications(patient, assessment, info)
        doses, rejected = calculate_proposed_doses(proposals, patient, assessment.condition)

        plan = await self.llm.complete(
            MANAGEMENT_PLAN_SYSTEM_PROMPT,
            MANAGEMENT_PLAN_PROMPT.format(
                patient_info=format_patient(patient),
                condition=assessment.condition,
                severity=assessment.severity,
                medications=json.dumps([d.model_dump() for d in doses]),
                guideline_summary=_guideline_summary(info),
            ),
        )

        warnings = list(rag.final_recommendation.warnings)
        warnings.extend(rejected)
        for dose in doses:
            warnings.extend(dose.warnings)

        return ClinicalDecision(
            patient=patient,
            condition=assessment.condition,
            severity=assessment.severity,
            guidelines=info,
            medication_doses=doses,
            management_plan=plan.strip(),
            confidence=overall_confidence(assessment.confidence, doses),
            evidence_summary=(
                f"Based on clinical assessment of {assessment.condition} with "
                f"{assessment.severity} severity and "
                f"{rag.retrieval_metrics.relevant_chunks} relevant guideline chunks."
            ),
            warnings=warnings,
            timestamp=datetime.datetime.now(datetime.UTC),
        )
