"""Guideline RAG endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from clinical_rag.agents.refinement import GuidelineReviewAgent
from clinical_rag.config import Settings
from clinical_rag.dependencies import get_orchestrator, get_review_agent, get_settings
from clinical_rag.errors import ClinicalRAGError
from clinical_rag.models.agents import RefinementOutcome
from clinical_rag.models.rag import EssentialInfo, RAGResult
from clinical_rag.models.schemas import EssentialInfoRequest, RAGRequest
from clinical_rag.routers.errors import http_error
from clinical_rag.services.rag_service import RAGOrchestrator, get_essential_info

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/rag", tags=["rag"])


async def _run(orchestrator: RAGOrchestrator, body: RAGRequest) -> RAGResult:
    try:
        return await orchestrator.process_rag(
            body.patient,
            body.condition,
            body.severity,
            body.presenting_complaint,
            body.max_chunks,
        )
    except ClinicalRAGError as e:
        logger.exception("RAG pipeline failed for %r", body.condition)
        raise http_error(e)


@router.post("/guidelines", response_model=RAGResult)
async def retrieve_guidelines(
    body: RAGRequest,
    orchestrator: RAGOrchestrator = Depends(get_orchestrator),
) -> RAGResult:
    return await _run(orchestrator, body)


@router.post("/essential", response_model=EssentialInfo)
async def essential_guidelines(
    body: EssentialInfoRequest,
    orchestrator: RAGOrchestrator = Depends(get_orchestrator),
) -> EssentialInfo:
    result = await _run(orchestrator, body)
    return get_essential_info(result, body.threshold)


@router.post("/review", response_model=RefinementOutcome)
async def review_guidelines(
    body: RAGRequest,
    orchestrator: RAGOrchestrator = Depends(get_orchestrator),
    agent: GuidelineReviewAgent = Depends(get_review_agent),
    settings: Settings = Depends(get_settings),
) -> RefinementOutcome:
    """Run the pipeline, then let the review agent search until it is confident."""
    result = await _run(orchestrator, body)
    try:
        return await agent.run(
            result.filtered_chunks,
            body.patient,
            body.condition,
            body.severity,
            max_iterations=settings.agent_max_iterations,
            threshold=settings.agent_confidence_threshold,
        )
    except ClinicalRAGError as e:
        logger.exception("Guideline review failed for %r", body.condition)
        raise http_error(e)
