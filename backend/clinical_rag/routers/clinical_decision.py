"""Transcript-to-management-plan endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from clinical_rag.dependencies import get_decision_service
from clinical_rag.errors import ClinicalRAGError
from clinical_rag.models.schemas import ClinicalDecision, TranscriptRequest
from clinical_rag.routers.errors import http_error
from clinical_rag.services.clinical_decision_service import ClinicalDecisionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["clinical-decision"])


@router.post("/clinical-decision", response_model=ClinicalDecision)
async def clinical_decision(
    body: TranscriptRequest,
    service: ClinicalDecisionService = Depends(get_decision_service),
) -> ClinicalDecision:
    try:
        return await service.decide(body.transcript, max_chunks=body.max_chunks)
    except ClinicalRAGError as e:
        logger.exception("Clinical decision failed")
        raise http_error(e)
