"""Dose calculator endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter

from clinical_rag.errors import DoseCalculationError
from clinical_rag.models.dosing import DoseCalculationRequest, DoseCalculationResult
from clinical_rag.routers.errors import http_error, invalid_request
from clinical_rag.services.dose_calculator import calculate_dose, validate_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["dosing"])


@router.post("/dose-calculator", response_model=DoseCalculationResult)
async def dose_calculator(body: DoseCalculationRequest) -> DoseCalculationResult:
    errors = validate_request(body)
    if errors:
        logger.info("Rejected dose request for %r: %s", body.medication, errors)
        raise invalid_request(errors)
    try:
        return calculate_dose(body)
    except DoseCalculationError as e:
        raise http_error(e)
