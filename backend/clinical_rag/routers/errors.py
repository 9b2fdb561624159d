"""Map pipeline failures onto HTTP errors with an ErrorDetail body."""

from __future__ import annotations

from fastapi import HTTPException

from clinical_rag.errors import (
    ClinicalDecisionError,
    ClinicalRAGError,
    DoseCalculationError,
    RAGPipelineError,
)
from clinical_rag.models.schemas import ErrorDetail

INVALID_REQUEST = "INVALID_REQUEST"


def invalid_request(messages: list[str]) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=ErrorDetail(
            code=INVALID_REQUEST,
            message="; ".join(messages),
            details={"errors": messages},
        ).model_dump(),
    )


def http_error(e: ClinicalRAGError) -> HTTPException:
    """Bad input maps to 4xx; provider and store outages to 503."""
    if isinstance(e, DoseCalculationError):
        status = 400
    elif isinstance(e, ClinicalDecisionError):
        status = 422
    else:
        status = 503
    details = {"stage": e.stage} if isinstance(e, RAGPipelineError) else {}
    return HTTPException(
        status_code=status,
        detail=ErrorDetail(code=e.code, message=e.message, details=details).model_dump(),
    )
