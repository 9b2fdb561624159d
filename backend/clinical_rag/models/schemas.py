"""Pydantic request/response/error schemas."""

from __future__ import annotations

import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from clinical_rag.models.dosing import DoseCalculationResult
from clinical_rag.models.rag import EssentialInfo, as_number

Severity = Literal["mild", "moderate", "severe"]


# --- Patient ---


class Patient(BaseModel):
    """Demographic and clinical snapshot extracted from a transcript.

    Frozen: one snapshot is shared by every stage of a pipeline run.
    """

    model_config = {"frozen": True}

    name: str = "Unknown"
    age: float = Field(ge=0, le=120)
    weight: float = Field(gt=0, le=500)
    height: float | None = None
    sex: Literal["M", "F"] | None = None
    presenting_complaint: str = ""
    history: str = ""
    examination: str = ""
    assessment: str = ""

    @field_validator("sex", mode="before")
    @classmethod
    def _normalise_sex(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip().upper()[:1]
            return v if v in ("M", "F") else None
        return v


# --- RAG API ---


class RAGRequest(BaseModel):
    patient: Patient
    condition: str = Field(min_length=1)
    severity: Severity
    presenting_complaint: str = Field(min_length=1)
    # None uses the configured RAG_MAX_CHUNKS
    max_chunks: int | None = Field(default=None, ge=1, le=50)


class EssentialInfoRequest(RAGRequest):
    threshold: float = Field(default=0.7, ge=0, le=1)


# --- Guideline upload ---


class GuidelineUploadRequest(BaseModel):
    # Items are validated one by one during ingestion so that a bad row is
    # reported instead of rejecting the whole upload.
    chunks: list[dict[str, Any]]
    clear_existing: bool = False


class CacheStats(BaseModel):
    enabled: bool
    size: int
    hits: int
    misses: int
    ttl_seconds: float


# --- Clinical decision (transcript workflow) ---


class TranscriptRequest(BaseModel):
    transcript: str = Field(min_length=1)
    # None uses the configured RAG_MAX_CHUNKS
    max_chunks: int | None = Field(default=None, ge=1, le=50)


class ConditionAssessment(BaseModel):
    condition: str
    severity: Severity
    confidence: float = 0

    @field_validator("severity", mode="before")
    @classmethod
    def _normalise_severity(cls, v: Any) -> Any:
        return v.lower().strip() if isinstance(v, str) else v

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, v: Any) -> float:
        return max(0.0, min(100.0, as_number(v)))


class ClinicalDecision(BaseModel):
    patient: Patient
    condition: str
    severity: Severity
    guidelines: EssentialInfo
    medication_doses: list[DoseCalculationResult]
    management_plan: str
    confidence: float
    evidence_summary: str
    warnings: list[str]
    timestamp: datetime.datetime


# --- Error schema ---


class ErrorDetail(BaseModel):
    code: str
    message: str
    details: dict = {}
