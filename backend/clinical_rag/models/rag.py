"""Pydantic models for RAG: guideline chunks, stage outputs and pipeline results."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

UNKNOWN = "Unknown"


def as_number(value: Any) -> float:
    """Read an LLM-supplied number; anything non-numeric is a validation error."""
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"expected a number, got {type(value).__name__}")
    try:
        number = float(value)
    except ValueError:
        raise ValueError(f"expected a number, got {value!r}") from None
    if math.isnan(number):
        raise ValueError("expected a number, got NaN")
    return number


def _clamp_score(value: Any) -> float:
    """Coerce an LLM-supplied score into the 0-100 range."""
    return max(0.0, min(100.0, as_number(value)))


class ChunkMetadata(BaseModel):
    title: str = UNKNOWN
    section: str = UNKNOWN
    source: str = UNKNOWN
    evidence_level: str = UNKNOWN
    version: str = UNKNOWN
    date: str = UNKNOWN
    reference: str = ""


class GuidelineChunk(BaseModel):
    """A unit of retrievable guideline evidence.

    ``embedding`` is only populated on the ingestion path and is never
    serialized; ``similarity`` is set by the store on the query path.
    """

    id: str
    content: str
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    embedding: list[float] | None = Field(default=None, exclude=True)
    similarity: float | None = None


class RankedChunk(GuidelineChunk):
    """A retrieved chunk scored against one clinical scenario."""

    relevance_score: float = Field(ge=0, le=100)
    reasoning: str = ""
    key_points: list[str] = Field(default_factory=list)


class ChunkScore(BaseModel):
    """One element of the relevance filter's JSON array."""

    chunk_id: str
    relevance_score: float
    reasoning: str = ""
    key_points: list[str] = Field(default_factory=list)

    @field_validator("chunk_id", mode="before")
    @classmethod
    def _id_as_str(cls, v: Any) -> str:
        return str(v)

    @field_validator("relevance_score", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _clamp_score(v)


class SynthesisResult(BaseModel):
    synthesis: str = ""
    conflicts: list[str] = Field(default_factory=list)
    consensus: str = ""
    patient_specific: str = ""
    final_recommendations: str = ""


class MedicationRecommendation(BaseModel):
    medication: str
    dose: str = ""
    frequency: str = ""
    duration: str = ""
    route: str = ""
    evidence_level: str = UNKNOWN
    guideline_source: str = ""

    @field_validator(
        "dose", "frequency", "duration", "route", "evidence_level", mode="before"
    )
    @classmethod
    def _scalar_as_str(cls, v: Any) -> Any:
        # LLMs regularly emit numeric doses ("dose": 0.15)
        if isinstance(v, (int, float)):
            return str(v)
        return v


class Recommendation(BaseModel):
    guideline_analysis: str = ""
    evidence_assessment: str = ""
    recommendations: list[MedicationRecommendation] = Field(default_factory=list)
    safety_considerations: list[str] = Field(default_factory=list)
    monitoring: list[str] = Field(default_factory=list)
    evidence_level: str = UNKNOWN
    confidence: float = 0
    guideline_sources: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v: Any) -> float:
        return _clamp_score(v)


class PipelineState(str, Enum):
    IDLE = "idle"
    RETRIEVING = "retrieving"
    FILTERING = "filtering"
    SYNTHESIZING = "synthesizing"
    RECOMMENDING = "recommending"
    DONE = "done"
    ERRORED = "errored"


class StateTransition(BaseModel):
    state: PipelineState
    elapsed_ms: float


class RetrievalMetrics(BaseModel):
    total_chunks: int
    relevant_chunks: int
    average_relevance_score: float
    processing_time_ms: float
    stage_timings_ms: dict[str, float] = Field(default_factory=dict)


class RAGResult(BaseModel):
    retrieved_chunks: list[GuidelineChunk]
    filtered_chunks: list[RankedChunk]
    synthesis: SynthesisResult
    final_recommendation: Recommendation
    retrieval_metrics: RetrievalMetrics
    transitions: list[StateTransition] = Field(default_factory=list)
    no_evidence: bool = False


class EssentialSummary(BaseModel):
    synthesis: str
    final_recommendation: Recommendation


class EssentialInfo(BaseModel):
    """Reduced view of a RAGResult for downstream prompts."""

    summary: EssentialSummary
    highly_relevant_chunks: list[RankedChunk]


# --- Ingestion ---


class GuidelineExportMetadata(BaseModel):
    """Metadata block of one item in the therapeutic-guidelines JSON export."""

    header1: str | None = None
    header3: str | None = None
    header4: str | None = None
    subchunk_id: int = 0
    source: str = UNKNOWN
    chunk_id: int = 0
    reference: str = ""
    length: int | None = None


class GuidelineExportItem(BaseModel):
    text: str
    metadata: GuidelineExportMetadata


class IngestionSummary(BaseModel):
    total: int
    successful: int
    failed: int
    batch_size: int
    total_batches: int
    errors: list[str] = Field(default_factory=list)
