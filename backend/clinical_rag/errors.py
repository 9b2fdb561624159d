"""Typed failures raised by the guideline pipeline and its collaborators.

Each error carries a stable ``code`` so the HTTP layer can tell a provider
outage (retry) apart from bad input (fix the request). Malformed LLM output
is never represented here: the pipeline stages recover from it locally.
"""

from __future__ import annotations


class ClinicalRAGError(Exception):
    """Base class for all failures surfaced to callers of the pipeline."""

    code = "CLINICAL_RAG_ERROR"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message)


class EmbeddingFailure(ClinicalRAGError):
    """The embedding provider failed or returned an unusable vector."""

    code = "EMBEDDING_FAILURE"


class CompletionFailure(ClinicalRAGError):
    """The chat-completion provider could not produce a response."""

    code = "LLM_UNAVAILABLE"


class GuidelineStoreError(ClinicalRAGError):
    """The vector store was unreachable or rejected an operation."""

    code = "STORE_UNAVAILABLE"


class RAGPipelineError(ClinicalRAGError):
    """A fatal failure inside one stage of the RAG pipeline."""

    def __init__(self, stage: str, cause: ClinicalRAGError) -> None:
        self.stage = stage
        super().__init__(f"{stage} failed: {cause.message}", code=cause.code)


class DoseCalculationError(ClinicalRAGError):
    """A dose calculation was attempted with physically impossible input."""

    code = "INVALID_DOSE_INPUT"


class ClinicalDecisionError(ClinicalRAGError):
    """The transcript workflow could not establish a patient or diagnosis."""


class JSONExtractionError(ValueError):
    """No valid JSON payload of the expected shape was found in LLM text."""
