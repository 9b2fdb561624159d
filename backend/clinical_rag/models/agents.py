"""Pydantic models for the agentic guideline review loop."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from clinical_rag.models.rag import GuidelineChunk, as_number


class AgentDecision(BaseModel):
    """One agent's verdict. ``confidence`` is on the 0-100 scale."""

    agent: str = ""
    reasoning: str = ""
    confidence: float = 0
    recommendations: list[str] = Field(default_factory=list)
    concerns: list[str] = Field(default_factory=list)
    needs_more_info: bool = False
    suggested_queries: list[str] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _percent(cls, v: Any) -> float:
        # Fractions such as 0.85 are read as 85%; integers are already percent.
        value = as_number(v)
        if isinstance(v, float) and 0 <= value <= 1:
            value *= 100
        return max(0.0, min(100.0, value))


class RefinementOutcome(BaseModel):
    decision: AgentDecision
    history: list[AgentDecision]
    iterations: int
    converged: bool
    evidence: list[GuidelineChunk] = Field(default_factory=list)
