"""Pydantic models for weight-based dose calculation."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

EvidenceLevel = Literal["A", "B", "C", "D"]


class DoseCalculationRequest(BaseModel):
    """Inputs for a per-kg dose calculation.

    Fields default to empty values so that an incomplete request can still be
    built and handed to ``validate_request`` for a readable error list.
    ``patient_age`` is in months, ``patient_weight`` in kilograms.
    """

    medication: str = ""
    weight: float = 0
    weight_unit: Literal["kg", "lbs"] = "kg"
    dose: float = 0
    dose_unit: str = ""
    max_dose: float | None = None
    max_dose_unit: str | None = None
    frequency: str = ""
    route: str = ""
    patient_age: float | None = None
    patient_weight: float = 0
    condition: str | None = None


class DoseRange(BaseModel):
    min: float
    max: float


class DoseCalculationResult(BaseModel):
    medication: str
    calculated_dose: float
    unit: str
    frequency: str
    route: str
    dose_range: DoseRange
    warnings: list[str] = Field(default_factory=list)
    safety_checks: list[str] = Field(default_factory=list)
    confidence: float
    rationale: str
    evidence_level: EvidenceLevel
    patient_weight: float
    patient_age: float


class MedicationProposal(BaseModel):
    """An LLM-proposed per-kg dose, before patient-specific calculation."""

    medication: str = ""
    dose_per_kg: float = 0
    dose_unit: str = ""
    max_dose: float | None = None
    max_dose_unit: str | None = None
    frequency: str = ""
    route: str = ""

    def to_request(
        self, *, weight_kg: float, age_years: float, condition: str | None
    ) -> DoseCalculationRequest:
        return DoseCalculationRequest(
            medication=self.medication,
            weight=weight_kg,
            weight_unit="kg",
            dose=self.dose_per_kg,
            dose_unit=self.dose_unit,
            max_dose=self.max_dose,
            max_dose_unit=self.max_dose_unit,
            frequency=self.frequency,
            route=self.route,
            patient_age=age_years * 12,
            patient_weight=weight_kg,
            condition=condition,
        )
