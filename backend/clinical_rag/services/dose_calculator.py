"""Weight-based dose calculation with unit conversion and pediatric safety checks.

Everything here is pure and synchronous. Callers run ``validate_request``
first; ``calculate_dose`` only refuses physically impossible weights.
"""

from __future__ import annotations

import logging

from clinical_rag.errors import DoseCalculationError
from clinical_rag.models.dosing import (
    DoseCalculationRequest,
    DoseCalculationResult,
    DoseRange,
    EvidenceLevel,
)

logger = logging.getLogger(__name__)

LBS_TO_KG = 0.453592
RANGE_FRACTION = 0.2
BASE_CONFIDENCE = 85

HIGH_RISK_MEDICATIONS = ("digoxin", "theophylline", "lithium", "warfarin")
IV_ROUTES = ("iv", "intravenous")

# factor to multiply by when converting from the outer key to the inner key
_UNIT_CONVERSIONS: dict[str, dict[str, float]] = {
    "mg": {"mcg": 1000, "g": 0.001},
    "mcg": {"mg": 0.001, "g": 0.000001},
    "g": {"mg": 1000, "mcg": 1000000},
    "ml": {"l": 0.001},
    "l": {"ml": 1000},
}


def _round2(value: float) -> float:
    return round(value, 2)


def convert_dose_units(dose: float, from_unit: str, to_unit: str) -> float:
    """Convert between mg/mcg/g or ml/l. Unknown pairs pass through unchanged."""
    src, dst = from_unit.strip().lower(), to_unit.strip().lower()
    if src == dst:
        return dose
    factor = _UNIT_CONVERSIONS.get(src, {}).get(dst)
    if factor is None:
        logger.debug("No conversion from %r to %r, using value as-is", from_unit, to_unit)
        return dose
    return dose * factor


def weight_in_kg(request: DoseCalculationRequest) -> float:
    if request.weight_unit == "lbs":
        return request.weight * LBS_TO_KG
    return request.weight


def _max_dose_in_dose_unit(request: DoseCalculationRequest) -> float | None:
    if request.max_dose is None or request.max_dose <= 0:
        return None
    return convert_dose_units(
        request.max_dose, request.max_dose_unit or request.dose_unit, request.dose_unit
    )


def _safety_checks(
    request: DoseCalculationRequest, weight_kg: float
) -> tuple[list[str], list[str]]:
    warnings: list[str] = []
    checks: list[str] = []
    age = request.patient_age or 0

    if age < 3:
        warnings.append("Patient is under 3 months - extreme caution required")
        checks.append("Verify dose with pediatric specialist")
    elif age < 12:
        warnings.append("Patient is under 1 year - careful monitoring required")
        checks.append("Monitor for adverse effects closely")

    if weight_kg < 5:
        warnings.append("Patient weight is very low - dose may need adjustment")
        checks.append("Consider lower dose range")
    elif weight_kg > 50:
        checks.append("Patient weight suggests adolescent/adult dosing may be appropriate")

    medication = request.medication.lower()
    if any(med in medication for med in HIGH_RISK_MEDICATIONS):
        warnings.append("High-risk medication - therapeutic drug monitoring may be required")
        checks.append("Monitor drug levels if available")

    if request.route.strip().lower() in IV_ROUTES:
        checks.append("IV administration requires careful monitoring")

    return warnings, checks


def _confidence(request: DoseCalculationRequest, warning_count: int) -> float:
    confidence = BASE_CONFIDENCE - 10 * warning_count
    age = request.patient_age or 0
    if age < 3:
        confidence -= 20
    elif age < 12:
        confidence -= 10
    if request.patient_weight < 5 or request.patient_weight > 50:
        confidence -= 5
    return max(0, min(100, confidence))


def _evidence_level(request: DoseCalculationRequest) -> EvidenceLevel:
    # Placeholder policy, not a literature lookup: condition-specific
    # guidance is graded B, general per-kg dosing C.
    return "B" if request.condition else "C"


def calculate_dose(request: DoseCalculationRequest) -> DoseCalculationResult:
    """Turn a per-kg dose into a patient-specific dose, range and safety notes.

    The dose is capped at the (unit-converted) maximum before the +/-20%
    range is derived from it, so ``min <= calculated_dose <= max`` holds.
    """
    weight_kg = weight_in_kg(request)
    if weight_kg <= 0:
        raise DoseCalculationError("Patient weight must be greater than 0")

    base_dose = request.dose * weight_kg
    dose = base_dose
    cap_warnings: list[str] = []
    max_dose = _max_dose_in_dose_unit(request)
    if max_dose is not None and dose > max_dose:
        dose = max_dose
        cap_warnings.append(
            f"Dose capped at maximum recommended dose of {_round2(max_dose)} {request.dose_unit}"
        )

    upper = dose * (1 + RANGE_FRACTION)
    if max_dose is not None:
        upper = min(upper, max_dose)
    dose_range = DoseRange(min=_round2(dose * (1 - RANGE_FRACTION)), max=_round2(upper))

    safety_warnings, safety_checks = _safety_checks(request, weight_kg)
    warnings = cap_warnings + safety_warnings

    rationale = (
        f"Dose calculated as {request.dose} {request.dose_unit}/kg x {_round2(weight_kg)}kg "
        f"= {base_dose:.2f} {request.dose_unit}. Final dose: {dose:.2f} {request.dose_unit}."
    )
    logger.debug("Dose for %s: %s", request.medication, rationale)

    return DoseCalculationResult(
        medication=request.medication,
        calculated_dose=_round2(dose),
        unit=request.dose_unit,
        frequency=request.frequency,
        route=request.route,
        dose_range=dose_range,
        warnings=warnings,
        safety_checks=safety_checks,
        confidence=_confidence(request, len(warnings)),
        rationale=rationale,
        evidence_level=_evidence_level(request),
        patient_weight=_round2(weight_kg),
        patient_age=request.patient_age or 0,
    )


def validate_request(request: DoseCalculationRequest) -> list[str]:
    """Human-readable problems with ``request``; empty when it can be calculated."""
    errors: list[str] = []
    if not request.medication.strip():
        errors.append("Medication name is required")
    if request.weight <= 0:
        errors.append("Valid patient weight is required")
    if request.dose <= 0:
        errors.append("Valid dose per kg is required")
    if not request.dose_unit.strip():
        errors.append("Dose unit is required")
    if not request.frequency.strip():
        errors.append("Dosing frequency is required")
    if not request.route.strip():
        errors.append("Route of administration is required")
    if request.patient_age is None or request.patient_age < 0:
        errors.append("Valid patient age is required")
    if request.patient_weight <= 0:
        errors.append("Valid patient weight in kg is required")
    if request.max_dose is not None and request.max_dose < 0:
        errors.append("Maximum dose must be positive")
    return errors
