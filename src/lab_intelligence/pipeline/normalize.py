from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from lab_intelligence.schemas.fhir import FHIRObservation
from lab_intelligence.schemas.lab_result import LabResult, LabStatus, ReferenceRange

logger = logging.getLogger(__name__)

CRITICAL_HIGH_MULTIPLIER = 1.5
CRITICAL_LOW_MULTIPLIER = 0.5


def derive_status(value: float | None, reference: ReferenceRange | None) -> LabStatus:
    """Classify a value against its reference range.

    Above high: critical beyond 1.5x high, otherwise abnormal.
    Below low: critical under 0.5x low, otherwise abnormal.
    Without a value or a range there is nothing to flag.
    """
    if value is None or reference is None:
        return "normal"

    if reference.high is not None and value > reference.high:
        if value > reference.high * CRITICAL_HIGH_MULTIPLIER:
            return "critical"
        return "abnormal"

    if reference.low is not None and value < reference.low:
        if value < reference.low * CRITICAL_LOW_MULTIPLIER:
            return "critical"
        return "abnormal"

    return "normal"


def resolve_lab_name(observation: FHIRObservation) -> str:
    if observation.code.text:
        return observation.code.text
    if observation.code.coding and observation.code.coding[0].display:
        return observation.code.coding[0].display
    return "Unknown"


def normalize_observation(observation: FHIRObservation) -> LabResult:
    quantity = observation.value_quantity
    value = quantity.value if quantity is not None else None
    unit = (quantity.unit if quantity is not None else None) or ""

    reference: ReferenceRange | None = None
    if observation.reference_range:
        raw_range = observation.reference_range[0]
        reference = ReferenceRange(
            low=raw_range.low.value if raw_range.low is not None else None,
            high=raw_range.high.value if raw_range.high is not None else None,
            text=raw_range.text,
        )

    interpretation = None
    if observation.interpretation and observation.interpretation[0].coding:
        interpretation = observation.interpretation[0].coding[0].display

    code = ""
    if observation.code.coding:
        code = observation.code.coding[0].code or ""

    return LabResult(
        id=observation.id or "",
        code=code,
        name=resolve_lab_name(observation),
        value=value,
        unit=unit,
        reference_range=reference,
        status=derive_status(value, reference),
        effective_date_time=observation.effective_date_time,
        interpretation=interpretation,
    )


def parse_observations(resources: list[dict[str, Any]]) -> list[LabResult]:
    """Validate and normalize raw Observation resources.

    Resources that do not fit the Observation shape are logged and skipped.
    """
    results: list[LabResult] = []
    skipped = 0
    for raw in resources:
        try:
            observation = FHIRObservation.model_validate(raw)
        except (ValidationError, TypeError) as exc:
            skipped += 1
            logger.warning("normalize: skipping malformed observation: %s", exc)
            continue
        results.append(normalize_observation(observation))

    logger.debug(
        "normalize: %d observations normalized, %d skipped", len(results), skipped
    )
    return results
