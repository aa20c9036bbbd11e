"""Shared pytest fixtures for lab_intelligence tests."""

from datetime import datetime, timedelta, timezone

import pytest
from lab_intelligence.schemas.lab_result import LabResult, ReferenceRange

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def make_lab():
    """Factory for LabResult with a complete set of fields by default."""

    def _make(
        status: str = "normal",
        days_ago: float = 30,
        value: float | None = 5.0,
        unit: str = "mg/dL",
        reference_range: ReferenceRange | None = ReferenceRange(low=1.0, high=10.0),
        effective_date_time: str | None = "",
    ) -> LabResult:
        if effective_date_time == "":
            effective_date_time = (NOW - timedelta(days=days_ago)).isoformat()
        return LabResult(
            id="obs",
            code="1234-5",
            name="Glucose",
            value=value,
            unit=unit,
            reference_range=reference_range,
            status=status,
            effective_date_time=effective_date_time,
        )

    return _make


@pytest.fixture
def make_observation():
    """Factory for raw FHIR Observation dicts."""

    def _make(
        patient_id: str = "p1",
        value: float | None = 5.0,
        low: float | None = 1.0,
        high: float | None = 10.0,
        effective: str | None = "2024-06-10T08:00:00Z",
        **extra,
    ) -> dict:
        observation = {
            "resourceType": "Observation",
            "id": f"obs-{patient_id}",
            "subject": {"reference": f"Patient/{patient_id}"},
            "code": {
                "coding": [{"system": "http://loinc.org", "code": "2345-7", "display": "Glucose [Mass/volume]"}],
                "text": "Glucose",
            },
        }
        if value is not None:
            observation["valueQuantity"] = {"value": value, "unit": "mg/dL"}
        if low is not None or high is not None:
            ref = {}
            if low is not None:
                ref["low"] = {"value": low}
            if high is not None:
                ref["high"] = {"value": high}
            observation["referenceRange"] = [ref]
        if effective is not None:
            observation["effectiveDateTime"] = effective
        observation.update(extra)
        return observation

    return _make
