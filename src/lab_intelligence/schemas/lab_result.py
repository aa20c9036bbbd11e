from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

LabStatus = Literal["normal", "abnormal", "critical"]


class ReferenceRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    low: float | None = None
    high: float | None = None
    text: str | None = None  # For non-numeric ranges like "Negative"


class LabResult(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str = ""
    code: str = ""
    name: str = "Unknown"  # e.g., "Glucose", "Hemoglobin"
    value: float | None = None
    unit: str = ""  # e.g., "mg/dL"; empty when the source omits it
    reference_range: ReferenceRange | None = None
    status: LabStatus = "normal"
    effective_date_time: str | None = None
    category: Literal["laboratory"] = "laboratory"
    interpretation: str | None = None


class Patient(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    name: str = "Unknown Patient"
    birth_date: str | None = None
    gender: str | None = None
    mrn: str = "Unknown"
