"""Subset of the FHIR R4 resource shapes consumed by the analysis pipeline.

Every field is optional and unknown keys are ignored, so any well-typed
Observation or Patient resource validates.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class FHIRModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class Coding(FHIRModel):
    system: str | None = None
    code: str | None = None
    display: str | None = None


class CodeableConcept(FHIRModel):
    coding: list[Coding] = []
    text: str | None = None


class Quantity(FHIRModel):
    value: float | None = None
    unit: str | None = None


class ObservationReferenceRange(FHIRModel):
    low: Quantity | None = None
    high: Quantity | None = None
    text: str | None = None


class Reference(FHIRModel):
    reference: str | None = None


class FHIRObservation(FHIRModel):
    resource_type: str = "Observation"
    id: str | None = None
    code: CodeableConcept = CodeableConcept()
    subject: Reference | None = None
    value_quantity: Quantity | None = None
    reference_range: list[ObservationReferenceRange] = []
    effective_date_time: str | None = None
    interpretation: list[CodeableConcept] = []

    @property
    def patient_id(self) -> str | None:
        """Patient id from a 'Patient/<id>' subject reference."""
        if self.subject is None or not self.subject.reference:
            return None
        return self.subject.reference.rsplit("/", 1)[-1]


class HumanName(FHIRModel):
    family: str | None = None
    given: list[str] = []


class Identifier(FHIRModel):
    system: str | None = None
    value: str | None = None
    type: CodeableConcept | None = None


class FHIRPatient(FHIRModel):
    resource_type: str = "Patient"
    id: str
    name: list[HumanName] = []
    identifier: list[Identifier] = []
    birth_date: str | None = None
    gender: str | None = None
