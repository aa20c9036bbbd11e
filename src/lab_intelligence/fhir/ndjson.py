"""Offline data source reading FHIR resources from an NDJSON export."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from lab_intelligence.errors import InputFileError
from lab_intelligence.fhir.client import patient_from_resource
from lab_intelligence.pipeline.normalize import parse_observations
from lab_intelligence.schemas.fhir import FHIRObservation, FHIRPatient
from lab_intelligence.schemas.lab_result import LabResult, Patient

logger = logging.getLogger(__name__)


def read_resources(path: str | Path) -> list[dict[str, Any]]:
    """Read one resource (or Bundle) per line, expanding Bundle entries.

    Lines that are not UTF-8 or not JSON are logged and skipped. An
    unreadable file raises InputFileError.
    """
    resources: list[dict[str, Any]] = []
    try:
        with open(path, "rb") as f:
            raw_lines = f.readlines()
    except OSError as exc:
        raise InputFileError(f"cannot read {path}: {exc}") from exc

    for line_number, raw_line in enumerate(raw_lines, start=1):
        try:
            line = raw_line.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("ndjson: %s:%d is not valid UTF-8, skipped", path, line_number)
            continue
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.warning("ndjson: %s:%d is not valid JSON, skipped", path, line_number)
            continue
        if not isinstance(data, dict):
            continue
        if data.get("resourceType") == "Bundle":
            resources.extend(
                entry["resource"]
                for entry in data.get("entry") or []
                if isinstance(entry, dict) and isinstance(entry.get("resource"), dict)
            )
        else:
            resources.append(data)
    return resources


class NDJSONSource:
    """Serves patients and observations from a local FHIR export.

    Patients come from Patient resources when the file has them, otherwise
    from the subjects of the Observations, in order of first appearance.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._patients: list[Patient] = []
        self._observations: dict[str, list[dict[str, Any]]] = {}
        self._load()

    def _load(self) -> None:
        seen_subjects: list[str] = []
        for raw in read_resources(self.path):
            resource_type = raw.get("resourceType")
            if resource_type == "Patient":
                try:
                    self._patients.append(
                        patient_from_resource(FHIRPatient.model_validate(raw))
                    )
                except ValidationError as exc:
                    logger.warning("ndjson: skipping malformed patient: %s", exc)
            elif resource_type == "Observation":
                try:
                    patient_id = FHIRObservation.model_validate(raw).patient_id
                except ValidationError as exc:
                    logger.warning("ndjson: skipping malformed observation: %s", exc)
                    continue
                if patient_id is None:
                    continue
                if patient_id not in self._observations:
                    seen_subjects.append(patient_id)
                self._observations.setdefault(patient_id, []).append(raw)

        if not self._patients:
            self._patients = [Patient(id=patient_id) for patient_id in seen_subjects]

        logger.info(
            "ndjson: loaded %d patients and %d observations from %s",
            len(self._patients),
            sum(len(v) for v in self._observations.values()),
            self.path,
        )

    async def get_patients(self) -> list[Patient]:
        return list(self._patients)

    async def get_lab_results(self, patient_id: str) -> list[LabResult]:
        return parse_observations(self._observations.get(patient_id, []))

    async def get_lab_count(self, patient_id: str) -> int:
        return len(self._observations.get(patient_id, []))
