from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

import httpx
from pydantic import ValidationError

from lab_intelligence.clock import Clock, as_utc, utc_now
from lab_intelligence.errors import FHIRClientError
from lab_intelligence.pipeline.normalize import parse_observations
from lab_intelligence.schemas.config import AnalysisConfig
from lab_intelligence.schemas.fhir import FHIRPatient
from lab_intelligence.schemas.lab_result import LabResult, Patient

logger = logging.getLogger(__name__)

MIMIC_PATIENT_IDENTIFIER = "http://mimic.mit.edu/fhir/mimic/identifier/patient"


def patient_from_resource(resource: FHIRPatient) -> Patient:
    """Build a display-ready Patient from a FHIR Patient resource."""
    mimic_id = next(
        (i.value for i in resource.identifier if i.system == MIMIC_PATIENT_IDENTIFIER),
        None,
    )

    display_name = "Unknown Patient"
    if resource.name:
        given = resource.name[0].given[0] if resource.name[0].given else ""
        family = resource.name[0].family or ""
        if family.startswith("Patient_") and not given:
            # MIMIC ships generated names like "Patient_10000032"
            display_name = f"Patient ID: {mimic_id or family.removeprefix('Patient_')}"
        elif given or family:
            display_name = " ".join(part for part in (given, family) if part)
    elif mimic_id:
        display_name = f"Patient ID: {mimic_id}"

    mrn = next(
        (
            i.value
            for i in resource.identifier
            if i.type is not None and i.type.coding and i.type.coding[0].code == "MR"
        ),
        None,
    )

    return Patient(
        id=resource.id,
        name=display_name,
        birth_date=resource.birth_date,
        gender=resource.gender,
        mrn=mrn or mimic_id or "Unknown",
    )


def _next_link(bundle: dict[str, Any]) -> str | None:
    for link in bundle.get("link") or []:
        if link.get("relation") == "next" and link.get("url"):
            return link["url"]
    return None


def _entry_resources(bundle: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        entry["resource"]
        for entry in bundle.get("entry") or []
        if isinstance(entry, dict) and isinstance(entry.get("resource"), dict)
    ]


class FHIRClient:
    """Reads patients and their complete Observation history from a FHIR server.

    Use as an async context manager, or call ``aclose()`` when done. An
    ``httpx.AsyncClient`` may be passed in, in which case the caller owns it.
    Patient lookups are cached for ``config.response_cache_ttl`` seconds;
    observation reads always go to the server.
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or AnalysisConfig()
        self._clock = clock
        self._responses: dict[str, tuple[datetime, Any]] = {}
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=self.config.fhir_base_url.rstrip("/"),
            timeout=self.config.request_timeout,
            headers={"Accept": "application/fhir+json"},
        )

    async def __aenter__(self) -> FHIRClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def _cached(self, key: str) -> Any | None:
        hit = self._responses.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if as_utc(self._clock()) > expires_at:
            del self._responses[key]
            return None
        return value

    def _remember(self, key: str, value: Any) -> None:
        if self.config.response_cache_ttl <= 0:
            return
        expires_at = as_utc(self._clock()) + timedelta(seconds=self.config.response_cache_ttl)
        self._responses[key] = (expires_at, value)

    def clear_response_cache(self) -> None:
        self._responses.clear()

    async def _get_json(
        self, url: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            response = await self._http.get(url, params=params)
        except httpx.HTTPError as exc:
            raise FHIRClientError(f"Request to {url} failed: {exc}") from exc

        if response.is_error:
            message = f"FHIR request {url} failed: {response.status_code}"
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("error"):
                message = str(body["error"])
                if body.get("details"):
                    message += f" - {body['details']}"
            raise FHIRClientError(message, status_code=response.status_code)

        try:
            bundle = response.json()
        except ValueError as exc:
            raise FHIRClientError(f"FHIR response from {url} is not JSON") from exc
        if not isinstance(bundle, dict):
            raise FHIRClientError(f"FHIR response from {url} is not a JSON object")
        return bundle

    async def _get_all_resources(
        self, url: str, params: dict[str, Any]
    ) -> list[dict[str, Any]]:
        """Read a search result and every page linked from it."""
        resources: list[dict[str, Any]] = []
        seen: set[str] = set()
        bundle = await self._get_json(url, params)
        pages = 1
        while True:
            resources.extend(_entry_resources(bundle))
            next_url = _next_link(bundle)
            if next_url is None or next_url in seen:
                break
            seen.add(next_url)
            bundle = await self._get_json(next_url)
            pages += 1

        logger.debug("fhir: %s returned %d resources over %d pages", url, len(resources), pages)
        return resources

    async def get_patients(
        self, page_size: int | None = None, offset: int | None = None
    ) -> list[Patient]:
        """Return patients. Without ``page_size`` the full population is read."""
        cache_key = f"/Patient?_count={page_size or ''}&_offset={offset or ''}"
        cached = self._cached(cache_key)
        if cached is not None:
            return list(cached)

        if page_size:
            params: dict[str, Any] = {"_count": page_size}
            if offset:
                params["_offset"] = offset
            resources = _entry_resources(await self._get_json("/Patient", params))
        else:
            resources = await self._get_all_resources("/Patient", {})

        patients: list[Patient] = []
        for raw in resources:
            try:
                patients.append(patient_from_resource(FHIRPatient.model_validate(raw)))
            except ValidationError as exc:
                logger.warning("fhir: skipping malformed patient resource: %s", exc)
        logger.info("fhir: loaded %d patients", len(patients))
        self._remember(cache_key, tuple(patients))
        return patients

    async def get_patient(self, patient_id: str) -> Patient:
        cache_key = f"/Patient/{patient_id}"
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        resource = await self._get_json(cache_key)
        try:
            patient = patient_from_resource(FHIRPatient.model_validate(resource))
        except ValidationError as exc:
            raise FHIRClientError(f"Malformed Patient resource for {patient_id}: {exc}") from exc
        self._remember(cache_key, patient)
        return patient

    async def get_lab_results(self, patient_id: str) -> list[LabResult]:
        """Return the patient's complete, normalized observation history."""
        params = {
            "patient": patient_id,
            "_count": self.config.observation_page_size,
            "_sort": "-date",
        }
        resources = await self._get_all_resources("/Observation", params)
        return parse_observations(resources)

    async def get_lab_count(self, patient_id: str) -> int:
        bundle = await self._get_json(
            "/Observation", {"patient": patient_id, "_summary": "count"}
        )
        total = bundle.get("total")
        if total is None:
            raise FHIRClientError(
                f"FHIR server did not return total count for patient {patient_id}"
            )
        return int(total)
