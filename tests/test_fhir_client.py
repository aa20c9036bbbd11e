"""Tests for the FHIR client against a mocked HTTP transport."""

import asyncio

import httpx
import pytest
from lab_intelligence.clock import utc_now
from lab_intelligence.errors import FHIRClientError
from lab_intelligence.fhir.client import FHIRClient, patient_from_resource
from lab_intelligence.schemas.config import AnalysisConfig
from lab_intelligence.schemas.fhir import FHIRPatient

BASE_URL = "http://fhir.test"


def _bundle(resources, next_url=None, total=None):
    bundle = {
        "resourceType": "Bundle",
        "type": "searchset",
        "entry": [{"resource": r} for r in resources],
    }
    if next_url:
        bundle["link"] = [{"relation": "next", "url": next_url}]
    if total is not None:
        bundle["total"] = total
    return bundle


def _run(handler, coro_factory, config=None, clock=None):
    async def main():
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport, base_url=BASE_URL) as http:
            client = FHIRClient(
                config or AnalysisConfig(fhir_base_url=BASE_URL), http, clock=clock or utc_now
            )
            return await coro_factory(client)

    return asyncio.run(main())


def test_get_lab_results_follows_every_page(make_observation):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.params.get("page") == "2":
            return httpx.Response(200, json=_bundle([make_observation(value=11.0)]))
        return httpx.Response(
            200,
            json=_bundle(
                [make_observation(value=5.0), make_observation(value=20.0)],
                next_url=f"{BASE_URL}/Observation?patient=p1&page=2",
            ),
        )

    labs = _run(handler, lambda c: c.get_lab_results("p1"))
    assert [lab.value for lab in labs] == [5.0, 20.0, 11.0]
    assert [lab.status for lab in labs] == ["normal", "critical", "abnormal"]
    assert len(requests) == 2
    first = requests[0].url.params
    assert first["patient"] == "p1"
    assert first["_sort"] == "-date"
    assert first["_count"] == "1000"


def test_get_lab_results_stops_on_repeated_next_link(make_observation):
    calls = 0

    def handler(request):
        nonlocal calls
        calls += 1
        return httpx.Response(
            200,
            json=_bundle([make_observation()], next_url=f"{BASE_URL}/Observation?page=2"),
        )

    labs = _run(handler, lambda c: c.get_lab_results("p1"))
    assert calls == 2
    assert len(labs) == 2


def test_get_lab_results_empty_bundle():
    labs = _run(
        lambda request: httpx.Response(200, json={"resourceType": "Bundle", "total": 0}),
        lambda c: c.get_lab_results("p1"),
    )
    assert labs == []


def test_error_response_uses_server_message():
    def handler(request):
        return httpx.Response(502, json={"error": "Upstream down", "details": "timeout"})

    with pytest.raises(FHIRClientError) as exc_info:
        _run(handler, lambda c: c.get_lab_results("p1"))
    assert str(exc_info.value) == "Upstream down - timeout"
    assert exc_info.value.status_code == 502


def test_error_response_without_body():
    with pytest.raises(FHIRClientError) as exc_info:
        _run(lambda r: httpx.Response(404, text="nope"), lambda c: c.get_lab_count("p1"))
    assert "404" in str(exc_info.value)


def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FHIRClientError):
        _run(handler, lambda c: c.get_patients())


def test_get_lab_count():
    def handler(request):
        assert request.url.params["_summary"] == "count"
        return httpx.Response(200, json={"resourceType": "Bundle", "total": 42})

    assert _run(handler, lambda c: c.get_lab_count("p1")) == 42


def test_get_lab_count_requires_total():
    with pytest.raises(FHIRClientError):
        _run(
            lambda r: httpx.Response(200, json={"resourceType": "Bundle"}),
            lambda c: c.get_lab_count("p1"),
        )


def test_get_patients_reads_all_pages():
    def handler(request):
        if request.url.params.get("page") == "2":
            return httpx.Response(200, json=_bundle([{"resourceType": "Patient", "id": "b"}]))
        return httpx.Response(
            200,
            json=_bundle(
                [{"resourceType": "Patient", "id": "a"}],
                next_url=f"{BASE_URL}/Patient?page=2",
            ),
        )

    patients = _run(handler, lambda c: c.get_patients())
    assert [p.id for p in patients] == ["a", "b"]


def test_get_patients_with_paging_params():
    seen = {}

    def handler(request):
        seen.update(request.url.params)
        return httpx.Response(200, json=_bundle([{"resourceType": "Patient", "id": "a"}]))

    _run(handler, lambda c: c.get_patients(page_size=20, offset=40))
    assert seen == {"_count": "20", "_offset": "40"}


@pytest.mark.parametrize(
    "resource, expected_name, expected_mrn",
    [
        (
            {"id": "1", "name": [{"given": ["Ada"], "family": "Lovelace"}]},
            "Ada Lovelace",
            "Unknown",
        ),
        (
            {
                "id": "2",
                "name": [{"family": "Patient_10000032"}],
                "identifier": [
                    {"system": "http://mimic.mit.edu/fhir/mimic/identifier/patient", "value": "10000032"}
                ],
            },
            "Patient ID: 10000032",
            "10000032",
        ),
        (
            {"id": "3", "name": [{"family": "Patient_777"}]},
            "Patient ID: 777",
            "Unknown",
        ),
        (
            {
                "id": "4",
                "identifier": [
                    {"type": {"coding": [{"code": "MR"}]}, "value": "MRN-4"},
                    {"system": "http://mimic.mit.edu/fhir/mimic/identifier/patient", "value": "44"},
                ],
            },
            "Patient ID: 44",
            "MRN-4",
        ),
        ({"id": "5"}, "Unknown Patient", "Unknown"),
    ],
)
def test_patient_from_resource(resource, expected_name, expected_mrn):
    patient = patient_from_resource(FHIRPatient.model_validate(resource))
    assert patient.name == expected_name
    assert patient.mrn == expected_mrn


def _patient_handler(calls):
    def handler(request):
        calls.append(request.url.path)
        if request.url.path == "/Patient/42":
            return httpx.Response(
                200,
                json={"resourceType": "Patient", "id": "42", "name": [{"given": ["Ada"], "family": "Lovelace"}]},
            )
        return httpx.Response(200, json=_bundle([{"resourceType": "Patient", "id": "a"}]))

    return handler


def test_get_patient():
    patient = _run(_patient_handler([]), lambda c: c.get_patient("42"))
    assert patient.id == "42"
    assert patient.name == "Ada Lovelace"


def test_get_patient_not_found():
    with pytest.raises(FHIRClientError) as exc_info:
        _run(lambda r: httpx.Response(404, json={}), lambda c: c.get_patient("missing"))
    assert exc_info.value.status_code == 404


def test_patient_lookups_are_cached_until_ttl(clock):
    calls = []

    async def scenario(client):
        await client.get_patient("42")
        await client.get_patient("42")
        await client.get_patients()
        await client.get_patients()
        clock.advance(seconds=301)
        await client.get_patient("42")
        await client.get_patients()

    config = AnalysisConfig(fhir_base_url=BASE_URL, response_cache_ttl=300)
    _run(_patient_handler(calls), scenario, config=config, clock=clock)
    assert calls == ["/Patient/42", "/Patient", "/Patient/42", "/Patient"]


def test_patient_cache_disabled_with_zero_ttl(clock):
    calls = []

    async def scenario(client):
        await client.get_patients()
        await client.get_patients()

    config = AnalysisConfig(fhir_base_url=BASE_URL, response_cache_ttl=0)
    _run(_patient_handler(calls), scenario, config=config, clock=clock)
    assert calls == ["/Patient", "/Patient"]


def test_observations_are_never_cached(clock, make_observation):
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json=_bundle([make_observation()]))

    async def scenario(client):
        await client.get_lab_results("p1")
        await client.get_lab_results("p1")

    _run(handler, scenario, clock=clock)
    assert len(calls) == 2
