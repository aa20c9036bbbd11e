"""Tests for batched population analysis."""

import asyncio

import pytest
from lab_intelligence.pipeline.runner import analyze_patient, analyze_population
from lab_intelligence.pipeline.score import empty_analysis


def _fetcher(labs_by_patient, failing=(), calls=None):
    async def fetch(patient_id):
        if calls is not None:
            calls.append(patient_id)
        await asyncio.sleep(0)
        if patient_id in failing:
            raise ConnectionError(f"upstream timeout for {patient_id}")
        return labs_by_patient.get(patient_id, [])

    return fetch


def test_one_failure_does_not_abort_the_batch(clock, make_lab):
    ids = ["p1", "p2", "p3", "p4", "p5"]
    labs = {pid: [make_lab("abnormal")] for pid in ids}
    run = asyncio.run(
        analyze_population(ids, _fetcher(labs, failing={"p3"}), clock=clock)
    )

    analyses = run.analyses(clock)
    assert len(analyses) == 5
    assert [a.patient_id for a in analyses] == ids
    assert analyses[2] == empty_analysis("p3", clock)
    assert len(run.errors) == 1
    assert run.errors[0] == "Failed to analyze patient p3: upstream timeout for p3"
    assert [o.patient_id for o in run.failed] == ["p3"]


def test_failed_outcome_keeps_reason(clock):
    outcome = asyncio.run(analyze_patient("p1", _fetcher({}, failing={"p1"}), clock))
    assert outcome.ok is False
    assert outcome.analysis is None
    assert "upstream timeout" in outcome.error


def test_successful_outcome_carries_warnings(clock):
    outcome = asyncio.run(analyze_patient("p1", _fetcher({}), clock))
    assert outcome.ok is True
    assert outcome.analysis.total_lab_count == 0
    assert "Patient p1: No lab results available" in outcome.warnings


def test_warnings_and_errors_are_kept_apart(clock, make_lab):
    labs = {"p1": [make_lab("critical"), make_lab("critical")]}
    run = asyncio.run(
        analyze_population(["p1", "p2"], _fetcher(labs, failing={"p2"}), clock=clock)
    )
    assert run.errors == ["Failed to analyze patient p2: upstream timeout for p2"]
    assert run.warnings == [
        "Patient p1: Unusually high percentage of critical labs (2/2)"
    ]


def test_batches_preserve_input_order(clock):
    calls = []
    ids = [f"p{i}" for i in range(23)]
    run = asyncio.run(
        analyze_population(ids, _fetcher({}, calls=calls), batch_size=10, clock=clock)
    )
    assert [o.patient_id for o in run.outcomes] == ids
    assert sorted(calls) == sorted(ids)


def test_batch_size_bounds_concurrency(clock):
    in_flight = 0
    peak = 0

    async def fetch(patient_id):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        return []

    asyncio.run(analyze_population([f"p{i}" for i in range(12)], fetch, batch_size=4, clock=clock))
    assert peak == 4


def test_empty_population(clock):
    run = asyncio.run(analyze_population([], _fetcher({}), clock=clock))
    assert run.outcomes == []
    assert run.analyses(clock) == []


def test_invalid_batch_size(clock):
    with pytest.raises(ValueError):
        asyncio.run(analyze_population(["p1"], _fetcher({}), batch_size=0, clock=clock))
