from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from lab_intelligence.clock import Clock, utc_now
from lab_intelligence.pipeline.score import empty_analysis, score_patient
from lab_intelligence.pipeline.validate import validate_analysis
from lab_intelligence.schemas.analysis import PatientAnalysis, PatientOutcome
from lab_intelligence.schemas.lab_result import LabResult

logger = logging.getLogger(__name__)

LabFetcher = Callable[[str], Awaitable[list[LabResult]]]

DEFAULT_BATCH_SIZE = 10


@dataclass
class PopulationRun:
    outcomes: list[PatientOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def analyses(self, clock: Clock = utc_now) -> list[PatientAnalysis]:
        """One analysis per patient, with zero-value records for failures."""
        return [
            outcome.analysis
            if outcome.analysis is not None
            else empty_analysis(outcome.patient_id, clock)
            for outcome in self.outcomes
        ]

    @property
    def failed(self) -> list[PatientOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


async def analyze_patient(
    patient_id: str, fetch_labs: LabFetcher, clock: Clock = utc_now
) -> PatientOutcome:
    """Fetch one patient's full lab history, then score and validate it.

    Any failure is returned as a failed outcome instead of raised.
    """
    try:
        lab_results = await fetch_labs(patient_id)
        analysis = score_patient(patient_id, lab_results, clock)
    except Exception as exc:
        reason = str(exc) or type(exc).__name__
        logger.error("runner: failed to analyze patient %s - %s", patient_id, reason)
        return PatientOutcome(
            patient_id=patient_id,
            error=f"Failed to analyze patient {patient_id}: {reason}",
        )

    return PatientOutcome(
        patient_id=patient_id,
        analysis=analysis,
        warnings=validate_analysis(analysis),
    )


async def analyze_population(
    patient_ids: list[str],
    fetch_labs: LabFetcher,
    batch_size: int = DEFAULT_BATCH_SIZE,
    clock: Clock = utc_now,
) -> PopulationRun:
    """Analyze every patient in bounded concurrent batches.

    A single patient's failure never aborts the run: the outcome list always
    has one entry per input id, in input order.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    start = time.time()
    run = PopulationRun()
    total_batches = (len(patient_ids) + batch_size - 1) // batch_size

    for offset in range(0, len(patient_ids), batch_size):
        batch = patient_ids[offset : offset + batch_size]
        logger.info(
            "runner: processing batch %d/%d (%d patients)",
            offset // batch_size + 1,
            total_batches,
            len(batch),
        )
        outcomes = await asyncio.gather(
            *(analyze_patient(patient_id, fetch_labs, clock) for patient_id in batch)
        )
        for outcome in outcomes:
            run.outcomes.append(outcome)
            run.warnings.extend(outcome.warnings)
            if outcome.error is not None:
                run.errors.append(outcome.error)

    run.duration_seconds = time.time() - start
    logger.info(
        "runner: analyzed %d patients in %.2fs (%d failed, %d warnings)",
        len(run.outcomes),
        run.duration_seconds,
        len(run.errors),
        len(run.warnings),
    )
    return run
