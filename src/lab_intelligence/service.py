from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from lab_intelligence.cache import AnalysisCache
from lab_intelligence.clock import Clock, utc_now
from lab_intelligence.errors import LabIntelligenceError, NoPatientsError
from lab_intelligence.pipeline.aggregate import aggregate_analyses
from lab_intelligence.pipeline.runner import analyze_patient, analyze_population
from lab_intelligence.schemas.analysis import (
    AnalysisReport,
    PatientAnalysis,
    PatientOutcome,
    RunStats,
)
from lab_intelligence.schemas.cache import AnalysisStatus
from lab_intelligence.schemas.config import AnalysisConfig
from lab_intelligence.schemas.lab_result import LabResult, Patient

logger = logging.getLogger(__name__)

NO_ANALYSIS_MESSAGE = "No analysis available. Run a population analysis to generate one."


class LabDataSource(Protocol):
    async def get_patients(self) -> list[Patient]: ...

    async def get_lab_results(self, patient_id: str) -> list[LabResult]: ...

    async def get_lab_count(self, patient_id: str) -> int: ...


class AnalysisService:
    """Runs population analyses against a data source and serves them from a cache."""

    def __init__(
        self,
        source: LabDataSource,
        cache: AnalysisCache | None = None,
        config: AnalysisConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.source = source
        self.clock = clock
        self.cache = cache or AnalysisCache(clock)
        self.config = config or AnalysisConfig()

    async def run_analysis(self) -> tuple[AnalysisReport, list[PatientAnalysis]]:
        """Analyze the complete population and store the result in the cache."""
        patients = await self.source.get_patients()
        if not patients:
            raise NoPatientsError("No patients found")
        logger.info("service: starting analysis of %d patients", len(patients))

        run = await analyze_population(
            [patient.id for patient in patients],
            self.source.get_lab_results,
            batch_size=self.config.batch_size,
            clock=self.clock,
        )
        analyses = run.analyses(self.clock)
        summary = aggregate_analyses(analyses)
        self.cache.store(analyses, summary)

        logger.info(
            "service: analysis complete in %.2fs - %d critical, %d high risk, "
            "%d with abnormal labs",
            run.duration_seconds,
            summary.critical_count,
            summary.high_risk_count,
            summary.abnormal_count,
        )

        limit = self.config.max_reported_errors
        report = AnalysisReport(
            success=True,
            summary=summary,
            stats=RunStats(
                patients_analyzed=len(run.outcomes) - len(run.errors),
                total_patients=len(patients),
                duration_seconds=run.duration_seconds,
                error_count=len(run.errors),
                data_quality_score=summary.data_quality_score,
            ),
            errors=run.errors[:limit],
            warnings=run.warnings[:limit],
        )
        return report, analyses

    def status(self) -> AnalysisStatus:
        entry = self.cache.read()
        stats = self.cache.stats()
        if entry is None:
            return AnalysisStatus(
                has_analysis=False, cache_stats=stats, message=NO_ANALYSIS_MESSAGE
            )
        return AnalysisStatus(
            has_analysis=True,
            summary=entry.summary,
            is_stale=entry.is_stale,
            analysis_timestamp=entry.summary.analysis_timestamp,
            cache_stats=stats,
        )

    def get_patient_analysis(self, patient_id: str) -> PatientAnalysis | None:
        return self.cache.get_patient(patient_id)

    async def refresh_patient(self, patient_id: str) -> PatientOutcome:
        """Re-score one patient and replace their entry in the cache.

        A failed fetch leaves the cache untouched.
        """
        outcome = await analyze_patient(patient_id, self.source.get_lab_results, self.clock)
        if outcome.analysis is not None:
            self.cache.update_one(outcome.analysis)
        return outcome

    async def lab_counts(self, patient_ids: list[str]) -> dict[str, int | None]:
        """Observation totals per patient, for at most ``max_lab_count_batch`` ids.

        A patient whose count cannot be fetched maps to None.
        """
        ids = patient_ids[: self.config.max_lab_count_batch]
        if len(ids) < len(patient_ids):
            logger.info(
                "service: lab counts limited to %d of %d patients",
                len(ids),
                len(patient_ids),
            )

        async def count(patient_id: str) -> int | None:
            try:
                return await self.source.get_lab_count(patient_id)
            except LabIntelligenceError as exc:
                logger.error("service: failed to count labs for %s - %s", patient_id, exc)
                return None

        totals = await asyncio.gather(*(count(patient_id) for patient_id in ids))
        return dict(zip(ids, totals))
