"""In-memory cache for the latest population analysis.

The cache holds one immutable ``CacheEntry`` snapshot. Writers build a new
snapshot and swap the reference, so readers always see a complete entry.
Contents are process-local and lost on restart.
"""
from __future__ import annotations

import logging
import threading
from datetime import timedelta

from lab_intelligence.clock import Clock, as_utc, utc_now
from lab_intelligence.schemas.analysis import AggregateSummary, PatientAnalysis
from lab_intelligence.schemas.cache import CacheEntry, CacheStats

logger = logging.getLogger(__name__)

CACHE_TTL = timedelta(hours=1)


class AnalysisCache:
    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entry: CacheEntry | None = None
        self._write_lock = threading.Lock()

    def store(
        self, analyses: list[PatientAnalysis], summary: AggregateSummary
    ) -> CacheEntry:
        """Replace the cached content wholesale and mark it fresh."""
        entry = CacheEntry(
            analyses=tuple(analyses),
            summary=summary,
            cache_timestamp=self._now(),
        )
        with self._write_lock:
            self._entry = entry
        logger.info("cache: stored %d patient analyses", len(entry.analyses))
        return entry

    def read(self) -> CacheEntry | None:
        entry = self._entry
        if entry is None:
            return None
        return entry.model_copy(update={"is_stale": self._is_stale(entry)})

    def clear(self) -> None:
        with self._write_lock:
            self._entry = None
        logger.info("cache: cleared")

    def has_fresh_data(self) -> bool:
        entry = self.read()
        return entry is not None and not entry.is_stale

    def get_patient(self, patient_id: str) -> PatientAnalysis | None:
        entry = self._entry
        if entry is None:
            return None
        for analysis in entry.analyses:
            if analysis.patient_id == patient_id:
                return analysis
        return None

    def update_one(self, analysis: PatientAnalysis) -> None:
        """Replace one patient's analysis in place.

        Does nothing when the cache is empty. The cache timestamp is
        refreshed on every call, even when no entry matches, which resets
        staleness for the whole cache after a single-patient write.
        """
        with self._write_lock:
            entry = self._entry
            if entry is None:
                return

            replaced = False
            analyses = list(entry.analyses)
            for index, current in enumerate(analyses):
                if current.patient_id == analysis.patient_id:
                    analyses[index] = analysis
                    replaced = True
                    break

            self._entry = entry.model_copy(
                update={
                    "analyses": tuple(analyses),
                    "cache_timestamp": self._now(),
                    "is_stale": False,
                }
            )

        if not replaced:
            logger.debug("cache: no cached analysis for patient %s", analysis.patient_id)

    def stats(self) -> CacheStats:
        entry = self._entry
        if entry is None:
            return CacheStats(has_cached_data=False)

        age = self._now() - entry.cache_timestamp
        return CacheStats(
            has_cached_data=True,
            cache_age=round(age.total_seconds()),
            is_stale=age > CACHE_TTL,
            patient_count=len(entry.analyses),
            data_quality_score=entry.summary.data_quality_score,
        )

    def _now(self):
        return as_utc(self._clock())

    def _is_stale(self, entry: CacheEntry) -> bool:
        return self._now() - entry.cache_timestamp > CACHE_TTL
