from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from lab_intelligence.schemas.analysis import AggregateSummary, PatientAnalysis


class CacheModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class CacheEntry(CacheModel):
    analyses: tuple[PatientAnalysis, ...]
    summary: AggregateSummary
    cache_timestamp: datetime
    is_stale: bool = False


class CacheStats(CacheModel):
    has_cached_data: bool
    cache_age: int | None = None  # Seconds since the last write
    is_stale: bool | None = None
    patient_count: int = 0
    data_quality_score: float | None = None


class AnalysisStatus(CacheModel):
    has_analysis: bool
    summary: AggregateSummary | None = None
    is_stale: bool | None = None
    analysis_timestamp: str | None = None
    cache_stats: CacheStats
    message: str | None = None
