from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RiskLevel = Literal["critical", "high", "moderate", "low"]


class AnalysisModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


class PatientAnalysis(AnalysisModel):
    patient_id: str
    risk_level: RiskLevel
    risk_score: int = Field(ge=0)
    critical_count: int = Field(ge=0)
    abnormal_count: int = Field(ge=0)
    total_lab_count: int = Field(ge=0)
    last_critical_date: str | None = None
    last_abnormal_date: str | None = None
    analysis_date: str
    data_completeness: float = Field(ge=0.0, le=1.0)


class AggregateSummary(AnalysisModel):
    total_patients: int
    critical_count: int
    high_risk_count: int
    moderate_risk_count: int
    low_risk_count: int
    abnormal_count: int  # Patients with at least one abnormal lab
    incomplete_data_count: int
    analysis_timestamp: str | None  # None only for an empty population
    data_quality_score: float


class PatientOutcome(AnalysisModel):
    """Result of analysing one patient: an analysis, or the failure reason."""

    patient_id: str
    analysis: PatientAnalysis | None = None
    error: str | None = None
    warnings: list[str] = []

    @property
    def ok(self) -> bool:
        return self.analysis is not None


class RunStats(AnalysisModel):
    patients_analyzed: int
    total_patients: int
    duration_seconds: float
    error_count: int
    data_quality_score: float


class AnalysisReport(AnalysisModel):
    success: bool
    summary: AggregateSummary
    stats: RunStats
    errors: list[str] = []
    warnings: list[str] = []
