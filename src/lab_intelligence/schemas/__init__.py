"""Schema definitions for lab risk analysis."""
from lab_intelligence.schemas.lab_result import LabResult, LabStatus, Patient, ReferenceRange
from lab_intelligence.schemas.analysis import (
    AggregateSummary,
    AnalysisReport,
    PatientAnalysis,
    PatientOutcome,
    RiskLevel,
    RunStats,
)
from lab_intelligence.schemas.cache import AnalysisStatus, CacheEntry, CacheStats
from lab_intelligence.schemas.config import AnalysisConfig
from lab_intelligence.schemas.fhir import FHIRObservation, FHIRPatient

__all__ = [
    "LabResult", "LabStatus", "Patient", "ReferenceRange",
    "AggregateSummary", "AnalysisReport", "PatientAnalysis", "PatientOutcome",
    "RiskLevel", "RunStats",
    "AnalysisStatus", "CacheEntry", "CacheStats",
    "AnalysisConfig",
    "FHIRObservation", "FHIRPatient",
]
