from __future__ import annotations

import logging

from lab_intelligence.clock import parse_timestamp
from lab_intelligence.schemas.analysis import AggregateSummary, PatientAnalysis

logger = logging.getLogger(__name__)

INCOMPLETE_DATA_THRESHOLD = 0.8


def _latest_analysis_date(analyses: list[PatientAnalysis]) -> str | None:
    latest: PatientAnalysis | None = None
    latest_at = None
    for analysis in analyses:
        at = parse_timestamp(analysis.analysis_date)
        if at is None:
            continue
        if latest_at is None or at > latest_at:
            latest, latest_at = analysis, at
    return latest.analysis_date if latest is not None else None


def aggregate_analyses(analyses: list[PatientAnalysis]) -> AggregateSummary:
    """Reduce per-patient analyses into population counts.

    An empty population has a data quality score of 0.0 and no
    analysis timestamp.
    """
    total = len(analyses)
    quality = (
        sum(a.data_completeness for a in analyses) / total if total > 0 else 0.0
    )

    summary = AggregateSummary(
        total_patients=total,
        critical_count=sum(1 for a in analyses if a.risk_level == "critical"),
        high_risk_count=sum(1 for a in analyses if a.risk_level == "high"),
        moderate_risk_count=sum(1 for a in analyses if a.risk_level == "moderate"),
        low_risk_count=sum(1 for a in analyses if a.risk_level == "low"),
        abnormal_count=sum(1 for a in analyses if a.abnormal_count > 0),
        incomplete_data_count=sum(
            1 for a in analyses if a.data_completeness < INCOMPLETE_DATA_THRESHOLD
        ),
        analysis_timestamp=_latest_analysis_date(analyses),
        data_quality_score=quality,
    )

    logger.info(
        "aggregate: %d patients - %d critical, %d high, %d moderate, %d low "
        "(quality %.2f)",
        summary.total_patients,
        summary.critical_count,
        summary.high_risk_count,
        summary.moderate_risk_count,
        summary.low_risk_count,
        summary.data_quality_score,
    )
    return summary
