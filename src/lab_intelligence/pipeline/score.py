from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from lab_intelligence.clock import Clock, as_utc, isoformat, parse_timestamp, utc_now
from lab_intelligence.schemas.analysis import PatientAnalysis, RiskLevel
from lab_intelligence.schemas.lab_result import LabResult

logger = logging.getLogger(__name__)

CRITICAL_WEIGHT = 50
ABNORMAL_WEIGHT = 5
RECENT_CRITICAL_WEIGHT = 25
RECENT_ABNORMAL_WEIGHT = 10
RECENT_WINDOW = timedelta(days=7)

HIGH_RISK_THRESHOLD = 100
MODERATE_RISK_THRESHOLD = 30

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def empty_analysis(patient_id: str, clock: Clock = utc_now) -> PatientAnalysis:
    """Zero-value analysis used when a patient has no usable lab data."""
    return PatientAnalysis(
        patient_id=patient_id,
        risk_level="low",
        risk_score=0,
        critical_count=0,
        abnormal_count=0,
        total_lab_count=0,
        analysis_date=isoformat(clock()),
        data_completeness=0.0,
    )


def classify_risk(risk_score: int, critical_count: int) -> RiskLevel:
    if critical_count > 0:
        return "critical"
    if risk_score >= HIGH_RISK_THRESHOLD:
        return "high"
    if risk_score >= MODERATE_RISK_THRESHOLD:
        return "moderate"
    return "low"


def data_completeness(lab_results: list[LabResult]) -> float:
    """Fraction of value, unit, reference range and timestamp fields present."""
    if not lab_results:
        return 0.0

    present = 0
    for lab in lab_results:
        if lab.value is not None:
            present += 1
        if lab.unit:
            present += 1
        if lab.reference_range is not None:
            present += 1
        if lab.effective_date_time:
            present += 1

    return present / (4 * len(lab_results))


def _is_recent(lab: LabResult, cutoff: datetime) -> bool:
    effective = parse_timestamp(lab.effective_date_time)
    return effective is not None and effective > cutoff


def _latest_date(labs: list[LabResult]) -> str | None:
    if not labs:
        return None
    latest = max(labs, key=lambda lab: parse_timestamp(lab.effective_date_time) or _EPOCH)
    return latest.effective_date_time


def score_patient(
    patient_id: str, all_lab_results: list[LabResult], clock: Clock = utc_now
) -> PatientAnalysis:
    """Score a patient's complete lab history.

    The score is defined over every result the patient has. Callers must
    not sample or truncate ``all_lab_results``.
    """
    if not all_lab_results:
        return empty_analysis(patient_id, clock)

    now = as_utc(clock())
    cutoff = now - RECENT_WINDOW

    critical_labs = [lab for lab in all_lab_results if lab.status == "critical"]
    abnormal_labs = [lab for lab in all_lab_results if lab.status == "abnormal"]

    recent_critical = sum(1 for lab in critical_labs if _is_recent(lab, cutoff))
    recent_abnormal = sum(1 for lab in abnormal_labs if _is_recent(lab, cutoff))

    risk_score = (
        len(critical_labs) * CRITICAL_WEIGHT
        + len(abnormal_labs) * ABNORMAL_WEIGHT
        + recent_critical * RECENT_CRITICAL_WEIGHT
        + recent_abnormal * RECENT_ABNORMAL_WEIGHT
    )
    risk_level = classify_risk(risk_score, len(critical_labs))

    logger.debug(
        "score: patient %s - %d labs, %d critical (%d recent), "
        "%d abnormal (%d recent), score=%d (%s)",
        patient_id,
        len(all_lab_results),
        len(critical_labs),
        recent_critical,
        len(abnormal_labs),
        recent_abnormal,
        risk_score,
        risk_level,
    )

    return PatientAnalysis(
        patient_id=patient_id,
        risk_level=risk_level,
        risk_score=risk_score,
        critical_count=len(critical_labs),
        abnormal_count=len(abnormal_labs),
        total_lab_count=len(all_lab_results),
        last_critical_date=_latest_date(critical_labs),
        last_abnormal_date=_latest_date(abnormal_labs),
        analysis_date=isoformat(now),
        data_completeness=data_completeness(all_lab_results),
    )
