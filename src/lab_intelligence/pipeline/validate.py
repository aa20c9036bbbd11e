from __future__ import annotations

import logging

from lab_intelligence.schemas.analysis import PatientAnalysis

logger = logging.getLogger(__name__)

LOW_COMPLETENESS_THRESHOLD = 0.5
CRITICAL_SHARE_THRESHOLD = 0.5


def validate_analysis(analysis: PatientAnalysis) -> list[str]:
    """Return advisory warnings for suspicious or inconsistent values.

    Warnings are for operators only; they never block storing an analysis.
    """
    warnings: list[str] = []
    patient = analysis.patient_id

    if analysis.data_completeness < LOW_COMPLETENESS_THRESHOLD:
        warnings.append(
            f"Patient {patient}: Low data completeness "
            f"({analysis.data_completeness * 100:.1f}%)"
        )

    if analysis.total_lab_count == 0:
        warnings.append(f"Patient {patient}: No lab results available")

    if analysis.critical_count > 0 and not analysis.last_critical_date:
        warnings.append(
            f"Patient {patient}: Critical labs detected but no date available"
        )

    if analysis.critical_count > analysis.total_lab_count * CRITICAL_SHARE_THRESHOLD:
        warnings.append(
            f"Patient {patient}: Unusually high percentage of critical labs "
            f"({analysis.critical_count}/{analysis.total_lab_count})"
        )

    for warning in warnings:
        logger.warning("validate: %s", warning)
    return warnings
