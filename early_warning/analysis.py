"""Analysis pipeline: windows -> scores -> prediction -> optional alert."""

import logging
from datetime import date
from typing import List, Optional, Sequence

from early_warning.alerts import generate_alert
from early_warning.models import (
    AnalysisResult,
    BatchReport,
    RiskLevel,
    RiskPrediction,
    StudentOutcome,
    StudentStatus,
)
from early_warning.risk import calculate_risk_prediction
from early_warning.storage import Storage, Filter, STUDENTS, PREDICTIONS
from early_warning.windows import aggregate_windows, summarize_windows

logger = logging.getLogger(__name__)


async def predict_student_risk(
    storage: Storage,
    student_id: str,
    today: Optional[date] = None
) -> RiskPrediction:
    """Compute (without persisting) a prediction for one student."""
    windows = await aggregate_windows(storage, student_id, today)
    summary = summarize_windows(windows)
    return calculate_risk_prediction(summary, student_id)


async def analyze_student(
    storage: Storage,
    student_id: str,
    today: Optional[date] = None
) -> AnalysisResult:
    """
    Run the full pipeline for one student.

    The prediction is stored first, then an alert when the level is not low.
    The two writes are not atomic: if the alert insert fails the stored
    prediction is left without an alert.
    """
    prediction = await predict_student_risk(storage, student_id, today)
    record = prediction.model_dump(mode='json', exclude={'id'})
    # keep a datetime so newest-first ordering is chronological
    record['prediction_date'] = prediction.prediction_date
    stored = await storage.insert(PREDICTIONS, record)
    prediction = RiskPrediction.model_validate(stored)
    logger.info(
        "Student %s scored %d (%s)",
        student_id, prediction.risk_score, prediction.risk_level.value
    )

    alert = None
    if prediction.risk_level != RiskLevel.LOW:
        alert = await generate_alert(storage, student_id, prediction, prediction.id)

    return AnalysisResult(prediction=prediction, alert=alert)


async def active_student_ids(storage: Storage) -> List[str]:
    rows = await storage.query(
        STUDENTS, [Filter('status', 'eq', StudentStatus.ACTIVE.value)], order_by='last_name'
    )
    return [row['id'] for row in rows]


async def analyze_all(
    storage: Storage,
    student_ids: Optional[Sequence[str]] = None,
    fail_fast: bool = False,
    today: Optional[date] = None
) -> BatchReport:
    """
    Analyse students one after another.

    Each student's pipeline finishes before the next starts. By default a
    failure is recorded in that student's outcome and the batch continues;
    with fail_fast the error is re-raised and earlier writes are kept.

    Args:
        storage: Record store
        student_ids: Ids to analyse (defaults to all active students by last name)
        fail_fast: Abort on the first failure
        today: Reference date for the windows

    Returns:
        BatchReport with one outcome per student
    """
    if student_ids is None:
        student_ids = await active_student_ids(storage)

    report = BatchReport()
    for student_id in student_ids:
        try:
            result = await analyze_student(storage, student_id, today)
        except Exception as e:
            if fail_fast:
                raise
            logger.exception("Analysis failed for student %s", student_id)
            report.outcomes.append(StudentOutcome(
                student_id=student_id,
                success=False,
                error=f"{type(e).__name__}: {e}",
            ))
            continue

        report.outcomes.append(StudentOutcome(
            student_id=student_id,
            success=True,
            risk_level=result.prediction.risk_level,
            prediction_id=result.prediction.id,
            alert_id=result.alert.id if result.alert else None,
        ))

    logger.info(
        "Batch analysis finished: %d succeeded, %d failed",
        report.succeeded, report.failed
    )
    return report
