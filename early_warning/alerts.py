"""Alert generation and the staff-driven alert status workflow."""

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional

from early_warning.models import (
    Alert,
    AlertStatus,
    AlertType,
    RiskFactors,
    RiskLevel,
    RiskPrediction,
    Student,
)
from early_warning.recommendations import generate_recommendations
from early_warning.storage import Storage, Filter, STUDENTS, ALERTS, RecordNotFoundError

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATES: Dict[RiskLevel, str] = {
    RiskLevel.CRITICAL: "CRITICAL: {name} is at severe risk of dropping out. Immediate intervention required.",
    RiskLevel.HIGH: "HIGH RISK: {name} shows significant warning signs. Urgent attention needed.",
    RiskLevel.MEDIUM: "MODERATE RISK: {name} requires monitoring and support.",
    RiskLevel.LOW: "LOW RISK: {name} is performing adequately but continue monitoring.",
}

# resolved is terminal
ALLOWED_TRANSITIONS: Dict[AlertStatus, FrozenSet[AlertStatus]] = {
    AlertStatus.NEW: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.IN_PROGRESS}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.IN_PROGRESS: frozenset({AlertStatus.RESOLVED}),
    AlertStatus.RESOLVED: frozenset(),
}


class InvalidTransitionError(ValueError):
    """Raised for a status change the alert workflow does not allow."""


class AlertNotFoundError(LookupError):
    """Raised when a status change targets an unknown alert."""


def build_alert_message(student_name: str, risk_level: RiskLevel) -> str:
    return MESSAGE_TEMPLATES[RiskLevel(risk_level)].format(name=student_name)


def select_alert_type(factors: RiskFactors) -> AlertType:
    """Attendance factors win over performance factors; otherwise dropout risk."""
    if factors.low_attendance or factors.recent_absences:
        return AlertType.ATTENDANCE
    if factors.failing_assessments or factors.below_average_performance:
        return AlertType.PERFORMANCE
    return AlertType.DROPOUT_RISK


def build_alert(student: Student, prediction: RiskPrediction, prediction_id: Optional[str]) -> Alert:
    """Assemble an unsaved Alert for a prediction."""
    return Alert(
        student_id=prediction.student_id,
        risk_prediction_id=prediction_id,
        alert_type=select_alert_type(prediction.factors),
        severity=prediction.risk_level,
        message=build_alert_message(student.full_name, prediction.risk_level),
        recommendations=generate_recommendations(prediction.factors, prediction.risk_level),
        status=AlertStatus.NEW,
    )


async def find_student(storage: Storage, student_id: str) -> Optional[Student]:
    rows = await storage.query(STUDENTS, [Filter('id', 'eq', student_id)], limit=1)
    if not rows:
        return None
    return Student.model_validate(rows[0])


async def generate_alert(
    storage: Storage,
    student_id: str,
    prediction: RiskPrediction,
    prediction_id: Optional[str]
) -> Optional[Alert]:
    """
    Persist a new alert for a prediction.

    No deduplication is done against open alerts for the same student.

    Args:
        storage: Record store
        student_id: Stored student id used for the identity lookup
        prediction: Prediction the alert describes
        prediction_id: Stored id of that prediction

    Returns:
        The stored Alert, or None when the student cannot be resolved
    """
    student = await find_student(storage, student_id)
    if student is None:
        logger.debug("Student %s not found, no alert generated", student_id)
        return None

    alert = build_alert(student, prediction, prediction_id)
    stored = await storage.insert(ALERTS, alert.model_dump(mode='json', exclude={'id', 'created_at'}))
    logger.info(
        "Alert %s (%s, %s) raised for %s",
        stored['id'], alert.alert_type.value, alert.severity.value, student.full_name
    )
    return Alert.model_validate(stored)


def transition_alert(alert: Alert, new_status: AlertStatus, now: Optional[datetime] = None) -> Alert:
    """
    Return a copy of the alert moved to new_status.

    Entering acknowledged stamps acknowledged_at; entering resolved stamps
    resolved_at.
    """
    new_status = AlertStatus(new_status)
    if new_status not in ALLOWED_TRANSITIONS[alert.status]:
        raise InvalidTransitionError(
            f"Cannot move alert from '{alert.status.value}' to '{new_status.value}'"
        )

    now = now or datetime.now(timezone.utc)
    changes = {'status': new_status}
    if new_status == AlertStatus.ACKNOWLEDGED:
        changes['acknowledged_at'] = now
    elif new_status == AlertStatus.RESOLVED:
        changes['resolved_at'] = now
    return alert.model_copy(update=changes)


async def update_alert_status(
    storage: Storage,
    alert_id: str,
    new_status: AlertStatus,
    now: Optional[datetime] = None
) -> Alert:
    """Apply a staff status change to a stored alert."""
    rows = await storage.query(ALERTS, [Filter('id', 'eq', alert_id)], limit=1)
    if not rows:
        raise AlertNotFoundError(f"Alert {alert_id} not found")

    updated = transition_alert(Alert.model_validate(rows[0]), new_status, now)
    changes = updated.model_dump(
        mode='json', include={'status', 'acknowledged_at', 'resolved_at'}
    )
    try:
        stored = await storage.update(ALERTS, alert_id, changes)
    except RecordNotFoundError as e:
        raise AlertNotFoundError(str(e)) from e
    logger.info("Alert %s moved to %s", alert_id, updated.status.value)
    return Alert.model_validate(stored)
