"""Unit tests for alert generation and the alert status workflow."""

import asyncio
from datetime import datetime, timezone

import pytest

from early_warning.alerts import (
    build_alert_message,
    select_alert_type,
    generate_alert,
    transition_alert,
    update_alert_status,
    InvalidTransitionError,
    AlertNotFoundError,
)
from early_warning.models import (
    Alert,
    AlertStatus,
    AlertType,
    RiskFactors,
    RiskLevel,
    RiskPrediction,
)
from early_warning.storage import InMemoryStorage, ALERTS, STUDENTS

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


def make_prediction(student_id, level, factors=None, score=55):
    return RiskPrediction(
        student_id=student_id,
        risk_level=level,
        risk_score=score,
        attendance_score=40,
        performance_score=60,
        trend_score=0,
        factors=factors or RiskFactors(),
        prediction_date=NOW,
    )


def make_alert(status=AlertStatus.NEW):
    return Alert(
        student_id='s1',
        alert_type=AlertType.DROPOUT_RISK,
        severity=RiskLevel.HIGH,
        message='HIGH RISK',
        recommendations=['Continue monitoring student progress'],
        status=status,
    )


def add_student(storage, first='Jane', last='Doe'):
    async def _add():
        return await storage.insert(STUDENTS, {
            'student_id': '1001', 'first_name': first, 'last_name': last, 'status': 'active'
        })
    return asyncio.run(_add())


def test_build_alert_message():
    assert build_alert_message('Jane Doe', RiskLevel.HIGH) == \
        "HIGH RISK: Jane Doe shows significant warning signs. Urgent attention needed."
    assert build_alert_message('Jane Doe', RiskLevel.CRITICAL) == \
        "CRITICAL: Jane Doe is at severe risk of dropping out. Immediate intervention required."
    assert build_alert_message('Jane Doe', RiskLevel.MEDIUM) == \
        "MODERATE RISK: Jane Doe requires monitoring and support."
    assert build_alert_message('Jane Doe', RiskLevel.LOW) == \
        "LOW RISK: Jane Doe is performing adequately but continue monitoring."


def test_select_alert_type_first_match_wins():
    assert select_alert_type(RiskFactors(recent_absences=True, failing_assessments=True)) == AlertType.ATTENDANCE
    assert select_alert_type(RiskFactors(low_attendance=True)) == AlertType.ATTENDANCE
    assert select_alert_type(RiskFactors(below_average_performance=True)) == AlertType.PERFORMANCE
    assert select_alert_type(RiskFactors(declining_grades=True)) == AlertType.DROPOUT_RISK
    assert select_alert_type(RiskFactors()) == AlertType.DROPOUT_RISK


def test_generate_alert_for_high_risk_student():
    storage = InMemoryStorage()
    student = add_student(storage)
    prediction = make_prediction(student['id'], RiskLevel.HIGH, RiskFactors(failing_assessments=True))

    alert = asyncio.run(generate_alert(storage, student['id'], prediction, 'pred-1'))

    assert alert.id is not None
    assert alert.message == "HIGH RISK: Jane Doe shows significant warning signs. Urgent attention needed."
    assert alert.status == AlertStatus.NEW
    assert alert.severity == RiskLevel.HIGH
    assert alert.alert_type == AlertType.PERFORMANCE
    assert alert.risk_prediction_id == 'pred-1'
    assert alert.recommendations[0] == 'Arrange tutoring or academic support sessions'

    stored = asyncio.run(storage.query(ALERTS))
    assert len(stored) == 1
    assert stored[0]['status'] == 'new'


def test_generate_alert_unknown_student_is_noop():
    storage = InMemoryStorage()
    prediction = make_prediction('ghost', RiskLevel.CRITICAL, score=90)

    assert asyncio.run(generate_alert(storage, 'ghost', prediction, 'pred-1')) is None
    assert asyncio.run(storage.query(ALERTS)) == []


def test_generate_alert_does_not_deduplicate():
    storage = InMemoryStorage()
    student = add_student(storage)
    prediction = make_prediction(student['id'], RiskLevel.MEDIUM, score=35)

    asyncio.run(generate_alert(storage, student['id'], prediction, 'pred-1'))
    asyncio.run(generate_alert(storage, student['id'], prediction, 'pred-2'))

    assert len(asyncio.run(storage.query(ALERTS))) == 2


def test_transition_alert_allowed_paths():
    acknowledged = transition_alert(make_alert(), AlertStatus.ACKNOWLEDGED, now=NOW)
    assert acknowledged.status == AlertStatus.ACKNOWLEDGED
    assert acknowledged.acknowledged_at == NOW
    assert acknowledged.resolved_at is None

    resolved = transition_alert(acknowledged, AlertStatus.RESOLVED, now=NOW)
    assert resolved.status == AlertStatus.RESOLVED
    assert resolved.resolved_at == NOW
    assert resolved.acknowledged_at == NOW

    in_progress = transition_alert(make_alert(), AlertStatus.IN_PROGRESS, now=NOW)
    assert in_progress.acknowledged_at is None
    assert transition_alert(in_progress, AlertStatus.RESOLVED, now=NOW).status == AlertStatus.RESOLVED


def test_transition_alert_rejects_undefined_transitions():
    with pytest.raises(InvalidTransitionError):
        transition_alert(make_alert(), AlertStatus.RESOLVED)
    with pytest.raises(InvalidTransitionError):
        transition_alert(make_alert(AlertStatus.ACKNOWLEDGED), AlertStatus.IN_PROGRESS)
    with pytest.raises(InvalidTransitionError):
        transition_alert(make_alert(AlertStatus.NEW), AlertStatus.NEW)
    for target in AlertStatus:
        with pytest.raises(InvalidTransitionError):
            transition_alert(make_alert(AlertStatus.RESOLVED), target)


def test_update_alert_status_persists():
    storage = InMemoryStorage()
    student = add_student(storage)
    prediction = make_prediction(student['id'], RiskLevel.HIGH)
    alert = asyncio.run(generate_alert(storage, student['id'], prediction, 'pred-1'))

    updated = asyncio.run(update_alert_status(storage, alert.id, AlertStatus.ACKNOWLEDGED, now=NOW))
    assert updated.status == AlertStatus.ACKNOWLEDGED
    assert updated.acknowledged_at == NOW

    updated = asyncio.run(update_alert_status(storage, alert.id, AlertStatus.RESOLVED, now=NOW))
    assert updated.resolved_at == NOW
    assert updated.acknowledged_at == NOW

    with pytest.raises(InvalidTransitionError):
        asyncio.run(update_alert_status(storage, alert.id, AlertStatus.IN_PROGRESS))
    with pytest.raises(AlertNotFoundError):
        asyncio.run(update_alert_status(storage, 'missing', AlertStatus.ACKNOWLEDGED))
