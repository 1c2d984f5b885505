"""Dashboard statistics and exports over stored predictions and alerts."""

from typing import Dict, List, Optional

import pandas as pd

from early_warning.models import (
    Alert,
    AlertStatus,
    DashboardSummary,
    RiskLevel,
    RiskPrediction,
    StudentStatus,
)
from early_warning.storage import Storage, Filter, STUDENTS, PREDICTIONS, ALERTS

ACTIVE_ALERT_STATUSES = [AlertStatus.NEW.value, AlertStatus.ACKNOWLEDGED.value, AlertStatus.IN_PROGRESS.value]

CSV_COLUMNS = {
    'id': 'Alert ID',
    'student_id': 'Student',
    'alert_type': 'Type',
    'severity': 'Severity',
    'status': 'Status',
    'message': 'Message',
    'recommendations': 'Recommendations',
    'created_at': 'Created',
}


async def latest_predictions(storage: Storage) -> Dict[str, RiskPrediction]:
    """Newest prediction per student, keyed by student id."""
    rows = await storage.query(PREDICTIONS, order_by='prediction_date', descending=True)
    latest: Dict[str, RiskPrediction] = {}
    for row in rows:
        if row['student_id'] not in latest:
            latest[row['student_id']] = RiskPrediction.model_validate(row)
    return latest


async def dashboard_summary(storage: Storage) -> DashboardSummary:
    students = await storage.query(STUDENTS, [Filter('status', 'eq', StudentStatus.ACTIVE.value)])
    alerts = await storage.query(ALERTS, [Filter('status', 'in', ACTIVE_ALERT_STATUSES)])
    latest = await latest_predictions(storage)

    levels = pd.Series([p.risk_level.value for p in latest.values()], dtype=object)
    counts = levels.value_counts()
    distribution = {level.value: int(counts.get(level.value, 0)) for level in RiskLevel}

    return DashboardSummary(
        total_students=len(students),
        at_risk_students=distribution[RiskLevel.HIGH.value] + distribution[RiskLevel.CRITICAL.value],
        active_alerts=len(alerts),
        risk_distribution=distribution,
    )


async def list_alerts(
    storage: Storage,
    status: Optional[AlertStatus] = None,
    severity: Optional[RiskLevel] = None
) -> List[Alert]:
    """Alerts newest first, optionally filtered by status and severity."""
    filters = []
    if status is not None:
        filters.append(Filter('status', 'eq', AlertStatus(status).value))
    if severity is not None:
        filters.append(Filter('severity', 'eq', RiskLevel(severity).value))
    rows = await storage.query(ALERTS, filters, order_by='created_at', descending=True)
    return [Alert.model_validate(row) for row in rows]


def alerts_to_csv(alerts: List[Alert]) -> str:
    """Render alerts as CSV text, recommendations joined with ' | '."""
    records = [a.model_dump(mode='json', include=set(CSV_COLUMNS)) for a in alerts]
    df = pd.DataFrame(records, columns=list(CSV_COLUMNS))
    if not df.empty:
        df['recommendations'] = df['recommendations'].map(lambda recs: ' | '.join(recs))
    return df.rename(columns=CSV_COLUMNS).to_csv(index=False)
