"""Risk scoring logic: sub-scores, composite score, levels and risk factors."""

import math
from datetime import datetime, timezone
from typing import Dict, Optional

import numpy as np

from early_warning.models import (
    AttendanceSummary,
    AssessmentSummary,
    RiskFactors,
    RiskLevel,
    RiskPrediction,
    WindowSummary,
)

NEUTRAL_SCORE = 50.0
BASELINE_AVERAGE = 75.0

LATE_WEIGHT = 0.5
EXCUSED_WEIGHT = 0.7

WEIGHTS = {'attendance': 0.4, 'performance': 0.4, 'trend': 0.2}

DEFAULT_THRESHOLDS = {'medium': 30.0, 'high': 50.0, 'critical': 70.0}

ABSENCE_TREND_MIN_RECORDS = 10
ABSENCE_TREND_PENALTY = 20.0
GRADE_TREND_MULTIPLIER = 2.0


def round_half_up(value: float) -> int:
    """Round .5 upwards, unlike Python's banker's rounding."""
    return int(math.floor(value + 0.5))


def attendance_score(summary: AttendanceSummary) -> float:
    """
    Attendance risk sub-score (0-100, higher is worse).

    Late and excused entries count as partial attendance. An empty window
    scores the neutral 50.

    Args:
        summary: Counts for the last-30-days attendance window

    Returns:
        100 minus the weighted attendance rate
    """
    if summary.total == 0:
        return NEUTRAL_SCORE
    attended = summary.present + summary.late * LATE_WEIGHT + summary.excused * EXCUSED_WEIGHT
    rate = attended / summary.total * 100.0
    return 100.0 - rate


def performance_score(latest: AssessmentSummary) -> float:
    """
    Performance risk sub-score from the 10 most recent assessments.

    Uses risk = 0.7*(100-avg%) + 0.3*failing_rate%; empty history scores 50.
    """
    if latest.count == 0:
        return NEUTRAL_SCORE
    failing_rate = latest.failing / latest.count * 100.0
    return (100.0 - latest.average) * 0.7 + failing_rate * 0.3


def trend_score(
    recent: AssessmentSummary,
    older: AssessmentSummary,
    attendance: AttendanceSummary
) -> float:
    """
    Worsening-direction sub-score, clipped to 0-100.

    Grade trend needs both assessment windows populated; the absence trend
    needs at least 10 attendance entries. Either part is skipped otherwise.
    """
    score = 0.0

    if recent.count > 0 and older.count > 0:
        grade_trend = older.average - recent.average
        score += grade_trend * GRADE_TREND_MULTIPLIER

    if attendance.total >= ABSENCE_TREND_MIN_RECORDS:
        if attendance.recent_absences > attendance.older_absences:
            score += ABSENCE_TREND_PENALTY

    return float(np.clip(score, 0.0, 100.0))


def composite_score(attendance: float, performance: float, trend: float) -> float:
    """Weighted combination of the three sub-scores (unrounded)."""
    return (
        attendance * WEIGHTS['attendance'] +
        performance * WEIGHTS['performance'] +
        trend * WEIGHTS['trend']
    )


def get_risk_level(risk_score: float, thresholds: Optional[Dict[str, float]] = None) -> RiskLevel:
    """
    Categorize risk score into low/medium/high/critical.

    Args:
        risk_score: Risk score (0-100)
        thresholds: Dict with inclusive lower bounds for 'medium', 'high', 'critical'

    Returns:
        RiskLevel
    """
    thresholds = thresholds or DEFAULT_THRESHOLDS
    if risk_score >= thresholds.get('critical', 70):
        return RiskLevel.CRITICAL
    elif risk_score >= thresholds.get('high', 50):
        return RiskLevel.HIGH
    elif risk_score >= thresholds.get('medium', 30):
        return RiskLevel.MEDIUM
    else:
        return RiskLevel.LOW


def identify_risk_factors(
    summary: WindowSummary,
    attendance_sub_score: float,
    performance_sub_score: float
) -> RiskFactors:
    """Evaluate the five independent risk indicators over the shared windows."""
    recent_avg = summary.recent_assessments.average
    overall_avg = summary.all_assessments.average
    if recent_avg is None:
        recent_avg = BASELINE_AVERAGE
    if overall_avg is None:
        overall_avg = BASELINE_AVERAGE

    return RiskFactors(
        low_attendance=attendance_sub_score > 30,
        declining_grades=recent_avg < overall_avg - 10,
        failing_assessments=summary.recent_assessments.failing >= 2,
        recent_absences=summary.attendance.recent_absences >= 3,
        below_average_performance=performance_sub_score > 40,
    )


def calculate_risk_prediction(
    summary: WindowSummary,
    student_id: str,
    now: Optional[datetime] = None
) -> RiskPrediction:
    """
    Score a student's summarised windows into a RiskPrediction.

    The level is classified from the unrounded composite; the stored scores
    are rounded half-up, so a stored risk_score of 70 can carry level 'high'
    when the unrounded composite was 69.5 or more.
    """
    att = attendance_score(summary.attendance)
    perf = performance_score(summary.latest_assessments)
    trend = trend_score(summary.recent_assessments, summary.older_assessments, summary.attendance)
    risk = composite_score(att, perf, trend)

    return RiskPrediction(
        student_id=student_id,
        risk_level=get_risk_level(risk),
        risk_score=round_half_up(risk),
        attendance_score=round_half_up(att),
        performance_score=round_half_up(perf),
        trend_score=round_half_up(trend),
        factors=identify_risk_factors(summary, att, perf),
        prediction_date=now or datetime.now(timezone.utc),
    )
