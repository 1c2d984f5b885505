"""Recommendation text blocks for alerts, selected by risk factors and level."""

from typing import List

from early_warning.models import RiskFactors, RiskLevel


def generate_recommendations(factors: RiskFactors, risk_level: RiskLevel) -> List[str]:
    """Build the ordered, never-empty recommendation list for an alert."""
    recommendations: List[str] = []

    if factors.low_attendance or factors.recent_absences:
        recommendations.extend(_attendance_block())

    if factors.failing_assessments or factors.below_average_performance:
        recommendations.extend(_academic_support_block())

    if factors.declining_grades:
        recommendations.extend(_grade_review_block())

    if risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL):
        recommendations.extend(_escalation_block())

    if not recommendations:
        recommendations.extend(_monitoring_block())

    return recommendations


def _attendance_block() -> List[str]:
    return [
        'Schedule a meeting with the student to discuss attendance concerns',
        'Contact parents/guardians about frequent absences',
        'Investigate potential barriers to attendance (transportation, health, etc.)',
    ]


def _academic_support_block() -> List[str]:
    return [
        'Arrange tutoring or academic support sessions',
        'Review learning materials and study strategies with the student',
        'Consider adjusting teaching approach or providing additional resources',
    ]


def _grade_review_block() -> List[str]:
    return [
        'Conduct academic performance review with the student',
        'Identify specific subjects or topics causing difficulty',
        'Develop a personalized improvement plan with measurable goals',
    ]


def _escalation_block() -> List[str]:
    return [
        'Assign an academic advisor for regular check-ins',
        'Consider counseling services to address any personal issues',
        'Implement an early intervention program',
        'Schedule a meeting with parents, student, and academic team',
    ]


def _monitoring_block() -> List[str]:
    return [
        'Continue monitoring student progress',
        'Maintain regular communication with the student',
    ]
