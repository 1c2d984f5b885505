"""Retrieve and summarise the attendance/assessment windows used for scoring."""

import logging
from datetime import date, timedelta
from typing import List, Optional, Sequence

import numpy as np

from early_warning.models import (
    AttendanceRecord,
    AttendanceStatus,
    AssessmentRecord,
    AttendanceSummary,
    AssessmentSummary,
    StudentWindows,
    WindowSummary,
)
from early_warning.storage import Storage, Filter, ATTENDANCE, ASSESSMENTS

logger = logging.getLogger(__name__)

RECENT_WINDOW_DAYS = 30
PRIOR_WINDOW_DAYS = 60
LATEST_ASSESSMENT_COUNT = 10
ABSENCE_TREND_SPAN = 5
FAILING_PCT = 60.0


def window_bounds(reference_date: date):
    """Return (thirty_days_ago, sixty_days_ago) for the reference date."""
    return (
        reference_date - timedelta(days=RECENT_WINDOW_DAYS),
        reference_date - timedelta(days=PRIOR_WINDOW_DAYS),
    )


async def aggregate_windows(
    storage: Storage,
    student_id: str,
    today: Optional[date] = None
) -> StudentWindows:
    """
    Fetch the four record windows for a student, newest first.

    An unknown student simply yields empty windows.

    Args:
        storage: Record store
        student_id: Stored student id
        today: Reference date (defaults to the current date)

    Returns:
        StudentWindows with attendance (last 30 days), all assessments,
        assessments in the last 30 days and those 30-60 days ago
    """
    today = today or date.today()
    thirty_days_ago, sixty_days_ago = window_bounds(today)
    by_student = Filter('student_id', 'eq', student_id)

    attendance_rows = await storage.query(
        ATTENDANCE,
        [by_student, Filter('date', 'gte', thirty_days_ago)],
        order_by='date', descending=True
    )
    assessment_rows = await storage.query(
        ASSESSMENTS, [by_student], order_by='date', descending=True
    )
    recent_rows = await storage.query(
        ASSESSMENTS,
        [by_student, Filter('date', 'gte', thirty_days_ago)],
        order_by='date', descending=True
    )
    older_rows = await storage.query(
        ASSESSMENTS,
        [by_student, Filter('date', 'gte', sixty_days_ago), Filter('date', 'lt', thirty_days_ago)],
        order_by='date', descending=True
    )

    windows = StudentWindows(
        student_id=student_id,
        reference_date=today,
        attendance=[AttendanceRecord.model_validate(r) for r in attendance_rows],
        assessments=[AssessmentRecord.model_validate(r) for r in assessment_rows],
        recent_assessments=[AssessmentRecord.model_validate(r) for r in recent_rows],
        older_assessments=[AssessmentRecord.model_validate(r) for r in older_rows],
    )
    logger.debug(
        "Windows for %s: %d attendance, %d assessments (%d recent, %d prior)",
        student_id, len(windows.attendance), len(windows.assessments),
        len(windows.recent_assessments), len(windows.older_assessments)
    )
    return windows


def summarize_attendance(records: Sequence[AttendanceRecord]) -> AttendanceSummary:
    """Count statuses in one pass; records must be newest first."""
    summary = AttendanceSummary(total=len(records))
    for idx, record in enumerate(records):
        if record.status == AttendanceStatus.PRESENT:
            summary.present += 1
        elif record.status == AttendanceStatus.LATE:
            summary.late += 1
        elif record.status == AttendanceStatus.EXCUSED:
            summary.excused += 1
        else:
            summary.absent += 1
            if idx < ABSENCE_TREND_SPAN:
                summary.recent_absences += 1
            elif idx < 2 * ABSENCE_TREND_SPAN:
                summary.older_absences += 1
    return summary


def summarize_assessments(records: Sequence[AssessmentRecord]) -> AssessmentSummary:
    """Mean percentage and failing count (< 60%). Average is None when empty."""
    if not records:
        return AssessmentSummary()
    pct = np.array([r.percentage for r in records], dtype=float)
    return AssessmentSummary(
        count=len(pct),
        average=float(pct.mean()),
        failing=int((pct < FAILING_PCT).sum()),
    )


def summarize_windows(windows: StudentWindows) -> WindowSummary:
    """Build the shared summary consumed by every scorer and the factor analysis."""
    latest: List[AssessmentRecord] = windows.assessments[:LATEST_ASSESSMENT_COUNT]
    return WindowSummary(
        attendance=summarize_attendance(windows.attendance),
        latest_assessments=summarize_assessments(latest),
        all_assessments=summarize_assessments(windows.assessments),
        recent_assessments=summarize_assessments(windows.recent_assessments),
        older_assessments=summarize_assessments(windows.older_assessments),
    )
