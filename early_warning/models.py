"""Data models for the Student Early Warning engine."""

from datetime import date, datetime
from enum import Enum
from typing import Optional, Dict, List

from pydantic import BaseModel, Field


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    ABSENT = 'absent'
    LATE = 'late'
    EXCUSED = 'excused'


class AssessmentType(str, Enum):
    EXAM = 'exam'
    QUIZ = 'quiz'
    ASSIGNMENT = 'assignment'
    PROJECT = 'project'


class StudentStatus(str, Enum):
    ACTIVE = 'active'
    SUSPENDED = 'suspended'
    GRADUATED = 'graduated'
    DROPPED = 'dropped'


class RiskLevel(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


class AlertType(str, Enum):
    ATTENDANCE = 'attendance'
    PERFORMANCE = 'performance'
    DROPOUT_RISK = 'dropout_risk'


class AlertStatus(str, Enum):
    NEW = 'new'
    ACKNOWLEDGED = 'acknowledged'
    IN_PROGRESS = 'in_progress'
    RESOLVED = 'resolved'


class Student(BaseModel):
    """Student profile as stored in the `students` collection."""
    id: Optional[str] = None
    student_id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    enrollment_date: Optional[date] = None
    grade_level: Optional[str] = None
    major: Optional[str] = None
    status: StudentStatus = StudentStatus.ACTIVE

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class AttendanceRecord(BaseModel):
    """Single attendance entry."""
    model_config = {'frozen': True}

    id: Optional[str] = None
    student_id: Optional[str] = None
    date: date
    status: AttendanceStatus
    notes: Optional[str] = None


class AssessmentRecord(BaseModel):
    """Single assessment result; percentage is already computed upstream."""
    model_config = {'frozen': True}

    id: Optional[str] = None
    student_id: Optional[str] = None
    date: date
    percentage: float = Field(ge=0, le=100)
    subject: str
    assessment_name: Optional[str] = None
    assessment_type: Optional[AssessmentType] = None


class AttendanceSummary(BaseModel):
    """Counts over one attendance window (most recent first)."""
    total: int = 0
    present: int = 0
    absent: int = 0
    late: int = 0
    excused: int = 0
    recent_absences: int = 0   # absences among the 5 most recent entries
    older_absences: int = 0    # absences among entries 6-10


class AssessmentSummary(BaseModel):
    """Aggregates over one assessment window."""
    count: int = 0
    average: Optional[float] = None
    failing: int = 0


class StudentWindows(BaseModel):
    """Date-descending record windows for one student."""
    student_id: str
    reference_date: date
    attendance: List[AttendanceRecord] = []
    assessments: List[AssessmentRecord] = []
    recent_assessments: List[AssessmentRecord] = []
    older_assessments: List[AssessmentRecord] = []


class WindowSummary(BaseModel):
    """Single-pass summary of every window consumed by the scorers."""
    attendance: AttendanceSummary
    latest_assessments: AssessmentSummary
    all_assessments: AssessmentSummary
    recent_assessments: AssessmentSummary
    older_assessments: AssessmentSummary


class RiskFactors(BaseModel):
    model_config = {'frozen': True}

    low_attendance: bool = False
    declining_grades: bool = False
    failing_assessments: bool = False
    recent_absences: bool = False
    below_average_performance: bool = False


class RiskPrediction(BaseModel):
    """Outcome of one analysis run. Never mutated after creation."""
    model_config = {'frozen': True}

    id: Optional[str] = None
    student_id: str
    risk_level: RiskLevel
    risk_score: int = Field(ge=0, le=100)
    attendance_score: int = Field(ge=0, le=100)
    performance_score: int = Field(ge=0, le=100)
    trend_score: int = Field(ge=0, le=100)
    factors: RiskFactors
    prediction_date: datetime


class Alert(BaseModel):
    """Staff-actionable alert raised for a non-low prediction."""
    id: Optional[str] = None
    student_id: str
    risk_prediction_id: Optional[str] = None
    alert_type: AlertType
    severity: RiskLevel
    message: str
    recommendations: List[str]
    status: AlertStatus = AlertStatus.NEW
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AnalysisResult(BaseModel):
    """Single-student pipeline result."""
    prediction: RiskPrediction
    alert: Optional[Alert] = None


class StudentOutcome(BaseModel):
    student_id: str
    success: bool
    risk_level: Optional[RiskLevel] = None
    prediction_id: Optional[str] = None
    alert_id: Optional[str] = None
    error: Optional[str] = None


class BatchReport(BaseModel):
    """Per-student outcomes of an analyze-all run."""
    outcomes: List[StudentOutcome] = []

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)


class AlertStatusRequest(BaseModel):
    """Request body for a staff status change."""
    status: AlertStatus


class DashboardSummary(BaseModel):
    total_students: int
    at_risk_students: int
    active_alerts: int
    risk_distribution: Dict[str, int]


class ImportResponse(BaseModel):
    """Response from workbook upload endpoint."""
    success: bool
    message: str
    summary: Dict[str, int]
