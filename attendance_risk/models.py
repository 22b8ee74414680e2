"""Data models for the Attendance Risk Monitor."""

from datetime import date, datetime
from enum import Enum
from typing import Optional, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class AttendanceStatus(str, Enum):
    """Status recorded for a single session. No 'excused' variant exists."""
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class InterventionType(str, Enum):
    WARNING = "warning"
    EMAIL_ALERT = "email-alert"
    TEACHER_NOTIFICATION = "teacher-notification"
    COUNSELOR_REFERRAL = "counselor-referral"
    PARENT_CONTACT = "parent-contact"


class InterventionStatus(str, Enum):
    """Primary lifecycle states. Escalation is tracked separately on the record."""
    TRIGGERED = "triggered"
    ACKNOWLEDGED = "acknowledged"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"


class AttendanceEvent(BaseModel):
    """One attendance mark for a student in a session."""
    model_config = ConfigDict(frozen=True)

    student_id: str
    course_id: Optional[str] = None
    date: date
    status: AttendanceStatus


class RiskWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    absence: float = 0.6
    lateness: float = 0.2
    trend: float = 0.2


class AnalysisOptions(BaseModel):
    """Scoring options. Pass explicitly; there is no process-wide default to mutate."""
    model_config = ConfigDict(frozen=True)

    trend_window: int = 10
    weights: RiskWeights = Field(default_factory=RiskWeights)


class RiskBreakdown(BaseModel):
    model_config = ConfigDict(frozen=True)

    attendance_percentage: float
    absences: int
    lates: int
    total_sessions: int
    recent_trend_slope: Optional[float] = None


class RiskAssessment(BaseModel):
    """Result of scoring one student's attendance history."""
    model_config = ConfigDict(frozen=True)

    level: RiskLevel
    score: float
    breakdown: RiskBreakdown


class StudentAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    student_id: str
    assessment: RiskAssessment


class ClassRiskTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    count: int
    high: int
    medium: int
    low: int


class ClassRiskSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    totals: ClassRiskTotals
    assessments: List[StudentAssessment]


class InterventionThresholds(BaseModel):
    """Cut-offs used to decide whether, and how, to intervene."""
    model_config = ConfigDict(frozen=True)

    high_risk_threshold: float = 70.0
    medium_risk_threshold: float = 50.0
    low_risk_threshold: float = 30.0
    decline_rate_threshold: float = -0.5
    absence_trigger: float = 40.0
    # Reserved: not consulted by the current decision logic.
    consecutive_absences_trigger: int = 3


class InterventionTrigger(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    student_id: str
    student_name: str
    type: InterventionType
    risk_score: float
    risk_level: RiskLevel
    reason: str
    triggered_at: datetime
    teacher: Optional[str] = None
    class_name: Optional[str] = Field(default=None, alias="class")


class Intervention(BaseModel):
    """Tracked action item raised for a student.

    Records are immutable; lifecycle helpers in ``interventions`` return
    updated copies.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    student_id: str
    student_name: str
    type: InterventionType
    status: InterventionStatus = InterventionStatus.TRIGGERED
    risk_score: float
    risk_level: RiskLevel
    reason: str
    triggered_at: datetime
    acknowledged_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None
    escalated: bool = False
    escalation_reason: Optional[str] = None
    escalated_at: Optional[datetime] = None
    teacher_id: Optional[str] = None
    counselor_id: Optional[str] = None
    class_name: Optional[str] = None
    follow_up_required: bool = False
    follow_up_date: Optional[datetime] = None


class Student(BaseModel):
    """Directory entry for anyone the system may reference or notify."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: Optional[str] = None
    identification_number: Optional[str] = None
    role: str = "student"


class ScanResult(BaseModel):
    scanned: int = 0
    triggered: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)
    created: List[Intervention] = Field(default_factory=list)


class HealthStatus(BaseModel):
    total_students: int
    active_interventions: int
    high_risk_students: int
    resolution_rate: float


class EmailDraft(BaseModel):
    """Email draft. Delivery is handled outside this service."""
    to: Optional[str] = None
    subject: str
    body: str


# Request/response bodies for the HTTP API

class AssessRequest(BaseModel):
    events: List[AttendanceEvent]
    options: Optional[AnalysisOptions] = None


class EvaluateRequest(BaseModel):
    student_id: str
    student_name: str
    events: List[AttendanceEvent]
    teacher: Optional[str] = None
    class_name: Optional[str] = None


class EvaluateResponse(BaseModel):
    should_trigger: bool
    assessment: RiskAssessment
    trigger: Optional[InterventionTrigger] = None


class StudentRiskResult(BaseModel):
    """Per-student row produced by the upload endpoint."""
    student_id: str
    student_name: str
    attendance_rate: float
    risk_score: float
    risk_level: RiskLevel
    breakdown: RiskBreakdown
    should_trigger: bool
    intervention_type: Optional[InterventionType] = None
    reason: Optional[str] = None


class UploadResponse(BaseModel):
    success: bool
    message: str
    results: List[StudentRiskResult]
    summary: Dict[str, int]


class EscalateRequest(BaseModel):
    reason: str


class ResolveRequest(BaseModel):
    notes: Optional[str] = None


class EmailDraftRequest(BaseModel):
    student_name: str
    events: List[AttendanceEvent]
