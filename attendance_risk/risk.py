"""Risk scoring logic: attendance percentage, recent trend and risk level.

All functions here are pure: they depend only on their arguments and never
read the clock, the environment or shared state.
"""

from typing import Dict, List, Optional, Sequence

import numpy as np

from attendance_risk.models import (
    AnalysisOptions,
    AttendanceEvent,
    AttendanceStatus,
    ClassRiskSummary,
    ClassRiskTotals,
    RiskAssessment,
    RiskBreakdown,
    RiskLevel,
    StudentAssessment,
)

DEFAULT_OPTIONS = AnalysisOptions()

HIGH_RISK_SCORE = 66.0
MEDIUM_RISK_SCORE = 33.0


def _count(events: Sequence[AttendanceEvent], status: AttendanceStatus) -> int:
    return sum(1 for e in events if e.status == status)


def calculate_attendance_percentage(events: Sequence[AttendanceEvent]) -> float:
    """
    Percentage of sessions marked present (the punctual-presence rate).

    Late arrivals do not count as present here. No data is treated as
    neutral-good so new students are not flagged.

    Args:
        events: Attendance events for one student

    Returns:
        Percentage in [0, 100], rounded to 2 decimals
    """
    if not events:
        return 100.0
    present = _count(events, AttendanceStatus.PRESENT)
    return round(present / len(events) * 100.0, 2)


def calculate_attendance_rate(events: Sequence[AttendanceEvent]) -> float:
    """
    Display-layer attendance rate where present and late both count as attended.

    Not used for risk scoring; see ``calculate_attendance_percentage``.
    """
    if not events:
        return 100.0
    attended = sum(
        1 for e in events
        if e.status in (AttendanceStatus.PRESENT, AttendanceStatus.LATE)
    )
    return round(attended / len(events) * 100.0, 2)


def calculate_recent_trend_slope(
    events: Sequence[AttendanceEvent],
    window: int = 10
) -> Optional[float]:
    """
    Least-squares slope of presence (1) vs. non-presence (0) over recent sessions.

    Negative means presence is declining over the window, positive means it
    is improving.

    Args:
        events: Attendance events in any order
        window: Number of most recent sessions to fit

    Returns:
        Slope rounded to 4 decimals, or None with fewer than 2 points
    """
    if len(events) < 2:
        return None

    ordered = sorted(events, key=lambda e: e.date)
    series = ordered[-window:] if window > 0 else []
    if len(series) < 2:
        return None

    x = np.arange(len(series), dtype=float)
    y = np.array(
        [1.0 if e.status == AttendanceStatus.PRESENT else 0.0 for e in series]
    )

    x_dev = x - x.mean()
    numerator = float(np.sum(x_dev * (y - y.mean())))
    denominator = float(np.sum(x_dev ** 2)) or 1.0

    return round(numerator / denominator, 4)


def get_risk_level(score: float) -> RiskLevel:
    """
    Categorize risk score into low/medium/high.

    Args:
        score: Risk score (0-100)

    Returns:
        Risk level
    """
    if score >= HIGH_RISK_SCORE:
        return RiskLevel.HIGH
    elif score >= MEDIUM_RISK_SCORE:
        return RiskLevel.MEDIUM
    else:
        return RiskLevel.LOW


def assess_risk(
    events: Sequence[AttendanceEvent],
    options: Optional[AnalysisOptions] = None
) -> RiskAssessment:
    """
    Score a student's attendance history.

    The raw score is a weighted sum of absence rate, lateness rate and a
    trend risk derived from the recent slope. It is then scaled by up to
    +/-25% depending on how far the attendance percentage sits from 50.

    Args:
        events: Attendance events for one student, usually one course
        options: Trend window and weights; defaults apply when omitted

    Returns:
        RiskAssessment with score in [0, 100]
    """
    total = len(events)
    if total == 0:
        # No history carries no risk, not the neutral trend term.
        return RiskAssessment(
            level=RiskLevel.LOW,
            score=0.0,
            breakdown=RiskBreakdown(
                attendance_percentage=100.0,
                absences=0,
                lates=0,
                total_sessions=0,
            ),
        )

    options = options or DEFAULT_OPTIONS
    weights = options.weights

    absences = _count(events, AttendanceStatus.ABSENT)
    lates = _count(events, AttendanceStatus.LATE)
    attendance_percentage = calculate_attendance_percentage(events)
    trend_slope = calculate_recent_trend_slope(events, options.trend_window)

    absence_rate = absences / total
    lateness_rate = lates / total

    # slope -0.5 -> 1.0, 0 -> 0.5, +0.5 -> 0.0
    if trend_slope is None:
        trend_risk = 0.5
    else:
        trend_risk = max(0.0, min(1.0, -trend_slope + 0.5))

    raw_score = 100.0 * (
        weights.absence * absence_rate
        + weights.lateness * lateness_rate
        + weights.trend * trend_risk
    )

    score = raw_score * (1 + (50.0 - attendance_percentage) / 200.0)
    score = round(max(0.0, min(100.0, score)), 2)

    return RiskAssessment(
        level=get_risk_level(score),
        score=score,
        breakdown=RiskBreakdown(
            attendance_percentage=attendance_percentage,
            absences=absences,
            lates=lates,
            total_sessions=total,
            recent_trend_slope=trend_slope,
        ),
    )


def analyze_student_attendance(
    events: Sequence[AttendanceEvent],
    options: Optional[AnalysisOptions] = None
) -> RiskAssessment:
    """Analyze a single student's records end-to-end."""
    return assess_risk(events, options)


def summarize_class_risk(
    by_student: Dict[str, List[AttendanceEvent]],
    options: Optional[AnalysisOptions] = None
) -> ClassRiskSummary:
    """
    Assess every student in a class and count them per risk level.

    Args:
        by_student: Mapping of student id to that student's events
        options: Scoring options shared by all students

    Returns:
        ClassRiskSummary with totals and per-student assessments in input order
    """
    assessments = [
        StudentAssessment(student_id=student_id, assessment=analyze_student_attendance(events, options))
        for student_id, events in by_student.items()
    ]

    levels = [a.assessment.level for a in assessments]
    totals = ClassRiskTotals(
        count=len(assessments),
        high=levels.count(RiskLevel.HIGH),
        medium=levels.count(RiskLevel.MEDIUM),
        low=levels.count(RiskLevel.LOW),
    )
    return ClassRiskSummary(totals=totals, assessments=assessments)
