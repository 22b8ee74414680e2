"""Periodic scan that assesses every student and raises interventions.

Meant to be run from a scheduler (cron, background task) or on demand from
the API.
"""

import logging
from datetime import datetime
from typing import Optional

from attendance_risk.interventions import (
    DEFAULT_THRESHOLDS,
    create_intervention_trigger,
    is_active,
    should_trigger_intervention,
)
from attendance_risk.models import (
    AnalysisOptions,
    HealthStatus,
    Intervention,
    InterventionStatus,
    InterventionThresholds,
    ScanResult,
    Student,
)
from attendance_risk.risk import assess_risk
from attendance_risk.store import InMemoryAttendanceStore, InMemoryInterventionStore

logger = logging.getLogger(__name__)


def _evaluate_student(
    student: Student,
    attendance: InMemoryAttendanceStore,
    interventions: InMemoryInterventionStore,
    thresholds: Optional[InterventionThresholds],
    options: Optional[AnalysisOptions],
    now: Optional[datetime],
) -> Optional[Intervention]:
    events = attendance.get_student_attendance(student.id)
    if not events:
        logger.debug("Student %s has no attendance records", student.id)
        return None

    assessment = assess_risk(events, options)
    if not should_trigger_intervention(assessment, thresholds):
        return None

    trigger = create_intervention_trigger(
        student.id,
        student.name or student.email or student.id,
        assessment,
        thresholds,
        now=now,
    )
    created = interventions.create_if_no_active(trigger)
    if created is None:
        logger.debug("Student %s already has an active intervention", student.id)
    return created


def scan_and_trigger_interventions(
    attendance: InMemoryAttendanceStore,
    interventions: InMemoryInterventionStore,
    thresholds: Optional[InterventionThresholds] = None,
    options: Optional[AnalysisOptions] = None,
    now: Optional[datetime] = None,
) -> ScanResult:
    """
    Assess all students and create interventions where needed.

    A failure for one student is recorded in ``errors`` and the scan moves
    on to the next student.

    Args:
        attendance: Source of students and their events
        interventions: Store that receives new interventions
        thresholds: Decision thresholds
        options: Scoring options
        now: Timestamp for new triggers

    Returns:
        ScanResult with counts and the interventions created
    """
    students = attendance.list_students()
    result = ScanResult(scanned=len(students))
    logger.info("Starting intervention scan for %d students", len(students))

    for student in students:
        try:
            created = _evaluate_student(student, attendance, interventions, thresholds, options, now)
        except Exception as e:
            logger.exception("Error processing student %s", student.id)
            result.errors.append(f"{student.id}: {e}")
            continue

        if created is None:
            result.skipped += 1
        else:
            result.triggered += 1
            result.created.append(created)
            logger.info(
                "Triggered %s intervention for %s (score: %.2f)",
                created.type.value, student.id, created.risk_score,
            )

    logger.info(
        "Scan complete: scanned=%d triggered=%d skipped=%d errors=%d",
        result.scanned, result.triggered, result.skipped, len(result.errors),
    )
    return result


def monitor_student(
    student_id: str,
    attendance: InMemoryAttendanceStore,
    interventions: InMemoryInterventionStore,
    thresholds: Optional[InterventionThresholds] = None,
    options: Optional[AnalysisOptions] = None,
    now: Optional[datetime] = None,
) -> Optional[Intervention]:
    """
    Check one student and create an intervention if needed.

    Raises:
        LookupError: if the student is unknown
    """
    student = attendance.get_student(student_id)
    if student is None:
        raise LookupError(f"Student {student_id} not found")
    return _evaluate_student(student, attendance, interventions, thresholds, options, now)


def get_intervention_health_status(
    attendance: InMemoryAttendanceStore,
    interventions: InMemoryInterventionStore,
    options: Optional[AnalysisOptions] = None,
    thresholds: Optional[InterventionThresholds] = None,
) -> HealthStatus:
    """
    Summarize how many students are high risk and how interventions are progressing.

    A student counts as high risk at or above ``thresholds.high_risk_threshold``.
    """
    high_risk_score = (thresholds or DEFAULT_THRESHOLDS).high_risk_threshold
    students = attendance.list_students()
    active = 0
    high_risk = 0
    resolved = 0
    total = 0

    for student in students:
        events = attendance.get_student_attendance(student.id)
        if not events:
            continue
        if assess_risk(events, options).score >= high_risk_score:
            high_risk += 1

        records = interventions.list_for_student(student.id)
        active += sum(1 for i in records if is_active(i))
        resolved += sum(1 for i in records if i.status == InterventionStatus.RESOLVED)
        total += len(records)

    return HealthStatus(
        total_students=len(students),
        active_interventions=active,
        high_risk_students=high_risk,
        resolution_rate=(resolved / total * 100.0) if total else 0.0,
    )
