"""Intervention decisions and lifecycle for at-risk students.

The decision functions are pure. The "one active intervention per student"
rule is not checked here; the store enforces it when records are created.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from attendance_risk.models import (
    Intervention,
    InterventionStatus,
    InterventionThresholds,
    InterventionTrigger,
    InterventionType,
    RiskAssessment,
    RiskLevel,
)

DEFAULT_THRESHOLDS = InterventionThresholds()

FOLLOW_UP_DAYS = 7

# Legal forward moves of the primary status. Escalation is orthogonal.
ALLOWED_TRANSITIONS = {
    InterventionStatus.TRIGGERED: {
        InterventionStatus.ACKNOWLEDGED,
        InterventionStatus.IN_PROGRESS,
        InterventionStatus.RESOLVED,
    },
    InterventionStatus.ACKNOWLEDGED: {
        InterventionStatus.IN_PROGRESS,
        InterventionStatus.RESOLVED,
    },
    InterventionStatus.IN_PROGRESS: {InterventionStatus.RESOLVED},
    InterventionStatus.RESOLVED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when an intervention cannot move to the requested state."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def should_trigger_intervention(
    assessment: RiskAssessment,
    thresholds: Optional[InterventionThresholds] = None
) -> bool:
    """
    Decide whether a student needs an intervention.

    Any one signal is enough: low attendance, a steep decline, or a score
    at or above the low-risk threshold.

    Args:
        assessment: Risk assessment for the student
        thresholds: Decision thresholds; defaults apply when omitted

    Returns:
        True if an intervention should be raised
    """
    thresholds = thresholds or DEFAULT_THRESHOLDS
    breakdown = assessment.breakdown

    if breakdown.attendance_percentage < 100.0 - thresholds.absence_trigger:
        return True

    slope = breakdown.recent_trend_slope
    if slope is not None and slope < thresholds.decline_rate_threshold:
        return True

    return assessment.score >= thresholds.low_risk_threshold


def determine_intervention_type(
    assessment: RiskAssessment,
    thresholds: Optional[InterventionThresholds] = None
) -> InterventionType:
    """Pick the intervention type from the risk score."""
    thresholds = thresholds or DEFAULT_THRESHOLDS
    score = assessment.score

    if score >= thresholds.high_risk_threshold:
        return InterventionType.COUNSELOR_REFERRAL
    if score >= thresholds.medium_risk_threshold:
        return InterventionType.EMAIL_ALERT
    return InterventionType.WARNING


def generate_intervention_reason(assessment: RiskAssessment) -> str:
    """
    Build a human-readable reason from the risk breakdown.

    Clauses appear in a fixed order and are joined with '; '.
    """
    breakdown = assessment.breakdown
    reasons = []

    if breakdown.attendance_percentage < 80:
        reasons.append(f"Low attendance: {breakdown.attendance_percentage:.1f}%")

    if breakdown.absences > 3:
        reasons.append(f"Multiple absences: {breakdown.absences}")

    if breakdown.lates > 2:
        reasons.append(f"Frequent lateness: {breakdown.lates} times")

    slope = breakdown.recent_trend_slope
    if slope is not None and slope < -0.3:
        reasons.append("Declining attendance trend")

    return "; ".join(reasons) if reasons else "Risk score elevated"


def create_intervention_trigger(
    student_id: str,
    student_name: str,
    assessment: RiskAssessment,
    thresholds: Optional[InterventionThresholds] = None,
    context: Optional[Dict[str, str]] = None,
    now: Optional[datetime] = None
) -> InterventionTrigger:
    """
    Compose an intervention trigger for a student.

    Args:
        student_id: Student identifier
        student_name: Display name used in alerts
        assessment: Risk assessment the trigger is based on
        thresholds: Decision thresholds; defaults apply when omitted
        context: Optional 'teacher' and 'class' values
        now: Trigger timestamp; current UTC time when omitted

    Returns:
        InterventionTrigger
    """
    context = context or {}
    return InterventionTrigger(
        student_id=student_id,
        student_name=student_name,
        type=determine_intervention_type(assessment, thresholds),
        risk_score=assessment.score,
        risk_level=assessment.level,
        reason=generate_intervention_reason(assessment),
        triggered_at=now or _utcnow(),
        teacher=context.get("teacher"),
        class_name=context.get("class"),
    )


def trigger_to_intervention(trigger: InterventionTrigger, intervention_id: str) -> Intervention:
    """
    Convert a trigger into a new intervention record.

    High-risk students and counselor referrals need a follow-up one week
    after the trigger.
    """
    follow_up_required = (
        trigger.risk_level == RiskLevel.HIGH
        or trigger.type == InterventionType.COUNSELOR_REFERRAL
    )
    follow_up_date = (
        trigger.triggered_at + timedelta(days=FOLLOW_UP_DAYS)
        if follow_up_required else None
    )

    return Intervention(
        id=intervention_id,
        student_id=trigger.student_id,
        student_name=trigger.student_name,
        type=trigger.type,
        status=InterventionStatus.TRIGGERED,
        risk_score=trigger.risk_score,
        risk_level=trigger.risk_level,
        reason=trigger.reason,
        triggered_at=trigger.triggered_at,
        teacher_id=trigger.teacher,
        class_name=trigger.class_name,
        follow_up_required=follow_up_required,
        follow_up_date=follow_up_date,
    )


def is_active(intervention: Intervention) -> bool:
    return intervention.status != InterventionStatus.RESOLVED


def _move(intervention: Intervention, target: InterventionStatus, **changes) -> Intervention:
    if target not in ALLOWED_TRANSITIONS[intervention.status]:
        raise InvalidTransitionError(
            f"Cannot move intervention {intervention.id} "
            f"from '{intervention.status.value}' to '{target.value}'"
        )
    return intervention.model_copy(update={"status": target, **changes})


def acknowledge_intervention(intervention: Intervention, now: Optional[datetime] = None) -> Intervention:
    return _move(intervention, InterventionStatus.ACKNOWLEDGED, acknowledged_at=now or _utcnow())


def start_intervention(intervention: Intervention, now: Optional[datetime] = None) -> Intervention:
    return _move(intervention, InterventionStatus.IN_PROGRESS, started_at=now or _utcnow())


def resolve_intervention(
    intervention: Intervention,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> Intervention:
    changes = {"resolved_at": now or _utcnow()}
    if notes:
        changes["notes"] = notes
    return _move(intervention, InterventionStatus.RESOLVED, **changes)


def escalate_intervention(
    intervention: Intervention,
    reason: str,
    now: Optional[datetime] = None
) -> Intervention:
    """
    Flag an active intervention as escalated without changing its status.

    Raises:
        InvalidTransitionError: if resolved, already escalated, or no reason given
    """
    if not is_active(intervention):
        raise InvalidTransitionError(f"Cannot escalate resolved intervention {intervention.id}")
    if intervention.escalated:
        raise InvalidTransitionError(f"Intervention {intervention.id} is already escalated")
    if not reason or not reason.strip():
        raise InvalidTransitionError("Escalation reason is required")

    return intervention.model_copy(update={
        "escalated": True,
        "escalation_reason": reason.strip(),
        "escalated_at": now or _utcnow(),
    })
