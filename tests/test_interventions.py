"""Unit tests for intervention decisions and lifecycle."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from attendance_risk.interventions import (
    InvalidTransitionError,
    acknowledge_intervention,
    create_intervention_trigger,
    determine_intervention_type,
    escalate_intervention,
    generate_intervention_reason,
    is_active,
    resolve_intervention,
    should_trigger_intervention,
    start_intervention,
    trigger_to_intervention,
)
from attendance_risk.models import (
    InterventionStatus,
    InterventionThresholds,
    InterventionType,
    RiskAssessment,
    RiskBreakdown,
    RiskLevel,
)
from attendance_risk.risk import get_risk_level

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_assessment(
    score: float,
    pct: float = 100.0,
    absences: int = 0,
    lates: int = 0,
    slope: Optional[float] = None,
    total: int = 10,
) -> RiskAssessment:
    return RiskAssessment(
        level=get_risk_level(score),
        score=score,
        breakdown=RiskBreakdown(
            attendance_percentage=pct,
            absences=absences,
            lates=lates,
            total_sessions=total,
            recent_trend_slope=slope,
        ),
    )


def make_intervention(score: float = 80.0, **kwargs):
    trigger = create_intervention_trigger('s1', 'Ada', make_assessment(score, **kwargs), now=NOW)
    return trigger_to_intervention(trigger, 'iv-1')


def test_trigger_on_low_attendance_regardless_of_score():
    """Test attendance below 60% triggers on its own."""
    assert should_trigger_intervention(make_assessment(0.0, pct=59.99)) is True
    assert should_trigger_intervention(make_assessment(0.0, pct=60.0)) is False


def test_trigger_on_score_regardless_of_attendance():
    """Test score at the low threshold triggers on its own."""
    assert should_trigger_intervention(make_assessment(30.0, pct=100.0)) is True
    assert should_trigger_intervention(make_assessment(29.99, pct=100.0)) is False


def test_trigger_on_steep_decline():
    """Test a slope below the decline threshold triggers."""
    assert should_trigger_intervention(make_assessment(0.0, slope=-0.6)) is True
    assert should_trigger_intervention(make_assessment(0.0, slope=-0.5)) is False
    assert should_trigger_intervention(make_assessment(0.0, slope=None)) is False


def test_trigger_uses_custom_thresholds():
    """Test custom thresholds change the decision."""
    thresholds = InterventionThresholds(absence_trigger=20, low_risk_threshold=90)

    assert should_trigger_intervention(make_assessment(50.0, pct=75.0), thresholds) is True
    assert should_trigger_intervention(make_assessment(50.0, pct=85.0), thresholds) is False


def test_determine_intervention_type_boundaries():
    """Test intervention type at score boundaries."""
    assert determine_intervention_type(make_assessment(49.99)) == InterventionType.WARNING
    assert determine_intervention_type(make_assessment(50.0)) == InterventionType.EMAIL_ALERT
    assert determine_intervention_type(make_assessment(69.99)) == InterventionType.EMAIL_ALERT
    assert determine_intervention_type(make_assessment(70.0)) == InterventionType.COUNSELOR_REFERRAL
    assert determine_intervention_type(make_assessment(0.0)) == InterventionType.WARNING


def test_reason_fallback():
    """Test fallback reason when no clause applies."""
    assessment = make_assessment(35.0, pct=85.0, absences=1, lates=0, slope=None)

    assert generate_intervention_reason(assessment) == "Risk score elevated"


def test_reason_all_clauses_in_order():
    """Test all reason clauses join in order."""
    assessment = make_assessment(90.0, pct=55.0, absences=5, lates=3, slope=-0.4)

    assert generate_intervention_reason(assessment) == (
        "Low attendance: 55.0%; Multiple absences: 5; "
        "Frequent lateness: 3 times; Declining attendance trend"
    )


def test_reason_clause_boundaries_are_strict():
    """Test reason clauses use strict comparisons."""
    assessment = make_assessment(40.0, pct=80.0, absences=3, lates=2, slope=-0.3)

    assert generate_intervention_reason(assessment) == "Risk score elevated"


def test_reason_formats_percentage_to_one_decimal():
    """Test reason percentage has one decimal."""
    assessment = make_assessment(40.0, pct=66.67)

    assert generate_intervention_reason(assessment) == "Low attendance: 66.7%"


def test_create_intervention_trigger():
    """Test trigger fields and class alias."""
    assessment = make_assessment(72.5, pct=40.0, absences=6)

    trigger = create_intervention_trigger(
        's1', 'Ada', assessment, context={'teacher': 't1', 'class': '10A'}, now=NOW
    )

    assert trigger.student_id == 's1'
    assert trigger.student_name == 'Ada'
    assert trigger.type == InterventionType.COUNSELOR_REFERRAL
    assert trigger.risk_score == 72.5
    assert trigger.risk_level == RiskLevel.HIGH
    assert trigger.reason == "Low attendance: 40.0%; Multiple absences: 6"
    assert trigger.triggered_at == NOW
    assert trigger.teacher == 't1'
    assert trigger.model_dump(by_alias=True)['class'] == '10A'


def test_create_intervention_trigger_defaults_timestamp():
    """Test trigger gets an aware timestamp by default."""
    trigger = create_intervention_trigger('s1', 'Ada', make_assessment(40.0))

    assert trigger.triggered_at.tzinfo is not None
    assert trigger.teacher is None
    assert trigger.class_name is None


def test_high_risk_intervention_needs_follow_up():
    """Test high-risk interventions get a one-week follow-up."""
    intervention = make_intervention(80.0)

    assert intervention.status == InterventionStatus.TRIGGERED
    assert intervention.follow_up_required is True
    assert intervention.follow_up_date == NOW + timedelta(days=7)
    assert is_active(intervention)


def test_counselor_referral_needs_follow_up_at_medium_level():
    """Test counselor referrals get a follow-up at any level."""
    thresholds = InterventionThresholds(high_risk_threshold=40)
    assessment = make_assessment(45.0)
    trigger = create_intervention_trigger('s1', 'Ada', assessment, thresholds, now=NOW)

    intervention = trigger_to_intervention(trigger, 'iv-2')

    assert intervention.type == InterventionType.COUNSELOR_REFERRAL
    assert intervention.risk_level == RiskLevel.MEDIUM
    assert intervention.follow_up_required is True
    assert intervention.follow_up_date == NOW + timedelta(days=7)


def test_medium_email_alert_has_no_follow_up():
    """Test email alerts below high risk need no follow-up."""
    intervention = make_intervention(55.0)

    assert intervention.type == InterventionType.EMAIL_ALERT
    assert intervention.follow_up_required is False
    assert intervention.follow_up_date is None


def test_lifecycle_forward_path():
    """Test triggered to acknowledged to in-progress to resolved."""
    later = NOW + timedelta(hours=1)
    intervention = make_intervention()

    acknowledged = acknowledge_intervention(intervention, now=later)
    started = start_intervention(acknowledged, now=later)
    resolved = resolve_intervention(started, notes='Met with family', now=later)

    assert acknowledged.status == InterventionStatus.ACKNOWLEDGED
    assert acknowledged.acknowledged_at == later
    assert started.status == InterventionStatus.IN_PROGRESS
    assert resolved.status == InterventionStatus.RESOLVED
    assert resolved.notes == 'Met with family'
    assert resolved.resolved_at == later
    assert not is_active(resolved)
    # Input record is untouched
    assert intervention.status == InterventionStatus.TRIGGERED


def test_resolve_directly_from_triggered():
    """Test resolving straight from triggered."""
    resolved = resolve_intervention(make_intervention())

    assert resolved.status == InterventionStatus.RESOLVED
    assert resolved.notes is None


def test_illegal_transitions_raise():
    """Test backwards and post-resolution moves are rejected."""
    started = start_intervention(make_intervention())
    resolved = resolve_intervention(started)

    with pytest.raises(InvalidTransitionError):
        acknowledge_intervention(started)
    with pytest.raises(InvalidTransitionError):
        resolve_intervention(resolved)
    with pytest.raises(InvalidTransitionError):
        start_intervention(resolved)


def test_escalation_is_a_flag_not_a_status():
    """Test escalation keeps the status and sets the flag."""
    acknowledged = acknowledge_intervention(make_intervention())

    escalated = escalate_intervention(acknowledged, '  No response from family ', now=NOW)

    assert escalated.status == InterventionStatus.ACKNOWLEDGED
    assert escalated.escalated is True
    assert escalated.escalation_reason == 'No response from family'
    assert escalated.escalated_at == NOW

    # Escalated interventions still progress normally
    assert resolve_intervention(escalated).escalated is True


def test_escalation_rules():
    """Test escalation is rejected when repeated, resolved or blank."""
    intervention = make_intervention()
    escalated = escalate_intervention(intervention, 'Urgent')

    with pytest.raises(InvalidTransitionError):
        escalate_intervention(escalated, 'Again')
    with pytest.raises(InvalidTransitionError):
        escalate_intervention(resolve_intervention(intervention), 'Too late')
    with pytest.raises(InvalidTransitionError):
        escalate_intervention(intervention, '   ')


def test_invalid_transition_is_value_error():
    """Test transition errors are ValueErrors."""
    assert issubclass(InvalidTransitionError, ValueError)
