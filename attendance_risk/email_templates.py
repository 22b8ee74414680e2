"""Email drafts for intervention alerts and student outreach."""

import os
from typing import Dict, List

from attendance_risk.interventions import DEFAULT_THRESHOLDS
from attendance_risk.models import (
    EmailDraft,
    Intervention,
    InterventionType,
    RiskAssessment,
    RiskLevel,
    Student,
)

# Staff alerts default to the high-risk intervention threshold
ALERT_SCORE_THRESHOLD = DEFAULT_THRESHOLDS.high_risk_threshold
CRITICAL_SCORE = 80.0


def get_sender_info() -> Dict[str, str]:
    """Get sender name, email and app URL from environment or defaults."""
    return {
        'name': os.getenv('ALERT_SENDER_NAME', 'Attendance Alerts'),
        'email': os.getenv('ALERT_SENDER_EMAIL', 'alerts@example.com'),
        'app_url': os.getenv('APP_URL', 'http://localhost:8000'),
    }


def should_send_alert(intervention: Intervention, threshold: float = ALERT_SCORE_THRESHOLD) -> bool:
    """Only high-risk interventions alert staff."""
    return intervention.risk_score >= threshold


def _type_label(intervention_type: InterventionType) -> str:
    return intervention_type.value.replace('-', ' ').upper()


def generate_admin_alert(admin: Student, student: Student, intervention: Intervention) -> EmailDraft:
    """Alert an administrator that a high-risk intervention was raised."""
    sender = get_sender_info()
    severity = 'CRITICAL' if intervention.risk_score >= CRITICAL_SCORE else 'HIGH'

    subject = f"High-Risk Student Alert: {student.name} (Score: {intervention.risk_score:.0f})"
    body = f"""Hi {admin.name},

A high-risk student intervention has been flagged and requires your attention.

Student: {student.name}
Email: {student.email or 'N/A'}
Student ID: {student.identification_number or 'N/A'}

Risk level: {severity}
Risk score: {intervention.risk_score:.2f}/100
Intervention type: {_type_label(intervention.type)}
Reason: {intervention.reason}

Recommended actions:
- Contact the student to discuss attendance concerns
- Explore underlying issues (personal, health, academic)
- Agree an attendance improvement plan
- Schedule follow-up meetings and log them in the system

View intervention: {sender['app_url']}/interventions/{intervention.id}

{sender['name']}
{sender['email']}"""
    return EmailDraft(to=admin.email, subject=subject, body=body)


def generate_counselor_alert(counselor: Student, student: Student, intervention: Intervention) -> EmailDraft:
    """Urgent referral email for counselors."""
    sender = get_sender_info()

    subject = f"URGENT: Counselor Referral - {student.name}"
    body = f"""Hi {counselor.name},

{student.name} has been referred to counseling services and needs attention as soon as possible.

Student: {student.name}
Email: {student.email or 'N/A'}
Student ID: {student.identification_number or 'N/A'}

Risk score: {intervention.risk_score:.2f}/100
Concern: {intervention.reason}

Please schedule a meeting with the student, assess any underlying issues,
agree a support plan, and update the intervention status in the system.

View intervention: {sender['app_url']}/interventions/{intervention.id}

{sender['name']}
{sender['email']}"""
    return EmailDraft(to=counselor.email, subject=subject, body=body)


def build_intervention_alerts(
    student: Student,
    intervention: Intervention,
    admins: List[Student],
    counselors: List[Student],
    threshold: float = ALERT_SCORE_THRESHOLD
) -> List[EmailDraft]:
    """
    Drafts to send for a newly created intervention.

    Args:
        student: Student the intervention is about
        intervention: Newly created intervention
        admins: Administrators to alert
        counselors: Counselors to alert on referrals
        threshold: Minimum risk score that triggers any alert

    Returns:
        One draft per admin with an email address, plus one per counselor
        for counselor referrals. Empty below the threshold.
    """
    if not should_send_alert(intervention, threshold):
        return []

    drafts = [generate_admin_alert(a, student, intervention) for a in admins if a.email]

    if intervention.type == InterventionType.COUNSELOR_REFERRAL:
        drafts.extend(
            generate_counselor_alert(c, student, intervention) for c in counselors if c.email
        )
    return drafts


def generate_student_email_draft(
    student_name: str,
    assessment: RiskAssessment,
    attendance_rate: float
) -> Dict[str, str]:
    """Generate an outreach email tailored to the student's risk level."""
    sender = get_sender_info()
    rate_str = f"{attendance_rate:.1f}"
    present_str = f"{assessment.breakdown.attendance_percentage:.1f}"

    if assessment.level == RiskLevel.LOW:
        return _low_risk_email(student_name, rate_str, sender)
    if assessment.level == RiskLevel.MEDIUM:
        return _medium_risk_email(student_name, rate_str, present_str, assessment, sender)
    return _high_risk_email(student_name, rate_str, present_str, assessment, sender)


def _low_risk_email(student_name: str, rate: str, sender: Dict[str, str]) -> Dict[str, str]:
    subject = f"Great Attendance, {student_name} - Keep It Up!"
    body = f"""Hi {student_name},

Thanks for showing up! Your attendance is currently at {rate}%.

Keep up the consistency, it makes a real difference to how much you get out of each class.

{sender['name']}
{sender['email']}"""
    return {'subject': subject, 'body': body}


def _medium_risk_email(student_name: str, rate: str, present: str, assessment: RiskAssessment,
                       sender: Dict[str, str]) -> Dict[str, str]:
    breakdown = assessment.breakdown
    subject = f"Let's Talk About Attendance, {student_name}"
    body = f"""Hi {student_name},

Your attendance is currently at {rate}%, and you have been on time for {present}% of sessions.
So far that includes {breakdown.absences} absence(s) and {breakdown.lates} late arrival(s).

Regular, punctual attendance helps you keep up with key content. If something is getting in the way, please reach out to your teacher or the student support office.

We want to help you stay on track.

{sender['name']}
{sender['email']}"""
    return {'subject': subject, 'body': body}


def _high_risk_email(student_name: str, rate: str, present: str, assessment: RiskAssessment,
                     sender: Dict[str, str]) -> Dict[str, str]:
    breakdown = assessment.breakdown
    subject = f"Let's Work Together to Get You Back on Track, {student_name}"
    body = f"""Hi {student_name},

I'm reaching out about your attendance. You have attended {rate}% of sessions and been on time for {present}%, with {breakdown.absences} absence(s) and {breakdown.lates} late arrival(s) out of {breakdown.total_sessions}.

Please contact the student support office or your teacher as soon as possible so we can agree a plan together. Support is available for whatever is making attendance difficult.

You're not alone in this, we're here to help.

{sender['name']}
{sender['email']}"""
    return {'subject': subject, 'body': body}
