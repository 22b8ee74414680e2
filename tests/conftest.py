"""Shared fixtures."""

from datetime import date, timedelta

import pytest

from attendance_risk.models import AttendanceEvent, AttendanceStatus

STATUS_CODES = {
    'P': AttendanceStatus.PRESENT,
    'A': AttendanceStatus.ABSENT,
    'L': AttendanceStatus.LATE,
}


@pytest.fixture
def make_events():
    """Build daily events from a code string such as 'PPAL'."""
    def _make(codes, student_id='s1', course_id='c1', start=date(2024, 1, 1)):
        return [
            AttendanceEvent(
                student_id=student_id,
                course_id=course_id,
                date=start + timedelta(days=i),
                status=STATUS_CODES[code],
            )
            for i, code in enumerate(codes)
        ]
    return _make
