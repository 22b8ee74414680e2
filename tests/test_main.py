"""API tests for the FastAPI application."""

import re
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient

from attendance_risk import main
from attendance_risk.store import InMemoryAttendanceStore, InMemoryInterventionStore

STATUS_NAMES = {'P': 'present', 'A': 'absent', 'L': 'late'}

CSV = b"""Student ID,Student Name,Date,Status
1001,Ada Lovelace,2024-01-08,present
1001,Ada Lovelace,2024-01-09,late
1002,Ben Okri,2024-01-08,absent
1002,Ben Okri,2024-01-09,absent
"""


def events_json(codes, student_id='s1'):
    start = date(2024, 1, 1)
    return [
        {
            'student_id': student_id,
            'course_id': 'c1',
            'date': (start + timedelta(days=i)).isoformat(),
            'status': STATUS_NAMES[code],
        }
        for i, code in enumerate(codes)
    ]


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main, 'attendance_store', InMemoryAttendanceStore())
    monkeypatch.setattr(main, 'intervention_store', InMemoryInterventionStore())
    monkeypatch.setattr(main, 'results_cache', {})
    return TestClient(main.app)


@pytest.fixture
def scanned(client):
    """One high-risk student with an admin on file, after a scan."""
    client.post('/students', json={'id': 'admin1', 'name': 'Alex', 'email': 'alex@example.com', 'role': 'admin'})
    client.post('/students', json={'id': 's1', 'name': 'Ada', 'email': 'ada@example.com'})
    client.post('/attendance', json=events_json('A' * 10))
    response = client.post('/interventions/scan')
    assert response.status_code == 200
    return response.json()


def test_health(client):
    """Test health endpoint."""
    response = client.get('/health')

    assert response.status_code == 200
    assert response.json()['status'] == 'ok'


def test_assess_risk(client):
    """Test risk assessment endpoint."""
    response = client.post('/risk/assess', json={'events': events_json('PPPPAPLPAL')})

    assert response.status_code == 200
    body = response.json()
    assert body['score'] == 26.77
    assert body['level'] == 'low'
    assert body['breakdown']['recent_trend_slope'] == -0.1091


def test_assess_rejects_unknown_status(client):
    """Test unknown status returns 422."""
    events = events_json('P')
    events[0]['status'] = 'excused'

    response = client.post('/risk/assess', json={'events': events})

    assert response.status_code == 422
    assert isinstance(response.json()['detail'], list)


def test_evaluate_triggers_counselor_referral(client):
    """Test evaluation of an all-absent student."""
    response = client.post('/interventions/evaluate', json={
        'student_id': 's1',
        'student_name': 'Ada',
        'events': events_json('A' * 10),
        'teacher': 't1',
        'class_name': '10A',
    })

    body = response.json()
    assert body['should_trigger'] is True
    assert body['trigger']['type'] == 'counselor-referral'
    assert body['trigger']['class'] == '10A'
    assert body['trigger']['reason'].startswith('Low attendance: 0.0%')


def test_evaluate_without_trigger(client):
    """Test evaluation of a student with full attendance."""
    response = client.post('/interventions/evaluate', json={
        'student_id': 's1',
        'student_name': 'Ada',
        'events': events_json('P' * 10),
    })

    body = response.json()
    assert body['should_trigger'] is False
    assert body['trigger'] is None


def test_upload_results_and_download(client):
    """Test upload, results and CSV download."""
    response = client.post('/upload', files={'file': ('attendance.csv', CSV, 'text/csv')})

    assert response.status_code == 200
    body = response.json()
    assert [r['student_id'] for r in body['results']] == ['1002', '1001']
    assert body['results'][0]['risk_level'] == 'high'
    assert body['results'][1]['attendance_rate'] == 100.0
    assert body['summary']['Total'] == 2
    assert body['summary']['High'] == 1
    assert body['summary']['Low'] == 1
    assert body['summary']['Needs Intervention'] == 2

    results = client.get('/results').json()
    assert results['summary'] == body['summary']

    csv_response = client.get('/download.csv')
    assert csv_response.status_code == 200
    lines = csv_response.text.strip().splitlines()
    assert lines[0].startswith('Student ID,Student Name,Attendance Rate %')
    assert lines[1].startswith('1002,Ben Okri')
    assert len(lines) == 3


def test_upload_rejects_unsupported_file(client):
    """Test upload of an unsupported file type."""
    response = client.post('/upload', files={'file': ('attendance.txt', b'hello', 'text/plain')})

    assert response.status_code == 400
    assert 'Invalid file type' in response.json()['detail']


def test_results_empty(client):
    """Test results before any upload."""
    assert client.get('/results').status_code == 404


def test_scan_creates_intervention_and_alert(scanned):
    """Test scan creates an intervention and an admin alert."""
    assert scanned['scan']['scanned'] == 1
    assert scanned['scan']['triggered'] == 1
    assert scanned['scan']['created'][0]['type'] == 'counselor-referral'
    assert len(scanned['alerts']) == 1
    assert scanned['alerts'][0]['to'] == 'alex@example.com'


def test_intervention_lifecycle(client, scanned):
    """Test lifecycle endpoints, stats and health."""
    active = client.get('/interventions', params={'status': 'active'}).json()
    assert len(active) == 1
    intervention_id = active[0]['id']

    acknowledged = client.post(f'/interventions/{intervention_id}/acknowledge')
    assert acknowledged.status_code == 200
    assert acknowledged.json()['status'] == 'acknowledged'

    assert client.post(f'/interventions/{intervention_id}/acknowledge').status_code == 409

    escalated = client.post(f'/interventions/{intervention_id}/escalate', json={'reason': 'No response'})
    assert escalated.json()['escalated'] is True

    resolved = client.post(f'/interventions/{intervention_id}/resolve', json={'notes': 'Back in class'})
    assert resolved.json()['status'] == 'resolved'
    assert resolved.json()['notes'] == 'Back in class'

    assert client.get('/interventions/stats').json() == {
        'total': 1, 'active': 0, 'escalated': 1, 'resolved': 1
    }
    health = client.get('/interventions/health').json()
    assert health['high_risk_students'] == 1
    assert health['resolution_rate'] == 100.0


def test_intervention_errors(client, scanned):
    """Test unknown ids and status filters."""
    assert client.post('/interventions/missing/acknowledge').status_code == 404
    assert client.get('/interventions', params={'status': 'bogus'}).status_code == 400
    assert len(client.get('/interventions', params={'status': 'high-priority'}).json()) == 1


def test_email_draft(client):
    """Test outreach email draft endpoint."""
    response = client.post('/email-draft', json={'student_name': 'Ada', 'events': events_json('P' * 10)})

    assert response.status_code == 200
    assert response.json()['subject'] == 'Great Attendance, Ada - Keep It Up!'


def test_alert_link_opens_the_intervention(client, scanned):
    """Test the alert email link resolves to the intervention."""
    body = scanned['alerts'][0]['body']
    path = re.search(r'/interventions/\w+', body).group(0)

    response = client.get(path)

    assert response.status_code == 200
    assert response.json()['id'] == scanned['scan']['created'][0]['id']
    assert client.get('/interventions/missing').status_code == 404


def test_upload_keeps_only_latest_results(client):
    """Test repeated uploads keep only the latest results."""
    client.post('/upload', files={'file': ('first.csv', CSV, 'text/csv')})
    one_student = b"Student ID,Date,Status\n1001,2024-01-08,present\n"

    client.post('/upload', files={'file': ('second.csv', one_student, 'text/csv')})

    assert len(main.results_cache) == 1
    assert client.get('/results').json()['summary']['Total'] == 1


def test_upload_ignores_trailing_blank_rows(client):
    """Test upload with trailing empty export rows."""
    csv_bytes = b"Student ID,Date,Status\n1001,2024-01-08,present\n,,\n"

    response = client.post('/upload', files={'file': ('export.csv', csv_bytes, 'text/csv')})

    assert response.status_code == 200
    assert response.json()['summary']['Total'] == 1
