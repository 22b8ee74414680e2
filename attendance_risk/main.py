"""FastAPI main application for the Attendance Risk Monitor."""

import csv
import logging
import traceback
from datetime import datetime
from io import StringIO
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from attendance_risk.config import load_settings
from attendance_risk.email_templates import build_intervention_alerts, generate_student_email_draft
from attendance_risk.interventions import (
    InvalidTransitionError,
    acknowledge_intervention,
    create_intervention_trigger,
    determine_intervention_type,
    escalate_intervention,
    generate_intervention_reason,
    resolve_intervention,
    should_trigger_intervention,
    start_intervention,
)
from attendance_risk.models import (
    AssessRequest,
    AttendanceEvent,
    ClassRiskSummary,
    EmailDraft,
    EmailDraftRequest,
    EscalateRequest,
    EvaluateRequest,
    EvaluateResponse,
    HealthStatus,
    Intervention,
    InterventionStatus,
    ResolveRequest,
    RiskAssessment,
    Student,
    StudentRiskResult,
    UploadResponse,
)
from attendance_risk.parsers import events_from_dataframe, load_attendance_file
from attendance_risk.risk import (
    analyze_student_attendance,
    assess_risk,
    calculate_attendance_rate,
    summarize_class_risk,
)
from attendance_risk.scanner import get_intervention_health_status, scan_and_trigger_interventions
from attendance_risk.store import InMemoryAttendanceStore, InMemoryInterventionStore

settings = load_settings()
logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


configure_logging(settings.log_level)

app = FastAPI(title="Attendance Risk Monitor", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions and return JSON."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
    """Handle validation errors and return JSON."""
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(exc)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all unhandled exceptions and return JSON."""
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error_detail = str(exc)
    if settings.debug:
        error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

    return JSONResponse(
        status_code=500,
        content={
            "detail": f"Internal server error: {error_detail}",
            "type": type(exc).__name__
        }
    )


def jsonable_errors(exc: RequestValidationError) -> List[Dict]:
    """Validation errors without the non-serialisable 'ctx' payloads."""
    return [
        {key: value for key, value in error.items() if key in ("type", "loc", "msg")}
        for error in exc.errors()
    ]


MAX_UPLOAD_SIZE = settings.max_upload_size_mb * 1024 * 1024

attendance_store = InMemoryAttendanceStore()
intervention_store = InMemoryInterventionStore()

# Latest upload, keyed by its session timestamp
results_cache: Dict[str, UploadResponse] = {}


def build_student_result(
    student_id: str,
    student_name: str,
    events: List[AttendanceEvent],
    assessment: RiskAssessment
) -> StudentRiskResult:
    triggered = should_trigger_intervention(assessment, settings.thresholds)
    return StudentRiskResult(
        student_id=student_id,
        student_name=student_name,
        attendance_rate=calculate_attendance_rate(events),
        risk_score=assessment.score,
        risk_level=assessment.level,
        breakdown=assessment.breakdown,
        should_trigger=triggered,
        intervention_type=determine_intervention_type(assessment, settings.thresholds) if triggered else None,
        reason=generate_intervention_reason(assessment) if triggered else None,
    )


@app.get("/health")
async def health_check():
    """Health check endpoint to test server connectivity."""
    return JSONResponse(content={"status": "ok", "message": "Server is running"})


@app.post("/risk/assess", response_model=RiskAssessment)
async def assess_endpoint(request: AssessRequest):
    """Score a list of attendance events."""
    return assess_risk(request.events, request.options or settings.options)


@app.post("/interventions/evaluate", response_model=EvaluateResponse)
async def evaluate_endpoint(request: EvaluateRequest):
    """Decide whether a student's attendance warrants an intervention."""
    assessment = analyze_student_attendance(request.events, settings.options)
    if not should_trigger_intervention(assessment, settings.thresholds):
        return EvaluateResponse(should_trigger=False, assessment=assessment)

    context = {}
    if request.teacher:
        context["teacher"] = request.teacher
    if request.class_name:
        context["class"] = request.class_name

    trigger = create_intervention_trigger(
        request.student_id,
        request.student_name,
        assessment,
        settings.thresholds,
        context,
    )
    return EvaluateResponse(should_trigger=True, assessment=assessment, trigger=trigger)


@app.post("/students", response_model=Student)
async def add_student(student: Student):
    """Register a student, admin, teacher or counselor."""
    attendance_store.add_student(student)
    return student


@app.post("/attendance")
async def add_attendance(events: List[AttendanceEvent]):
    """Record attendance events; unknown students are registered by id."""
    for student_id in {e.student_id for e in events}:
        if attendance_store.get_student(student_id) is None:
            attendance_store.add_student(Student(id=student_id, name=student_id))
    stored = attendance_store.add_events(events)
    return {"stored": stored}


@app.post("/upload", response_model=UploadResponse)
async def upload_file(file: UploadFile = File(...)):
    """Upload an attendance CSV/Excel file and score every student in it."""
    file_bytes = await file.read()
    if len(file_bytes) > MAX_UPLOAD_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB"
        )

    try:
        df = load_attendance_file(file_bytes, file.filename)
        events_by_student, names = events_from_dataframe(df, settings.date_dayfirst)
    except ValueError as e:
        logger.warning("Rejected upload %s: %s", file.filename, e)
        raise HTTPException(status_code=400, detail=str(e))

    if not events_by_student:
        raise HTTPException(status_code=400, detail="No attendance records found in the uploaded file.")

    class_summary = summarize_class_risk(events_by_student, settings.options)

    results: List[StudentRiskResult] = []
    for scored in class_summary.assessments:
        student_id = scored.student_id
        events = events_by_student[student_id]
        name = names.get(student_id, student_id)
        if attendance_store.get_student(student_id) is None:
            attendance_store.add_student(Student(id=student_id, name=name))
        attendance_store.add_events(events)
        results.append(build_student_result(student_id, name, events, scored.assessment))

    # Higher risk first
    results.sort(key=lambda r: (-r.risk_score, r.student_name))

    summary = summarize_results(class_summary, results)
    logger.info(
        "Results: %d students (%d high, %d medium, %d low)",
        summary['Total'], summary['High'], summary['Medium'], summary['Low'],
    )

    response = UploadResponse(
        success=True,
        message=f"Successfully processed {len(results)} students",
        results=results,
        summary=summary
    )

    # Only the latest upload is served
    results_cache.clear()
    results_cache[datetime.now().isoformat()] = response
    return response


def summarize_results(class_summary: ClassRiskSummary, results: List[StudentRiskResult]) -> Dict[str, int]:
    totals = class_summary.totals
    return {
        'Low': totals.low,
        'Medium': totals.medium,
        'High': totals.high,
        'Total': totals.count,
        'Needs Intervention': sum(1 for r in results if r.should_trigger),
    }


def latest_results() -> Tuple[str, UploadResponse]:
    if not results_cache:
        raise HTTPException(status_code=404, detail="No results available")
    latest_session = max(results_cache.keys())
    return latest_session, results_cache[latest_session]


@app.get("/results")
async def get_results():
    """Get the last processed results."""
    session_id, upload = latest_results()
    return {
        'session_id': session_id,
        'results': [r.model_dump(mode="json") for r in upload.results],
        'summary': upload.summary
    }


@app.get("/download.csv")
async def download_csv():
    """Download processed results as CSV."""
    session_id, upload = latest_results()

    output = StringIO()
    writer = csv.writer(output)
    writer.writerow([
        'Student ID',
        'Student Name',
        'Attendance Rate %',
        'Present %',
        'Absences',
        'Lates',
        'Sessions',
        'Risk Score',
        'Risk Level',
        'Intervention',
        'Reason',
    ])

    for result in upload.results:
        writer.writerow([
            result.student_id,
            result.student_name,
            f"{result.attendance_rate:.2f}",
            f"{result.breakdown.attendance_percentage:.2f}",
            result.breakdown.absences,
            result.breakdown.lates,
            result.breakdown.total_sessions,
            f"{result.risk_score:.2f}",
            result.risk_level.value,
            result.intervention_type.value if result.intervention_type else '',
            result.reason or '',
        ])

    output.seek(0)

    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f"attachment; filename=attendance_risk_results_{session_id[:10]}.csv"
        }
    )


@app.post("/interventions/scan")
async def scan_endpoint():
    """Scan all students, create interventions and draft alerts for high-risk ones."""
    result = scan_and_trigger_interventions(
        attendance_store,
        intervention_store,
        settings.thresholds,
        settings.options,
    )

    admins = attendance_store.list_users_by_role("admin")
    counselors = attendance_store.list_users_by_role("counselor")
    alerts: List[EmailDraft] = []
    for intervention in result.created:
        student = attendance_store.get_student(intervention.student_id)
        if student is None:
            continue
        alerts.extend(build_intervention_alerts(
            student, intervention, admins, counselors, settings.alert_score_threshold
        ))

    logger.info("Drafted %d alert email(s)", len(alerts))
    return {"scan": result, "alerts": alerts}


@app.get("/interventions", response_model=List[Intervention])
async def list_interventions(status: Optional[str] = None):
    """List interventions: all, active, high-priority, or one status."""
    if status is None or status == "all":
        return intervention_store.list_all()
    if status == "active":
        return intervention_store.list_active()
    if status == "high-priority":
        return intervention_store.list_high_priority(settings.thresholds.high_risk_threshold)
    try:
        return intervention_store.list_by_status(InterventionStatus(status))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown status filter '{status}'")


@app.get("/interventions/stats")
async def intervention_stats():
    return intervention_store.stats()


@app.get("/interventions/health", response_model=HealthStatus)
async def intervention_health():
    return get_intervention_health_status(
        attendance_store, intervention_store, settings.options, settings.thresholds
    )


@app.get("/interventions/{intervention_id}", response_model=Intervention)
async def get_intervention(intervention_id: str):
    """Single intervention, as linked from alert emails."""
    intervention = intervention_store.get(intervention_id)
    if intervention is None:
        raise HTTPException(status_code=404, detail=f"Intervention {intervention_id} not found")
    return intervention


def apply_transition(intervention_id: str, change: Callable[[Intervention], Intervention]) -> Intervention:
    try:
        return intervention_store.apply(intervention_id, change)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Intervention {intervention_id} not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.post("/interventions/{intervention_id}/acknowledge", response_model=Intervention)
async def acknowledge_endpoint(intervention_id: str):
    return apply_transition(intervention_id, acknowledge_intervention)


@app.post("/interventions/{intervention_id}/start", response_model=Intervention)
async def start_endpoint(intervention_id: str):
    return apply_transition(intervention_id, start_intervention)


@app.post("/interventions/{intervention_id}/resolve", response_model=Intervention)
async def resolve_endpoint(intervention_id: str, request: Optional[ResolveRequest] = None):
    notes = request.notes if request else None
    return apply_transition(intervention_id, lambda i: resolve_intervention(i, notes))


@app.post("/interventions/{intervention_id}/escalate", response_model=Intervention)
async def escalate_endpoint(intervention_id: str, request: EscalateRequest):
    return apply_transition(intervention_id, lambda i: escalate_intervention(i, request.reason))


@app.post("/email-draft", response_model=EmailDraft)
async def generate_email_draft_endpoint(request: EmailDraftRequest):
    """Generate an outreach email draft for a student."""
    assessment = assess_risk(request.events, settings.options)
    email = generate_student_email_draft(
        student_name=request.student_name,
        assessment=assessment,
        attendance_rate=calculate_attendance_rate(request.events),
    )
    return EmailDraft(**email)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
