"""Attendance file parsing and validation.

Rows are validated here so the risk engine only ever sees clean events.
"""

import logging
import re
from datetime import date, datetime
from io import BytesIO
from typing import Dict, List, Tuple

import pandas as pd

from attendance_risk.models import AttendanceEvent, AttendanceStatus

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["student_id", "date", "status"]

ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")

COLUMN_VARIATIONS = {
    "student_id": ["student id", "studentid", "student", "student number", "student no", "id"],
    "student_name": ["student name", "studentname", "name", "full name"],
    "course_id": ["course id", "courseid", "course", "course code", "class", "class id"],
    "date": ["date", "session date", "class date", "day"],
    "status": ["status", "attendance", "attendance status", "mark"],
}

STATUS_ALIASES = {
    "present": AttendanceStatus.PRESENT,
    "p": AttendanceStatus.PRESENT,
    "absent": AttendanceStatus.ABSENT,
    "a": AttendanceStatus.ABSENT,
    "late": AttendanceStatus.LATE,
    "l": AttendanceStatus.LATE,
    "tardy": AttendanceStatus.LATE,
}


def normalize_col_name(col_name) -> str:
    """Lowercase, drop punctuation and collapse whitespace/underscores."""
    if pd.isna(col_name):
        return ""
    normalized = str(col_name).strip().lower()
    normalized = re.sub(r'[.,%#]', '', normalized)
    normalized = re.sub(r'[\s_]+', ' ', normalized)
    return normalized.strip()


def normalize_attendance_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename header variants onto the canonical column names.

    Args:
        df: Raw attendance DataFrame

    Returns:
        DataFrame with columns student_id, date, status and, when present,
        student_name and course_id

    Raises:
        ValueError: if a required column cannot be found
    """
    df = df.copy()
    rename = {}
    for col in df.columns:
        normalized = normalize_col_name(col)
        for target, variations in COLUMN_VARIATIONS.items():
            if target in rename.values():
                continue
            if normalized == target.replace('_', ' ') or normalized in variations:
                rename[col] = target
                break

    df = df.rename(columns=rename)
    logger.debug("Renamed attendance columns: %s", rename)

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(
            f"Missing required column(s): {', '.join(missing)}. "
            f"Found: {list(df.columns)}"
        )
    return df


def drop_blank_rows(df: pd.DataFrame) -> pd.DataFrame:
    """Drop rows where every cell is empty or whitespace, like trailing ',,' export rows."""
    if df.empty:
        return df
    blank = df.apply(lambda col: col.fillna("").astype(str).str.strip() == "").all(axis=1)
    return df[~blank]


def load_attendance_file(file_bytes: bytes, filename: str) -> pd.DataFrame:
    """
    Load an uploaded CSV or Excel attendance file.

    Raises:
        ValueError: on unsupported file types
    """
    name = (filename or "").lower()
    if name.endswith(".csv"):
        df = pd.read_csv(BytesIO(file_bytes), dtype=str, keep_default_na=False)
    elif name.endswith((".xlsx", ".xls")):
        df = pd.read_excel(BytesIO(file_bytes), engine="openpyxl", dtype=str)
    else:
        raise ValueError("Invalid file type. Please upload a CSV or Excel file (.csv, .xlsx, .xls)")

    df = drop_blank_rows(df)
    logger.info("Loaded %d attendance rows from %s", len(df), filename)
    return normalize_attendance_columns(df)


def parse_status(value) -> AttendanceStatus:
    """
    Map a raw status cell onto the closed status set.

    Raises:
        ValueError: for anything other than present/absent/late (or their aliases)
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        raise ValueError("Missing attendance status")
    key = str(value).strip().lower()
    if key not in STATUS_ALIASES:
        raise ValueError(f"Unknown attendance status '{value}'")
    return STATUS_ALIASES[key]


def parse_session_date(value, dayfirst: bool = False) -> date:
    """
    Parse a session date from a string, datetime, date or pandas Timestamp.

    ISO dates (YYYY-MM-DD) are always read year-month-day. Other strings such
    as '08/01/2024' are read month-first unless ``dayfirst`` is set.

    Raises:
        ValueError: if the value cannot be read as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None or (not isinstance(value, str) and pd.isna(value)) or str(value).strip() == "":
        raise ValueError("Missing session date")

    text = str(value).strip()
    iso = ISO_DATE.match(text)
    if iso:
        parsed = pd.to_datetime(iso.group(0), format="%Y-%m-%d", errors="coerce")
    else:
        parsed = pd.to_datetime(text, dayfirst=dayfirst, errors="coerce")
    if pd.isna(parsed):
        raise ValueError(f"Invalid session date '{value}'")
    return parsed.date()


def _clean_cell(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    text = str(value).strip()
    # Excel often hands back numeric ids as '1001.0'
    if re.fullmatch(r"\d+\.0", text):
        text = text[:-2]
    return text


def events_from_dataframe(
    df: pd.DataFrame,
    dayfirst: bool = False
) -> Tuple[Dict[str, List[AttendanceEvent]], Dict[str, str]]:
    """
    Convert normalized rows into attendance events grouped by student.

    Args:
        df: DataFrame returned by ``normalize_attendance_columns``
        dayfirst: Read slashed dates as day/month/year

    Returns:
        Tuple of (events_by_student, student_names)

    Raises:
        ValueError: naming the first offending row (1-based file row, header excluded)
    """
    by_student: Dict[str, List[AttendanceEvent]] = {}
    names: Dict[str, str] = {}
    has_names = "student_name" in df.columns
    has_courses = "course_id" in df.columns

    for index, row in df.iterrows():
        row_number = index + 1
        student_id = _clean_cell(row["student_id"])
        if not student_id:
            raise ValueError(f"Row {row_number}: missing student id")
        try:
            event = AttendanceEvent(
                student_id=student_id,
                course_id=(_clean_cell(row["course_id"]) or None) if has_courses else None,
                date=parse_session_date(row["date"], dayfirst),
                status=parse_status(row["status"]),
            )
        except ValueError as e:
            raise ValueError(f"Row {row_number}: {e}") from e

        by_student.setdefault(student_id, []).append(event)
        if has_names:
            name = _clean_cell(row["student_name"])
            if name:
                names.setdefault(student_id, name)

    return by_student, names
