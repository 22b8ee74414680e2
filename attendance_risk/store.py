"""In-memory stores for students, attendance and interventions.

Both stores are safe to share between request handlers and the scanner.
"""

import threading
import uuid
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional

from attendance_risk.interventions import DEFAULT_THRESHOLDS, is_active, trigger_to_intervention
from attendance_risk.models import (
    AttendanceEvent,
    Intervention,
    InterventionStatus,
    InterventionTrigger,
    Student,
)


class InMemoryAttendanceStore:
    """Student directory plus attendance events keyed by student."""

    def __init__(self):
        self._lock = threading.Lock()
        self._students: Dict[str, Student] = {}
        self._events: Dict[str, List[AttendanceEvent]] = defaultdict(list)

    def add_student(self, student: Student) -> None:
        with self._lock:
            self._students[student.id] = student

    def get_student(self, student_id: str) -> Optional[Student]:
        with self._lock:
            return self._students.get(student_id)

    def list_students(self) -> List[Student]:
        return self.list_users_by_role("student")

    def list_users_by_role(self, role: str) -> List[Student]:
        with self._lock:
            return [s for s in self._students.values() if s.role == role]

    def add_events(self, events: Iterable[AttendanceEvent]) -> int:
        """Store events, replacing any existing mark for the same (course, date)."""
        added = 0
        with self._lock:
            for event in events:
                existing = self._events[event.student_id]
                existing[:] = [
                    e for e in existing
                    if (e.course_id, e.date) != (event.course_id, event.date)
                ]
                existing.append(event)
                added += 1
        return added

    def get_student_attendance(
        self,
        student_id: str,
        course_id: Optional[str] = None
    ) -> List[AttendanceEvent]:
        with self._lock:
            events = list(self._events.get(student_id, []))
        if course_id is not None:
            events = [e for e in events if e.course_id == course_id]
        return sorted(events, key=lambda e: e.date)


class InMemoryInterventionStore:
    """Intervention records keyed by id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[str, Intervention] = {}

    @staticmethod
    def _new_id() -> str:
        return uuid.uuid4().hex

    def create_if_no_active(self, trigger: InterventionTrigger) -> Optional[Intervention]:
        """
        Create an intervention unless the student already has an active one.

        The check and the insert happen under one lock so two concurrent
        scans cannot both create a record for the same student.

        Returns:
            The new intervention, or None if an active one already exists
        """
        with self._lock:
            for item in self._items.values():
                if item.student_id == trigger.student_id and is_active(item):
                    return None
            intervention = trigger_to_intervention(trigger, self._new_id())
            self._items[intervention.id] = intervention
            return intervention

    def get(self, intervention_id: str) -> Optional[Intervention]:
        with self._lock:
            return self._items.get(intervention_id)

    def apply(
        self,
        intervention_id: str,
        change: Callable[[Intervention], Intervention]
    ) -> Intervention:
        """
        Replace a record with ``change(record)`` atomically.

        Raises:
            KeyError: if no intervention has this id
        """
        with self._lock:
            current = self._items.get(intervention_id)
            if current is None:
                raise KeyError(intervention_id)
            updated = change(current)
            self._items[intervention_id] = updated
            return updated

    def list_all(self) -> List[Intervention]:
        with self._lock:
            items = list(self._items.values())
        return sorted(items, key=lambda i: i.triggered_at, reverse=True)

    def list_for_student(self, student_id: str) -> List[Intervention]:
        return [i for i in self.list_all() if i.student_id == student_id]

    def list_active(self) -> List[Intervention]:
        return [i for i in self.list_all() if is_active(i)]

    def list_by_status(self, status: InterventionStatus) -> List[Intervention]:
        return [i for i in self.list_all() if i.status == status]

    def list_high_priority(
        self,
        min_score: float = DEFAULT_THRESHOLDS.high_risk_threshold
    ) -> List[Intervention]:
        """Active interventions at or above ``min_score``, highest score first."""
        items = [i for i in self.list_active() if i.risk_score >= min_score]
        return sorted(items, key=lambda i: i.risk_score, reverse=True)

    def stats(self) -> Dict[str, int]:
        items = self.list_all()
        return {
            "total": len(items),
            "active": sum(1 for i in items if is_active(i)),
            "escalated": sum(1 for i in items if i.escalated),
            "resolved": sum(1 for i in items if i.status == InterventionStatus.RESOLVED),
        }
