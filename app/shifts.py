from __future__ import annotations

import dataclasses
import datetime
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from errors import InvalidShiftDefinition, InvalidTimeRange


SHIFT_STATUSES = {"draft", "published"}
ASSIGNMENT_STATUSES = {"scheduled", "confirmed", "completed", "missed"}
SHIFT_TYPES = {"regular", "emergency"}
UNASSIGNED = "unassigned"
DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def parse_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str):
        try:
            return datetime.date.fromisoformat(value.strip()[:10])
        except ValueError:
            pass
    raise InvalidShiftDefinition(f"Dates must be YYYY-MM-DD, got {value!r}.")


def parse_time(value: Any) -> datetime.time:
    if isinstance(value, datetime.datetime):
        return value.time().replace(second=0, microsecond=0)
    if isinstance(value, datetime.time):
        return value.replace(second=0, microsecond=0)
    if isinstance(value, str):
        try:
            parsed = datetime.time.fromisoformat(value.strip())
        except ValueError:
            parsed = None
        if parsed is not None:
            return parsed.replace(second=0, microsecond=0)
    raise InvalidShiftDefinition(f"Times must be HH:mm, got {value!r}.")


def format_date(value: datetime.date) -> str:
    return value.isoformat()


def format_time(value: datetime.time) -> str:
    return value.strftime("%H:%M")


def week_start_for(date_value: datetime.date) -> datetime.date:
    """Return the Monday for the provided date."""
    if isinstance(date_value, datetime.datetime):
        date_value = date_value.date()
    weekday = date_value.weekday()
    if weekday == 0:
        return date_value
    return date_value - datetime.timedelta(days=weekday)


def week_dates(week_start: datetime.date) -> List[datetime.date]:
    monday = week_start_for(week_start)
    return [monday + datetime.timedelta(days=offset) for offset in range(7)]


def format_week_range(week_start: datetime.date) -> str:
    start = week_start_for(week_start)
    end = start + datetime.timedelta(days=6)
    if start.month == end.month:
        return f"{start.strftime('%b')} {start.day} - {end.day}, {end.year}"
    return f"{start.strftime('%b')} {start.day} - {end.strftime('%b')} {end.day}, {end.year}"


def new_temp_id() -> str:
    return f"tmp-{uuid.uuid4().hex[:12]}"


def _minutes(value: datetime.time) -> int:
    return value.hour * 60 + value.minute


def validate_time_range(
    start_time: datetime.time,
    end_time: datetime.time,
    break_minutes: int = 0,
) -> None:
    if _minutes(end_time) <= _minutes(start_time):
        raise InvalidTimeRange(
            "Shift end time must be after start time.",
            start_time=format_time(start_time),
            end_time=format_time(end_time),
        )
    if break_minutes < 0:
        raise InvalidTimeRange("Break duration cannot be negative.", break_minutes=break_minutes)
    if break_minutes > _minutes(end_time) - _minutes(start_time):
        raise InvalidTimeRange(
            "Break duration cannot exceed the shift length.",
            break_minutes=break_minutes,
        )


@dataclasses.dataclass(frozen=True)
class Employee:
    id: int
    display_name: str
    position: str = ""
    email: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "position": self.position,
            "email": self.email,
        }


@dataclasses.dataclass(frozen=True)
class Client:
    id: int
    business_name: str

    def to_payload(self) -> Dict[str, Any]:
        return {"id": self.id, "business_name": self.business_name}


@dataclasses.dataclass(frozen=True)
class Assignment:
    employee_id: int
    status: str = "scheduled"
    assigned_by: Optional[int] = None
    notes: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "status": self.status,
            "assigned_by": self.assigned_by,
            "notes": self.notes,
        }


@dataclasses.dataclass(frozen=True)
class Shift:
    """A dated time window at a client location, assigned to zero or more employees.

    Shifts are values: every mutation goes through ``with_changes`` and yields a
    new object, so a snapshot taken earlier can never observe later edits.
    """

    id: Optional[int]
    date: datetime.date
    start_time: datetime.time
    end_time: datetime.time
    client_id: Optional[int] = None
    break_duration_minutes: int = 0
    status: str = "draft"
    name: Optional[str] = None
    notes: str = ""
    position: str = ""
    shift_type: str = "regular"
    assignments: Tuple[Assignment, ...] = ()
    temp_id: Optional[str] = None

    @property
    def key(self):
        """Identity inside the store: the persisted id, or the temporary id for drafts."""
        return self.id if self.id is not None else self.temp_id

    @property
    def is_unassigned(self) -> bool:
        return not self.assignments

    @property
    def is_draft(self) -> bool:
        return self.status == "draft"

    @property
    def employee_ids(self) -> Tuple[int, ...]:
        return tuple(assignment.employee_id for assignment in self.assignments)

    @property
    def primary_employee_id(self) -> Optional[int]:
        return self.assignments[0].employee_id if self.assignments else None

    @property
    def total_minutes(self) -> int:
        return _minutes(self.end_time) - _minutes(self.start_time)

    @property
    def worked_minutes(self) -> int:
        return max(0, self.total_minutes - int(self.break_duration_minutes or 0))

    @property
    def hours(self) -> float:
        return self.worked_minutes / 60.0

    def with_changes(self, **changes: Any) -> "Shift":
        return dataclasses.replace(self, **changes)

    def has_employee(self, employee_id: int) -> bool:
        return employee_id in self.employee_ids

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "temp_id": self.temp_id,
            "date": format_date(self.date),
            "start_time": format_time(self.start_time),
            "end_time": format_time(self.end_time),
            "break_duration": self.break_duration_minutes,
            "client_id": self.client_id,
            "status": self.status,
            "name": self.name,
            "notes": self.notes,
            "position": self.position,
            "shift_type": self.shift_type,
            "employee_ids": list(self.employee_ids),
            "employees": [assignment.to_payload() for assignment in self.assignments],
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Shift":
        if not isinstance(payload, dict):
            raise InvalidShiftDefinition("Shift payload must be an object.")
        for required in ("date", "start_time", "end_time"):
            if payload.get(required) in (None, ""):
                raise InvalidShiftDefinition(f"Shift {required} is required.")
        assignments = _assignments_from_payload(payload)
        raw_id = payload.get("id")
        return cls(
            id=optional_int(raw_id),
            date=parse_date(payload["date"]),
            start_time=parse_time(payload["start_time"]),
            end_time=parse_time(payload["end_time"]),
            client_id=optional_int(payload.get("client_id")),
            break_duration_minutes=int_field(
                payload.get("break_duration", payload.get("break_duration_minutes", 0)), "break_duration"
            ),
            status=text_field(payload.get("status"), "draft", "status"),
            name=(payload.get("name") or None),
            notes=payload.get("notes") or payload.get("note") or "",
            position=payload.get("position") or "",
            shift_type=text_field(payload.get("shift_type"), "regular", "shift_type"),
            assignments=assignments,
            temp_id=payload.get("temp_id"),
        )


def optional_int(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidShiftDefinition(f"Expected an integer id, got {value!r}.")


def text_field(value: Any, default: str, label: str) -> str:
    if value in (None, ""):
        return default
    if not isinstance(value, str):
        raise InvalidShiftDefinition(f"{label} must be text, got {value!r}.")
    return value.strip().lower()


def int_field(value: Any, label: str) -> int:
    if value in (None, ""):
        return 0
    if isinstance(value, bool):
        raise InvalidShiftDefinition(f"{label} must be a whole number of minutes, got {value!r}.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidShiftDefinition(f"{label} must be a whole number of minutes, got {value!r}.")


def _assignments_from_payload(payload: Dict[str, Any]) -> Tuple[Assignment, ...]:
    employees = payload.get("employees")
    if employees:
        if not isinstance(employees, (list, tuple)) or not all(isinstance(entry, dict) for entry in employees):
            raise InvalidShiftDefinition("Shift employees must be a list of objects.")
        assignments: Dict[int, Assignment] = {}
        for entry in employees:
            employee_id = coerce_employee_id(entry.get("employee_id"))
            assignments.setdefault(
                employee_id,
                Assignment(
                    employee_id=employee_id,
                    status=entry.get("status") or "scheduled",
                    assigned_by=optional_int(entry.get("assigned_by")),
                    notes=entry.get("notes") or "",
                ),
            )
        return tuple(assignments.values())
    return build_assignments(payload.get("employee_ids") or [])


def coerce_employee_id(value: Any) -> int:
    if value in (None, "") or isinstance(value, bool):
        raise InvalidShiftDefinition(f"Expected an employee id, got {value!r}.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidShiftDefinition(f"Expected an employee id, got {value!r}.")


def build_assignments(
    employee_ids: Iterable[int],
    *,
    assigned_by: Optional[int] = None,
    status: str = "scheduled",
) -> Tuple[Assignment, ...]:
    if isinstance(employee_ids, (str, bytes, dict, int, float)):
        raise InvalidShiftDefinition(f"Employee ids must be a list, got {employee_ids!r}.")
    seen: List[int] = []
    for employee_id in employee_ids:
        if employee_id is None:
            continue
        value = coerce_employee_id(employee_id)
        if value not in seen:
            seen.append(value)
    return tuple(Assignment(employee_id=value, status=status, assigned_by=assigned_by) for value in seen)


def default_unassigned_name(date_value: datetime.date) -> str:
    return f"Shift {date_value.strftime('%b')} {date_value.day}"


def validate_shift(shift: Shift) -> None:
    """Raise the matching validation error if ``shift`` breaks a data-model invariant."""
    validate_time_range(shift.start_time, shift.end_time, int(shift.break_duration_minutes or 0))
    if shift.status not in SHIFT_STATUSES:
        raise InvalidShiftDefinition(f"Unsupported shift status '{shift.status}'.")
    if shift.shift_type not in SHIFT_TYPES:
        raise InvalidShiftDefinition(f"Unsupported shift type '{shift.shift_type}'.")
    if shift.is_unassigned and not (shift.name or "").strip():
        raise InvalidShiftDefinition("Unassigned shifts need a name.")
    for assignment in shift.assignments:
        if assignment.status not in ASSIGNMENT_STATUSES:
            raise InvalidShiftDefinition(f"Unsupported assignment status '{assignment.status}'.")


def shifts_overlap(first: Shift, second: Shift) -> bool:
    if first.date != second.date:
        return False
    return _minutes(first.start_time) < _minutes(second.end_time) and _minutes(second.start_time) < _minutes(
        first.end_time
    )


def sort_shifts(shifts: Iterable[Shift]) -> List[Shift]:
    return sorted(shifts, key=lambda shift: (shift.date, shift.start_time, shift.end_time, str(shift.key)))
