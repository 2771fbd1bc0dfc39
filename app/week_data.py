"""Detached, week-relative snapshots of shifts.

Templates and the copy/paste clipboard both store a ``WeekScheduleData``: each
shift is reduced to its weekday offset plus content, with no link back to the
live shift it came from, and re-anchored onto a target week on demand.
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from errors import EmptyTemplateSource, InvalidShiftDefinition
from shifts import (
    Shift,
    build_assignments,
    format_date,
    format_time,
    new_temp_id,
    parse_date,
    parse_time,
    sort_shifts,
    week_start_for,
)


@dataclasses.dataclass(frozen=True)
class SnapshotShift:
    day_offset: int
    start_time: datetime.time
    end_time: datetime.time
    break_duration_minutes: int = 0
    client_id: Optional[int] = None
    status: str = "draft"
    name: Optional[str] = None
    notes: str = ""
    position: str = ""
    shift_type: str = "regular"
    employee_ids: Tuple[int, ...] = ()

    @property
    def is_unassigned(self) -> bool:
        return not self.employee_ids

    @property
    def hours(self) -> float:
        start = self.start_time.hour * 60 + self.start_time.minute
        end = self.end_time.hour * 60 + self.end_time.minute
        return max(0, end - start - int(self.break_duration_minutes or 0)) / 60.0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "day_offset": self.day_offset,
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
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SnapshotShift":
        try:
            offset = int(payload["day_offset"])
        except (KeyError, TypeError, ValueError):
            raise InvalidShiftDefinition("Snapshot shifts need an integer day_offset.")
        if not 0 <= offset <= 6:
            raise InvalidShiftDefinition(f"day_offset must be between 0 and 6, got {offset}.")
        return cls(
            day_offset=offset,
            start_time=parse_time(payload.get("start_time")),
            end_time=parse_time(payload.get("end_time")),
            break_duration_minutes=int(payload.get("break_duration") or 0),
            client_id=payload.get("client_id"),
            status=(payload.get("status") or "draft").lower(),
            name=payload.get("name") or None,
            notes=payload.get("notes") or "",
            position=payload.get("position") or "",
            shift_type=payload.get("shift_type") or "regular",
            employee_ids=tuple(int(value) for value in payload.get("employee_ids") or []),
        )


@dataclasses.dataclass(frozen=True)
class WeekMetadata:
    total_shifts: int
    total_hours: float
    employee_count: int
    location_id: Optional[int] = None
    location_name: str = ""
    created_at: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {
            "totalShifts": self.total_shifts,
            "totalHours": self.total_hours,
            "employeeCount": self.employee_count,
            "locationId": self.location_id,
            "locationName": self.location_name,
            "createdAt": self.created_at,
        }


@dataclasses.dataclass(frozen=True)
class WeekScheduleData:
    week_start: datetime.date
    shifts: Tuple[SnapshotShift, ...]
    metadata: WeekMetadata

    @property
    def week_end(self) -> datetime.date:
        return self.week_start + datetime.timedelta(days=6)

    def summary(self) -> Dict[str, int]:
        return {
            "assigned": sum(1 for shift in self.shifts if not shift.is_unassigned),
            "unassigned": sum(1 for shift in self.shifts if shift.is_unassigned),
            "drafts": sum(1 for shift in self.shifts if shift.status == "draft"),
        }

    def employee_ids(self) -> List[int]:
        return sorted({employee_id for shift in self.shifts for employee_id in shift.employee_ids})

    def to_payload(self) -> Dict[str, Any]:
        return {
            "weekStart": format_date(self.week_start),
            "weekEnd": format_date(self.week_end),
            "shifts": [shift.to_payload() for shift in self.shifts],
            "metadata": self.metadata.to_payload(),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WeekScheduleData":
        if not isinstance(payload, dict):
            raise InvalidShiftDefinition("Week schedule payload must be an object.")
        week_start = week_start_for(parse_date(payload.get("weekStart") or payload.get("week_start")))
        shifts = tuple(SnapshotShift.from_payload(entry) for entry in payload.get("shifts") or [])
        raw_meta = payload.get("metadata") or {}
        metadata = compute_metadata(
            shifts,
            location_id=raw_meta.get("locationId"),
            location_name=raw_meta.get("locationName") or "",
            created_at=raw_meta.get("createdAt") or "",
        )
        return cls(week_start=week_start, shifts=shifts, metadata=metadata)


def _now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def compute_metadata(
    shifts: Sequence[SnapshotShift],
    *,
    location_id: Optional[int] = None,
    location_name: str = "",
    created_at: Optional[str] = None,
) -> WeekMetadata:
    """Derive the counters; they are never taken from stored input."""
    total_hours = sum(shift.hours for shift in shifts)
    employees = {employee_id for shift in shifts for employee_id in shift.employee_ids}
    return WeekMetadata(
        total_shifts=len(shifts),
        total_hours=round(total_hours, 1),
        employee_count=len(employees),
        location_id=location_id,
        location_name=location_name or "",
        created_at=created_at or _now_iso(),
    )


def shifts_in_week(shifts: Iterable[Shift], week_start: datetime.date) -> List[Shift]:
    monday = week_start_for(week_start)
    sunday = monday + datetime.timedelta(days=6)
    return [shift for shift in sort_shifts(shifts) if monday <= shift.date <= sunday]


def snapshot_shift(shift: Shift, week_start: datetime.date) -> SnapshotShift:
    offset = (shift.date - week_start).days
    if not 0 <= offset <= 6:
        raise InvalidShiftDefinition(
            f"Shift on {shift.date.isoformat()} is outside the week of {week_start.isoformat()}."
        )
    return SnapshotShift(
        day_offset=offset,
        start_time=shift.start_time,
        end_time=shift.end_time,
        break_duration_minutes=int(shift.break_duration_minutes or 0),
        client_id=shift.client_id,
        status=shift.status,
        name=shift.name,
        notes=shift.notes,
        position=shift.position,
        shift_type=shift.shift_type,
        employee_ids=tuple(shift.employee_ids),
    )


def extract_week(
    shifts: Iterable[Shift],
    week_start: datetime.date,
    *,
    location_id: Optional[int] = None,
    location_name: str = "",
    empty_message: str = "There are no shifts in this week.",
) -> WeekScheduleData:
    monday = week_start_for(parse_date(week_start))
    week_shifts = shifts_in_week(shifts, monday)
    if not week_shifts:
        raise EmptyTemplateSource(empty_message, week_start=monday.isoformat())
    snapshot = tuple(snapshot_shift(shift, monday) for shift in week_shifts)
    return WeekScheduleData(
        week_start=monday,
        shifts=snapshot,
        metadata=compute_metadata(snapshot, location_id=location_id, location_name=location_name),
    )


def materialize(
    data: WeekScheduleData,
    target_week_start: datetime.date,
    *,
    assigned_by: Optional[int] = None,
) -> List[Shift]:
    """Re-anchor every snapshot shift onto ``target_week_start`` with fresh ids."""
    monday = week_start_for(parse_date(target_week_start))
    result: List[Shift] = []
    for entry in data.shifts:
        result.append(
            Shift(
                id=None,
                temp_id=new_temp_id(),
                date=monday + datetime.timedelta(days=entry.day_offset),
                start_time=entry.start_time,
                end_time=entry.end_time,
                break_duration_minutes=entry.break_duration_minutes,
                client_id=entry.client_id,
                status=entry.status,
                name=entry.name,
                notes=entry.notes,
                position=entry.position,
                shift_type=entry.shift_type,
                assignments=build_assignments(entry.employee_ids, assigned_by=assigned_by),
            )
        )
    return result


@dataclasses.dataclass
class CopyCheck:
    errors: List[str] = dataclasses.field(default_factory=list)
    warnings: List[str] = dataclasses.field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def check_week_copy(
    data: WeekScheduleData,
    target_week_start: datetime.date,
    known_employee_ids: Optional[Iterable[int]] = None,
    *,
    today: Optional[datetime.date] = None,
) -> CopyCheck:
    """Report employees that left the directory (errors) and a past target week (warning)."""
    check = CopyCheck()
    if known_employee_ids is not None:
        known = set(known_employee_ids)
        missing = [employee_id for employee_id in data.employee_ids() if employee_id not in known]
        if missing:
            labels = ", ".join(f"Employee ID {employee_id}" for employee_id in missing)
            check.errors.append(f"The following employees are no longer available: {labels}")
    monday = week_start_for(parse_date(target_week_start))
    today = today or datetime.date.today()
    if monday < today:
        check.warnings.append("Target week is in the past")
    return check
