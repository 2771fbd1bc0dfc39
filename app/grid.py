"""Employee x date matrix built from the flat shift list.

The projection is recomputed from scratch on every call; a week of shifts for
a few dozen employees is small enough that diffing would only add risk.
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from errors import InvalidTimeRange
from shifts import Employee, Shift, format_date, sort_shifts, week_dates


ALL_DEPARTMENTS = "All"


@dataclasses.dataclass(frozen=True)
class GridFilters:
    search: str = ""
    department: str = ALL_DEPARTMENTS
    client_id: Optional[int] = None
    status: Optional[str] = None

    def matches_employee(self, employee: Employee) -> bool:
        term = (self.search or "").strip().lower()
        if term:
            haystacks = (employee.display_name, employee.email, employee.position)
            if not any(term in (value or "").lower() for value in haystacks):
                return False
        department = (self.department or ALL_DEPARTMENTS).strip()
        if department and department != ALL_DEPARTMENTS and employee.position != department:
            return False
        return True

    def matches_shift(self, shift: Shift) -> bool:
        if self.client_id is not None and shift.client_id != self.client_id:
            return False
        if self.status and self.status.lower() != "all" and shift.status != self.status.lower():
            return False
        return True


@dataclasses.dataclass(frozen=True)
class GridRow:
    employee: Employee
    cells: Dict[datetime.date, List[Shift]]

    @property
    def shift_count(self) -> int:
        return len({shift.key for cell in self.cells.values() for shift in cell})

    @property
    def hours(self) -> float:
        seen: Dict[Any, Shift] = {}
        for cell in self.cells.values():
            for shift in cell:
                seen[shift.key] = shift
        return round(sum(shift.hours for shift in seen.values()), 2)


@dataclasses.dataclass(frozen=True)
class GridStats:
    total_shifts: int
    night_shifts: int
    avg_hours: float
    balance_score: int
    draft_shifts: int
    unassigned_shifts: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "totalShifts": self.total_shifts,
            "nightShifts": self.night_shifts,
            "avgHours": self.avg_hours,
            "balanceScore": self.balance_score,
            "draftShifts": self.draft_shifts,
            "unassignedShifts": self.unassigned_shifts,
        }


@dataclasses.dataclass(frozen=True)
class GridProjection:
    dates: List[datetime.date]
    rows: List[GridRow]
    unassigned: Dict[datetime.date, List[Shift]]
    stats: GridStats

    def cell(self, employee_id: int, date: datetime.date) -> List[Shift]:
        for row in self.rows:
            if row.employee.id == employee_id:
                return list(row.cells.get(date, []))
        return []

    def employee_ids(self) -> List[int]:
        return [row.employee.id for row in self.rows]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "dates": [format_date(day) for day in self.dates],
            "rows": [
                {
                    "employee": row.employee.to_payload(),
                    "hours": row.hours,
                    "cells": {
                        format_date(day): [shift.to_payload() for shift in shifts]
                        for day, shifts in row.cells.items()
                    },
                }
                for row in self.rows
            ],
            "unassigned": {
                format_date(day): [shift.to_payload() for shift in shifts]
                for day, shifts in self.unassigned.items()
            },
            "stats": self.stats.to_payload(),
        }


def dates_in_range(start: datetime.date, end: datetime.date) -> List[datetime.date]:
    if end < start:
        raise InvalidTimeRange(
            "The end of the date range must not precede its start.",
            start=start.isoformat(),
            end=end.isoformat(),
        )
    return [start + datetime.timedelta(days=offset) for offset in range((end - start).days + 1)]


def visible_week(week_start: datetime.date) -> List[datetime.date]:
    return week_dates(week_start)


def filter_employees(employees: Iterable[Employee], filters: GridFilters) -> List[Employee]:
    return [employee for employee in employees if filters.matches_employee(employee)]


def is_night_shift(shift: Shift, *, night_start_hour: int = 22, night_end_hour: int = 6) -> bool:
    return shift.start_time.hour >= night_start_hour or shift.start_time.hour <= night_end_hour


def calculate_stats(
    shifts: Sequence[Shift],
    *,
    night_start_hour: int = 22,
    night_end_hour: int = 6,
) -> GridStats:
    total = len(shifts)
    night = sum(
        1
        for shift in shifts
        if is_night_shift(shift, night_start_hour=night_start_hour, night_end_hour=night_end_hour)
    )
    total_hours = sum(shift.hours for shift in shifts)
    avg_hours = round(total_hours / total, 1) if total else 0.0
    per_employee: Dict[int, int] = {}
    for shift in shifts:
        if shift.is_draft:
            continue
        for employee_id in shift.employee_ids:
            per_employee[employee_id] = per_employee.get(employee_id, 0) + 1
    counts = list(per_employee.values())
    max_count = max(counts, default=0)
    min_count = min(counts, default=max_count)
    balance = round(min_count / max_count * 100) if max_count > 0 else 100
    return GridStats(
        total_shifts=total,
        night_shifts=night,
        avg_hours=avg_hours,
        balance_score=balance,
        draft_shifts=sum(1 for shift in shifts if shift.is_draft),
        unassigned_shifts=sum(1 for shift in shifts if shift.is_unassigned),
    )


def project(
    shifts: Iterable[Shift],
    employees: Iterable[Employee],
    dates: Sequence[datetime.date],
    filters: Optional[GridFilters] = None,
    *,
    night_start_hour: int = 22,
    night_end_hour: int = 6,
) -> GridProjection:
    """Build the employee x date matrix for ``dates``.

    Each cell lists every shift on that date whose assignments include the row's
    employee, ordered by start time. Unassigned shifts are bucketed per date.
    """
    filters = filters or GridFilters()
    visible_dates = list(dates)
    date_set = set(visible_dates)
    visible = [shift for shift in sort_shifts(shifts) if shift.date in date_set and filters.matches_shift(shift)]

    by_cell: Dict[tuple, List[Shift]] = {}
    unassigned: Dict[datetime.date, List[Shift]] = {day: [] for day in visible_dates}
    for shift in visible:
        if shift.is_unassigned:
            unassigned[shift.date].append(shift)
            continue
        for employee_id in shift.employee_ids:
            by_cell.setdefault((employee_id, shift.date), []).append(shift)

    rows = [
        GridRow(
            employee=employee,
            cells={day: list(by_cell.get((employee.id, day), [])) for day in visible_dates},
        )
        for employee in filter_employees(employees, filters)
    ]
    stats = calculate_stats(visible, night_start_hour=night_start_hour, night_end_hour=night_end_hour)
    return GridProjection(dates=visible_dates, rows=rows, unassigned=unassigned, stats=stats)
