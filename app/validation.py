from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from policy import build_default_policy, compliance_settings
from shifts import DAY_NAMES, Employee, Shift, format_time, shifts_overlap, sort_shifts, week_start_for


def validate_week_schedule(
    shifts: Iterable[Shift],
    week_start: datetime.date,
    *,
    employees: Optional[Iterable[Employee]] = None,
    policy: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Return compliance findings for the shifts inside the requested week."""
    normalized_start = week_start_for(week_start)
    week_end = normalized_start + datetime.timedelta(days=6)
    week_shifts = [shift for shift in sort_shifts(shifts) if normalized_start <= shift.date <= week_end]
    settings = compliance_settings(policy if policy is not None else build_default_policy())
    employee_map: Optional[Dict[int, Employee]] = (
        {employee.id: employee for employee in employees} if employees is not None else None
    )

    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_overlap_issues(week_shifts, employee_map))
    issues.extend(_missing_employee_issues(week_shifts, employee_map))
    warnings.extend(_unassigned_shift_warnings(week_shifts))
    warnings.extend(_shift_length_warnings(week_shifts, settings))
    warnings.extend(_weekly_hours_warnings(week_shifts, employee_map, settings))
    warnings.extend(_rest_period_warnings(week_shifts, employee_map, settings))
    checks = _build_validation_checklist(week_shifts, issues=issues, warnings=warnings)
    return {
        "week_start": normalized_start.isoformat(),
        "week_end": week_end.isoformat(),
        "checks": checks,
        "issues": issues,
        "warnings": warnings,
    }


def overlap_messages(
    conflicts: Sequence[Tuple[int, Shift]],
    employees: Optional[Dict[int, Employee]] = None,
) -> List[str]:
    """Human readable text for (employee_id, other_shift) pairs reported by the store."""
    messages: List[str] = []
    for employee_id, other in conflicts:
        name = _employee_name(employees, employee_id)
        messages.append(
            f"{name} is already scheduled {format_time(other.start_time)}-{format_time(other.end_time)} "
            f"on {other.date.isoformat()}."
        )
    return messages


def _employee_name(employees: Optional[Dict[int, Employee]], employee_id: int) -> str:
    if employees and employee_id in employees:
        return employees[employee_id].display_name
    return f"Employee {employee_id}"


def _overlap_issues(shifts: List[Shift], employees: Optional[Dict[int, Employee]]) -> List[Dict[str, Any]]:
    issues: List[Dict[str, Any]] = []
    by_employee_day: Dict[Tuple[int, datetime.date], List[Shift]] = defaultdict(list)
    for shift in shifts:
        for employee_id in shift.employee_ids:
            by_employee_day[(employee_id, shift.date)].append(shift)
    for (employee_id, day), day_shifts in sorted(by_employee_day.items(), key=lambda item: (item[0][1], item[0][0])):
        for index, first in enumerate(day_shifts):
            for second in day_shifts[index + 1:]:
                if not shifts_overlap(first, second):
                    continue
                name = _employee_name(employees, employee_id)
                issues.append(
                    {
                        "type": "overlap",
                        "severity": "error",
                        "employee_id": employee_id,
                        "employee": name,
                        "day": DAY_NAMES[day.weekday()],
                        "shift_ids": [first.key, second.key],
                        "message": f"{name} has overlapping shifts on {day.isoformat()} "
                        f"({format_time(first.start_time)}-{format_time(first.end_time)} and "
                        f"{format_time(second.start_time)}-{format_time(second.end_time)}).",
                    }
                )
    return issues


def _missing_employee_issues(
    shifts: List[Shift], employees: Optional[Dict[int, Employee]]
) -> List[Dict[str, Any]]:
    if employees is None:
        return []
    missing: Dict[int, List[Any]] = defaultdict(list)
    for shift in shifts:
        for employee_id in shift.employee_ids:
            if employee_id not in employees:
                missing[employee_id].append(shift.key)
    return [
        {
            "type": "employee",
            "severity": "error",
            "employee_id": employee_id,
            "shift_ids": keys,
            "message": f"Employee ID {employee_id} is no longer in the directory ({len(keys)} shift(s)).",
        }
        for employee_id, keys in sorted(missing.items())
    ]


def _unassigned_shift_warnings(shifts: List[Shift]) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    for shift in shifts:
        if not shift.is_unassigned:
            continue
        warnings.append(
            {
                "type": "assignment",
                "severity": "warning",
                "shift_id": shift.key,
                "day": DAY_NAMES[shift.date.weekday()],
                "message": f"{shift.name or 'Open shift'} on {shift.date.isoformat()} "
                f"({format_time(shift.start_time)}-{format_time(shift.end_time)}) has nobody assigned.",
            }
        )
    return warnings


def _shift_length_warnings(shifts: List[Shift], settings: Dict[str, Any]) -> List[Dict[str, Any]]:
    limit = float(settings.get("max_shift_hours") or 0)
    if limit <= 0:
        return []
    warnings: List[Dict[str, Any]] = []
    for shift in shifts:
        if shift.hours > limit + 1e-6:
            warnings.append(
                {
                    "type": "shift_length",
                    "severity": "warning",
                    "shift_id": shift.key,
                    "day": DAY_NAMES[shift.date.weekday()],
                    "hours": round(shift.hours, 2),
                    "limit": limit,
                    "message": f"Shift on {shift.date.isoformat()} is {round(shift.hours, 2)} hours "
                    f"(limit {limit:g}).",
                }
            )
    return warnings


def _weekly_hours_warnings(
    shifts: List[Shift], employees: Optional[Dict[int, Employee]], settings: Dict[str, Any]
) -> List[Dict[str, Any]]:
    """Check if any employee exceeds the maximum weekly hours limit."""
    warnings: List[Dict[str, Any]] = []
    max_hours_per_week = float(settings.get("max_weekly_hours", 40) or 40)

    employee_hours: Dict[int, float] = defaultdict(float)
    for shift in shifts:
        for employee_id in shift.employee_ids:
            employee_hours[employee_id] += shift.hours

    for employee_id, total_hours in sorted(employee_hours.items()):
        if total_hours > max_hours_per_week + 1e-6:
            employee_name = _employee_name(employees, employee_id)
            warnings.append(
                {
                    "type": "weekly_hours",
                    "severity": "warning",
                    "employee_id": employee_id,
                    "employee": employee_name,
                    "hours": round(total_hours, 2),
                    "limit": max_hours_per_week,
                    "message": f"{employee_name} is scheduled {round(total_hours, 2)} hours "
                    f"(exceeds {max_hours_per_week:g}-hour limit by {round(total_hours - max_hours_per_week, 2)} hours).",
                }
            )
    return warnings


def _rest_period_warnings(
    shifts: List[Shift], employees: Optional[Dict[int, Employee]], settings: Dict[str, Any]
) -> List[Dict[str, Any]]:
    min_rest = float(settings.get("min_rest_hours") or 0)
    if min_rest <= 0:
        return []
    warnings: List[Dict[str, Any]] = []
    by_employee: Dict[int, List[Shift]] = defaultdict(list)
    for shift in shifts:
        for employee_id in shift.employee_ids:
            by_employee[employee_id].append(shift)
    for employee_id, employee_shifts in sorted(by_employee.items()):
        ordered = sorted(employee_shifts, key=lambda shift: (shift.date, shift.start_time))
        for previous, current in zip(ordered, ordered[1:]):
            if previous.date == current.date:
                continue
            ended = datetime.datetime.combine(previous.date, previous.end_time)
            started = datetime.datetime.combine(current.date, current.start_time)
            rest_hours = (started - ended).total_seconds() / 3600
            if rest_hours < min_rest - 1e-6:
                name = _employee_name(employees, employee_id)
                warnings.append(
                    {
                        "type": "rest",
                        "severity": "warning",
                        "employee_id": employee_id,
                        "employee": name,
                        "day": DAY_NAMES[current.date.weekday()],
                        "rest_hours": round(rest_hours, 2),
                        "limit": min_rest,
                        "message": f"{name} gets only {round(rest_hours, 2)} hours of rest before "
                        f"{current.date.isoformat()} (minimum {min_rest:g}).",
                    }
                )
    return warnings


def _build_validation_checklist(
    shifts: List[Shift],
    *,
    issues: List[Dict[str, Any]],
    warnings: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Produce a concise, UI-friendly checklist:
    - `status`: ok|fail
    - `label`: human readable prompt
    - `details`: optional context for failures
    """
    checks: List[Dict[str, Any]] = []
    findings = issues + warnings

    def summarize(items: List[Dict[str, Any]], *, limit: int = 5) -> str:
        parts = [str(entry.get("message") or "").strip() for entry in items[:limit]]
        parts = [part for part in parts if part]
        if len(items) > limit:
            parts.append(f"+{len(items) - limit} more")
        return "; ".join(parts)

    def add_check(label: str, type_name: str) -> None:
        matches = [entry for entry in findings if entry.get("type") == type_name]
        checks.append(
            {
                "label": label,
                "status": "ok" if not matches else "fail",
                "details": summarize(matches) if matches else "",
            }
        )

    checks.append(
        {
            "label": "Shifts scheduled?",
            "status": "ok" if shifts else "fail",
            "details": "" if shifts else "No shifts found.",
        }
    )
    add_check("No double bookings?", "overlap")
    add_check("Employees still active?", "employee")
    add_check("All shifts assigned?", "assignment")
    add_check("Shift length within limit?", "shift_length")
    add_check("Weekly hours within limit?", "weekly_hours")
    add_check("Rest between shifts?", "rest")
    return checks
