from __future__ import annotations

import datetime
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from database import (
    DATA_DIR,
    Policy,
    create_shift,
    delete_shifts_between,
    get_active_policy,
    get_shifts_between,
    list_employees,
    list_templates,
    save_template_row,
    upsert_policy,
)
from errors import InvalidShiftDefinition, SchedulingError
from shifts import Shift, format_date, format_time, parse_date, validate_shift, week_start_for
from week_data import WeekScheduleData

logger = logging.getLogger(__name__)

EXPORT_DIR = DATA_DIR / "exports"
EXPORT_DIR.mkdir(parents=True, exist_ok=True)


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _week_info_from_date(week_start: datetime.date) -> Dict[str, int | str]:
    iso_year, iso_week, _ = week_start.isocalendar()
    return {
        "iso_year": iso_year,
        "iso_week": iso_week,
        "label": f"{iso_year} W{iso_week:02d}",
        "week_start": week_start.isoformat(),
    }


# ---------------------------------------------------------------------------
# Week schedule (shifts)


def export_week_schedule(session, week_start: datetime.date, *, directory_session=None) -> Path:
    monday = week_start_for(week_start)
    sunday = monday + datetime.timedelta(days=6)
    shifts = get_shifts_between(session, monday, sunday)
    employees: Dict[int, str] = {}
    if directory_session:
        employees = {
            employee.id: employee.display_name
            for employee in list_employees(directory_session, only_active=False)
        }
    payload = [
        {
            "date": format_date(shift.date),
            "start_time": format_time(shift.start_time),
            "end_time": format_time(shift.end_time),
            "break_duration": shift.break_duration_minutes,
            "client_id": shift.client_id,
            "status": shift.status,
            "name": shift.name,
            "notes": shift.notes,
            "position": shift.position,
            "shift_type": shift.shift_type,
            "employees": [
                {
                    "employee_id": assignment.employee_id,
                    "employee_name": employees.get(assignment.employee_id),
                    "status": assignment.status,
                    "notes": assignment.notes,
                }
                for assignment in shift.assignments
            ],
        }
        for shift in shifts
    ]
    info = _week_info_from_date(monday)
    filename = EXPORT_DIR / f"week_{info['iso_year']}W{info['iso_week']}_shifts_{_timestamp()}.json"
    filename.write_text(
        json.dumps({"week": info, "shifts": payload}, indent=2),
        encoding="utf-8",
    )
    return filename


def _resolve_employee(entry: Dict[str, Any], known_ids: set, name_to_id: Dict[str, int]) -> Optional[int]:
    name = entry.get("employee_name")
    if name and name in name_to_id:
        return name_to_id[name]
    try:
        employee_id = int(entry.get("employee_id"))
    except (TypeError, ValueError):
        return None
    if known_ids and employee_id not in known_ids:
        return None
    return employee_id


def import_week_schedule(session, week_start: datetime.date, file_path: Path, *, directory_session=None) -> int:
    """Replace the week's shifts with the exported ones, shifted onto ``week_start``.

    Employees are matched by display name first, then by id; entries that match
    nobody in the directory are dropped from the shift.
    """
    data = json.loads(file_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Week schedule file must be a JSON object.")
    monday = week_start_for(week_start)
    source_info = data.get("week") or {}
    try:
        source_monday = week_start_for(parse_date(source_info.get("week_start")))
    except InvalidShiftDefinition:
        source_monday = monday
    known_ids: set = set()
    name_to_id: Dict[str, int] = {}
    if directory_session:
        for employee in list_employees(directory_session, only_active=True):
            known_ids.add(employee.id)
            name_to_id[employee.display_name] = employee.id

    added = 0
    try:
        delete_shifts_between(session, monday, monday + datetime.timedelta(days=6), commit=False)
        for entry in data.get("shifts", []):
            if _import_entry(session, entry, monday, source_monday, known_ids, name_to_id):
                added += 1
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Week import into %s failed; existing shifts were kept.", monday.isoformat())
        raise
    logger.info("Imported %s shifts into the week of %s.", added, monday.isoformat())
    return added


def _import_entry(
    session,
    entry: Dict[str, Any],
    monday: datetime.date,
    source_monday: datetime.date,
    known_ids: set,
    name_to_id: Dict[str, int],
) -> bool:
    if not isinstance(entry, dict):
        return False
    try:
        original_date = parse_date(entry.get("date"))
    except InvalidShiftDefinition:
        return False
    offset = (original_date - source_monday).days
    if not 0 <= offset <= 6:
        return False
    employees = []
    listed = entry.get("employees")
    for assignment in listed if isinstance(listed, list) else []:
        if not isinstance(assignment, dict):
            continue
        employee_id = _resolve_employee(assignment, known_ids, name_to_id)
        if employee_id is None:
            continue
        employees.append(
            {
                "employee_id": employee_id,
                "status": assignment.get("status") or "scheduled",
                "notes": assignment.get("notes") or "",
            }
        )
    payload = {key: entry.get(key) for key in (
        "start_time",
        "end_time",
        "break_duration",
        "client_id",
        "status",
        "name",
        "notes",
        "position",
        "shift_type",
    )}
    payload["date"] = monday + datetime.timedelta(days=offset)
    payload["employees"] = employees
    if not employees and not payload.get("name"):
        payload["name"] = f"Imported shift {offset + 1}"
    try:
        validate_shift(Shift.from_payload(payload))
        create_shift(session, payload, created_by="import", commit=False)
    except (ValueError, SchedulingError):
        return False
    return True


# ---------------------------------------------------------------------------
# Templates


def export_templates(session) -> Path:
    payload = [
        {
            "name": row.name,
            "description": row.description,
            "tags": row.tag_list(),
            "is_default": bool(row.is_default),
            "data": row.payload_dict(),
        }
        for row in list_templates(session)
    ]
    filename = EXPORT_DIR / f"templates_{_timestamp()}.json"
    filename.write_text(
        json.dumps({"generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(), "templates": payload}, indent=2),
        encoding="utf-8",
    )
    return filename


def import_templates(session, file_path: Path, *, created_by: str = "import") -> int:
    data = json.loads(file_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Template file must be a JSON object.")
    imported = 0
    for entry in data.get("templates", []):
        if not isinstance(entry, dict):
            continue
        name = (entry.get("name") or "").strip()
        if not name:
            continue
        try:
            week = WeekScheduleData.from_payload(entry.get("data") or {})
        except InvalidShiftDefinition:
            continue
        if not week.shifts:
            continue
        save_template_row(
            session,
            template_id=uuid.uuid4().hex,
            name=name,
            description=entry.get("description") or "",
            tags=[str(tag) for tag in entry.get("tags") or []],
            is_default=bool(entry.get("is_default")),
            payload=week.to_payload(),
            created_by=created_by,
        )
        imported += 1
    return imported


# ---------------------------------------------------------------------------
# Policy import/export


def export_policy_dataset(session) -> Path:
    policy = get_active_policy(session)
    if not policy:
        raise ValueError("No active policy found to export.")
    payload = {
        "name": policy.name,
        "params": policy.params_dict(),
    }
    filename = EXPORT_DIR / f"policy_{_timestamp()}.json"
    filename.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return filename


def import_policy_dataset(session, file_path: Path, *, edited_by: str = "import") -> Policy:
    data = json.loads(file_path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("Policy file must be a JSON object.")
    params = data.get("params") if isinstance(data.get("params"), dict) else None
    if params is None:
        params = {k: v for k, v in data.items() if k != "name"}
    params = dict(params)
    params.pop("name", None)
    name = data.get("name") or "Imported Policy"
    return upsert_policy(session, name, params, edited_by=edited_by)


def resolve_export_file(name: str) -> Path:
    """Map a bare export file name onto the export folder."""
    path = EXPORT_DIR / Path(name or "").name
    if not path.name or not path.is_file():
        raise FileNotFoundError(f"Export file '{name}' was not found.")
    return path


def list_export_files(pattern: str = "*.json") -> List[Path]:
    return sorted(EXPORT_DIR.glob(pattern), key=lambda path: path.stat().st_mtime, reverse=True)
