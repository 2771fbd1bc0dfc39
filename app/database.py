from __future__ import annotations

import datetime
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker
from sqlalchemy.types import Time

import shifts as model


DATA_DIR = Path(os.environ.get("SHIFT_GRID_DATA_DIR") or Path(__file__).resolve().parent / "data")
DATA_DIR.mkdir(parents=True, exist_ok=True)
DIRECTORY_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'directory.db').as_posix()}"
SCHEDULE_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'schedule.db').as_posix()}"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DirectoryBase(DeclarativeBase):
    """Standalone metadata for the employee/client directory living in directory.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for shift/template/policy tables living in schedule.db."""

    pass


class Employee(DirectoryBase):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(80), nullable=False)
    last_name: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(160), nullable=False, default="")
    position: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="active")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "Unknown Employee"


class Client(DirectoryBase):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_name: Mapped[str] = mapped_column(String(160), nullable=False)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="active")


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    break_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    client_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    notes: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    position: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    shift_type: Mapped[str] = mapped_column(String(16), nullable=False, default="regular")
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    employees: Mapped[List["EmployeeShift"]] = relationship(
        back_populates="shift",
        cascade="all, delete-orphan",
        order_by="EmployeeShift.id",
    )


class EmployeeShift(Base):
    __tablename__ = "employee_shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shift_id: Mapped[int] = mapped_column(ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="scheduled")
    assigned_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    shift: Mapped[Shift] = relationship(back_populates="employees")

    __table_args__ = (UniqueConstraint("shift_id", "employee_id", name="uq_employee_shift_assignment"),)


class ScheduleTemplate(Base):
    __tablename__ = "schedule_templates"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    tagsJSON: Mapped[str] = mapped_column(String(1000), nullable=False, default="[]")
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payloadJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
    )

    def tag_list(self) -> List[str]:
        try:
            value = json.loads(self.tagsJSON or "[]")
        except json.JSONDecodeError:
            return []
        return [str(tag) for tag in value] if isinstance(value, list) else []

    def payload_dict(self) -> Dict:
        try:
            value = json.loads(self.payloadJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class Policy(Base):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("name", name="uq_policies_name"),)

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Shift")
    target_id: Mapped[str | None] = mapped_column(String(40), nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


directory_engine = create_engine(
    DIRECTORY_DATABASE_URL,
    echo=False,
    future=True,
)
schedule_engine = create_engine(
    SCHEDULE_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)
DirectorySessionLocal = sessionmaker(bind=directory_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    DirectoryBase.metadata.create_all(directory_engine)
    Base.metadata.create_all(schedule_engine)


def _coerce_directory_session(session):
    """Return (directory_session, should_close) ensuring we talk to the directory database."""
    if session is None:
        return DirectorySessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is schedule_engine:
        return DirectorySessionLocal(), True
    return session, False


# ---------------------------------------------------------------------------
# Directory (read-only for the engine)


def _employee_to_record(employee: Employee) -> model.Employee:
    return model.Employee(
        id=employee.id,
        display_name=employee.display_name,
        position=employee.position or "",
        email=employee.email or "",
    )


def list_employees(directory_session=None, only_active: bool = True) -> List[model.Employee]:
    directory_session, close_session = _coerce_directory_session(directory_session)
    try:
        stmt = select(Employee)
        if only_active:
            stmt = stmt.where(Employee.status == "active")
        stmt = stmt.order_by(Employee.first_name.asc(), Employee.last_name.asc(), Employee.id.asc())
        return [_employee_to_record(employee) for employee in directory_session.scalars(stmt)]
    finally:
        if close_session:
            directory_session.close()


def list_clients(directory_session=None) -> List[model.Client]:
    directory_session, close_session = _coerce_directory_session(directory_session)
    try:
        stmt = select(Client).where(Client.status == "active").order_by(Client.business_name.asc())
        return [
            model.Client(id=client.id, business_name=client.business_name)
            for client in directory_session.scalars(stmt)
        ]
    finally:
        if close_session:
            directory_session.close()


def list_positions(directory_session=None) -> List[str]:
    return sorted({employee.position for employee in list_employees(directory_session) if employee.position})


# ---------------------------------------------------------------------------
# Shifts


def _shift_to_record(shift: Shift) -> model.Shift:
    return model.Shift(
        id=shift.id,
        date=shift.date,
        start_time=shift.start_time,
        end_time=shift.end_time,
        client_id=shift.client_id,
        break_duration_minutes=int(shift.break_duration or 0),
        status=shift.status,
        name=shift.name,
        notes=shift.notes or "",
        position=shift.position or "",
        shift_type=shift.shift_type or "regular",
        assignments=tuple(
            model.Assignment(
                employee_id=row.employee_id,
                status=row.status,
                assigned_by=row.assigned_by,
                notes=row.notes or "",
            )
            for row in shift.employees
        ),
    )


def get_shifts_between(
    session,
    start_date: datetime.date,
    end_date: datetime.date,
    *,
    employee_id: Optional[int] = None,
    client_id: Optional[int] = None,
    status: Optional[str] = None,
) -> List[model.Shift]:
    stmt = (
        select(Shift)
        .options(selectinload(Shift.employees))
        .where(Shift.date >= start_date, Shift.date <= end_date)
        .order_by(Shift.date, Shift.start_time, Shift.end_time, Shift.id)
    )
    if employee_id:
        stmt = stmt.where(Shift.employees.any(EmployeeShift.employee_id == employee_id))
    if client_id:
        stmt = stmt.where(Shift.client_id == client_id)
    if status and status.lower() != "all":
        stmt = stmt.where(Shift.status == status.lower())
    return [_shift_to_record(shift) for shift in session.scalars(stmt)]


def get_shift(session, shift_id: int) -> Optional[model.Shift]:
    db_shift = session.get(Shift, shift_id)
    return _shift_to_record(db_shift) if db_shift else None


def _apply_assignments(db_shift: Shift, assignments: Iterable[Dict[str, Any]]) -> None:
    existing = {row.employee_id: row for row in db_shift.employees}
    keep: List[EmployeeShift] = []
    seen: set = set()
    for entry in assignments:
        employee_id = int(entry["employee_id"])
        if employee_id in seen:
            continue
        seen.add(employee_id)
        row = existing.get(employee_id) or EmployeeShift(employee_id=employee_id)
        row.status = entry.get("status") or row.status or "scheduled"
        if entry.get("assigned_by") is not None or row.assigned_by is None:
            row.assigned_by = entry.get("assigned_by")
        row.notes = entry.get("notes") or row.notes or ""
        keep.append(row)
    db_shift.employees = keep


def _apply_shift_fields(db_shift: Shift, payload: Dict[str, Any]) -> None:
    if "date" in payload:
        db_shift.date = model.parse_date(payload["date"])
    if "start_time" in payload:
        db_shift.start_time = model.parse_time(payload["start_time"])
    if "end_time" in payload:
        db_shift.end_time = model.parse_time(payload["end_time"])
    if "break_duration" in payload:
        db_shift.break_duration = int(payload["break_duration"] or 0)
    if "client_id" in payload:
        db_shift.client_id = payload["client_id"]
    if "status" in payload:
        db_shift.status = (payload["status"] or "draft").lower()
    if "name" in payload:
        db_shift.name = payload["name"] or None
    if "notes" in payload:
        db_shift.notes = payload["notes"] or ""
    if "position" in payload:
        db_shift.position = payload["position"] or ""
    if "shift_type" in payload:
        db_shift.shift_type = payload["shift_type"] or "regular"
    if "employees" in payload:
        _apply_assignments(db_shift, payload["employees"] or [])


def _check_times(db_shift: Shift) -> None:
    if db_shift.start_time is None or db_shift.end_time is None or db_shift.date is None:
        raise ValueError("Shift date, start and end time are required.")
    if db_shift.end_time <= db_shift.start_time:
        raise ValueError("Shift end time must be after start time.")


def create_shift(
    session,
    payload: Dict[str, Any],
    *,
    created_by: str = "system",
    commit: bool = True,
) -> model.Shift:
    db_shift = Shift(created_by=created_by, employees=[])
    _apply_shift_fields(db_shift, payload)
    _check_times(db_shift)
    session.add(db_shift)
    if commit:
        session.commit()
    else:
        session.flush()
    session.refresh(db_shift)
    return _shift_to_record(db_shift)


def update_shift(session, shift_id: int, patch: Dict[str, Any]) -> model.Shift:
    db_shift = session.get(Shift, shift_id)
    if not db_shift:
        raise ValueError(f"Shift with id {shift_id} was not found.")
    _apply_shift_fields(db_shift, patch)
    _check_times(db_shift)
    session.commit()
    session.refresh(db_shift)
    return _shift_to_record(db_shift)


def delete_shift(session, shift_id: int) -> bool:
    db_shift = session.get(Shift, shift_id)
    if not db_shift:
        return False
    session.delete(db_shift)
    session.commit()
    return True


def delete_shifts_between(
    session,
    start_date: datetime.date,
    end_date: datetime.date,
    *,
    commit: bool = True,
) -> int:
    rows = session.scalars(select(Shift).where(Shift.date >= start_date, Shift.date <= end_date)).all()
    for row in rows:
        session.delete(row)
    if commit:
        session.commit()
    else:
        session.flush()
    return len(rows)


# ---------------------------------------------------------------------------
# Templates


def list_templates(session) -> List[ScheduleTemplate]:
    stmt = select(ScheduleTemplate).order_by(
        ScheduleTemplate.is_default.desc(),
        ScheduleTemplate.name.asc(),
        ScheduleTemplate.created_at.asc(),
    )
    return list(session.scalars(stmt))


def get_template(session, template_id: str) -> Optional[ScheduleTemplate]:
    return session.get(ScheduleTemplate, template_id)


def save_template_row(
    session,
    *,
    template_id: str,
    name: str,
    description: str,
    tags: Iterable[str],
    is_default: bool,
    payload: Dict[str, Any],
    created_by: str,
) -> ScheduleTemplate:
    if is_default:
        for other in session.scalars(select(ScheduleTemplate).where(ScheduleTemplate.is_default.is_(True))):
            if other.id != template_id:
                other.is_default = False
    row = session.get(ScheduleTemplate, template_id)
    if row is None:
        row = ScheduleTemplate(id=template_id, created_by=created_by)
        session.add(row)
    row.name = name
    row.description = description or ""
    row.tagsJSON = json.dumps(sorted({tag.strip() for tag in tags if tag and tag.strip()}))
    row.is_default = bool(is_default)
    row.payloadJSON = json.dumps(payload)
    session.commit()
    session.refresh(row)
    return row


def delete_template_row(session, template_id: str) -> bool:
    result = session.execute(delete(ScheduleTemplate).where(ScheduleTemplate.id == template_id))
    session.commit()
    return bool(result.rowcount)


# ---------------------------------------------------------------------------
# Policies


def get_policies(session) -> List[Policy]:
    stmt = select(Policy).order_by(Policy.name.asc(), Policy.id.asc())
    return list(session.scalars(stmt))


def upsert_policy(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> Policy:
    existing: Optional[Policy] = session.execute(select(Policy).where(Policy.name == name)).scalars().first()
    payload = params_dict if isinstance(params_dict, dict) else {}
    if existing:
        existing.paramsJSON = json.dumps(payload)
        existing.lastEditedBy = edited_by
        existing.lastEditedAt = _utcnow()
        session.commit()
        session.refresh(existing)
        return existing
    policy = Policy(
        name=name,
        paramsJSON=json.dumps(payload),
        lastEditedBy=edited_by,
        lastEditedAt=_utcnow(),
    )
    session.add(policy)
    session.commit()
    session.refresh(policy)
    return policy


def get_active_policy(session) -> Optional[Policy]:
    stmt = select(Policy).order_by(Policy.lastEditedAt.desc(), Policy.id.desc())
    return session.scalars(stmt).first()


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Shift",
    target_id: Optional[Any] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
