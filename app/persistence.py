"""Shift persistence collaborators.

The store only needs four calls (list/create/update/delete). ``SqlShiftPersistence``
implements them against the schedule database and turns every database or
validation error into ``PersistenceFailure`` so the store can run its re-fetch.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

import database
from errors import PersistenceFailure
from shifts import Shift, format_date, format_time


logger = logging.getLogger(__name__)


class ShiftPersistence(Protocol):
    def list_shifts(
        self,
        start_date: datetime.date,
        end_date: datetime.date,
        *,
        employee_id: Optional[int] = None,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[Shift]:
        ...

    def create_shift(self, payload: Dict[str, Any]) -> Shift:
        ...

    def update_shift(self, shift_id: int, patch: Dict[str, Any]) -> Shift:
        ...

    def delete_shift(self, shift_id: int) -> None:
        ...


def shift_write_payload(shift: Shift) -> Dict[str, Any]:
    """Serialize every persisted field of ``shift`` for a create call."""
    return {
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
        "employees": [assignment.to_payload() for assignment in shift.assignments],
    }


def shift_patch(before: Shift, after: Shift) -> Dict[str, Any]:
    """Return only the write-payload keys whose values differ between two versions."""
    old = shift_write_payload(before)
    new = shift_write_payload(after)
    return {key: value for key, value in new.items() if old.get(key) != value}


class SqlShiftPersistence:
    def __init__(self, session_factory: Optional[Callable] = None, *, actor: str = "system") -> None:
        self.session_factory = session_factory or database.SessionLocal
        self.actor = actor

    def _run(self, action: str, func: Callable, *args: Any, **kwargs: Any):
        try:
            with self.session_factory() as session:
                return func(session, *args, **kwargs)
        except (SQLAlchemyError, ValueError, TypeError) as exc:
            logger.warning("Shift persistence %s failed: %s", action, exc)
            raise PersistenceFailure(f"Could not {action}: {exc}", action=action) from exc

    def list_shifts(
        self,
        start_date: datetime.date,
        end_date: datetime.date,
        *,
        employee_id: Optional[int] = None,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> List[Shift]:
        return self._run(
            "list shifts",
            database.get_shifts_between,
            start_date,
            end_date,
            employee_id=employee_id,
            client_id=client_id,
            status=status,
        )

    def create_shift(self, payload: Dict[str, Any]) -> Shift:
        return self._run("create shift", database.create_shift, payload, created_by=self.actor)

    def update_shift(self, shift_id: int, patch: Dict[str, Any]) -> Shift:
        return self._run("update shift", database.update_shift, shift_id, patch)

    def delete_shift(self, shift_id: int) -> None:
        deleted = self._run("delete shift", database.delete_shift, shift_id)
        if not deleted:
            raise PersistenceFailure(f"Shift {shift_id} no longer exists.", action="delete shift")
