"""Authoritative in-memory view of the shifts for one loaded date window.

Every write is validated synchronously, applied optimistically in a single
dict swap (so a shift is never visible in two cells), then forwarded to the
persistence collaborator. When the collaborator rejects a write the store
re-fetches the whole window and re-raises the ``PersistenceFailure``.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from columns import ColumnAddress, column_id, unassigned_owner, validate_drag_operation
from errors import (
    IllegalDragTarget,
    InvalidShiftDefinition,
    InvalidTimeRange,
    OverlappingAssignment,
    PersistenceFailure,
    ShiftNotFound,
)
from persistence import ShiftPersistence, shift_patch, shift_write_payload
from shifts import (
    Assignment,
    Shift,
    build_assignments,
    coerce_employee_id,
    default_unassigned_name,
    int_field,
    new_temp_id,
    optional_int,
    parse_date,
    parse_time,
    shifts_overlap,
    sort_shifts,
    text_field,
    validate_shift,
)


logger = logging.getLogger(__name__)

OVERLAP_ADVISORY = "advisory"
OVERLAP_STRICT = "strict"

_PATCHABLE_FIELDS = {
    "date",
    "start_time",
    "end_time",
    "break_duration",
    "break_duration_minutes",
    "client_id",
    "status",
    "name",
    "notes",
    "position",
    "shift_type",
    "employee_ids",
}


class ShiftAssignmentStore:
    def __init__(
        self,
        persistence: ShiftPersistence,
        *,
        overlap_mode: str = OVERLAP_ADVISORY,
        actor_id: Optional[int] = None,
    ) -> None:
        self._persistence = persistence
        self._shifts: Dict[Any, Shift] = {}
        self._window: Optional[Tuple[datetime.date, datetime.date]] = None
        self._filters: Dict[str, Any] = {}
        self._pending: set = set()
        self.overlap_mode = overlap_mode if overlap_mode in {OVERLAP_ADVISORY, OVERLAP_STRICT} else OVERLAP_ADVISORY
        self.actor_id = actor_id
        self.revision = 0

    # ------------------------------------------------------------------
    # Reads

    @property
    def window(self) -> Optional[Tuple[datetime.date, datetime.date]]:
        return self._window

    @property
    def pending(self) -> frozenset:
        return frozenset(self._pending)

    def __len__(self) -> int:
        return len(self._shifts)

    def __contains__(self, key) -> bool:
        return key in self._shifts

    def snapshot(self) -> Tuple[Shift, ...]:
        return tuple(sort_shifts(self._shifts.values()))

    def get(self, key) -> Shift:
        shift = self._shifts.get(key)
        if shift is None:
            raise ShiftNotFound(f"Shift {key} is not loaded.", shift_id=key)
        return shift

    def shifts(
        self,
        *,
        employee_id: Optional[int] = None,
        date: Optional[datetime.date] = None,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
        start: Optional[datetime.date] = None,
        end: Optional[datetime.date] = None,
        unassigned: Optional[bool] = None,
    ) -> List[Shift]:
        result = []
        for shift in self.snapshot():
            if employee_id is not None and not shift.has_employee(employee_id):
                continue
            if date is not None and shift.date != date:
                continue
            if client_id is not None and shift.client_id != client_id:
                continue
            if status and status.lower() != "all" and shift.status != status.lower():
                continue
            if start is not None and shift.date < start:
                continue
            if end is not None and shift.date > end:
                continue
            if unassigned is not None and shift.is_unassigned != unassigned:
                continue
            result.append(shift)
        return result

    def overlaps_for(
        self,
        candidate: Shift,
        *,
        others: Optional[Iterable[Shift]] = None,
    ) -> List[Tuple[int, Shift]]:
        """Return (employee_id, other_shift) pairs where ``candidate`` double-books someone."""
        pool = others if others is not None else self._shifts.values()
        conflicts: List[Tuple[int, Shift]] = []
        for other in pool:
            if other.key == candidate.key:
                continue
            if not shifts_overlap(candidate, other):
                continue
            for employee_id in candidate.employee_ids:
                if other.has_employee(employee_id):
                    conflicts.append((employee_id, other))
        return conflicts

    # ------------------------------------------------------------------
    # Loading

    def load(
        self,
        start_date: datetime.date,
        end_date: datetime.date,
        *,
        employee_id: Optional[int] = None,
        client_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> Tuple[Shift, ...]:
        start_date = parse_date(start_date)
        end_date = parse_date(end_date)
        if end_date < start_date:
            raise InvalidTimeRange(
                "The end of the date range must not precede its start.",
                start=start_date.isoformat(),
                end=end_date.isoformat(),
            )
        filters = {"employee_id": employee_id, "client_id": client_id, "status": status}
        fetched = self._persistence.list_shifts(start_date, end_date, **filters)
        self._window = (start_date, end_date)
        self._filters = filters
        self._replace_all(fetched)
        return self.snapshot()

    def refresh(self) -> Tuple[Shift, ...]:
        if self._window is None:
            return self.snapshot()
        return self.load(*self._window, **self._filters)

    def _replace_all(self, shifts: Iterable[Shift]) -> None:
        self._shifts = {shift.key: shift for shift in sort_shifts(shifts)}
        self._pending.clear()
        self.revision += 1

    def _commit(self, *, remove: Sequence[Any] = (), put: Sequence[Shift] = ()) -> None:
        updated = dict(self._shifts)
        for key in remove:
            updated.pop(key, None)
        for shift in put:
            updated[shift.key] = shift
        self._shifts = updated
        self.revision += 1

    def _recover(self, before: Dict[Any, Shift], exc: PersistenceFailure) -> None:
        logger.warning("Optimistic write rejected (%s); reloading authoritative shifts.", exc)
        try:
            self.refresh()
        except PersistenceFailure:
            logger.error("Reload after a rejected write failed; restoring the pre-write view.")
            self._shifts = before
            self._pending.clear()
            self.revision += 1

    # ------------------------------------------------------------------
    # Validation helpers

    def _guard_overlaps(self, candidate: Shift, others: Iterable[Shift]) -> None:
        if self.overlap_mode != OVERLAP_STRICT:
            return
        conflicts = self.overlaps_for(candidate, others=others)
        if conflicts:
            employee_id, other = conflicts[0]
            raise OverlappingAssignment(
                f"Employee {employee_id} already works {other.start_time:%H:%M}-{other.end_time:%H:%M} "
                f"on {other.date.isoformat()}.",
                employee_id=employee_id,
                conflicting_shift=other.key,
            )

    def _others(self, *exclude: Any) -> List[Shift]:
        return [shift for key, shift in self._shifts.items() if key not in exclude]

    def _require_persisted(self, shift: Shift) -> int:
        if shift.id is None:
            raise InvalidShiftDefinition("Shift has not been saved yet.", shift_id=shift.key)
        return shift.id

    # ------------------------------------------------------------------
    # Writes

    def prepare(self, shift: Shift, employee_ids: Optional[Iterable[int]] = None) -> Shift:
        """Return the validated draft that ``create`` would insert, without inserting it."""
        if employee_ids is not None:
            assignments = build_assignments(employee_ids, assigned_by=self.actor_id)
        else:
            assignments = shift.assignments
        candidate = shift.with_changes(
            id=None,
            temp_id=shift.temp_id or new_temp_id(),
            assignments=assignments,
        )
        validate_shift(candidate)
        return candidate

    def create(self, shift: Shift, employee_ids: Optional[Iterable[int]] = None) -> Shift:
        candidate = self.prepare(shift, employee_ids)
        self._guard_overlaps(candidate, self._others())
        return self._insert(candidate)

    def create_many(self, shifts: Sequence[Shift]) -> List[Shift]:
        """Validate every shift up front, then insert them in order."""
        candidates = [self.prepare(shift) for shift in shifts]
        accepted: List[Shift] = []
        for candidate in candidates:
            self._guard_overlaps(candidate, self._others() + accepted)
            accepted.append(candidate)
        return [self._insert(candidate) for candidate in candidates]

    def _insert(self, candidate: Shift) -> Shift:
        before = self._shifts
        self._commit(put=[candidate])
        self._pending.add(candidate.key)
        try:
            persisted = self._persistence.create_shift(shift_write_payload(candidate))
        except PersistenceFailure as exc:
            self._recover(before, exc)
            raise
        self._pending.discard(candidate.key)
        self._commit(remove=[candidate.key], put=[persisted])
        return persisted

    def update(self, key, patch: Dict[str, Any]) -> Shift:
        current = self.get(key)
        updated = current.with_changes(**self._changes_from_patch(current, patch))
        validate_shift(updated)
        self._guard_overlaps(updated, self._others(current.key))
        return self._replace(current, updated)

    def _changes_from_patch(self, current: Shift, patch: Dict[str, Any]) -> Dict[str, Any]:
        if patch is not None and not isinstance(patch, dict):
            raise InvalidShiftDefinition("Shift changes must be an object.")
        unknown = set(patch or {}) - _PATCHABLE_FIELDS
        if unknown:
            raise InvalidShiftDefinition(f"Cannot patch shift fields: {', '.join(sorted(unknown))}.")
        changes: Dict[str, Any] = {}
        for field, value in (patch or {}).items():
            if field == "date":
                changes["date"] = parse_date(value)
            elif field in {"start_time", "end_time"}:
                changes[field] = parse_time(value)
            elif field in {"break_duration", "break_duration_minutes"}:
                changes["break_duration_minutes"] = int_field(value, field)
            elif field == "client_id":
                changes["client_id"] = optional_int(value)
            elif field == "status":
                changes["status"] = text_field(value, "draft", field)
            elif field == "shift_type":
                changes["shift_type"] = text_field(value, "regular", field)
            elif field == "name":
                changes["name"] = value or None
            elif field == "employee_ids":
                kept = {assignment.employee_id: assignment for assignment in current.assignments}
                fresh = build_assignments(value or [], assigned_by=self.actor_id)
                changes["assignments"] = tuple(kept.get(entry.employee_id, entry) for entry in fresh)
            else:
                changes[field] = value or ""
        return changes

    def _replace(self, current: Shift, updated: Shift) -> Shift:
        shift_id = self._require_persisted(current)
        patch = shift_patch(current, updated)
        if not patch:
            return current
        before = self._shifts
        self._commit(put=[updated])
        self._pending.add(updated.key)
        try:
            persisted = self._persistence.update_shift(shift_id, patch)
        except PersistenceFailure as exc:
            self._recover(before, exc)
            raise
        self._pending.discard(updated.key)
        self._commit(put=[persisted])
        return persisted

    def delete(self, key) -> Shift:
        current = self.get(key)
        shift_id = self._require_persisted(current)
        before = self._shifts
        self._commit(remove=[current.key])
        self._pending.add(current.key)
        try:
            self._persistence.delete_shift(shift_id)
        except PersistenceFailure as exc:
            self._recover(before, exc)
            raise
        self._pending.discard(current.key)
        return current

    def move_target(
        self,
        current: Shift,
        employee_id: Optional[int],
        date: datetime.date,
        *,
        source_employee_id: Optional[int] = None,
    ) -> Tuple[ColumnAddress, ColumnAddress]:
        source = column_id(current, source_employee_id)
        if employee_id is None:
            target = ColumnAddress(unassigned_owner(current), date)
        else:
            target = ColumnAddress(coerce_employee_id(employee_id), date)
        return source, target

    def move_shift(
        self,
        key,
        employee_id: Optional[int],
        date,
        *,
        source_employee_id: Optional[int] = None,
    ) -> Shift:
        """Relocate a shift to (employee, date); ``employee_id=None`` moves it to the unassigned bucket.

        Time window, break, client and identity are kept. For shifts shared by several
        employees only the row named by ``source_employee_id`` (default: the first) moves.
        """
        current = self.get(key)
        target_date = parse_date(date)
        if source_employee_id is not None and not current.has_employee(source_employee_id):
            raise IllegalDragTarget(
                f"Shift {current.key} is not assigned to employee {source_employee_id}.",
                shift_id=current.key,
            )
        source, target = self.move_target(
            current, employee_id, target_date, source_employee_id=source_employee_id
        )
        if not validate_drag_operation(source, target):
            raise IllegalDragTarget(
                "Shift is already in that cell.",
                shift_id=current.key,
                column=target.label(),
            )
        moved_from = source_employee_id if source_employee_id is not None else current.primary_employee_id
        assignments = self._moved_assignments(current, moved_from, employee_id)
        name = current.name
        if not assignments and not (name or "").strip():
            name = default_unassigned_name(target_date)
        moved = current.with_changes(date=target_date, assignments=assignments, name=name)
        validate_shift(moved)
        self._guard_overlaps(moved, self._others(current.key))
        return self._replace(current, moved)

    def _moved_assignments(
        self,
        current: Shift,
        moved_from: Optional[int],
        employee_id: Optional[int],
    ) -> Tuple[Assignment, ...]:
        remaining = [assignment for assignment in current.assignments if assignment.employee_id != moved_from]
        if employee_id is None:
            return tuple(remaining)
        employee_id = coerce_employee_id(employee_id)
        if any(assignment.employee_id == employee_id for assignment in remaining):
            raise IllegalDragTarget(
                f"Employee {employee_id} is already assigned to shift {current.key}.",
                shift_id=current.key,
                employee_id=employee_id,
            )
        incoming = Assignment(employee_id=employee_id, assigned_by=self.actor_id)
        if moved_from is None:
            return (incoming,) + tuple(remaining)
        # Keep the moved row in the same position so the primary employee stays primary.
        result: List[Assignment] = []
        for assignment in current.assignments:
            result.append(incoming if assignment.employee_id == moved_from else assignment)
        return tuple(result)

    def unassign(self, key, *, source_employee_id: Optional[int] = None) -> Shift:
        current = self.get(key)
        if current.is_unassigned:
            raise IllegalDragTarget("Shift is already unassigned.", shift_id=current.key)
        return self.move_shift(key, None, current.date, source_employee_id=source_employee_id)

    def swap_shifts(self, key_a, key_b) -> Tuple[Shift, Shift]:
        """Exchange the (employee, date) cells of two shifts; each keeps its own content."""
        first = self.get(key_a)
        second = self.get(key_b)
        if first.key == second.key:
            raise IllegalDragTarget("A shift cannot be swapped with itself.", shift_id=first.key)
        if not validate_drag_operation(column_id(first), column_id(second)):
            raise IllegalDragTarget(
                "Both shifts already occupy the same cell.",
                shift_id=first.key,
                other_shift_id=second.key,
            )
        exchange_names = first.is_unassigned or second.is_unassigned
        new_first = first.with_changes(
            date=second.date,
            assignments=second.assignments,
            name=second.name if exchange_names else first.name,
        )
        new_second = second.with_changes(
            date=first.date,
            assignments=first.assignments,
            name=first.name if exchange_names else second.name,
        )
        validate_shift(new_first)
        validate_shift(new_second)
        others = self._others(first.key, second.key)
        self._guard_overlaps(new_first, others + [new_second])
        self._guard_overlaps(new_second, others + [new_first])
        first_id = self._require_persisted(first)
        second_id = self._require_persisted(second)

        before = self._shifts
        self._commit(put=[new_first, new_second])
        self._pending.update({first.key, second.key})
        try:
            persisted_first = self._persistence.update_shift(first_id, shift_patch(first, new_first))
            persisted_second = self._persistence.update_shift(second_id, shift_patch(second, new_second))
        except PersistenceFailure as exc:
            self._recover(before, exc)
            raise
        self._pending.difference_update({first.key, second.key})
        self._commit(put=[persisted_first, persisted_second])
        return persisted_first, persisted_second

    def publish_drafts(self, keys: Optional[Iterable[Any]] = None) -> List[Shift]:
        targets = [self.get(key) for key in keys] if keys is not None else self.shifts(status="draft")
        return [self.update(shift.key, {"status": "published"}) for shift in targets if shift.is_draft]
