"""Column addressing and drag/drop legality checks for the schedule grid.

A column address is the (employee-or-unassigned, date) cell a shift currently
occupies. Everything in this module is a pure function of its arguments so a
UI binding can short-circuit an illegal drop without touching the store.
"""

from __future__ import annotations

import dataclasses
import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Union

from shifts import UNASSIGNED, Employee, Shift, shifts_overlap


DRAG_SHIFT = "shift"
DRAG_UNASSIGNED_SHIFT = "unassigned_shift"
DRAG_DRAFT_SHIFT = "draft_shift"


@dataclasses.dataclass(frozen=True)
class ColumnAddress:
    owner: Union[int, str]
    date: datetime.date

    @property
    def is_unassigned(self) -> bool:
        return isinstance(self.owner, str) and self.owner.startswith(f"{UNASSIGNED}-")

    @property
    def employee_id(self) -> Optional[int]:
        return None if self.is_unassigned else int(self.owner)

    def label(self) -> str:
        return f"{self.owner}-{self.date.isoformat()}"


def unassigned_owner(shift: Shift) -> str:
    return f"{UNASSIGNED}-{shift.name or shift.key}"


def column_id(
    shift: Shift,
    employee_id: Optional[int] = None,
    date: Optional[datetime.date] = None,
) -> ColumnAddress:
    """Return the cell ``shift`` occupies, or would occupy with the given overrides."""
    cell_date = date if date is not None else shift.date
    if employee_id is not None:
        return ColumnAddress(int(employee_id), cell_date)
    if shift.assignments:
        return ColumnAddress(shift.assignments[0].employee_id, cell_date)
    return ColumnAddress(unassigned_owner(shift), cell_date)


def validate_drag_operation(source: ColumnAddress, target: ColumnAddress) -> bool:
    return source != target


def drag_kind(shift: Shift) -> str:
    if shift.status == "draft":
        return DRAG_DRAFT_SHIFT
    if shift.is_unassigned:
        return DRAG_UNASSIGNED_SHIFT
    return DRAG_SHIFT


@dataclasses.dataclass(frozen=True)
class DragItem:
    kind: str
    shift: Shift
    source: ColumnAddress
    source_employee_id: Optional[int] = None

    @property
    def source_date(self) -> datetime.date:
        return self.shift.date


def create_drag_item(
    shift: Shift,
    employee_id: Optional[int] = None,
    date: Optional[datetime.date] = None,
) -> DragItem:
    # A multi-employee shift is dragged out of the row it was grabbed from.
    return DragItem(
        kind=drag_kind(shift),
        shift=shift,
        source=column_id(shift, employee_id, date),
        source_employee_id=employee_id if employee_id is not None else shift.primary_employee_id,
    )


def can_drop_shift(
    item: DragItem,
    target_employee_id: Optional[int] = None,
    target_date: Optional[datetime.date] = None,
    target_shift: Optional[Shift] = None,
) -> bool:
    if target_shift is not None:
        return can_swap_shifts(item.shift, target_shift)
    if target_employee_id is None or target_date is None:
        return can_move_to_unassigned(item)
    return validate_drag_operation(item.source, ColumnAddress(int(target_employee_id), target_date))


def can_move_to_unassigned(item: DragItem) -> bool:
    return not item.shift.is_unassigned


def can_swap_shifts(first: Shift, second: Shift) -> bool:
    if first.key == second.key:
        return False
    return validate_drag_operation(column_id(first), column_id(second))


@dataclasses.dataclass(frozen=True)
class DropPreview:
    is_valid: bool
    message: str
    operation: str


def _employee_name(employees: Dict[int, Employee], employee_id: Optional[int]) -> str:
    if employee_id is None:
        return "Unassigned"
    employee = employees.get(employee_id)
    return employee.display_name if employee else "Unknown Employee"


def drop_preview(
    item: DragItem,
    target_employee_id: Optional[int] = None,
    target_date: Optional[datetime.date] = None,
    target_shift: Optional[Shift] = None,
    employees: Optional[Iterable[Employee]] = None,
) -> DropPreview:
    """Describe what dropping ``item`` on the target would do."""
    directory = {employee.id: employee for employee in employees or []}
    if target_shift is not None:
        if can_swap_shifts(item.shift, target_shift):
            source_name = _employee_name(directory, item.shift.primary_employee_id)
            target_name = _employee_name(directory, target_shift.primary_employee_id)
            return DropPreview(True, f"Swap {source_name}'s shift with {target_name}'s shift", "swap")
        return DropPreview(False, "Cannot swap these shifts", "invalid")
    if target_employee_id is not None and target_date is not None:
        if can_drop_shift(item, target_employee_id, target_date):
            return DropPreview(True, f"Assign shift to {_employee_name(directory, target_employee_id)}", "move")
        return DropPreview(False, "Cannot move shift to this position", "invalid")
    if can_move_to_unassigned(item):
        return DropPreview(True, "Convert to unassigned shift", "unassign")
    return DropPreview(False, "Invalid drop operation", "invalid")


def has_time_conflict(first: Shift, second: Shift) -> bool:
    return shifts_overlap(first, second)


def group_by_column(shifts: Sequence[Shift]) -> Dict[ColumnAddress, List[Shift]]:
    """Index shifts by every cell they occupy (a shared shift lands in each employee's row)."""
    grouped: Dict[ColumnAddress, List[Shift]] = {}
    for shift in shifts:
        if shift.is_unassigned:
            grouped.setdefault(column_id(shift), []).append(shift)
            continue
        for employee_id in shift.employee_ids:
            grouped.setdefault(ColumnAddress(employee_id, shift.date), []).append(shift)
    return grouped
