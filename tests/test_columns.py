from __future__ import annotations

import datetime
import sys
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from columns import (  # noqa: E402
    DRAG_DRAFT_SHIFT,
    DRAG_SHIFT,
    DRAG_UNASSIGNED_SHIFT,
    ColumnAddress,
    can_drop_shift,
    can_move_to_unassigned,
    can_swap_shifts,
    column_id,
    create_drag_item,
    drag_kind,
    drop_preview,
    group_by_column,
    validate_drag_operation,
)
from shifts import Employee, Shift, build_assignments  # noqa: E402

MONDAY = datetime.date(2025, 1, 6)


def _shift(shift_id, employee_ids=(), *, day=MONDAY, start=(9, 0), end=(17, 0), name=None, status="published"):
    return Shift(
        id=shift_id,
        date=day,
        start_time=datetime.time(*start),
        end_time=datetime.time(*end),
        client_id=4,
        status=status,
        name=name,
        assignments=build_assignments(employee_ids),
    )


def test_same_column_is_never_a_legal_drop() -> None:
    shift = _shift(1, [7])
    assert validate_drag_operation(column_id(shift), column_id(shift)) is False
    unassigned = _shift(2, name="Opening")
    assert validate_drag_operation(column_id(unassigned), column_id(unassigned)) is False


def test_column_id_for_assigned_and_unassigned_shifts() -> None:
    assigned = _shift(1, [7, 8])
    assert column_id(assigned) == ColumnAddress(7, MONDAY)
    assert column_id(assigned, employee_id=8) == ColumnAddress(8, MONDAY)

    unassigned = _shift(2, name="Opening")
    address = column_id(unassigned)
    assert address.is_unassigned
    assert address.employee_id is None
    assert address.owner == "unassigned-Opening"
    assert address.label() == "unassigned-Opening-2025-01-06"


def test_different_date_or_employee_is_a_legal_drop() -> None:
    shift = _shift(1, [7])
    source = column_id(shift)
    assert validate_drag_operation(source, ColumnAddress(7, MONDAY + datetime.timedelta(days=1)))
    assert validate_drag_operation(source, ColumnAddress(8, MONDAY))


def test_drag_kinds() -> None:
    assert drag_kind(_shift(1, [7])) == DRAG_SHIFT
    assert drag_kind(_shift(2, name="Open")) == DRAG_UNASSIGNED_SHIFT
    assert drag_kind(_shift(3, [7], status="draft")) == DRAG_DRAFT_SHIFT


def test_drop_rules_and_previews() -> None:
    employees = [Employee(id=7, display_name="Ana Diaz"), Employee(id=8, display_name="Ben Ito")]
    first = _shift(1, [7])
    second = _shift(2, [8], day=MONDAY + datetime.timedelta(days=1))
    item = create_drag_item(first)

    assert not can_drop_shift(item, 7, MONDAY)
    assert can_drop_shift(item, 8, MONDAY)
    assert can_move_to_unassigned(item)
    assert can_swap_shifts(first, second)
    assert not can_swap_shifts(first, first)

    move = drop_preview(item, 8, MONDAY, employees=employees)
    assert move.is_valid and move.operation == "move"
    assert "Ben Ito" in move.message

    swap = drop_preview(item, target_shift=second, employees=employees)
    assert swap.operation == "swap"
    assert swap.message == "Swap Ana Diaz's shift with Ben Ito's shift"

    assert drop_preview(item).operation == "unassign"
    assert drop_preview(item, 7, MONDAY).operation == "invalid"

    unassigned_item = create_drag_item(_shift(3, name="Open"))
    assert not can_move_to_unassigned(unassigned_item)
    assert drop_preview(unassigned_item).is_valid is False


def test_group_by_column_lists_shared_shift_in_every_row() -> None:
    shared = _shift(1, [7, 8])
    open_shift = _shift(2, name="Open")
    grouped = group_by_column([shared, open_shift])

    assert grouped[ColumnAddress(7, MONDAY)] == [shared]
    assert grouped[ColumnAddress(8, MONDAY)] == [shared]
    assert grouped[column_id(open_shift)] == [open_shift]
