from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path
from typing import Any, Dict, List

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from columns import column_id  # noqa: E402
from errors import (  # noqa: E402
    IllegalDragTarget,
    InvalidShiftDefinition,
    InvalidTimeRange,
    OverlappingAssignment,
    PersistenceFailure,
    ShiftNotFound,
)
from shifts import Shift, build_assignments  # noqa: E402
from store import OVERLAP_STRICT, ShiftAssignmentStore  # noqa: E402

MONDAY = datetime.date(2025, 1, 6)
TUESDAY = datetime.date(2025, 1, 7)


class FakePersistence:
    """In-memory stand-in for the shift API with switchable failures."""

    def __init__(self) -> None:
        self.rows: Dict[int, Shift] = {}
        self.next_id = 1
        self.fail_writes = False
        self.fail_reads = False
        self.calls: List[str] = []

    def _build(self, shift_id: int, payload: Dict[str, Any]) -> Shift:
        data = dict(payload)
        data.pop("employee_ids", None)
        data.pop("temp_id", None)
        data["id"] = shift_id
        return Shift.from_payload(data)

    def seed(self, shift: Shift) -> Shift:
        stored = shift.with_changes(id=self.next_id, temp_id=None)
        self.rows[stored.id] = stored
        self.next_id += 1
        return stored

    def list_shifts(self, start_date, end_date, *, employee_id=None, client_id=None, status=None):
        self.calls.append("list")
        if self.fail_reads:
            raise PersistenceFailure("list unavailable")
        return [shift for shift in self.rows.values() if start_date <= shift.date <= end_date]

    def create_shift(self, payload):
        self.calls.append("create")
        if self.fail_writes:
            raise PersistenceFailure("create rejected")
        shift = self._build(self.next_id, payload)
        self.rows[shift.id] = shift
        self.next_id += 1
        return shift

    def update_shift(self, shift_id, patch):
        self.calls.append("update")
        if self.fail_writes or shift_id not in self.rows:
            raise PersistenceFailure("update rejected")
        merged = self.rows[shift_id].to_payload()
        merged.update(patch)
        self.rows[shift_id] = self._build(shift_id, merged)
        return self.rows[shift_id]

    def delete_shift(self, shift_id):
        self.calls.append("delete")
        if self.fail_writes or shift_id not in self.rows:
            raise PersistenceFailure("delete rejected")
        del self.rows[shift_id]


def make_shift(employee_ids=(), *, day=MONDAY, start=(9, 0), end=(17, 0), name=None, status="published", **extra):
    return Shift(
        id=None,
        date=day,
        start_time=datetime.time(*start),
        end_time=datetime.time(*end),
        break_duration_minutes=extra.pop("break_minutes", 30),
        client_id=extra.pop("client_id", 4),
        status=status,
        name=name,
        assignments=build_assignments(employee_ids),
        **extra,
    )


class ShiftAssignmentStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.persistence = FakePersistence()
        self.store = ShiftAssignmentStore(self.persistence, actor_id=1)

    def _load(self) -> None:
        self.store.load(MONDAY, MONDAY + datetime.timedelta(days=6))

    def _seeded(self, *shifts: Shift) -> List[Shift]:
        stored = [self.persistence.seed(shift) for shift in shifts]
        self._load()
        return stored

    def test_load_rejects_reversed_window(self) -> None:
        with self.assertRaises(InvalidTimeRange):
            self.store.load(TUESDAY, MONDAY)
        self.assertIsNone(self.store.window)

    def test_create_persists_and_replaces_draft(self) -> None:
        self._load()
        created = self.store.create(make_shift(), employee_ids=[7])

        self.assertEqual(created.id, 1)
        self.assertEqual(created.employee_ids, (7,))
        self.assertEqual(len(self.store), 1)
        self.assertIn(1, self.store)
        self.assertFalse(self.store.pending)

    def test_unassigned_shift_needs_a_name(self) -> None:
        self._load()
        with self.assertRaises(InvalidShiftDefinition):
            self.store.create(make_shift())
        self.assertEqual(len(self.store), 0)
        self.assertNotIn("create", self.persistence.calls)

        created = self.store.create(make_shift(name="Front desk"))
        self.assertTrue(created.is_unassigned)

    def test_invalid_time_range_is_rejected_without_mutation(self) -> None:
        self._load()
        revision = self.store.revision
        with self.assertRaises(InvalidTimeRange):
            self.store.create(make_shift(start=(17, 0), end=(9, 0)), employee_ids=[7])
        with self.assertRaises(InvalidTimeRange):
            self.store.create(make_shift(start=(9, 0), end=(10, 0), break_minutes=90), employee_ids=[7])
        self.assertEqual(self.store.revision, revision)
        self.assertEqual(len(self.store), 0)

    def test_move_keeps_time_break_client_and_identity(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        moved = self.store.move_shift(shift.id, 8, TUESDAY)

        self.assertEqual(moved.id, shift.id)
        self.assertEqual(moved.start_time, shift.start_time)
        self.assertEqual(moved.end_time, shift.end_time)
        self.assertEqual(moved.break_duration_minutes, shift.break_duration_minutes)
        self.assertEqual(moved.client_id, shift.client_id)
        self.assertEqual(moved.employee_ids, (8,))
        self.assertEqual(moved.date, TUESDAY)
        self.assertEqual(len(self.store), 1)

    def test_move_onto_own_cell_is_rejected(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        revision = self.store.revision
        with self.assertRaises(IllegalDragTarget):
            self.store.move_shift(shift.id, 7, MONDAY)
        self.assertEqual(self.store.revision, revision)
        self.assertNotIn("update", self.persistence.calls)

    def test_move_unassigned_shift_to_employee(self) -> None:
        (shift,) = self._seeded(make_shift(name="Open"))
        moved = self.store.move_shift(shift.id, 9, MONDAY)
        self.assertEqual(moved.employee_ids, (9,))
        self.assertFalse(moved.is_unassigned)

    def test_unassign_names_the_placeholder(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        moved = self.store.unassign(shift.id)
        self.assertTrue(moved.is_unassigned)
        self.assertEqual(moved.name, "Shift Jan 6")
        with self.assertRaises(IllegalDragTarget):
            self.store.unassign(shift.id)

    def test_move_of_shared_shift_only_moves_the_dragged_row(self) -> None:
        (shift,) = self._seeded(make_shift([7, 8]))
        moved = self.store.move_shift(shift.id, 9, MONDAY, source_employee_id=8)
        self.assertEqual(moved.employee_ids, (7, 9))
        with self.assertRaises(IllegalDragTarget):
            self.store.move_shift(shift.id, 10, MONDAY, source_employee_id=8)

    def test_move_onto_employee_already_on_shared_shift_is_rejected(self) -> None:
        (shift,) = self._seeded(make_shift([1, 2]))
        revision = self.store.revision
        with self.assertRaises(IllegalDragTarget):
            self.store.move_shift(shift.id, 2, MONDAY, source_employee_id=1)
        self.assertEqual(self.store.get(shift.id).employee_ids, (1, 2))
        self.assertEqual(self.store.revision, revision)
        self.assertNotIn("update", self.persistence.calls)

    def test_move_with_non_numeric_employee_is_rejected(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        with self.assertRaises(InvalidShiftDefinition):
            self.store.move_shift(shift.id, "abc", TUESDAY)
        self.assertEqual(self.store.get(shift.id).date, MONDAY)

    def test_swap_twice_restores_both_cells(self) -> None:
        first, second = self._seeded(make_shift([7]), make_shift([8], day=TUESDAY, start=(12, 0), end=(20, 0)))
        before = (column_id(first), column_id(second))

        swapped_first, swapped_second = self.store.swap_shifts(first.id, second.id)
        self.assertEqual(column_id(swapped_first), before[1])
        self.assertEqual(column_id(swapped_second), before[0])
        self.assertEqual(swapped_first.start_time, datetime.time(9, 0))
        self.assertEqual(swapped_second.start_time, datetime.time(12, 0))

        self.store.swap_shifts(first.id, second.id)
        self.assertEqual(column_id(self.store.get(first.id)), before[0])
        self.assertEqual(column_id(self.store.get(second.id)), before[1])

    def test_swap_with_unassigned_shift_exchanges_placeholder_name(self) -> None:
        assigned, open_shift = self._seeded(make_shift([7]), make_shift(name="Open", day=TUESDAY))
        new_assigned, new_open = self.store.swap_shifts(assigned.id, open_shift.id)

        self.assertTrue(new_assigned.is_unassigned)
        self.assertEqual(new_assigned.name, "Open")
        self.assertEqual(new_assigned.date, TUESDAY)
        self.assertEqual(new_open.employee_ids, (7,))
        self.assertEqual(new_open.date, MONDAY)

    def test_illegal_swaps(self) -> None:
        first, second = self._seeded(make_shift([7]), make_shift([7], start=(18, 0), end=(22, 0)))
        with self.assertRaises(IllegalDragTarget):
            self.store.swap_shifts(first.id, first.id)
        with self.assertRaises(IllegalDragTarget):
            self.store.swap_shifts(first.id, second.id)
        with self.assertRaises(ShiftNotFound):
            self.store.swap_shifts(first.id, 99)

    def test_strict_overlap_mode_rejects_double_booking(self) -> None:
        store = ShiftAssignmentStore(self.persistence, overlap_mode=OVERLAP_STRICT)
        store.load(MONDAY, TUESDAY)
        store.create(make_shift([7]))
        with self.assertRaises(OverlappingAssignment):
            store.create(make_shift([7], start=(12, 0), end=(20, 0)))
        self.assertEqual(len(store), 1)

    def test_advisory_overlap_mode_reports_conflicts(self) -> None:
        self._load()
        first = self.store.create(make_shift([7]))
        second = self.store.create(make_shift([7], start=(12, 0), end=(20, 0)))
        conflicts = self.store.overlaps_for(second)
        self.assertEqual(conflicts, [(7, first)])

    def test_rejected_write_reloads_authoritative_state(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        self.persistence.fail_writes = True

        with self.assertRaises(PersistenceFailure):
            self.store.move_shift(shift.id, 8, TUESDAY)

        self.assertEqual(self.store.get(shift.id), self.persistence.rows[shift.id])
        self.assertEqual(self.store.get(shift.id).date, MONDAY)
        self.assertFalse(self.store.pending)
        self.assertEqual(self.persistence.calls[-1], "list")

    def test_rejected_create_drops_the_optimistic_draft(self) -> None:
        self._load()
        self.persistence.fail_writes = True
        with self.assertRaises(PersistenceFailure):
            self.store.create(make_shift([7]))
        self.assertEqual(len(self.store), 0)

    def test_failed_reload_restores_pre_write_view(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        self.persistence.fail_writes = True
        self.persistence.fail_reads = True

        with self.assertRaises(PersistenceFailure):
            self.store.delete(shift.id)
        self.assertEqual(self.store.get(shift.id), shift)

    def test_update_and_delete(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        updated = self.store.update(shift.id, {"end_time": "18:00", "notes": "Inventory", "employee_ids": [7, 8]})
        self.assertEqual(updated.end_time, datetime.time(18, 0))
        self.assertEqual(updated.notes, "Inventory")
        self.assertEqual(updated.employee_ids, (7, 8))

        with self.assertRaises(InvalidShiftDefinition):
            self.store.update(shift.id, {"color": "red"})
        with self.assertRaises(InvalidShiftDefinition):
            self.store.update(shift.id, {"client_id": "abc"})
        with self.assertRaises(InvalidShiftDefinition):
            self.store.update(shift.id, {"break_duration": "thirty"})
        with self.assertRaises(InvalidShiftDefinition):
            self.store.update(shift.id, {"employee_ids": ["abc"]})
        with self.assertRaises(InvalidShiftDefinition):
            self.store.update(shift.id, ["notes"])
        self.assertEqual(self.store.get(shift.id).client_id, 4)

        removed = self.store.delete(shift.id)
        self.assertEqual(removed.id, shift.id)
        self.assertNotIn(shift.id, self.store)
        self.assertNotIn(shift.id, self.persistence.rows)

    def test_empty_patch_skips_persistence(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        self.assertEqual(self.store.update(shift.id, {"notes": ""}), shift)
        self.assertNotIn("update", self.persistence.calls)

    def test_publish_drafts(self) -> None:
        self._seeded(make_shift([7], status="draft"), make_shift([8], status="draft"), make_shift([9]))
        published = self.store.publish_drafts()
        self.assertEqual(len(published), 2)
        self.assertFalse(self.store.shifts(status="draft"))

    def test_snapshot_is_unaffected_by_later_writes(self) -> None:
        (shift,) = self._seeded(make_shift([7]))
        snapshot = self.store.snapshot()
        self.store.move_shift(shift.id, 8, TUESDAY)
        self.assertEqual(snapshot[0].date, MONDAY)
        self.assertEqual(snapshot[0].employee_ids, (7,))

    def test_filtered_reads(self) -> None:
        self._seeded(
            make_shift([7]),
            make_shift([8], day=TUESDAY, client_id=5),
            make_shift(name="Open", day=TUESDAY),
        )
        self.assertEqual(len(self.store.shifts(employee_id=7)), 1)
        self.assertEqual(len(self.store.shifts(date=TUESDAY)), 2)
        self.assertEqual(len(self.store.shifts(client_id=5)), 1)
        self.assertEqual(len(self.store.shifts(unassigned=True)), 1)


if __name__ == "__main__":
    unittest.main()
