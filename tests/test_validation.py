from __future__ import annotations

import datetime
import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from policy import build_default_policy  # noqa: E402
from shifts import Employee, Shift, build_assignments  # noqa: E402
from validation import overlap_messages, validate_week_schedule  # noqa: E402

EMPLOYEES = [
    Employee(id=1, display_name="Avery Stone"),
    Employee(id=2, display_name="Blair Chen"),
]


class ScheduleValidationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.week_start = datetime.date(2024, 4, 1)
        self._next_id = 1

    def _add_shift(self, day_offset, start_hour, end_hour, employee_ids=(), *, name=None, break_minutes=0):
        shift = Shift(
            id=self._next_id,
            date=self.week_start + datetime.timedelta(days=day_offset),
            start_time=datetime.time(start_hour, 0),
            end_time=datetime.time(end_hour, 0),
            break_duration_minutes=break_minutes,
            status="published",
            name=name,
            assignments=build_assignments(employee_ids),
        )
        self._next_id += 1
        return shift

    def _types(self, entries):
        return [entry["type"] for entry in entries]

    def test_clean_week_passes_every_check(self) -> None:
        shifts = [self._add_shift(day, 9, 17, [1]) for day in range(5)]
        report = validate_week_schedule(shifts, self.week_start, employees=EMPLOYEES)

        self.assertEqual(report["issues"], [])
        self.assertEqual(report["warnings"], [])
        self.assertEqual(report["week_start"], "2024-04-01")
        self.assertEqual(report["week_end"], "2024-04-07")
        self.assertTrue(all(check["status"] == "ok" for check in report["checks"]))

    def test_empty_week_fails_scheduled_check(self) -> None:
        report = validate_week_schedule([], self.week_start)
        scheduled = report["checks"][0]
        self.assertEqual(scheduled["label"], "Shifts scheduled?")
        self.assertEqual(scheduled["status"], "fail")

    def test_overlapping_shifts_are_reported_as_errors(self) -> None:
        shifts = [self._add_shift(0, 9, 13, [1]), self._add_shift(0, 12, 16, [1, 2])]
        report = validate_week_schedule(shifts, self.week_start, employees=EMPLOYEES)

        self.assertEqual(self._types(report["issues"]), ["overlap"])
        issue = report["issues"][0]
        self.assertEqual(issue["employee"], "Avery Stone")
        self.assertEqual(issue["shift_ids"], [1, 2])
        self.assertEqual(issue["day"], "Mon")
        overlap_check = next(check for check in report["checks"] if check["label"] == "No double bookings?")
        self.assertEqual(overlap_check["status"], "fail")

    def test_adjacent_shifts_do_not_overlap(self) -> None:
        shifts = [self._add_shift(0, 8, 12, [1]), self._add_shift(0, 12, 16, [1])]
        report = validate_week_schedule(shifts, self.week_start)
        self.assertEqual(report["issues"], [])

    def test_weekly_hours_over_limit_warns(self) -> None:
        shifts = [self._add_shift(day, 9, 17, [1]) for day in range(6)]
        report = validate_week_schedule(shifts, self.week_start, employees=EMPLOYEES)

        weekly = [entry for entry in report["warnings"] if entry["type"] == "weekly_hours"]
        self.assertEqual(len(weekly), 1)
        self.assertEqual(weekly[0]["hours"], 48)
        self.assertIn("exceeds 40-hour limit by 8", weekly[0]["message"])

    def test_policy_limits_are_respected(self) -> None:
        policy = build_default_policy()
        policy["compliance"]["max_weekly_hours"] = 50
        shifts = [self._add_shift(day, 9, 17, [1]) for day in range(6)]
        report = validate_week_schedule(shifts, self.week_start, policy=policy)
        self.assertNotIn("weekly_hours", self._types(report["warnings"]))

    def test_long_shift_and_short_rest_warn(self) -> None:
        shifts = [
            self._add_shift(0, 10, 23, [2], break_minutes=60),
            self._add_shift(1, 5, 9, [2]),
        ]
        report = validate_week_schedule(shifts, self.week_start, employees=EMPLOYEES)

        types = self._types(report["warnings"])
        self.assertIn("shift_length", types)
        self.assertIn("rest", types)
        rest = next(entry for entry in report["warnings"] if entry["type"] == "rest")
        self.assertEqual(rest["rest_hours"], 6)
        self.assertEqual(rest["employee"], "Blair Chen")

    def test_unassigned_shifts_warn(self) -> None:
        shifts = [self._add_shift(2, 9, 12, name="Lobby cover")]
        report = validate_week_schedule(shifts, self.week_start)
        self.assertEqual(self._types(report["warnings"]), ["assignment"])
        self.assertIn("Lobby cover", report["warnings"][0]["message"])

    def test_missing_employees_only_checked_with_a_directory(self) -> None:
        shifts = [self._add_shift(0, 9, 12, [99])]

        without_directory = validate_week_schedule(shifts, self.week_start)
        self.assertEqual(without_directory["issues"], [])

        with_directory = validate_week_schedule(shifts, self.week_start, employees=EMPLOYEES)
        self.assertEqual(self._types(with_directory["issues"]), ["employee"])
        self.assertEqual(with_directory["issues"][0]["shift_ids"], [1])

    def test_shifts_outside_the_week_are_ignored(self) -> None:
        shifts = [self._add_shift(7, 9, 13, [1]), self._add_shift(7, 10, 14, [1])]
        report = validate_week_schedule(shifts, self.week_start + datetime.timedelta(days=3))
        self.assertEqual(report["issues"], [])
        self.assertEqual(report["week_start"], "2024-04-01")

    def test_overlap_messages(self) -> None:
        other = self._add_shift(0, 9, 13, [1])
        directory = {employee.id: employee for employee in EMPLOYEES}
        self.assertEqual(
            overlap_messages([(1, other), (5, other)], directory),
            [
                "Avery Stone is already scheduled 09:00-13:00 on 2024-04-01.",
                "Employee 5 is already scheduled 09:00-13:00 on 2024-04-01.",
            ],
        )


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
