from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from errors import InvalidTimeRange  # noqa: E402
from grid import GridFilters, calculate_stats, dates_in_range, is_night_shift, project, visible_week  # noqa: E402
from shifts import Employee, Shift, build_assignments  # noqa: E402

MONDAY = datetime.date(2025, 1, 6)
TUESDAY = datetime.date(2025, 1, 7)

EMPLOYEES = [
    Employee(id=7, display_name="Ana Diaz", position="Guard", email="ana@example.com"),
    Employee(id=8, display_name="Ben Ito", position="Supervisor", email="ben@example.com"),
]


def _shift(shift_id, employee_ids=(), *, day=MONDAY, start=(9, 0), end=(17, 0), **extra):
    return Shift(
        id=shift_id,
        date=day,
        start_time=datetime.time(*start),
        end_time=datetime.time(*end),
        break_duration_minutes=extra.pop("break_minutes", 0),
        client_id=extra.pop("client_id", 4),
        status=extra.pop("status", "published"),
        assignments=build_assignments(employee_ids),
        **extra,
    )


def test_cells_hold_every_shift_for_employee_and_date_in_start_order() -> None:
    late = _shift(1, [7], start=(18, 0), end=(22, 0))
    early = _shift(2, [7], start=(6, 0), end=(10, 0))
    shared = _shift(3, [7, 8], day=TUESDAY)
    open_shift = _shift(4, name="Open", day=TUESDAY)

    grid = project([late, early, shared, open_shift], EMPLOYEES, visible_week(MONDAY))

    assert len(grid.dates) == 7
    assert grid.employee_ids() == [7, 8]
    assert grid.cell(7, MONDAY) == [early, late]
    assert grid.cell(7, TUESDAY) == [shared]
    assert grid.cell(8, TUESDAY) == [shared]
    assert grid.cell(8, MONDAY) == []
    assert grid.unassigned[TUESDAY] == [open_shift]
    assert grid.rows[0].shift_count == 3


def test_shifts_outside_visible_dates_are_ignored() -> None:
    grid = project([_shift(1, [7], day=datetime.date(2025, 1, 20))], EMPLOYEES, visible_week(MONDAY))
    assert all(not grid.cell(7, day) for day in grid.dates)
    assert grid.stats.total_shifts == 0


def test_filters_narrow_rows_and_shifts() -> None:
    shifts = [_shift(1, [7]), _shift(2, [8], client_id=5)]

    by_search = project(shifts, EMPLOYEES, [MONDAY], GridFilters(search="BEN@"))
    assert by_search.employee_ids() == [8]

    by_department = project(shifts, EMPLOYEES, [MONDAY], GridFilters(department="Guard"))
    assert by_department.employee_ids() == [7]

    everyone = project(shifts, EMPLOYEES, [MONDAY], GridFilters(department="All"))
    assert everyone.employee_ids() == [7, 8]

    by_client = project(shifts, EMPLOYEES, [MONDAY], GridFilters(client_id=5))
    assert by_client.cell(7, MONDAY) == []
    assert [shift.id for shift in by_client.cell(8, MONDAY)] == [2]


def test_stats() -> None:
    shifts = [
        _shift(1, [7], start=(22, 0), end=(23, 30)),
        _shift(2, [7], day=TUESDAY, break_minutes=60),
        _shift(3, [8], status="draft"),
        _shift(4, name="Open"),
    ]
    stats = calculate_stats(shifts)

    assert stats.total_shifts == 4
    assert stats.night_shifts == 1
    assert stats.draft_shifts == 1
    assert stats.unassigned_shifts == 1
    # Published shift counts: employee 7 has two, employee 8 none (draft only).
    assert stats.balance_score == 100
    assert stats.avg_hours == round((1.5 + 7 + 8 + 8) / 4, 1)
    assert stats.to_payload()["totalShifts"] == 4


def test_balance_score_compares_least_and_most_loaded_employee() -> None:
    shifts = [_shift(1, [7]), _shift(2, [7], day=TUESDAY), _shift(3, [8])]
    assert calculate_stats(shifts).balance_score == 50


def test_night_shift_window_is_configurable() -> None:
    shift = _shift(1, [7], start=(20, 0), end=(23, 0))
    assert not is_night_shift(shift)
    assert is_night_shift(shift, night_start_hour=20)


def test_date_range_helpers() -> None:
    assert dates_in_range(MONDAY, MONDAY) == [MONDAY]
    assert len(dates_in_range(MONDAY, datetime.date(2025, 1, 31))) == 26
    with pytest.raises(InvalidTimeRange):
        dates_in_range(TUESDAY, MONDAY)


def test_payload_uses_iso_dates() -> None:
    grid = project([_shift(1, [7])], EMPLOYEES, [MONDAY])
    payload = grid.to_payload()
    assert payload["dates"] == ["2025-01-06"]
    assert payload["rows"][0]["cells"]["2025-01-06"][0]["start_time"] == "09:00"
    assert payload["rows"][0]["employee"]["displayName"] == "Ana Diaz"
    assert payload["stats"]["totalShifts"] == 1
