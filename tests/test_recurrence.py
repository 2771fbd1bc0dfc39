from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from errors import EmptyRecurrenceSelection, InvalidShiftDefinition, InvalidTimeRange  # noqa: E402
from recurrence import RepeatRule, expand_dates, generate_recurring  # noqa: E402
from shifts import Shift, build_assignments  # noqa: E402

MONDAY = datetime.date(2025, 1, 6)


def _base(**changes) -> Shift:
    shift = Shift(
        id=None,
        temp_id="tmp-base",
        date=MONDAY,
        start_time=datetime.time(9, 0),
        end_time=datetime.time(17, 0),
        break_duration_minutes=30,
        client_id=4,
        position="Guard",
        notes="Front desk",
        assignments=build_assignments([7]),
    )
    return shift.with_changes(**changes) if changes else shift


def test_weekdays_over_one_week_yield_monday_to_friday() -> None:
    rule = RepeatRule.parse("weekdays", "2025-01-12")
    instances = generate_recurring(_base(), rule)

    assert [shift.date for shift in instances] == [MONDAY + datetime.timedelta(days=offset) for offset in range(5)]


def test_weekly_over_three_weeks_yields_three_mondays_with_identical_content() -> None:
    rule = RepeatRule.parse("weekly", datetime.date(2025, 1, 26))
    instances = generate_recurring(_base(), rule)

    assert [shift.date for shift in instances] == [
        datetime.date(2025, 1, 6),
        datetime.date(2025, 1, 13),
        datetime.date(2025, 1, 20),
    ]
    for shift in instances:
        assert shift.start_time == datetime.time(9, 0)
        assert shift.end_time == datetime.time(17, 0)
        assert shift.break_duration_minutes == 30
        assert shift.client_id == 4
        assert shift.employee_ids == (7,)
        assert shift.id is None
    assert len({shift.temp_id for shift in instances}) == 3
    assert "tmp-base" not in {shift.temp_id for shift in instances}


def test_daily_and_custom_rules() -> None:
    daily = expand_dates(MONDAY, RepeatRule.parse("daily", "2025-01-08"))
    assert daily == [MONDAY, MONDAY + datetime.timedelta(days=1), MONDAY + datetime.timedelta(days=2)]

    custom = expand_dates(MONDAY, RepeatRule.parse("custom-days", "2025-01-19", days=[5, 0, 5]))
    assert custom == [
        datetime.date(2025, 1, 6),
        datetime.date(2025, 1, 11),
        datetime.date(2025, 1, 13),
        datetime.date(2025, 1, 18),
    ]


def test_never_returns_the_base_unchanged() -> None:
    base = _base()
    assert generate_recurring(base, RepeatRule.parse("never")) == [base]


def test_custom_without_days_is_an_empty_selection() -> None:
    with pytest.raises(EmptyRecurrenceSelection):
        generate_recurring(_base(), RepeatRule.parse("custom", "2025-01-31", days=[]))


def test_custom_days_missing_from_range_is_an_empty_selection() -> None:
    # Tuesday base, range ends the same day, only Saturdays selected.
    base = _base(date=datetime.date(2025, 1, 7))
    with pytest.raises(EmptyRecurrenceSelection):
        generate_recurring(base, RepeatRule.parse("custom", "2025-01-07", days=[5]))


def test_end_before_base_produces_no_instances() -> None:
    with pytest.raises(EmptyRecurrenceSelection):
        generate_recurring(_base(), RepeatRule.parse("daily", "2025-01-01"))


def test_rules_other_than_never_need_an_end_date() -> None:
    with pytest.raises(InvalidShiftDefinition):
        generate_recurring(_base(), RepeatRule.parse("weekly"))


def test_unknown_rule_and_bad_days_are_rejected() -> None:
    with pytest.raises(InvalidShiftDefinition):
        RepeatRule.parse("fortnightly", "2025-02-01")
    with pytest.raises(InvalidShiftDefinition):
        RepeatRule.parse("custom", "2025-02-01", days=[7])
    with pytest.raises(InvalidShiftDefinition):
        RepeatRule.parse("custom", "2025-02-01", days=5)
    with pytest.raises(InvalidShiftDefinition):
        RepeatRule.parse("custom", "2025-02-01", days="0,2")
    with pytest.raises(InvalidShiftDefinition):
        RepeatRule.parse("custom", "2025-02-01", days=["Mon"])
    with pytest.raises(InvalidShiftDefinition):
        RepeatRule.parse(3, "2025-02-01")


def test_invalid_base_time_range_is_rejected_before_expansion() -> None:
    base = _base(start_time=datetime.time(17, 0), end_time=datetime.time(9, 0))
    with pytest.raises(InvalidTimeRange):
        generate_recurring(base, RepeatRule.parse("daily", "2025-01-10"))


def test_instance_cap() -> None:
    with pytest.raises(InvalidShiftDefinition):
        generate_recurring(_base(), RepeatRule.parse("daily", "2025-03-01"), max_instances=10)


def test_describe() -> None:
    assert RepeatRule.parse("custom", "2025-02-01", days=[0, 2]).describe() == "custom (Mon, Wed)"
    assert RepeatRule.parse("none").describe() == "never"
