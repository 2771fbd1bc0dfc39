from __future__ import annotations

import dataclasses
import datetime
from typing import Iterable, List, Optional, Tuple

from errors import EmptyRecurrenceSelection, InvalidShiftDefinition
from shifts import DAY_NAMES, Shift, new_temp_id, parse_date, validate_shift


REPEAT_NEVER = "never"
REPEAT_DAILY = "daily"
REPEAT_WEEKLY = "weekly"
REPEAT_WEEKDAYS = "weekdays"
REPEAT_CUSTOM = "custom"
REPEAT_RULES = (REPEAT_NEVER, REPEAT_DAILY, REPEAT_WEEKLY, REPEAT_WEEKDAYS, REPEAT_CUSTOM)
_ALIASES = {"custom-days": REPEAT_CUSTOM, "custom_days": REPEAT_CUSTOM, "none": REPEAT_NEVER}


@dataclasses.dataclass(frozen=True)
class RepeatRule:
    """How a base shift repeats. ``days`` are weekday indices, 0 = Monday."""

    kind: str = REPEAT_NEVER
    end_date: Optional[datetime.date] = None
    days: Tuple[int, ...] = ()

    @classmethod
    def parse(
        cls,
        kind: str,
        end_date=None,
        days: Optional[Iterable[int]] = None,
    ) -> "RepeatRule":
        if kind is not None and not isinstance(kind, str):
            raise InvalidShiftDefinition(f"Repeat rule must be text, got {kind!r}.")
        requested = (kind or REPEAT_NEVER).strip().lower()
        normalized = _ALIASES.get(requested, requested)
        if normalized not in REPEAT_RULES:
            raise InvalidShiftDefinition(
                f"Unsupported repeat rule '{kind}'.",
                allowed=list(REPEAT_RULES),
            )
        if days is not None and not isinstance(days, (list, tuple, set, frozenset)):
            raise InvalidShiftDefinition(f"Repeat days must be a list of weekday indices, got {days!r}.")
        selected: List[int] = []
        for value in days or []:
            try:
                day = int(value)
            except (TypeError, ValueError):
                raise InvalidShiftDefinition(f"Repeat days must be integers 0-6, got {value!r}.")
            if not 0 <= day <= 6:
                raise InvalidShiftDefinition(f"Repeat days must be between 0 (Mon) and 6 (Sun), got {day}.")
            if day not in selected:
                selected.append(day)
        return cls(
            kind=normalized,
            end_date=parse_date(end_date) if end_date not in (None, "") else None,
            days=tuple(sorted(selected)),
        )

    def describe(self) -> str:
        if self.kind == REPEAT_CUSTOM:
            labels = ", ".join(DAY_NAMES[day] for day in self.days) or "no days"
            return f"custom ({labels})"
        return self.kind


def _day_range(start: datetime.date, end: datetime.date) -> List[datetime.date]:
    return [start + datetime.timedelta(days=offset) for offset in range((end - start).days + 1)]


def expand_dates(base_date: datetime.date, rule: RepeatRule) -> List[datetime.date]:
    if rule.kind == REPEAT_NEVER:
        return [base_date]
    if rule.end_date is None:
        raise InvalidShiftDefinition(f"Repeat rule '{rule.kind}' needs an explicit end date.")
    if rule.kind == REPEAT_CUSTOM and not rule.days:
        raise EmptyRecurrenceSelection("Pick at least one weekday to repeat on.")
    if rule.end_date < base_date:
        return []
    days = _day_range(base_date, rule.end_date)
    if rule.kind == REPEAT_DAILY:
        return days
    if rule.kind == REPEAT_WEEKLY:
        return [day for day in days if day.weekday() == base_date.weekday()]
    if rule.kind == REPEAT_WEEKDAYS:
        return [day for day in days if day.weekday() < 5]
    return [day for day in days if day.weekday() in rule.days]


def generate_recurring(
    base: Shift,
    rule: RepeatRule,
    *,
    max_instances: Optional[int] = None,
) -> List[Shift]:
    """Expand ``base`` into one shift per date selected by ``rule``.

    Instances copy every field of the base except the date and identity (each
    gets a fresh temporary id). ``never`` returns the base unchanged.
    """
    validate_shift(base)
    if rule.kind == REPEAT_NEVER:
        return [base]
    dates = expand_dates(base.date, rule)
    if not dates:
        raise EmptyRecurrenceSelection(
            f"Repeat rule {rule.describe()} produces no shifts between "
            f"{base.date.isoformat()} and {rule.end_date.isoformat()}.",
            rule=rule.kind,
        )
    if max_instances is not None and len(dates) > max_instances:
        raise InvalidShiftDefinition(
            f"Repeat rule would create {len(dates)} shifts; the limit is {max_instances}.",
            requested=len(dates),
            limit=max_instances,
        )
    return [base.with_changes(id=None, temp_id=new_temp_id(), date=day) for day in dates]
