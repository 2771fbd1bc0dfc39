from __future__ import annotations

import datetime
from typing import Iterable, List, Optional

from errors import SameWeekPasteConflict
from shifts import Shift, parse_date, week_start_for
from week_data import CopyCheck, WeekScheduleData, check_week_copy, extract_week, materialize


class WeekCopyPasteManager:
    """Single-slot clipboard for a week's shifts. A new copy replaces the previous one."""

    def __init__(self) -> None:
        self._snapshot: Optional[WeekScheduleData] = None

    @property
    def snapshot(self) -> Optional[WeekScheduleData]:
        return self._snapshot

    @property
    def has_snapshot(self) -> bool:
        return self._snapshot is not None

    def clear(self) -> None:
        self._snapshot = None

    def copy_week(
        self,
        week_shifts: Iterable[Shift],
        week_start: datetime.date,
        *,
        location_id: Optional[int] = None,
        location_name: str = "",
    ) -> WeekScheduleData:
        self._snapshot = extract_week(
            week_shifts,
            week_start,
            location_id=location_id,
            location_name=location_name,
            empty_message="No shifts to copy in current week.",
        )
        return self._snapshot

    def check_paste(
        self,
        snapshot: WeekScheduleData,
        target_week_start: datetime.date,
        known_employee_ids: Optional[Iterable[int]] = None,
        *,
        today: Optional[datetime.date] = None,
    ) -> CopyCheck:
        check = check_week_copy(snapshot, target_week_start, known_employee_ids, today=today)
        if week_start_for(parse_date(target_week_start)) == snapshot.week_start:
            check.errors.insert(0, "Cannot paste to the same week")
        return check

    def paste_week(
        self,
        snapshot: WeekScheduleData,
        target_week_start: datetime.date,
        *,
        assigned_by: Optional[int] = None,
    ) -> List[Shift]:
        target = week_start_for(parse_date(target_week_start))
        if target == snapshot.week_start:
            raise SameWeekPasteConflict(
                "Cannot paste a week onto itself; pick a different target week.",
                week_start=target.isoformat(),
            )
        return materialize(snapshot, target, assigned_by=assigned_by)
