from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class SchedulingError(Exception):
    """Base class for every failure the scheduling engine reports to callers."""

    kind = "scheduling_error"
    recoverable = True

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationFailure(SchedulingError):
    """Detected synchronously before any mutation; state is left unchanged."""

    kind = "validation_failure"


class InvalidTimeRange(ValidationFailure):
    kind = "invalid_time_range"


class IllegalDragTarget(ValidationFailure):
    kind = "illegal_drag_target"


class EmptyTemplateSource(ValidationFailure):
    kind = "empty_template_source"


class SameWeekPasteConflict(ValidationFailure):
    kind = "same_week_paste_conflict"


class EmptyRecurrenceSelection(ValidationFailure):
    kind = "empty_recurrence_selection"


class InvalidShiftDefinition(ValidationFailure):
    kind = "invalid_shift_definition"


class OverlappingAssignment(ValidationFailure):
    kind = "overlapping_assignment"


class ShiftNotFound(ValidationFailure):
    kind = "shift_not_found"


class TemplateNotFound(ValidationFailure):
    kind = "template_not_found"


class DataExchangeFailure(ValidationFailure):
    kind = "data_exchange_failure"


class PersistenceFailure(SchedulingError):
    """The persistence collaborator rejected a write; the store re-fetches before reporting."""

    kind = "persistence_failure"


@dataclass
class OperationResult:
    ok: bool
    shifts: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    error: Optional[SchedulingError] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, shifts=None, *, warnings=None, **data: Any) -> "OperationResult":
        return cls(ok=True, shifts=list(shifts or []), warnings=list(warnings or []), data=data)

    @classmethod
    def failure(cls, error: SchedulingError) -> "OperationResult":
        return cls(ok=False, error=error)

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error else None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": self.ok,
            "shifts": [shift.to_payload() for shift in self.shifts],
            "warnings": list(self.warnings),
        }
        if self.error is not None:
            payload["error"] = self.error.to_dict()
        payload.update(self.data)
        return payload
