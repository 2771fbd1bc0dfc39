"""Change-intent facade over the store, templates and clipboard.

Every public method runs one intent to completion and returns an
``OperationResult``; engine errors never escape as exceptions. Accepted intents
are written to the audit log.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

import data_exchange
import database
from clipboard import WeekCopyPasteManager
from errors import DataExchangeFailure, InvalidShiftDefinition, OperationResult, PersistenceFailure, SchedulingError
from grid import GridFilters, dates_in_range, project
from persistence import SqlShiftPersistence
from policy import compliance_settings, load_active_policy, max_recurrence_instances, overlap_mode
from recurrence import RepeatRule, generate_recurring
from shifts import Employee, Shift, parse_date, week_start_for
from store import ShiftAssignmentStore
from templates import ScheduleTemplateManager
from validation import overlap_messages, validate_week_schedule


logger = logging.getLogger(__name__)


class SchedulingService:
    def __init__(
        self,
        store: Optional[ShiftAssignmentStore] = None,
        *,
        session_factory: Optional[Callable] = None,
        directory_session_factory: Optional[Callable] = None,
        templates: Optional[ScheduleTemplateManager] = None,
        clipboard: Optional[WeekCopyPasteManager] = None,
        policy: Optional[Dict[str, Any]] = None,
        actor: str = "system",
        actor_id: Optional[int] = None,
    ) -> None:
        self.session_factory = session_factory or database.SessionLocal
        self.directory_session_factory = directory_session_factory or database.DirectorySessionLocal
        self.policy = policy if policy is not None else load_active_policy(self.session_factory)
        self.actor = actor
        self.actor_id = actor_id
        self.store = store or ShiftAssignmentStore(
            SqlShiftPersistence(self.session_factory, actor=actor),
            overlap_mode=overlap_mode(self.policy),
            actor_id=actor_id,
        )
        self.templates = templates or ScheduleTemplateManager(self.session_factory, actor=actor)
        self.clipboard = clipboard or WeekCopyPasteManager()

    # ------------------------------------------------------------------
    # Plumbing

    def _execute(self, action: str, func: Callable[[], OperationResult]) -> OperationResult:
        try:
            return func()
        except SchedulingError as exc:
            logger.info("%s rejected: %s (%s)", action, exc.message, exc.kind)
            return OperationResult.failure(exc)

    def _audit(
        self,
        action: str,
        *,
        target_type: str = "Shift",
        target_id: Optional[Any] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        try:
            with self.session_factory() as session:
                database.record_audit_log(
                    session,
                    self.actor,
                    action,
                    target_type=target_type,
                    target_id=target_id,
                    payload=payload,
                )
        except SQLAlchemyError as exc:
            logger.error("Audit log write for %s failed: %s", action, exc)

    def employees(self) -> List[Employee]:
        with self.directory_session_factory() as directory_session:
            return database.list_employees(directory_session)

    def _employee_map(self) -> Dict[int, Employee]:
        return {employee.id: employee for employee in self.employees()}

    def _ensure_loaded(self, start: datetime.date, end: datetime.date) -> None:
        window = self.store.window
        if window is not None and window[0] <= start and end <= window[1]:
            return
        if window is not None:
            start = min(start, window[0])
            end = max(end, window[1])
        self.store.load(start, end)

    def _ensure_week_loaded(self, week_start: datetime.date) -> datetime.date:
        monday = week_start_for(parse_date(week_start))
        self._ensure_loaded(monday, monday + datetime.timedelta(days=6))
        return monday

    def _overlap_warnings(self, shifts: Iterable[Shift]) -> List[str]:
        warnings: List[str] = []
        employees: Optional[Dict[int, Employee]] = None
        for shift in shifts:
            conflicts = self.store.overlaps_for(shift)
            if not conflicts:
                continue
            if employees is None:
                employees = self._employee_map()
            warnings.extend(overlap_messages(conflicts, employees))
        return warnings

    def _apply_shift_defaults(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if payload is not None and not isinstance(payload, dict):
            raise InvalidShiftDefinition("Shift payload must be an object.")
        defaults = self.policy.get("shifts") or {}
        merged = dict(payload or {})
        if merged.get("start_time") in (None, ""):
            merged["start_time"] = defaults.get("default_start", "09:00")
        if merged.get("end_time") in (None, ""):
            merged["end_time"] = defaults.get("default_end", "17:00")
        if "break_duration" not in merged and "break_duration_minutes" not in merged:
            merged["break_duration"] = defaults.get("default_break_minutes", 0)
        return merged

    # ------------------------------------------------------------------
    # Reads

    def load_window(self, start, end, **filters: Any) -> OperationResult:
        def _load() -> OperationResult:
            shifts = self.store.load(parse_date(start), parse_date(end), **filters)
            return OperationResult.success(shifts)

        return self._execute("load", _load)

    def project(self, start, end, filters: Optional[GridFilters] = None) -> OperationResult:
        def _project() -> OperationResult:
            dates = dates_in_range(parse_date(start), parse_date(end))
            self._ensure_loaded(dates[0], dates[-1])
            settings = compliance_settings(self.policy)
            projection = project(
                self.store.snapshot(),
                self.employees(),
                dates,
                filters,
                night_start_hour=int(settings.get("night_start_hour", 22)),
                night_end_hour=int(settings.get("night_end_hour", 6)),
            )
            return OperationResult.success(grid=projection)

        return self._execute("project", _project)

    def validate(self, week_start) -> OperationResult:
        def _validate() -> OperationResult:
            monday = self._ensure_week_loaded(week_start)
            report = validate_week_schedule(
                self.store.snapshot(),
                monday,
                employees=self.employees(),
                policy=self.policy,
            )
            return OperationResult.success(report=report)

        return self._execute("validate", _validate)

    # ------------------------------------------------------------------
    # Shift intents

    def create_shift(self, payload: Dict[str, Any], employee_ids: Optional[Sequence[int]] = None) -> OperationResult:
        def _create() -> OperationResult:
            shift = Shift.from_payload(self._apply_shift_defaults(payload))
            self._ensure_loaded(shift.date, shift.date)
            created = self.store.create(shift, employee_ids)
            self._audit("SHIFT_CREATE", target_id=created.key, payload={"date": created.date.isoformat()})
            return OperationResult.success([created], warnings=self._overlap_warnings([created]))

        return self._execute("create shift", _create)

    def update_shift(self, key, patch: Dict[str, Any]) -> OperationResult:
        def _update() -> OperationResult:
            updated = self.store.update(key, patch)
            self._audit("SHIFT_UPDATE", target_id=updated.key, payload={"fields": sorted(patch or {})})
            return OperationResult.success([updated], warnings=self._overlap_warnings([updated]))

        return self._execute("update shift", _update)

    def delete_shift(self, key) -> OperationResult:
        def _delete() -> OperationResult:
            removed = self.store.delete(key)
            self._audit("SHIFT_DELETE", target_id=removed.key, payload={"date": removed.date.isoformat()})
            return OperationResult.success([removed])

        return self._execute("delete shift", _delete)

    def move_shift(
        self,
        key,
        employee_id: Optional[int],
        date,
        *,
        source_employee_id: Optional[int] = None,
    ) -> OperationResult:
        def _move() -> OperationResult:
            moved = self.store.move_shift(key, employee_id, date, source_employee_id=source_employee_id)
            self._audit(
                "SHIFT_MOVE",
                target_id=moved.key,
                payload={"employee_id": employee_id, "date": moved.date.isoformat()},
            )
            return OperationResult.success([moved], warnings=self._overlap_warnings([moved]))

        return self._execute("move shift", _move)

    def unassign_shift(self, key, *, source_employee_id: Optional[int] = None) -> OperationResult:
        def _unassign() -> OperationResult:
            moved = self.store.unassign(key, source_employee_id=source_employee_id)
            self._audit("SHIFT_UNASSIGN", target_id=moved.key, payload={"name": moved.name})
            return OperationResult.success([moved])

        return self._execute("unassign shift", _unassign)

    def swap_shifts(self, key_a, key_b) -> OperationResult:
        def _swap() -> OperationResult:
            first, second = self.store.swap_shifts(key_a, key_b)
            self._audit("SHIFT_SWAP", target_id=first.key, payload={"other": second.key})
            return OperationResult.success([first, second], warnings=self._overlap_warnings([first, second]))

        return self._execute("swap shifts", _swap)

    def generate_recurring(
        self,
        payload: Dict[str, Any],
        repeat: str,
        end_date=None,
        days: Optional[Iterable[int]] = None,
        employee_ids: Optional[Sequence[int]] = None,
    ) -> OperationResult:
        def _generate() -> OperationResult:
            rule = RepeatRule.parse(repeat, end_date, days)
            base = self.store.prepare(Shift.from_payload(self._apply_shift_defaults(payload)), employee_ids)
            instances = generate_recurring(base, rule, max_instances=max_recurrence_instances(self.policy))
            self._ensure_loaded(instances[0].date, instances[-1].date)
            created = self.store.create_many(instances)
            self._audit(
                "SHIFT_RECURRING",
                payload={"rule": rule.describe(), "count": len(created), "start": base.date.isoformat()},
            )
            return OperationResult.success(created, warnings=self._overlap_warnings(created))

        return self._execute("generate recurring shifts", _generate)

    def publish_drafts(self, keys: Optional[Iterable[Any]] = None) -> OperationResult:
        def _publish() -> OperationResult:
            published = self.store.publish_drafts(keys)
            self._audit("SCHEDULE_PUBLISH", payload={"count": len(published)})
            return OperationResult.success(published)

        return self._execute("publish drafts", _publish)

    # ------------------------------------------------------------------
    # Templates

    def save_template(
        self,
        week_start,
        name: str,
        description: Optional[str] = None,
        tags: Iterable[str] = (),
        *,
        is_default: bool = False,
        location_id: Optional[int] = None,
        location_name: str = "",
    ) -> OperationResult:
        def _save() -> OperationResult:
            monday = self._ensure_week_loaded(week_start)
            template = self.templates.save_template(
                self.store.snapshot(),
                monday,
                name,
                description,
                tags,
                is_default=is_default,
                location_id=location_id,
                location_name=location_name,
            )
            self._audit("TEMPLATE_SAVE", target_type="Template", target_id=template.id, payload={"name": template.name})
            return OperationResult.success(template=template)

        return self._execute("save template", _save)

    def list_templates(self, search: Optional[str] = None) -> OperationResult:
        def _list() -> OperationResult:
            if search:
                return OperationResult.success(templates=self.templates.search_templates(search))
            return OperationResult.success(templates=self.templates.list_templates())

        return self._execute("list templates", _list)

    def apply_template(
        self,
        template_id: str,
        target_week_start,
        *,
        today: Optional[datetime.date] = None,
    ) -> OperationResult:
        def _apply() -> OperationResult:
            template = self.templates.get_template(template_id)
            monday = self._ensure_week_loaded(target_week_start)
            check = self.clipboard.check_paste(template.data, monday, self._employee_map().keys(), today=today)
            # Applying onto the template's own source week is allowed.
            errors = [message for message in check.errors if message != "Cannot paste to the same week"]
            if errors:
                raise InvalidShiftDefinition("; ".join(errors), template_id=template_id)
            created = self.store.create_many(
                self.templates.apply_template(template, monday, assigned_by=self.actor_id)
            )
            self._audit(
                "TEMPLATE_APPLY",
                target_type="Template",
                target_id=template.id,
                payload={"week_start": monday.isoformat(), "count": len(created)},
            )
            return OperationResult.success(
                created,
                warnings=check.warnings + self._overlap_warnings(created),
            )

        return self._execute("apply template", _apply)

    def delete_template(self, template_id: str) -> OperationResult:
        def _delete() -> OperationResult:
            self.templates.delete_template(template_id)
            self._audit("TEMPLATE_DELETE", target_type="Template", target_id=template_id)
            return OperationResult.success(template_id=template_id)

        return self._execute("delete template", _delete)

    # ------------------------------------------------------------------
    # Copy / paste

    def copy_week(self, week_start) -> OperationResult:
        def _copy() -> OperationResult:
            monday = self._ensure_week_loaded(week_start)
            snapshot = self.clipboard.copy_week(self.store.snapshot(), monday)
            return OperationResult.success(snapshot=snapshot)

        return self._execute("copy week", _copy)

    def paste_week(self, target_week_start, *, today: Optional[datetime.date] = None) -> OperationResult:
        def _paste() -> OperationResult:
            snapshot = self.clipboard.snapshot
            if snapshot is None:
                raise InvalidShiftDefinition("Copy a week before pasting.")
            monday = week_start_for(parse_date(target_week_start))
            check = self.clipboard.check_paste(snapshot, monday, self._employee_map().keys(), today=today)
            instances = self.clipboard.paste_week(snapshot, monday, assigned_by=self.actor_id)
            if check.errors:
                raise InvalidShiftDefinition("; ".join(check.errors), week_start=monday.isoformat())
            self._ensure_week_loaded(monday)
            created = self.store.create_many(instances)
            self._audit(
                "WEEK_PASTE",
                target_type="Week",
                target_id=monday.isoformat(),
                payload={"source": snapshot.week_start.isoformat(), "count": len(created)},
            )
            return OperationResult.success(
                created,
                warnings=check.warnings + self._overlap_warnings(created),
            )

        return self._execute("paste week", _paste)

    # ------------------------------------------------------------------
    # Import / export

    def _exchange(self, action: str, func: Callable[[Any, Any], Any]) -> Any:
        try:
            with self.session_factory() as session, self.directory_session_factory() as directory_session:
                return func(session, directory_session)
        except (OSError, ValueError) as exc:
            raise DataExchangeFailure(str(exc), action=action)
        except SQLAlchemyError as exc:
            logger.warning("%s failed: %s", action, exc)
            raise PersistenceFailure(f"Could not {action}.", reason=str(exc))

    def export_week(self, week_start) -> OperationResult:
        def _export() -> OperationResult:
            monday = week_start_for(parse_date(week_start))
            path = self._exchange(
                "export week",
                lambda session, directory: data_exchange.export_week_schedule(
                    session, monday, directory_session=directory
                ),
            )
            return OperationResult.success(file=path.name)

        return self._execute("export week", _export)

    def import_week(self, week_start, file_name: str) -> OperationResult:
        def _import() -> OperationResult:
            monday = week_start_for(parse_date(week_start))
            added = self._exchange(
                "import week",
                lambda session, directory: data_exchange.import_week_schedule(
                    session,
                    monday,
                    data_exchange.resolve_export_file(file_name),
                    directory_session=directory,
                ),
            )
            window = self.store.window
            self._ensure_week_loaded(monday)
            if self.store.window == window:
                self.store.refresh()
            self._audit(
                "WEEK_IMPORT",
                target_type="Week",
                target_id=monday.isoformat(),
                payload={"file": file_name, "count": added},
            )
            return OperationResult.success(self.store.shifts(start=monday, end=monday + datetime.timedelta(days=6)))

        return self._execute("import week", _import)

    def export_templates(self) -> OperationResult:
        def _export() -> OperationResult:
            path = self._exchange("export templates", lambda session, _: data_exchange.export_templates(session))
            return OperationResult.success(file=path.name)

        return self._execute("export templates", _export)

    def import_templates(self, file_name: str) -> OperationResult:
        def _import() -> OperationResult:
            imported = self._exchange(
                "import templates",
                lambda session, _: data_exchange.import_templates(
                    session, data_exchange.resolve_export_file(file_name), created_by=self.actor
                ),
            )
            self._audit("TEMPLATE_IMPORT", target_type="Template", payload={"file": file_name, "count": imported})
            return OperationResult.success(imported=imported)

        return self._execute("import templates", _import)

    def export_policy(self) -> OperationResult:
        def _export() -> OperationResult:
            path = self._exchange("export policy", lambda session, _: data_exchange.export_policy_dataset(session))
            return OperationResult.success(file=path.name)

        return self._execute("export policy", _export)

    def import_policy(self, file_name: str) -> OperationResult:
        def _import() -> OperationResult:
            policy = self._exchange(
                "import policy",
                lambda session, _: data_exchange.import_policy_dataset(
                    session, data_exchange.resolve_export_file(file_name), edited_by=self.actor
                ),
            )
            self.policy = load_active_policy(self.session_factory)
            self.store.overlap_mode = overlap_mode(self.policy)
            self._audit("POLICY_IMPORT", target_type="Policy", target_id=policy.id, payload={"name": policy.name})
            return OperationResult.success(policy=policy.name)

        return self._execute("import policy", _import)

    def list_exports(self, pattern: str = "*.json") -> OperationResult:
        def _list() -> OperationResult:
            return OperationResult.success(files=[path.name for path in data_exchange.list_export_files(pattern)])

        return self._execute("list exports", _list)
