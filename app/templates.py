"""Named, reusable week templates stored in the schedule database."""

from __future__ import annotations

import dataclasses
import datetime
import logging
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

import database
from errors import InvalidShiftDefinition, PersistenceFailure, TemplateNotFound
from shifts import Shift
from week_data import WeekScheduleData, extract_week, materialize


logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class ScheduleTemplate:
    id: str
    name: str
    data: WeekScheduleData
    description: str = ""
    tags: tuple = ()
    is_default: bool = False
    created_by: str = "system"
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    def summary(self) -> Dict[str, int]:
        return self.data.summary()

    def matches(self, term: str) -> bool:
        needle = (term or "").strip().lower()
        if not needle:
            return True
        haystacks = [self.name, self.description, *self.tags]
        return any(needle in (value or "").lower() for value in haystacks)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "isDefault": self.is_default,
            "createdBy": self.created_by,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "summary": self.summary(),
            "templateData": self.data.to_payload(),
        }


def _row_to_template(row: database.ScheduleTemplate) -> ScheduleTemplate:
    return ScheduleTemplate(
        id=row.id,
        name=row.name,
        description=row.description or "",
        tags=tuple(row.tag_list()),
        is_default=bool(row.is_default),
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
        data=WeekScheduleData.from_payload(row.payload_dict()),
    )


class ScheduleTemplateManager:
    def __init__(self, session_factory: Optional[Callable] = None, *, actor: str = "system") -> None:
        self.session_factory = session_factory or database.SessionLocal
        self.actor = actor

    def _run(self, action: str, func: Callable, *args: Any, **kwargs: Any):
        try:
            with self.session_factory() as session:
                return func(session, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.warning("Template %s failed: %s", action, exc)
            raise PersistenceFailure(f"Could not {action}: {exc}", action=action) from exc

    def save_template(
        self,
        week_shifts: Iterable[Shift],
        week_start: datetime.date,
        name: str,
        description: Optional[str] = None,
        tags: Iterable[str] = (),
        *,
        is_default: bool = False,
        location_id: Optional[int] = None,
        location_name: str = "",
    ) -> ScheduleTemplate:
        """Snapshot the week's shifts into a new template.

        Only shifts dated inside the Monday-Sunday week are captured; the
        metadata counters are always derived from that snapshot.
        """
        name = (name or "").strip()
        if not name:
            raise InvalidShiftDefinition("Template name is required.")
        data = extract_week(
            week_shifts,
            week_start,
            location_id=location_id,
            location_name=location_name,
            empty_message="Cannot save an empty week as a template.",
        )
        template_id = uuid.uuid4().hex

        def _save(session) -> ScheduleTemplate:
            row = database.save_template_row(
                session,
                template_id=template_id,
                name=name,
                description=description or "",
                tags=list(tags or ()),
                is_default=is_default,
                payload=data.to_payload(),
                created_by=self.actor,
            )
            return _row_to_template(row)

        template = self._run("save template", _save)
        logger.info("Saved template %s (%s shifts)", template.name, template.data.metadata.total_shifts)
        return template

    def apply_template(
        self,
        template: ScheduleTemplate,
        target_week_start: datetime.date,
        *,
        assigned_by: Optional[int] = None,
    ) -> List[Shift]:
        """Return new shifts for ``target_week_start``; the template itself is untouched."""
        return materialize(template.data, target_week_start, assigned_by=assigned_by)

    def list_templates(self) -> List[ScheduleTemplate]:
        return self._run(
            "list templates",
            lambda session: [_row_to_template(row) for row in database.list_templates(session)],
        )

    def get_template(self, template_id: str) -> ScheduleTemplate:
        def _get(session) -> Optional[ScheduleTemplate]:
            row = database.get_template(session, template_id)
            return _row_to_template(row) if row else None

        template = self._run("load template", _get)
        if template is None:
            raise TemplateNotFound(f"Template {template_id} does not exist.", template_id=template_id)
        return template

    def search_templates(self, term: str) -> List[ScheduleTemplate]:
        return [template for template in self.list_templates() if template.matches(term)]

    def default_template(self) -> Optional[ScheduleTemplate]:
        for template in self.list_templates():
            if template.is_default:
                return template
        return None

    def set_default(self, template_id: str) -> ScheduleTemplate:
        template = self.get_template(template_id)

        def _update(session) -> ScheduleTemplate:
            row = database.save_template_row(
                session,
                template_id=template.id,
                name=template.name,
                description=template.description,
                tags=list(template.tags),
                is_default=True,
                payload=template.data.to_payload(),
                created_by=template.created_by,
            )
            return _row_to_template(row)

        return self._run("update template", _update)

    def delete_template(self, template_id: str) -> None:
        deleted = self._run("delete template", database.delete_template_row, template_id)
        if not deleted:
            raise TemplateNotFound(f"Template {template_id} does not exist.", template_id=template_id)
        logger.info("Deleted template %s", template_id)
