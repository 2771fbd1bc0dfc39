"""FastAPI surface over the scheduling engine.

Each request builds a ``SchedulingService`` on the module-level session
factories, runs one intent and maps the ``OperationResult`` onto HTTP:
validation errors become 400/404/409, persistence failures 502.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure bare module imports (e.g., "import database") still resolve.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from database import get_active_policy, init_database  # noqa: E402
from clipboard import WeekCopyPasteManager  # noqa: E402
from errors import OperationResult  # noqa: E402
from grid import GridFilters  # noqa: E402
from policy import ensure_default_policy  # noqa: E402
from service import SchedulingService  # noqa: E402


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    ensure_default_policy(database.SessionLocal)
    yield


app = FastAPI(title="Shift Grid API", version="0.1", lifespan=lifespan)

ERROR_STATUS = {
    "invalid_time_range": 400,
    "invalid_shift_definition": 400,
    "empty_recurrence_selection": 400,
    "empty_template_source": 400,
    "illegal_drag_target": 409,
    "same_week_paste_conflict": 409,
    "overlapping_assignment": 409,
    "shift_not_found": 404,
    "template_not_found": 404,
    "data_exchange_failure": 400,
    "persistence_failure": 502,
}

# The copied week outlives a single request.
clipboard = WeekCopyPasteManager()


def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_service() -> SchedulingService:
    return SchedulingService(
        session_factory=database.SessionLocal,
        directory_session_factory=database.DirectorySessionLocal,
        clipboard=clipboard,
        actor="api",
    )


def _parse_date(value: Optional[str], label: str) -> datetime.date:
    if not value:
        raise HTTPException(status_code=400, detail=f"{label} is required")
    try:
        return datetime.date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{label} must be YYYY-MM-DD")


def _parse_week_start(value: str) -> datetime.date:
    return _parse_date(value, "weekStart")


def _shift_key(value: str):
    """Persisted shifts are addressed by integer id, drafts by their temporary id."""
    try:
        return int(value)
    except ValueError:
        return value


def _raise_for(result: OperationResult) -> None:
    if result.ok:
        return
    error = result.error
    status_code = ERROR_STATUS.get(error.kind, 400)
    raise HTTPException(status_code=status_code, detail=error.to_dict())


def _respond(result: OperationResult) -> JSONResponse:
    _raise_for(result)
    content: Dict[str, Any] = {
        "ok": True,
        "shifts": [shift.to_payload() for shift in result.shifts],
        "warnings": list(result.warnings),
    }
    return JSONResponse(content=jsonable_encoder(content))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/grid")
def grid(
    start: str = Query(...),
    end: str = Query(...),
    search: str = Query(""),
    department: str = Query("All"),
    client_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    service: SchedulingService = Depends(get_service),
) -> JSONResponse:
    filters = GridFilters(search=search, department=department, client_id=client_id, status=status)
    result = service.project(_parse_date(start, "start"), _parse_date(end, "end"), filters)
    _raise_for(result)
    return JSONResponse(content=jsonable_encoder(result.data["grid"].to_payload()))


@app.get("/api/v1/shifts")
def list_shifts(
    start: str = Query(...),
    end: str = Query(...),
    employee_id: Optional[int] = Query(None),
    client_id: Optional[int] = Query(None),
    status: Optional[str] = Query(None),
    service: SchedulingService = Depends(get_service),
) -> JSONResponse:
    result = service.load_window(
        _parse_date(start, "start"),
        _parse_date(end, "end"),
        employee_id=employee_id,
        client_id=client_id,
        status=status,
    )
    return _respond(result)


@app.post("/api/v1/shifts")
def create_shift(payload: Dict[str, Any], service: SchedulingService = Depends(get_service)) -> JSONResponse:
    result = service.create_shift(payload, payload.get("employee_ids"))
    _raise_for(result)
    return JSONResponse(status_code=201, content=jsonable_encoder(result.to_dict()))


def _load_around(service: SchedulingService, keys, *extra_dates: datetime.date) -> None:
    """Load the window covering the addressed shifts (and any target dates) into the store."""
    dates = list(extra_dates)
    with database.SessionLocal() as session:
        for key in keys:
            shift = database.get_shift(session, key) if isinstance(key, int) else None
            if shift is not None:
                dates.append(shift.date)
    if dates:
        service.load_window(min(dates), max(dates))


@app.put("/api/v1/shifts/{shift_id}")
def update_shift(
    shift_id: str,
    payload: Dict[str, Any],
    service: SchedulingService = Depends(get_service),
) -> JSONResponse:
    key = _shift_key(shift_id)
    _load_around(service, [key])
    return _respond(service.update_shift(key, payload))


@app.delete("/api/v1/shifts/{shift_id}")
def delete_shift(shift_id: str, service: SchedulingService = Depends(get_service)) -> JSONResponse:
    key = _shift_key(shift_id)
    _load_around(service, [key])
    return _respond(service.delete_shift(key))


@app.post("/api/v1/shifts/{shift_id}/move")
def move_shift(
    shift_id: str,
    payload: Dict[str, Any],
    service: SchedulingService = Depends(get_service),
) -> JSONResponse:
    key = _shift_key(shift_id)
    target_date = _parse_date(payload.get("date"), "date")
    _load_around(service, [key], target_date)
    result = service.move_shift(
        key,
        payload.get("employee_id"),
        target_date,
        source_employee_id=payload.get("source_employee_id"),
    )
    return _respond(result)


@app.post("/api/v1/shifts/swap")
def swap_shifts(payload: Dict[str, Any], service: SchedulingService = Depends(get_service)) -> JSONResponse:
    first = payload.get("first_id")
    second = payload.get("second_id")
    if first is None or second is None:
        raise HTTPException(status_code=400, detail="first_id and second_id are required")
    keys = [_shift_key(str(first)), _shift_key(str(second))]
    _load_around(service, keys)
    return _respond(service.swap_shifts(*keys))


@app.post("/api/v1/shifts/recurring")
def recurring_shifts(payload: Dict[str, Any], service: SchedulingService = Depends(get_service)) -> JSONResponse:
    shift_payload = payload.get("shift") or {}
    result = service.generate_recurring(
        shift_payload,
        payload.get("repeat") or "never",
        payload.get("end_date"),
        payload.get("days"),
        shift_payload.get("employee_ids") if isinstance(shift_payload, dict) else None,
    )
    _raise_for(result)
    return JSONResponse(status_code=201, content=jsonable_encoder(result.to_dict()))


@app.post("/api/v1/shifts/publish")
def publish_shifts(payload: Dict[str, Any], service: SchedulingService = Depends(get_service)) -> JSONResponse:
    start = _parse_date(payload.get("start"), "start")
    end = _parse_date(payload.get("end"), "end")
    loaded = service.load_window(start, end)
    _raise_for(loaded)
    return _respond(service.publish_drafts(payload.get("ids")))


@app.get("/api/v1/templates")
def list_templates(search: Optional[str] = Query(None), service: SchedulingService = Depends(get_service)) -> JSONResponse:
    result = service.list_templates(search)
    _raise_for(result)
    return JSONResponse(
        content=jsonable_encoder({"templates": [template.to_payload() for template in result.data["templates"]]})
    )


@app.post("/api/v1/templates")
def save_template(payload: Dict[str, Any], service: SchedulingService = Depends(get_service)) -> JSONResponse:
    week_start = _parse_date(payload.get("week_start") or payload.get("weekStart"), "weekStart")
    result = service.save_template(
        week_start,
        payload.get("name") or "",
        payload.get("description"),
        payload.get("tags") or [],
        is_default=bool(payload.get("is_default")),
        location_id=payload.get("location_id"),
        location_name=payload.get("location_name") or "",
    )
    _raise_for(result)
    return JSONResponse(status_code=201, content=jsonable_encoder(result.data["template"].to_payload()))


@app.delete("/api/v1/templates/{template_id}")
def delete_template(template_id: str, service: SchedulingService = Depends(get_service)) -> JSONResponse:
    result = service.delete_template(template_id)
    _raise_for(result)
    return JSONResponse(content={"deleted": template_id})


@app.post("/api/v1/templates/{template_id}/apply")
def apply_template(
    template_id: str,
    payload: Dict[str, Any],
    service: SchedulingService = Depends(get_service),
) -> JSONResponse:
    week_start = _parse_date(payload.get("week_start") or payload.get("weekStart"), "weekStart")
    result = service.apply_template(template_id, week_start)
    _raise_for(result)
    return JSONResponse(status_code=201, content=jsonable_encoder(result.to_dict()))


@app.post("/api/v1/weeks/{week_start}/copy")
def copy_week(week_start: str, service: SchedulingService = Depends(get_service)) -> JSONResponse:
    result = service.copy_week(_parse_week_start(week_start))
    _raise_for(result)
    return JSONResponse(content=jsonable_encoder(result.data["snapshot"].to_payload()))


@app.post("/api/v1/weeks/{week_start}/paste")
def paste_week(week_start: str, service: SchedulingService = Depends(get_service)) -> JSONResponse:
    result = service.paste_week(_parse_week_start(week_start))
    _raise_for(result)
    return JSONResponse(status_code=201, content=jsonable_encoder(result.to_dict()))


@app.get("/api/v1/weeks/{week_start}/validate")
def validate_week(week_start: str, service: SchedulingService = Depends(get_service)) -> JSONResponse:
    result = service.validate(_parse_week_start(week_start))
    _raise_for(result)
    return JSONResponse(content=jsonable_encoder(result.data["report"]))


@app.get("/api/v1/policy/active")
def active_policy(db=Depends(get_db)) -> JSONResponse:
    policy = get_active_policy(db)
    if not policy:
        raise HTTPException(status_code=404, detail="No active policy found")
    payload = {
        "id": policy.id,
        "name": policy.name,
        "params": policy.params_dict(),
        "lastEditedBy": policy.lastEditedBy,
        "lastEditedAt": policy.lastEditedAt.isoformat() if policy.lastEditedAt else None,
    }
    return JSONResponse(content=jsonable_encoder(payload))


def _file_response(result: OperationResult, status_code: int = 200) -> JSONResponse:
    _raise_for(result)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result.to_dict()))


def _file_name(payload: Dict[str, Any]) -> str:
    name = payload.get("file")
    if not name or not isinstance(name, str):
        raise HTTPException(status_code=400, detail="file is required")
    return name


@app.get("/api/v1/exports")
def list_exports(pattern: str = Query("*.json"), service: SchedulingService = Depends(get_service)) -> JSONResponse:
    return _file_response(service.list_exports(pattern))


@app.post("/api/v1/weeks/{week_start}/export")
def export_week(week_start: str, service: SchedulingService = Depends(get_service)) -> JSONResponse:
    return _file_response(service.export_week(_parse_week_start(week_start)), 201)


@app.post("/api/v1/weeks/{week_start}/import")
def import_week(
    week_start: str,
    payload: Dict[str, Any],
    service: SchedulingService = Depends(get_service),
) -> JSONResponse:
    result = service.import_week(_parse_week_start(week_start), _file_name(payload))
    return _file_response(result)


@app.post("/api/v1/templates/export")
def export_templates(service: SchedulingService = Depends(get_service)) -> JSONResponse:
    return _file_response(service.export_templates(), 201)


@app.post("/api/v1/templates/import")
def import_templates(payload: Dict[str, Any], service: SchedulingService = Depends(get_service)) -> JSONResponse:
    return _file_response(service.import_templates(_file_name(payload)))


@app.post("/api/v1/policy/export")
def export_policy(service: SchedulingService = Depends(get_service)) -> JSONResponse:
    return _file_response(service.export_policy(), 201)


@app.post("/api/v1/policy/import")
def import_policy(payload: Dict[str, Any], service: SchedulingService = Depends(get_service)) -> JSONResponse:
    return _file_response(service.import_policy(_file_name(payload)))
