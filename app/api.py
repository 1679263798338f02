"""FastAPI surface over the shift conflict engine and template scheduler.

Authentication is handled upstream; the caller's organization arrives in the
``X-Organization-Id`` header and scopes every read and write below.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure absolute imports (e.g., "import database") resolve when served from the repo root.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from database import (  # noqa: E402
    EmployeeAvailability,
    availability_to_window,
    delete_template,
    get_department,
    get_employee,
    get_shift,
    get_template,
    init_database,
    list_shifts,
    list_templates,
    record_audit_log,
    replace_employee_availability,
    shift_to_record,
    template_to_record,
    upsert_shift,
    upsert_template,
)
from conflicts import ConflictCheckResult, ConflictChecker  # noqa: E402
from generator.api import auto_schedule, preview_template_application  # noqa: E402
from generator.engine import TemplateNotFoundError  # noqa: E402
from records import ShiftRequest, ShiftStatus  # noqa: E402
from repository import SqlAlchemyShiftRepository, StorageError  # noqa: E402
from settings import configure_logging  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from validation import (  # noqa: E402
    parse_apply_payload,
    parse_availability,
    parse_date,
    parse_id,
    parse_shift_payload,
    parse_shift_request,
    parse_template_payload,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging()
    init_database(database.schedule_engine)
    yield


app = FastAPI(title="Shift Scheduler API", version="0.1", lifespan=lifespan)


@app.exception_handler(StorageError)
async def storage_error_handler(_: Request, exc: StorageError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(_: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Request-scoped database call failed: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "Shift store is unavailable."})


def get_db():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_checker() -> ConflictChecker:
    return ConflictChecker(SqlAlchemyShiftRepository(database.SessionLocal))


def get_organization_id(x_organization_id: Optional[str] = Header(None)) -> int:
    if not x_organization_id:
        raise HTTPException(status_code=401, detail="X-Organization-Id header is required")
    try:
        return int(x_organization_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Organization-Id must be an integer")


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


def _require_employee(db: Session, employee_id: int, organization_id: int):
    employee = get_employee(db, employee_id, organization_id)
    if employee is None:
        raise HTTPException(status_code=404, detail="Employee not found in this organization")
    return employee


def _require_department(db: Session, department_id: Optional[int], organization_id: int) -> None:
    if department_id and get_department(db, department_id, organization_id) is None:
        raise HTTPException(status_code=403, detail="Department does not belong to this organization")


def _conflict_payload(
    checker: ConflictChecker,
    result: ConflictCheckResult,
    request: ShiftRequest,
    organization_id: int,
) -> Dict[str, Any]:
    payload = result.to_dict()
    if result.has_conflicts:
        suggestions = checker.suggest_alternatives(request, organization_id)
        payload["suggestions"] = [suggestion.to_dict() for suggestion in suggestions]
    return payload


def _save_checked_shift(
    db: Session,
    checker: ConflictChecker,
    fields: Dict[str, Any],
    organization_id: int,
    *,
    force: bool,
    shift_id: Optional[int] = None,
) -> JSONResponse:
    _require_employee(db, fields["employee_id"], organization_id)
    _require_department(db, fields.get("department_id"), organization_id)
    result = ConflictCheckResult()
    if fields.get("status") is not ShiftStatus.CANCELLED:
        request = ShiftRequest(
            employee_id=fields["employee_id"],
            start_time=fields["start_time"],
            end_time=fields["end_time"],
            exclude_shift_id=shift_id,
        )
        result = checker.check_conflicts(request, organization_id)
        if result.has_conflicts and (not result.can_override or not force):
            payload = _conflict_payload(checker, result, request, organization_id)
            payload["message"] = (
                "Shift conflicts with an existing shift"
                if not result.can_override
                else "Shift has warnings; resend with force=true to override"
            )
            return JSONResponse(status_code=409, content=jsonable_encoder(payload))

    try:
        shift = upsert_shift(db, {**fields, "id": shift_id, "organization_id": organization_id})
    except ValueError as exc:
        raise _bad_request(exc)
    action = "SHIFT_UPDATED" if shift_id else "SHIFT_CREATED"
    if result.has_conflicts:
        action += "_WITH_OVERRIDE"
    record_audit_log(
        db,
        user_id="api",
        action=action,
        target_id=shift.id,
        payload={"conflicts": [conflict.type.value for conflict in result.conflicts]},
    )
    body = shift_to_record(shift).to_dict()
    body["conflicts"] = [conflict.to_dict() for conflict in result.conflicts]
    return JSONResponse(status_code=200 if shift_id else 201, content=jsonable_encoder(body))


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/shifts")
def get_shifts(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    employee_id: Optional[str] = Query(None, alias="employeeId"),
    department_id: Optional[str] = Query(None, alias="departmentId"),
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> JSONResponse:
    try:
        start = parse_date(start_date, "startDate") if start_date else None
        end = parse_date(end_date, "endDate") if end_date else None
        employee = parse_id(employee_id, "employeeId", required=False)
        department = parse_id(department_id, "departmentId", required=False)
    except ValueError as exc:
        raise _bad_request(exc)
    if start and end and end < start:
        raise HTTPException(status_code=400, detail="endDate must not be before startDate.")
    shifts = list_shifts(
        db,
        organization_id,
        start_date=start,
        end_date=end,
        employee_id=employee,
        department_id=department,
    )
    return JSONResponse(content=jsonable_encoder([shift_to_record(shift).to_dict() for shift in shifts]))


@app.post("/api/v1/shifts/check-conflicts")
def check_conflicts(
    payload: Dict[str, Any],
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
    checker: ConflictChecker = Depends(get_checker),
) -> JSONResponse:
    try:
        request = parse_shift_request(payload)
    except ValueError as exc:
        raise _bad_request(exc)
    _require_employee(db, request.employee_id, organization_id)
    result = checker.check_conflicts(request, organization_id)
    if payload.get("includeSuggestions", True):
        body = _conflict_payload(checker, result, request, organization_id)
    else:
        body = result.to_dict()
    return JSONResponse(content=jsonable_encoder(body))


@app.post("/api/v1/shifts")
def create_shift(
    payload: Dict[str, Any],
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
    checker: ConflictChecker = Depends(get_checker),
) -> JSONResponse:
    try:
        fields = parse_shift_payload(payload)
    except ValueError as exc:
        raise _bad_request(exc)
    return _save_checked_shift(db, checker, fields, organization_id, force=bool(payload.get("force")))


@app.put("/api/v1/shifts/{shift_id}")
def update_shift(
    shift_id: int,
    payload: Dict[str, Any],
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
    checker: ConflictChecker = Depends(get_checker),
) -> JSONResponse:
    existing = get_shift(db, shift_id, organization_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Shift not found")
    current = {
        "employee_id": existing.employee_id,
        "start_time": existing.start_time,
        "end_time": existing.end_time,
        "position": existing.position,
        "department_id": existing.department_id,
        "notes": existing.notes,
        "status": ShiftStatus(existing.status),
    }
    try:
        fields = parse_shift_payload(payload, existing=current)
    except ValueError as exc:
        raise _bad_request(exc)
    return _save_checked_shift(
        db, checker, fields, organization_id, force=bool(payload.get("force")), shift_id=shift_id
    )


@app.delete("/api/v1/shifts/{shift_id}")
def remove_shift(
    shift_id: int,
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> Dict[str, str]:
    shift = get_shift(db, shift_id, organization_id)
    if shift is None:
        raise HTTPException(status_code=404, detail="Shift not found")
    db.delete(shift)
    db.commit()
    record_audit_log(db, user_id="api", action="SHIFT_DELETED", target_id=shift_id)
    return {"message": "Shift deleted"}


@app.post("/api/v1/shifts/auto-schedule")
def auto_schedule_shifts(
    payload: Dict[str, Any],
    organization_id: int = Depends(get_organization_id),
) -> JSONResponse:
    try:
        template_ids, start_date, end_date = parse_apply_payload(payload)
        created = auto_schedule(
            template_ids,
            start_date,
            end_date,
            organization_id,
            actor="api",
            check_conflicts=bool(payload.get("checkConflicts", True)),
            session_factory=database.SessionLocal,
        )
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise _bad_request(exc)
    body = {
        "message": f"Created {len(created)} shifts",
        "shifts": [shift.to_dict() for shift in created],
    }
    return JSONResponse(status_code=201, content=jsonable_encoder(body))


@app.get("/api/v1/employees/{employee_id}/availability")
def employee_availability(
    employee_id: int,
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> JSONResponse:
    _require_employee(db, employee_id, organization_id)
    rows = db.scalars(
        select(EmployeeAvailability)
        .where(EmployeeAvailability.employee_id == employee_id)
        .order_by(EmployeeAvailability.day_of_week, EmployeeAvailability.id)
    )
    windows = [availability_to_window(row) for row in rows]
    body = [
        {"dayOfWeek": window.day_of_week, "startTime": window.start_label, "endTime": window.end_label}
        for window in windows
    ]
    return JSONResponse(content=jsonable_encoder({"employeeId": employee_id, "availability": body}))


@app.put("/api/v1/employees/{employee_id}/availability")
def set_employee_availability(
    employee_id: int,
    payload: Dict[str, Any],
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> JSONResponse:
    employee = _require_employee(db, employee_id, organization_id)
    try:
        windows = parse_availability(payload.get("availability"))
    except ValueError as exc:
        raise _bad_request(exc)
    replace_employee_availability(db, employee, windows)
    return employee_availability(employee_id, organization_id, db)


@app.get("/api/v1/templates")
def get_templates(
    department_id: Optional[int] = Query(None, alias="departmentId"),
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> JSONResponse:
    templates = list_templates(db, organization_id, department_id=department_id)
    return JSONResponse(content=jsonable_encoder([template_to_record(t).to_dict() for t in templates]))


@app.get("/api/v1/templates/{template_id}")
def get_template_detail(
    template_id: int,
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> JSONResponse:
    template = get_template(db, template_id, organization_id)
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return JSONResponse(content=jsonable_encoder(template_to_record(template).to_dict()))


@app.post("/api/v1/templates")
def create_template(
    payload: Dict[str, Any],
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> JSONResponse:
    try:
        fields = parse_template_payload(payload)
    except ValueError as exc:
        raise _bad_request(exc)
    _require_department(db, fields.get("department_id"), organization_id)
    template = upsert_template(db, organization_id, fields)
    return JSONResponse(status_code=201, content=jsonable_encoder(template_to_record(template).to_dict()))


@app.put("/api/v1/templates/{template_id}")
def update_template(
    template_id: int,
    payload: Dict[str, Any],
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> JSONResponse:
    if get_template(db, template_id, organization_id) is None:
        raise HTTPException(status_code=404, detail="Template not found")
    try:
        fields = parse_template_payload(payload, partial=True)
    except ValueError as exc:
        raise _bad_request(exc)
    _require_department(db, fields.get("department_id"), organization_id)
    template = upsert_template(db, organization_id, {**fields, "id": template_id})
    return JSONResponse(content=jsonable_encoder(template_to_record(template).to_dict()))


@app.delete("/api/v1/templates/{template_id}")
def remove_template(
    template_id: int,
    organization_id: int = Depends(get_organization_id),
    db=Depends(get_db),
) -> Dict[str, str]:
    if not delete_template(db, template_id, organization_id):
        raise HTTPException(status_code=404, detail="Template not found")
    return {"message": "Template deleted"}


@app.post("/api/v1/templates/apply")
def apply_templates(
    payload: Dict[str, Any],
    organization_id: int = Depends(get_organization_id),
) -> JSONResponse:
    try:
        template_ids, start_date, end_date = parse_apply_payload(payload)
        preview = preview_template_application(
            template_ids,
            start_date,
            end_date,
            organization_id,
            session_factory=database.SessionLocal,
        )
    except TemplateNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise _bad_request(exc)
    body = preview.to_dict()
    body["message"] = "Use auto-schedule to assign employees to these shifts."
    return JSONResponse(content=jsonable_encoder(body))
