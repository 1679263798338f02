from __future__ import annotations

import datetime
import json
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, selectinload, sessionmaker
from sqlalchemy.types import Time

from records import (
    AvailabilityWindow,
    EmployeeRecord,
    ShiftRecord,
    ShiftStatus,
    TemplateRecord,
)
from settings import DATA_DIR, DATABASE_URL, DEFAULT_REQUIRED_EMPLOYEES
from timeutils import as_local

DATA_DIR.mkdir(parents=True, exist_ok=True)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for every table the scheduler owns."""

    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Department(Base):
    __tablename__ = "departments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(80), nullable=False)


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    position: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    weekly_hours_limit: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(12), default="active", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    availability: Mapped[List["EmployeeAvailability"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan", order_by="EmployeeAvailability.id"
    )


class EmployeeAvailability(Base):
    __tablename__ = "employee_availability"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Sunday
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)

    employee: Mapped[Employee] = relationship(back_populates="availability")


class Shift(Base):
    __tablename__ = "shifts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    employee_id: Mapped[int | None] = mapped_column(ForeignKey("employees.id"), nullable=True)
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True)
    template_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id", ondelete="SET NULL"), nullable=True)
    position: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    start_time: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[datetime.datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ShiftStatus.SCHEDULED.value)
    notes: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    department: Mapped[Optional[Department]] = relationship()


class ShiftTemplate(Base):
    __tablename__ = "shift_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)
    department_id: Mapped[int | None] = mapped_column(ForeignKey("departments.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(80), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = Sunday
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    position: Mapped[str] = mapped_column(String(80), nullable=False)
    required_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_REQUIRED_EMPLOYEES)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    department: Mapped[Optional[Department]] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Shift")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


schedule_engine = create_engine(
    DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)


def init_database(engine=None) -> None:
    Base.metadata.create_all(engine if engine is not None else schedule_engine)


def _normalize_datetime(value: datetime.datetime) -> datetime.datetime:
    if not isinstance(value, datetime.datetime):
        raise TypeError("Shift start and end must be datetime instances.")
    return as_local(value)


def shift_to_record(shift: Shift) -> ShiftRecord:
    return ShiftRecord(
        id=shift.id,
        employee_id=shift.employee_id,
        organization_id=shift.organization_id,
        start_time=shift.start_time,
        end_time=shift.end_time,
        status=ShiftStatus(shift.status),
        position=shift.position,
        department_id=shift.department_id,
        department_name=shift.department.name if shift.department else None,
        notes=shift.notes,
    )


def availability_to_window(row: EmployeeAvailability) -> AvailabilityWindow:
    return AvailabilityWindow(
        employee_id=row.employee_id,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
    )


def employee_to_record(employee: Employee) -> EmployeeRecord:
    return EmployeeRecord(
        id=employee.id,
        organization_id=employee.organization_id,
        full_name=employee.full_name,
        position=employee.position,
    )


def template_to_record(template: ShiftTemplate) -> TemplateRecord:
    return TemplateRecord(
        id=template.id,
        organization_id=template.organization_id,
        name=template.name,
        day_of_week=template.day_of_week,
        start_time=template.start_time,
        end_time=template.end_time,
        position=template.position,
        department_id=template.department_id,
        department_name=template.department.name if template.department else None,
        required_employees=template.required_employees,
    )


def get_employee(session, employee_id: int, organization_id: int) -> Optional[Employee]:
    stmt = select(Employee).where(
        Employee.id == employee_id,
        Employee.organization_id == organization_id,
    )
    return session.scalars(stmt).first()


def get_department(session, department_id: int, organization_id: int) -> Optional[Department]:
    stmt = select(Department).where(
        Department.id == department_id,
        Department.organization_id == organization_id,
    )
    return session.scalars(stmt).first()


def get_shift(session, shift_id: int, organization_id: int) -> Optional[Shift]:
    stmt = select(Shift).where(Shift.id == shift_id, Shift.organization_id == organization_id)
    return session.scalars(stmt).first()


def list_shifts(
    session,
    organization_id: int,
    *,
    start_date: Optional[datetime.date] = None,
    end_date: Optional[datetime.date] = None,
    employee_id: Optional[int] = None,
    department_id: Optional[int] = None,
) -> List[Shift]:
    """Shifts of one organization by start time; the date range bounds the start day inclusively."""
    stmt = (
        select(Shift)
        .options(selectinload(Shift.department))
        .where(Shift.organization_id == organization_id)
    )
    if start_date is not None:
        stmt = stmt.where(Shift.start_time >= datetime.datetime.combine(start_date, datetime.time.min))
    if end_date is not None:
        next_day = datetime.datetime.combine(end_date + datetime.timedelta(days=1), datetime.time.min)
        stmt = stmt.where(Shift.start_time < next_day)
    if employee_id:
        stmt = stmt.where(Shift.employee_id == employee_id)
    if department_id:
        stmt = stmt.where(Shift.department_id == department_id)
    stmt = stmt.order_by(Shift.start_time, Shift.id)
    return list(session.scalars(stmt))


def upsert_shift(session, shift: Dict[str, Any]) -> Shift:
    shift_id = shift.get("id")
    start = _normalize_datetime(shift.get("start_time"))
    end = _normalize_datetime(shift.get("end_time"))
    if end <= start:
        raise ValueError("Shift end time must be after start time.")
    organization_id = shift.get("organization_id")
    if organization_id is None:
        raise ValueError("Shift organization is required.")

    if shift_id:
        db_shift = get_shift(session, shift_id, organization_id)
        if not db_shift:
            raise ValueError(f"Shift with id {shift_id} was not found.")
    else:
        db_shift = Shift(organization_id=organization_id)
        session.add(db_shift)

    status = shift.get("status") or ShiftStatus.SCHEDULED
    db_shift.employee_id = shift.get("employee_id")
    db_shift.department_id = shift.get("department_id")
    db_shift.template_id = shift.get("template_id", db_shift.template_id)
    db_shift.position = shift.get("position", "") or ""
    db_shift.start_time = start
    db_shift.end_time = end
    db_shift.status = ShiftStatus(status).value
    db_shift.notes = shift.get("notes", "") or ""
    session.commit()
    session.refresh(db_shift)
    return db_shift


def replace_employee_availability(
    session,
    employee: Employee,
    windows: Iterable[tuple[int, datetime.time, datetime.time]],
) -> List[EmployeeAvailability]:
    session.execute(delete(EmployeeAvailability).where(EmployeeAvailability.employee_id == employee.id))
    rows = [
        EmployeeAvailability(employee_id=employee.id, day_of_week=day, start_time=start, end_time=end)
        for day, start, end in windows
    ]
    session.add_all(rows)
    session.commit()
    return rows


def list_templates(
    session,
    organization_id: int,
    *,
    template_ids: Optional[Iterable[int]] = None,
    department_id: Optional[int] = None,
) -> List[ShiftTemplate]:
    stmt = select(ShiftTemplate).where(ShiftTemplate.organization_id == organization_id)
    if template_ids is not None:
        stmt = stmt.where(ShiftTemplate.id.in_(list(template_ids)))
    if department_id:
        stmt = stmt.where(ShiftTemplate.department_id == department_id)
    stmt = stmt.order_by(ShiftTemplate.day_of_week, ShiftTemplate.start_time, ShiftTemplate.id)
    return list(session.scalars(stmt))


def get_template(session, template_id: int, organization_id: int) -> Optional[ShiftTemplate]:
    stmt = select(ShiftTemplate).where(
        ShiftTemplate.id == template_id,
        ShiftTemplate.organization_id == organization_id,
    )
    return session.scalars(stmt).first()


def upsert_template(session, organization_id: int, template: Dict[str, Any]) -> ShiftTemplate:
    template_id = template.get("id")
    if template_id:
        db_template = get_template(session, template_id, organization_id)
        if not db_template:
            raise ValueError(f"Template with id {template_id} was not found.")
    else:
        db_template = ShiftTemplate(organization_id=organization_id)
        session.add(db_template)
    for key in ("name", "day_of_week", "start_time", "end_time", "position", "department_id", "required_employees"):
        if key in template:
            setattr(db_template, key, template[key])
    if not db_template.required_employees:
        db_template.required_employees = DEFAULT_REQUIRED_EMPLOYEES
    session.commit()
    session.refresh(db_template)
    return db_template


def delete_template(session, template_id: int, organization_id: int) -> bool:
    db_template = get_template(session, template_id, organization_id)
    if not db_template:
        return False
    session.delete(db_template)
    session.commit()
    return True


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Shift",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
