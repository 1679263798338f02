from __future__ import annotations

import datetime
import logging
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, List, Optional, Protocol

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from database import (
    Employee,
    EmployeeAvailability as AvailabilityRow,
    Shift,
    availability_to_window,
    employee_to_record,
    list_templates as query_templates,
    shift_to_record,
    template_to_record,
    upsert_shift,
)
from records import (
    AvailabilityWindow,
    EmployeeHoursPolicy,
    ShiftDraft,
    ShiftRecord,
    ShiftStatus,
    EmployeeWithAvailability,
    TemplateRecord,
)
from timeutils import day_bounds

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """A read or write against the shift store failed; never means "no conflict"."""


class ShiftRepository(Protocol):
    def find_overlapping_shift(
        self,
        employee_id: int,
        organization_id: int,
        start: datetime.datetime,
        end: datetime.datetime,
        exclude_shift_id: Optional[int] = None,
    ) -> Optional[ShiftRecord]: ...

    def find_availability(self, employee_id: int, day_of_week: int) -> Optional[AvailabilityWindow]: ...

    def find_employee_hours_policy(self, employee_id: int) -> Optional[EmployeeHoursPolicy]: ...

    def list_shifts_in_week(
        self,
        employee_id: int,
        week_start: datetime.datetime,
        week_end: datetime.datetime,
        exclude_shift_id: Optional[int] = None,
    ) -> List[ShiftRecord]: ...

    def list_shifts_on_day(
        self,
        employee_id: int,
        organization_id: int,
        day: datetime.date,
        exclude_shift_id: Optional[int] = None,
    ) -> List[ShiftRecord]: ...

    def list_templates(self, template_ids: Iterable[int], organization_id: int) -> List[TemplateRecord]: ...

    def list_employees_with_availability(self, organization_id: int) -> List[EmployeeWithAvailability]: ...

    def create_shift(self, draft: ShiftDraft) -> ShiftRecord: ...


def _active_shifts():
    return Shift.status != ShiftStatus.CANCELLED.value


class SqlAlchemyShiftRepository:
    """ShiftRepository backed by the SQLAlchemy models in ``database``.

    Every call opens its own session from ``session_factory`` so the conflict
    evaluators can read from separate threads at the same time.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Shift store %s failed: %s", operation, exc)
            raise StorageError(f"Shift store {operation} failed.") from exc

    def find_overlapping_shift(
        self,
        employee_id: int,
        organization_id: int,
        start: datetime.datetime,
        end: datetime.datetime,
        exclude_shift_id: Optional[int] = None,
    ) -> Optional[ShiftRecord]:
        stmt = (
            select(Shift)
            .options(selectinload(Shift.department))
            .where(
                Shift.employee_id == employee_id,
                Shift.organization_id == organization_id,
                _active_shifts(),
                or_(
                    and_(Shift.start_time >= start, Shift.start_time < end),
                    and_(Shift.end_time > start, Shift.end_time <= end),
                    and_(Shift.start_time <= start, Shift.end_time >= end),
                ),
            )
            .order_by(Shift.start_time, Shift.id)
        )
        if exclude_shift_id is not None:
            stmt = stmt.where(Shift.id != exclude_shift_id)
        with self._session("overlap lookup") as session:
            shift = session.scalars(stmt).first()
            return shift_to_record(shift) if shift else None

    def find_availability(self, employee_id: int, day_of_week: int) -> Optional[AvailabilityWindow]:
        stmt = (
            select(AvailabilityRow)
            .where(AvailabilityRow.employee_id == employee_id, AvailabilityRow.day_of_week == day_of_week)
            .order_by(AvailabilityRow.id)
        )
        with self._session("availability lookup") as session:
            row = session.scalars(stmt).first()
            return availability_to_window(row) if row else None

    def find_employee_hours_policy(self, employee_id: int) -> Optional[EmployeeHoursPolicy]:
        with self._session("hours policy lookup") as session:
            employee = session.get(Employee, employee_id)
            if employee is None:
                return None
            return EmployeeHoursPolicy(employee_id=employee.id, weekly_hours_limit=employee.weekly_hours_limit)

    def list_shifts_in_week(
        self,
        employee_id: int,
        week_start: datetime.datetime,
        week_end: datetime.datetime,
        exclude_shift_id: Optional[int] = None,
    ) -> List[ShiftRecord]:
        stmt = (
            select(Shift)
            .options(selectinload(Shift.department))
            .where(
                Shift.employee_id == employee_id,
                _active_shifts(),
                Shift.start_time >= week_start,
                Shift.end_time <= week_end,
            )
            .order_by(Shift.start_time, Shift.id)
        )
        if exclude_shift_id is not None:
            stmt = stmt.where(Shift.id != exclude_shift_id)
        with self._session("weekly shift listing") as session:
            return [shift_to_record(shift) for shift in session.scalars(stmt)]

    def list_shifts_on_day(
        self,
        employee_id: int,
        organization_id: int,
        day: datetime.date,
        exclude_shift_id: Optional[int] = None,
    ) -> List[ShiftRecord]:
        # Every shift touching the day, including ones crossing either midnight.
        day_start, _ = day_bounds(day)
        next_day = day_start + datetime.timedelta(days=1)
        stmt = (
            select(Shift)
            .options(selectinload(Shift.department))
            .where(
                Shift.employee_id == employee_id,
                Shift.organization_id == organization_id,
                _active_shifts(),
                Shift.start_time < next_day,
                Shift.end_time > day_start,
            )
            .order_by(Shift.start_time, Shift.id)
        )
        if exclude_shift_id is not None:
            stmt = stmt.where(Shift.id != exclude_shift_id)
        with self._session("daily shift listing") as session:
            return [shift_to_record(shift) for shift in session.scalars(stmt)]

    def list_templates(self, template_ids: Iterable[int], organization_id: int) -> List[TemplateRecord]:
        with self._session("template listing") as session:
            templates = query_templates(session, organization_id, template_ids=template_ids)
            return [template_to_record(template) for template in templates]

    def list_employees_with_availability(self, organization_id: int) -> List[EmployeeWithAvailability]:
        stmt = (
            select(Employee)
            .options(selectinload(Employee.availability))
            .where(Employee.organization_id == organization_id, Employee.status == "active")
            .order_by(Employee.id)
        )
        with self._session("employee listing") as session:
            return [
                EmployeeWithAvailability(
                    employee=employee_to_record(employee),
                    windows=[availability_to_window(row) for row in employee.availability],
                )
                for employee in session.scalars(stmt)
            ]

    def create_shift(self, draft: ShiftDraft) -> ShiftRecord:
        with self._session("shift creation") as session:
            shift = upsert_shift(
                session,
                {
                    "organization_id": draft.organization_id,
                    "employee_id": draft.employee_id,
                    "department_id": draft.department_id,
                    "template_id": draft.template_id,
                    "position": draft.position,
                    "start_time": draft.start_time,
                    "end_time": draft.end_time,
                    "status": draft.status,
                    "notes": draft.notes,
                },
            )
            return shift_to_record(shift)
