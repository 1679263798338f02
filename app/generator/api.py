from __future__ import annotations

import datetime
from typing import Callable, Iterable, List

from .engine import TemplateApplier
from database import SessionLocal, record_audit_log
from records import ShiftRecord, TemplatePreview
from repository import SqlAlchemyShiftRepository


def _check_range(template_ids: List[int], start_date: datetime.date, end_date: datetime.date) -> None:
    if not template_ids:
        raise ValueError("At least one template must be selected.")
    if start_date is None or end_date is None:
        raise ValueError("start_date and end_date are required.")
    if end_date < start_date:
        raise ValueError("end_date must not be before start_date.")


def preview_template_application(
    template_ids: Iterable[int],
    start_date: datetime.date,
    end_date: datetime.date,
    organization_id: int,
    *,
    session_factory: Callable = SessionLocal,
) -> TemplatePreview:
    ids = list(template_ids or [])
    _check_range(ids, start_date, end_date)
    applier = TemplateApplier(SqlAlchemyShiftRepository(session_factory))
    return applier.preview(ids, start_date, end_date, organization_id)


def auto_schedule(
    template_ids: Iterable[int],
    start_date: datetime.date,
    end_date: datetime.date,
    organization_id: int,
    *,
    actor: str = "system",
    check_conflicts: bool = True,
    session_factory: Callable = SessionLocal,
) -> List[ShiftRecord]:
    ids = list(template_ids or [])
    _check_range(ids, start_date, end_date)
    applier = TemplateApplier(SqlAlchemyShiftRepository(session_factory))
    created = applier.auto_schedule(
        ids,
        start_date,
        end_date,
        organization_id,
        check_conflicts=check_conflicts,
    )
    with session_factory() as session:
        record_audit_log(
            session,
            user_id=actor or "system",
            action="AUTO_SCHEDULE",
            target_type="ShiftTemplate",
            payload={
                "organization_id": organization_id,
                "template_ids": ids,
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "check_conflicts": check_conflicts,
                "shift_count": len(created),
                "shift_ids": [shift.id for shift in created],
            },
        )
    return created
