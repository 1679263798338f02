from __future__ import annotations

import datetime
import logging
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from conflicts import ConflictChecker
from records import (
    ShiftDraft,
    ShiftPreview,
    ShiftRecord,
    ShiftRequest,
    ShiftStatus,
    TemplatePreview,
    TemplateRecord,
)
from repository import ShiftRepository
from timeutils import combine, day_of_week, iter_days

logger = logging.getLogger(__name__)


class TemplateNotFoundError(LookupError):
    """None of the requested templates exist in the organization."""


def template_window(template: TemplateRecord, day: datetime.date) -> Tuple[datetime.datetime, datetime.datetime]:
    """Map a template's time of day onto ``day``; an end at or before the start rolls to the next day."""
    start = combine(day, template.start_time)
    end = combine(day, template.end_time)
    if end <= start:
        end += datetime.timedelta(days=1)
    return start, end


class TemplateApplier:
    """Expands weekly shift templates into dated shifts.

    ``preview`` is a pure projection. ``auto_schedule`` assigns employees first-fit
    (employee id order, no balancing) and writes each shift as it goes, so the order
    of days and templates decides who is picked. With ``check_conflicts`` every
    candidate goes through the same conflict check as a manually created shift and
    anyone with a blocking conflict is passed over.
    """

    def __init__(self, repository: ShiftRepository, *, conflict_checker: Optional[ConflictChecker] = None) -> None:
        self.repository = repository
        self.conflict_checker = conflict_checker or ConflictChecker(repository)

    def _load_templates(self, template_ids: Iterable[int], organization_id: int) -> List[TemplateRecord]:
        templates = self.repository.list_templates(list(template_ids), organization_id)
        if not templates:
            raise TemplateNotFoundError("No shift templates found for the requested ids.")
        return templates

    @staticmethod
    def expand(
        templates: Sequence[TemplateRecord],
        start_date: datetime.date,
        end_date: datetime.date,
    ) -> Iterator[Tuple[datetime.date, TemplateRecord]]:
        for day in iter_days(start_date, end_date):
            weekday = day_of_week(day)
            for template in templates:
                if template.day_of_week == weekday:
                    yield day, template

    def preview(
        self,
        template_ids: Iterable[int],
        start_date: datetime.date,
        end_date: datetime.date,
        organization_id: int,
    ) -> TemplatePreview:
        templates = self._load_templates(template_ids, organization_id)
        shifts: List[ShiftPreview] = []
        for day, template in self.expand(templates, start_date, end_date):
            start, end = template_window(template, day)
            for _ in range(template.required_employees):
                shifts.append(
                    ShiftPreview(
                        template_id=template.id,
                        template_name=template.name,
                        start_time=start,
                        end_time=end,
                        position=template.position,
                        department_id=template.department_id,
                        department_name=template.department_name,
                        day_of_week=template.day_of_week,
                    )
                )
        return TemplatePreview(shifts=shifts)

    def auto_schedule(
        self,
        template_ids: Iterable[int],
        start_date: datetime.date,
        end_date: datetime.date,
        organization_id: int,
        *,
        check_conflicts: bool = True,
    ) -> List[ShiftRecord]:
        templates = self._load_templates(template_ids, organization_id)
        employees = self.repository.list_employees_with_availability(organization_id)
        created: List[ShiftRecord] = []

        for day, template in self.expand(templates, start_date, end_date):
            start, end = template_window(template, day)
            eligible = [entry.employee for entry in employees if entry.available_on(template.day_of_week)]
            assigned = 0
            for employee in eligible:
                if assigned >= template.required_employees:
                    break
                if check_conflicts:
                    result = self.conflict_checker.check_conflicts(
                        ShiftRequest(employee_id=employee.id, start_time=start, end_time=end),
                        organization_id,
                    )
                    if not result.can_override:
                        logger.debug(
                            "Skipping employee=%s for template=%s on %s: blocking conflict",
                            employee.id,
                            template.id,
                            day.isoformat(),
                        )
                        continue
                shift = self.repository.create_shift(
                    ShiftDraft(
                        organization_id=organization_id,
                        employee_id=employee.id,
                        start_time=start,
                        end_time=end,
                        position=template.position,
                        department_id=template.department_id,
                        status=ShiftStatus.SCHEDULED,
                        template_id=template.id,
                    )
                )
                created.append(shift)
                assigned += 1
            if assigned < template.required_employees:
                logger.warning(
                    "Template '%s' on %s staffed %d of %d required employee(s).",
                    template.name,
                    day.isoformat(),
                    assigned,
                    template.required_employees,
                )

        logger.info(
            "Auto-schedule created %d shift(s) for org=%s from %s to %s",
            len(created),
            organization_id,
            start_date.isoformat(),
            end_date.isoformat(),
        )
        return created
