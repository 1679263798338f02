"""Conflict checks for a single proposed shift assignment.

Three independent evaluators (overlap, availability, weekly hours) read from the
injected repository; ``ConflictChecker.check_conflicts`` runs them side by side and
merges the findings into one verdict. Conflicts are ordinary return values: an
ERROR can never be overridden, a WARNING can if the end user explicitly opts in.
"""

from __future__ import annotations

import datetime
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from records import ShiftRequest, TimeSuggestion
from repository import ShiftRepository
from settings import EVALUATOR_WORKERS
from suggestions import suggest_alternative_times
from timeutils import (
    MINUTES_PER_DAY,
    as_local,
    day_of_week,
    format_time_of_day,
    hours,
    time_of_day_minutes,
    week_bounds,
)

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class ConflictType(str, Enum):
    OVERLAPPING_SHIFT = "OVERLAPPING_SHIFT"
    OUTSIDE_AVAILABILITY = "OUTSIDE_AVAILABILITY"
    WEEKLY_HOURS_EXCEEDED = "WEEKLY_HOURS_EXCEEDED"


class ConflictSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


SEVERITY_BY_TYPE: Dict[ConflictType, ConflictSeverity] = {
    ConflictType.OVERLAPPING_SHIFT: ConflictSeverity.ERROR,
    ConflictType.OUTSIDE_AVAILABILITY: ConflictSeverity.WARNING,
    ConflictType.WEEKLY_HOURS_EXCEEDED: ConflictSeverity.WARNING,
}


@dataclass(frozen=True)
class OverlapDetails:
    conflicting_shift_id: int
    conflicting_start_time: datetime.datetime
    conflicting_end_time: datetime.datetime
    department: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflictingShiftId": self.conflicting_shift_id,
            "conflictingStartTime": self.conflicting_start_time.isoformat(),
            "conflictingEndTime": self.conflicting_end_time.isoformat(),
            "department": self.department,
        }


@dataclass(frozen=True)
class MissingAvailabilityDetails:
    day_of_week: int
    availability_set: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"dayOfWeek": self.day_of_week, "availabilitySet": self.availability_set}


@dataclass(frozen=True)
class AvailabilityBoundaryDetails:
    day_of_week: int
    availability_start: str
    availability_end: str
    shift_start: str
    shift_end: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dayOfWeek": self.day_of_week,
            "availabilityStart": self.availability_start,
            "availabilityEnd": self.availability_end,
            "shiftStart": self.shift_start,
            "shiftEnd": self.shift_end,
        }


@dataclass(frozen=True)
class WeeklyHoursDetails:
    weekly_limit: float
    current_hours: float
    new_shift_hours: float
    total_hours: float
    exceeded_by: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weeklyLimit": self.weekly_limit,
            "currentHours": self.current_hours,
            "newShiftHours": self.new_shift_hours,
            "totalHours": self.total_hours,
            "exceededBy": self.exceeded_by,
        }


ConflictDetails = Union[
    OverlapDetails,
    MissingAvailabilityDetails,
    AvailabilityBoundaryDetails,
    WeeklyHoursDetails,
]


@dataclass(frozen=True)
class Conflict:
    type: ConflictType
    message: str
    details: ConflictDetails

    @property
    def severity(self) -> ConflictSeverity:
        return SEVERITY_BY_TYPE[self.type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "details": self.details.to_dict(),
        }


@dataclass(frozen=True)
class ConflictCheckResult:
    conflicts: List[Conflict] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return len(self.conflicts) > 0

    @property
    def can_override(self) -> bool:
        return not any(conflict.severity is ConflictSeverity.ERROR for conflict in self.conflicts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasConflicts": self.has_conflicts,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "canOverride": self.can_override,
        }


class ConflictChecker:
    def __init__(self, repository: ShiftRepository, *, max_workers: int = EVALUATOR_WORKERS) -> None:
        self.repository = repository
        self.max_workers = max(1, int(max_workers))

    def check_overlapping_shift(self, request: ShiftRequest, organization_id: int) -> Optional[Conflict]:
        existing = self.repository.find_overlapping_shift(
            request.employee_id,
            organization_id,
            request.start_time,
            request.end_time,
            request.exclude_shift_id,
        )
        if existing is None:
            return None
        return Conflict(
            type=ConflictType.OVERLAPPING_SHIFT,
            message=(
                f"Employee already has a shift from {format_time_of_day(existing.start_time)} "
                f"to {format_time_of_day(existing.end_time)}."
            ),
            details=OverlapDetails(
                conflicting_shift_id=existing.id,
                conflicting_start_time=existing.start_time,
                conflicting_end_time=existing.end_time,
                department=existing.department_name,
            ),
        )

    def check_availability(self, request: ShiftRequest) -> Optional[Conflict]:
        start = as_local(request.start_time)
        end = as_local(request.end_time)
        weekday = day_of_week(start)
        window = self.repository.find_availability(request.employee_id, weekday)
        if window is None:
            return Conflict(
                type=ConflictType.OUTSIDE_AVAILABILITY,
                message=f"Employee is not available on {DAY_NAMES[weekday]}.",
                details=MissingAvailabilityDetails(day_of_week=weekday),
            )

        shift_start = time_of_day_minutes(start)
        # An end on a later day is measured from the start day's midnight.
        shift_end = time_of_day_minutes(end) + MINUTES_PER_DAY * (end.date() - start.date()).days
        if shift_start < time_of_day_minutes(window.start_time) or shift_end > time_of_day_minutes(window.end_time):
            return Conflict(
                type=ConflictType.OUTSIDE_AVAILABILITY,
                message=f"Shift falls outside availability ({window.start_label} - {window.end_label}).",
                details=AvailabilityBoundaryDetails(
                    day_of_week=weekday,
                    availability_start=window.start_label,
                    availability_end=window.end_label,
                    shift_start=format_time_of_day(start),
                    shift_end=format_time_of_day(end),
                ),
            )
        return None

    def check_weekly_hours(self, request: ShiftRequest) -> Optional[Conflict]:
        policy = self.repository.find_employee_hours_policy(request.employee_id)
        if policy is None or not policy.weekly_hours_limit:
            return None
        limit = float(policy.weekly_hours_limit)
        week_start, week_end = week_bounds(request.start_time)
        existing = self.repository.list_shifts_in_week(
            request.employee_id, week_start, week_end, request.exclude_shift_id
        )
        current_hours = sum(hours(shift.start_time, shift.end_time) for shift in existing)
        new_shift_hours = hours(request.start_time, request.end_time)
        total_hours = current_hours + new_shift_hours
        if total_hours <= limit:
            return None
        return Conflict(
            type=ConflictType.WEEKLY_HOURS_EXCEEDED,
            message=f"Weekly hours limit exceeded: {total_hours:.1f}/{limit:g} h/week.",
            details=WeeklyHoursDetails(
                weekly_limit=limit,
                current_hours=current_hours,
                new_shift_hours=new_shift_hours,
                total_hours=total_hours,
                exceeded_by=total_hours - limit,
            ),
        )

    def check_conflicts(self, request: ShiftRequest, organization_id: int) -> ConflictCheckResult:
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="conflict-check") as pool:
            overlap = pool.submit(self.check_overlapping_shift, request, organization_id)
            availability = pool.submit(self.check_availability, request)
            weekly_hours = pool.submit(self.check_weekly_hours, request)
            # result() re-raises evaluator failures; a failed read is never "no conflict".
            findings = [overlap.result(), availability.result(), weekly_hours.result()]
        result = ConflictCheckResult(conflicts=[conflict for conflict in findings if conflict is not None])
        logger.debug(
            "Conflict check employee=%s org=%s %s-%s: %d conflict(s), can_override=%s",
            request.employee_id,
            organization_id,
            request.start_time.isoformat(),
            request.end_time.isoformat(),
            len(result.conflicts),
            result.can_override,
        )
        return result

    def suggest_alternatives(self, request: ShiftRequest, organization_id: int) -> List[TimeSuggestion]:
        return suggest_alternative_times(self.repository, request, organization_id)
