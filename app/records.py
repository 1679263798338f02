"""Plain read records exchanged between the repository and the scheduling engine.

ORM rows stay inside the repository; the engine only ever sees these frozen
snapshots, so an evaluation cannot lazily touch the database.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from timeutils import format_time_of_day


class ShiftStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ShiftRequest:
    employee_id: int
    start_time: datetime.datetime
    end_time: datetime.datetime
    exclude_shift_id: Optional[int] = None

    @property
    def duration(self) -> datetime.timedelta:
        return self.end_time - self.start_time


@dataclass(frozen=True)
class ShiftRecord:
    id: int
    employee_id: Optional[int]
    organization_id: int
    start_time: datetime.datetime
    end_time: datetime.datetime
    status: ShiftStatus = ShiftStatus.SCHEDULED
    position: str = ""
    department_id: Optional[int] = None
    department_name: Optional[str] = None
    notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "employeeId": self.employee_id,
            "organizationId": self.organization_id,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "status": self.status.value,
            "position": self.position,
            "departmentId": self.department_id,
            "departmentName": self.department_name,
            "notes": self.notes,
        }


@dataclass(frozen=True)
class ShiftDraft:
    organization_id: int
    employee_id: Optional[int]
    start_time: datetime.datetime
    end_time: datetime.datetime
    position: str
    department_id: Optional[int] = None
    status: ShiftStatus = ShiftStatus.SCHEDULED
    notes: str = ""
    template_id: Optional[int] = None


@dataclass(frozen=True)
class AvailabilityWindow:
    employee_id: int
    day_of_week: int  # 0 = Sunday
    start_time: datetime.time
    end_time: datetime.time

    @property
    def start_label(self) -> str:
        return format_time_of_day(self.start_time)

    @property
    def end_label(self) -> str:
        return format_time_of_day(self.end_time)


@dataclass(frozen=True)
class EmployeeHoursPolicy:
    employee_id: int
    weekly_hours_limit: Optional[float] = None


@dataclass(frozen=True)
class EmployeeRecord:
    id: int
    organization_id: int
    full_name: str
    position: str = ""


@dataclass(frozen=True)
class EmployeeWithAvailability:
    employee: EmployeeRecord
    windows: List[AvailabilityWindow] = field(default_factory=list)

    def available_on(self, day_of_week: int) -> bool:
        return any(window.day_of_week == day_of_week for window in self.windows)


@dataclass(frozen=True)
class TemplateRecord:
    id: int
    organization_id: int
    name: str
    day_of_week: int  # 0 = Sunday
    start_time: datetime.time
    end_time: datetime.time
    position: str
    department_id: Optional[int] = None
    department_name: Optional[str] = None
    required_employees: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organizationId": self.organization_id,
            "name": self.name,
            "dayOfWeek": self.day_of_week,
            "startTime": format_time_of_day(self.start_time),
            "endTime": format_time_of_day(self.end_time),
            "position": self.position,
            "departmentId": self.department_id,
            "departmentName": self.department_name,
            "requiredEmployees": self.required_employees,
        }


@dataclass(frozen=True)
class TimeSuggestion:
    start_time: datetime.datetime
    end_time: datetime.datetime
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ShiftPreview:
    template_id: int
    template_name: str
    start_time: datetime.datetime
    end_time: datetime.datetime
    position: str
    department_id: Optional[int]
    department_name: Optional[str]
    day_of_week: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "templateId": self.template_id,
            "templateName": self.template_name,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "position": self.position,
            "departmentId": self.department_id,
            "departmentName": self.department_name,
            "dayOfWeek": self.day_of_week,
        }


@dataclass(frozen=True)
class TemplatePreview:
    shifts: List[ShiftPreview]

    @property
    def count(self) -> int:
        return len(self.shifts)

    def counts_by_day(self) -> Dict[datetime.date, int]:
        counts: Dict[datetime.date, int] = {}
        for preview in self.shifts:
            day = preview.start_time.date()
            counts[day] = counts.get(day, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preview": True,
            "count": self.count,
            "countsByDay": {day.isoformat(): count for day, count in self.counts_by_day().items()},
            "shifts": [preview.to_dict() for preview in self.shifts],
        }
