from __future__ import annotations

import datetime
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from conflicts import (  # noqa: E402
    AvailabilityBoundaryDetails,
    ConflictChecker,
    ConflictSeverity,
    ConflictType,
    MissingAvailabilityDetails,
    OverlapDetails,
    WeeklyHoursDetails,
)
from records import (  # noqa: E402
    AvailabilityWindow,
    EmployeeHoursPolicy,
    ShiftRecord,
    ShiftRequest,
    ShiftStatus,
)
from repository import StorageError  # noqa: E402
from suggestions import (  # noqa: E402
    REASON_AFTER_LAST_SHIFT,
    REASON_BEFORE_FIRST_SHIFT,
    REASON_BETWEEN_SHIFTS,
    REASON_START_OF_WINDOW,
)
from timeutils import day_bounds, overlaps  # noqa: E402

ORG = 1
EMPLOYEE = 10
MONDAY = datetime.date(2024, 1, 15)


def at(day: datetime.date, hour: int, minute: int = 0) -> datetime.datetime:
    return datetime.datetime.combine(day, datetime.time(hour, minute))


class FakeRepository:
    """In-memory stand-in for the SQLAlchemy repository."""

    def __init__(self) -> None:
        self.shifts: List[ShiftRecord] = []
        self.windows: List[AvailabilityWindow] = []
        self.limits: Dict[int, Optional[float]] = {}
        self.fail_on: Optional[str] = None

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_on == operation:
            raise StorageError(f"{operation} failed")

    def add_shift(
        self,
        shift_id: int,
        start: datetime.datetime,
        end: datetime.datetime,
        *,
        employee_id: int = EMPLOYEE,
        organization_id: int = ORG,
        status: ShiftStatus = ShiftStatus.SCHEDULED,
        department: Optional[str] = None,
    ) -> ShiftRecord:
        shift = ShiftRecord(
            id=shift_id,
            employee_id=employee_id,
            organization_id=organization_id,
            start_time=start,
            end_time=end,
            status=status,
            department_name=department,
        )
        self.shifts.append(shift)
        return shift

    def add_window(self, day_of_week: int, start: str, end: str, *, employee_id: int = EMPLOYEE) -> None:
        self.windows.append(
            AvailabilityWindow(
                employee_id=employee_id,
                day_of_week=day_of_week,
                start_time=datetime.time.fromisoformat(start),
                end_time=datetime.time.fromisoformat(end),
            )
        )

    def _active(self, employee_id: int, exclude_shift_id: Optional[int]) -> List[ShiftRecord]:
        return sorted(
            (
                shift
                for shift in self.shifts
                if shift.employee_id == employee_id
                and shift.status is not ShiftStatus.CANCELLED
                and shift.id != exclude_shift_id
            ),
            key=lambda shift: (shift.start_time, shift.id),
        )

    def find_overlapping_shift(self, employee_id, organization_id, start, end, exclude_shift_id=None):
        self._maybe_fail("overlap")
        for shift in self._active(employee_id, exclude_shift_id):
            if shift.organization_id == organization_id and overlaps(start, end, shift.start_time, shift.end_time):
                return shift
        return None

    def find_availability(self, employee_id, day_of_week):
        self._maybe_fail("availability")
        for window in self.windows:
            if window.employee_id == employee_id and window.day_of_week == day_of_week:
                return window
        return None

    def find_employee_hours_policy(self, employee_id):
        self._maybe_fail("hours")
        if employee_id not in self.limits:
            return None
        return EmployeeHoursPolicy(employee_id=employee_id, weekly_hours_limit=self.limits[employee_id])

    def list_shifts_in_week(self, employee_id, week_start, week_end, exclude_shift_id=None):
        return [
            shift
            for shift in self._active(employee_id, exclude_shift_id)
            if shift.start_time >= week_start and shift.end_time <= week_end
        ]

    def list_shifts_on_day(self, employee_id, organization_id, day, exclude_shift_id=None):
        day_start, _ = day_bounds(day)
        next_day = day_start + datetime.timedelta(days=1)
        return [
            shift
            for shift in self._active(employee_id, exclude_shift_id)
            if shift.organization_id == organization_id
            and shift.start_time < next_day
            and shift.end_time > day_start
        ]


@pytest.fixture()
def repo() -> FakeRepository:
    return FakeRepository()


@pytest.fixture()
def checker(repo: FakeRepository) -> ConflictChecker:
    return ConflictChecker(repo)


def request_for(start: datetime.datetime, end: datetime.datetime, **kwargs) -> ShiftRequest:
    return ShiftRequest(employee_id=EMPLOYEE, start_time=start, end_time=end, **kwargs)


def test_overlap_reports_single_error_with_conflicting_shift(repo, checker):
    repo.add_window(1, "06:00", "20:00")
    repo.add_shift(5, at(MONDAY, 8), at(MONDAY, 12), department="Kitchen")

    result = checker.check_conflicts(request_for(at(MONDAY, 10), at(MONDAY, 14)), ORG)

    assert result.has_conflicts
    assert result.can_override is False
    assert [c.type for c in result.conflicts] == [ConflictType.OVERLAPPING_SHIFT]
    conflict = result.conflicts[0]
    assert conflict.severity is ConflictSeverity.ERROR
    assert isinstance(conflict.details, OverlapDetails)
    assert conflict.details.conflicting_shift_id == 5
    assert conflict.details.department == "Kitchen"
    assert conflict.to_dict()["details"]["conflictingShiftId"] == 5


@pytest.mark.parametrize(
    "start, end",
    [
        ((7, 0), (9, 0)),  # ends inside
        ((11, 0), (13, 0)),  # starts inside
        ((9, 0), (11, 0)),  # contained
        ((7, 0), (13, 0)),  # contains
        ((8, 0), (12, 0)),  # identical
    ],
)
def test_overlap_detects_every_intersection_shape(repo, checker, start, end):
    repo.add_shift(5, at(MONDAY, 8), at(MONDAY, 12))

    conflict = checker.check_overlapping_shift(request_for(at(MONDAY, *start), at(MONDAY, *end)), ORG)

    assert conflict is not None
    assert conflict.type is ConflictType.OVERLAPPING_SHIFT


def test_touching_shifts_do_not_overlap(repo, checker):
    repo.add_shift(5, at(MONDAY, 8), at(MONDAY, 12))

    assert checker.check_overlapping_shift(request_for(at(MONDAY, 12), at(MONDAY, 16)), ORG) is None
    assert checker.check_overlapping_shift(request_for(at(MONDAY, 4), at(MONDAY, 8)), ORG) is None


def test_overlap_reports_only_first_match(repo, checker):
    repo.add_shift(5, at(MONDAY, 8), at(MONDAY, 10))
    repo.add_shift(6, at(MONDAY, 11), at(MONDAY, 13))

    result = checker.check_conflicts(request_for(at(MONDAY, 9), at(MONDAY, 12)), ORG)

    overlaps_found = [c for c in result.conflicts if c.type is ConflictType.OVERLAPPING_SHIFT]
    assert len(overlaps_found) == 1
    assert overlaps_found[0].details.conflicting_shift_id == 5


def test_cancelled_and_foreign_shifts_are_ignored(repo, checker):
    repo.add_shift(5, at(MONDAY, 8), at(MONDAY, 12), status=ShiftStatus.CANCELLED)
    repo.add_shift(6, at(MONDAY, 8), at(MONDAY, 12), organization_id=2)
    repo.add_shift(7, at(MONDAY, 8), at(MONDAY, 12), employee_id=99)

    assert checker.check_overlapping_shift(request_for(at(MONDAY, 9), at(MONDAY, 11)), ORG) is None


def test_missing_availability_is_a_warning_with_flag(repo, checker):
    result = checker.check_conflicts(request_for(at(MONDAY, 9), at(MONDAY, 17)), ORG)

    assert [c.type for c in result.conflicts] == [ConflictType.OUTSIDE_AVAILABILITY]
    conflict = result.conflicts[0]
    assert conflict.severity is ConflictSeverity.WARNING
    assert isinstance(conflict.details, MissingAvailabilityDetails)
    assert conflict.details.availability_set is False
    assert conflict.to_dict()["details"] == {"dayOfWeek": 1, "availabilitySet": False}
    assert result.can_override is True


def test_shift_starting_before_window_is_a_boundary_warning(repo, checker):
    repo.add_window(1, "10:00", "16:00")

    result = checker.check_conflicts(request_for(at(MONDAY, 8), at(MONDAY, 14)), ORG)

    conflict = result.conflicts[0]
    assert conflict.type is ConflictType.OUTSIDE_AVAILABILITY
    assert isinstance(conflict.details, AvailabilityBoundaryDetails)
    assert conflict.details.shift_start == "08:00"
    assert conflict.details.availability_start == "10:00"
    assert "availabilitySet" not in conflict.to_dict()["details"]
    assert result.can_override is True


def test_shift_exactly_filling_window_is_accepted(repo, checker):
    repo.add_window(1, "10:00", "16:00")

    assert checker.check_availability(request_for(at(MONDAY, 10), at(MONDAY, 16))) is None


def test_shift_ending_after_window_is_a_boundary_warning(repo, checker):
    repo.add_window(1, "10:00", "16:00")

    conflict = checker.check_availability(request_for(at(MONDAY, 12), at(MONDAY, 16, 30)))

    assert conflict is not None
    assert conflict.details.shift_end == "16:30"


def test_overnight_shift_exceeds_same_day_window(repo, checker):
    repo.add_window(1, "08:00", "23:00")

    conflict = checker.check_availability(
        request_for(at(MONDAY, 22), at(MONDAY + datetime.timedelta(days=1), 2))
    )

    assert conflict is not None
    assert isinstance(conflict.details, AvailabilityBoundaryDetails)


def test_availability_uses_sunday_based_day_index(repo, checker):
    sunday = MONDAY - datetime.timedelta(days=1)
    repo.add_window(0, "09:00", "17:00")

    assert checker.check_availability(request_for(at(sunday, 9), at(sunday, 17))) is None


def _fill_week(repo: FakeRepository, hours_per_day: List[float]) -> None:
    for offset, length in enumerate(hours_per_day):
        day = MONDAY + datetime.timedelta(days=offset)
        start = at(day, 8)
        repo.add_shift(100 + offset, start, start + datetime.timedelta(hours=length))


def test_weekly_hours_exceeded_reports_totals(repo, checker):
    repo.limits[EMPLOYEE] = 40
    _fill_week(repo, [9, 9, 9, 9])
    friday = MONDAY + datetime.timedelta(days=4)

    conflict = checker.check_weekly_hours(request_for(at(friday, 9), at(friday, 17)))

    assert conflict is not None
    assert conflict.severity is ConflictSeverity.WARNING
    assert isinstance(conflict.details, WeeklyHoursDetails)
    assert conflict.details.weekly_limit == 40
    assert conflict.details.current_hours == 36
    assert conflict.details.new_shift_hours == 8
    assert conflict.details.total_hours == 44
    assert conflict.details.exceeded_by == 4


def test_weekly_hours_under_limit_is_clean(repo, checker):
    repo.limits[EMPLOYEE] = 40
    _fill_week(repo, [8, 8])
    friday = MONDAY + datetime.timedelta(days=4)

    assert checker.check_weekly_hours(request_for(at(friday, 9), at(friday, 17))) is None


def test_weekly_hours_exactly_at_limit_is_clean(repo, checker):
    repo.limits[EMPLOYEE] = 40
    _fill_week(repo, [8, 8, 8, 8])
    friday = MONDAY + datetime.timedelta(days=4)

    assert checker.check_weekly_hours(request_for(at(friday, 9), at(friday, 17))) is None


def test_weekly_hours_half_hour_over_limit(repo, checker):
    repo.limits[EMPLOYEE] = 40
    _fill_week(repo, [8, 8, 8, 8])
    friday = MONDAY + datetime.timedelta(days=4)

    conflict = checker.check_weekly_hours(request_for(at(friday, 8), at(friday, 16, 30)))

    assert conflict is not None
    assert conflict.details.exceeded_by == pytest.approx(0.5)


def test_weekly_hours_ignores_other_weeks_and_missing_limit(repo, checker):
    repo.add_shift(1, at(MONDAY - datetime.timedelta(days=1), 0), at(MONDAY - datetime.timedelta(days=1), 20))
    repo.limits[EMPLOYEE] = 10

    assert checker.check_weekly_hours(request_for(at(MONDAY, 9), at(MONDAY, 17))) is None

    repo.limits[EMPLOYEE] = None
    _fill_week(repo, [12, 12, 12, 12, 12])
    assert checker.check_weekly_hours(request_for(at(MONDAY, 21), at(MONDAY, 23))) is None


def test_update_excludes_the_shift_being_edited(repo, checker):
    repo.add_window(1, "06:00", "20:00")
    repo.limits[EMPLOYEE] = 8
    repo.add_shift(7, at(MONDAY, 9), at(MONDAY, 17))

    result = checker.check_conflicts(request_for(at(MONDAY, 10), at(MONDAY, 18), exclude_shift_id=7), ORG)

    assert result.has_conflicts is False
    assert result.conflicts == []
    assert result.can_override is True


def test_conflicts_are_ordered_overlap_availability_hours(repo, checker):
    repo.limits[EMPLOYEE] = 4
    repo.add_shift(5, at(MONDAY, 8), at(MONDAY, 12))

    result = checker.check_conflicts(request_for(at(MONDAY, 10), at(MONDAY, 14)), ORG)

    assert [c.type for c in result.conflicts] == [
        ConflictType.OVERLAPPING_SHIFT,
        ConflictType.OUTSIDE_AVAILABILITY,
        ConflictType.WEEKLY_HOURS_EXCEEDED,
    ]
    assert result.can_override is False


def test_clean_request_has_no_conflicts(repo, checker):
    repo.add_window(1, "08:00", "18:00")
    repo.limits[EMPLOYEE] = 40
    repo.add_shift(5, at(MONDAY + datetime.timedelta(days=1), 8), at(MONDAY + datetime.timedelta(days=1), 16))

    result = checker.check_conflicts(request_for(at(MONDAY, 9), at(MONDAY, 17)), ORG)

    assert result.to_dict() == {"hasConflicts": False, "conflicts": [], "canOverride": True}


def test_repeated_checks_are_identical(repo, checker):
    repo.limits[EMPLOYEE] = 4
    repo.add_shift(5, at(MONDAY, 8), at(MONDAY, 12))
    request = request_for(at(MONDAY, 10), at(MONDAY, 14))

    assert checker.check_conflicts(request, ORG) == checker.check_conflicts(request, ORG)


@pytest.mark.parametrize("operation", ["overlap", "availability", "hours"])
def test_storage_failure_propagates_instead_of_passing(repo, checker, operation):
    repo.add_window(1, "06:00", "20:00")
    repo.fail_on = operation

    with pytest.raises(StorageError):
        checker.check_conflicts(request_for(at(MONDAY, 9), at(MONDAY, 17)), ORG)


def test_suggestions_need_availability(repo, checker):
    assert checker.suggest_alternatives(request_for(at(MONDAY, 9), at(MONDAY, 17)), ORG) == []


def test_suggestion_on_empty_day_starts_at_window(repo, checker):
    repo.add_window(1, "09:00", "17:00")

    suggestions = checker.suggest_alternatives(request_for(at(MONDAY, 10), at(MONDAY, 18)), ORG)

    assert len(suggestions) == 1
    assert suggestions[0].start_time == at(MONDAY, 9)
    assert suggestions[0].end_time == at(MONDAY, 17)
    assert suggestions[0].reason == REASON_START_OF_WINDOW


def test_no_suggestion_when_request_longer_than_window(repo, checker):
    repo.add_window(1, "09:00", "13:00")

    assert checker.suggest_alternatives(request_for(at(MONDAY, 9), at(MONDAY, 17)), ORG) == []


def test_suggestions_walk_the_day_in_order(repo, checker):
    repo.add_window(1, "08:00", "22:00")
    repo.add_shift(1, at(MONDAY, 10), at(MONDAY, 12))
    repo.add_shift(2, at(MONDAY, 14), at(MONDAY, 16))

    suggestions = checker.suggest_alternatives(request_for(at(MONDAY, 11), at(MONDAY, 13)), ORG)

    assert [(s.start_time.hour, s.end_time.hour, s.reason) for s in suggestions] == [
        (8, 10, REASON_BEFORE_FIRST_SHIFT),
        (12, 14, REASON_BETWEEN_SHIFTS),
        (16, 18, REASON_AFTER_LAST_SHIFT),
    ]


def test_suggestions_are_capped_at_three(repo, checker):
    repo.add_window(1, "08:00", "22:00")
    for index, hour in enumerate((10, 12, 14)):
        repo.add_shift(index + 1, at(MONDAY, hour), at(MONDAY, hour + 1))

    suggestions = checker.suggest_alternatives(request_for(at(MONDAY, 10), at(MONDAY, 11)), ORG)

    assert [s.start_time.hour for s in suggestions] == [8, 11, 13]


def test_suggestions_never_overlap_or_change_duration(repo, checker):
    repo.add_window(1, "08:00", "20:00")
    repo.add_shift(1, at(MONDAY, 8), at(MONDAY, 16))
    repo.add_shift(2, at(MONDAY, 9), at(MONDAY, 10))
    repo.add_shift(3, at(MONDAY, 12), at(MONDAY, 13))
    request = request_for(at(MONDAY, 9), at(MONDAY, 10, 30))

    suggestions = checker.suggest_alternatives(request, ORG)

    assert suggestions
    for suggestion in suggestions:
        assert suggestion.end_time - suggestion.start_time == request.duration
        for shift in repo.shifts:
            assert not overlaps(suggestion.start_time, suggestion.end_time, shift.start_time, shift.end_time)
    assert suggestions[0].start_time == at(MONDAY, 16)


def test_suggestions_ignore_the_shift_being_moved(repo, checker):
    repo.add_window(1, "09:00", "17:00")
    repo.add_shift(7, at(MONDAY, 9), at(MONDAY, 17))

    suggestions = checker.suggest_alternatives(
        request_for(at(MONDAY, 8), at(MONDAY, 16), exclude_shift_id=7), ORG
    )

    assert [(s.start_time, s.reason) for s in suggestions] == [(at(MONDAY, 9), REASON_START_OF_WINDOW)]


def test_suggestions_skip_shift_running_past_midnight(repo, checker):
    repo.add_window(1, "18:00", "23:59")
    repo.add_shift(5, at(MONDAY, 20), at(MONDAY + datetime.timedelta(days=1), 4))
    request = request_for(at(MONDAY, 19), at(MONDAY, 22))

    result = checker.check_conflicts(request, ORG)
    suggestions = checker.suggest_alternatives(request, ORG)

    assert [c.type for c in result.conflicts][0] is ConflictType.OVERLAPPING_SHIFT
    assert suggestions == []


def test_suggestions_start_after_shift_carried_in_from_previous_night(repo, checker):
    sunday = MONDAY - datetime.timedelta(days=1)
    repo.add_window(1, "00:00", "12:00")
    repo.add_shift(5, at(sunday, 22), at(MONDAY, 6))

    suggestions = checker.suggest_alternatives(request_for(at(MONDAY, 2), at(MONDAY, 6)), ORG)

    assert [(s.start_time, s.end_time, s.reason) for s in suggestions] == [
        (at(MONDAY, 6), at(MONDAY, 10), REASON_AFTER_LAST_SHIFT)
    ]
    for suggestion in suggestions:
        assert not overlaps(suggestion.start_time, suggestion.end_time, at(sunday, 22), at(MONDAY, 6))
