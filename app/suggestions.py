from __future__ import annotations

import datetime
import logging
from typing import List

from records import ShiftRequest, TimeSuggestion
from repository import ShiftRepository
from settings import MAX_SUGGESTIONS
from timeutils import as_local, combine, day_of_week

logger = logging.getLogger(__name__)

REASON_START_OF_WINDOW = "Start of availability window"
REASON_BEFORE_FIRST_SHIFT = "Before first shift"
REASON_BETWEEN_SHIFTS = "Between shifts"
REASON_AFTER_LAST_SHIFT = "After last shift"


def suggest_alternative_times(
    repository: ShiftRepository,
    request: ShiftRequest,
    organization_id: int,
    *,
    limit: int = MAX_SUGGESTIONS,
) -> List[TimeSuggestion]:
    """Propose up to ``limit`` same-length slots on the requested day.

    Slots are reported in the order they are found walking the day: the start of
    the availability window, the gaps between existing shifts, then the time after
    the last shift. Every slot sits inside the availability window and clear of
    the employee's other shifts. No availability for the day means no slots.
    """
    start = as_local(request.start_time)
    duration = request.duration
    window = repository.find_availability(request.employee_id, day_of_week(start))
    if window is None:
        return []

    day = start.date()
    day_start = combine(day, datetime.time.min)
    day_end = day_start + datetime.timedelta(days=1)
    window_start = combine(day, window.start_time)
    window_end = combine(day, window.end_time)
    # Shifts carried in from the previous night or running past midnight are cut to the day.
    busy = [
        (max(shift.start_time, day_start), min(shift.end_time, day_end))
        for shift in repository.list_shifts_on_day(
            request.employee_id, organization_id, day, request.exclude_shift_id
        )
    ]
    suggestions: List[TimeSuggestion] = []

    def propose(slot_start: datetime.datetime, reason: str) -> None:
        slot_end = slot_start + duration
        if slot_start >= window_start and slot_end <= window_end:
            suggestions.append(TimeSuggestion(start_time=slot_start, end_time=slot_end, reason=reason))

    if not busy:
        propose(window_start, REASON_START_OF_WINDOW)
    else:
        first_start, latest_end = busy[0]
        if window_start + duration <= first_start:
            propose(window_start, REASON_BEFORE_FIRST_SHIFT)
        for busy_start, busy_end in busy[1:]:
            gap_start = max(latest_end, window_start)
            if gap_start + duration <= busy_start:
                propose(gap_start, REASON_BETWEEN_SHIFTS)
            latest_end = max(latest_end, busy_end)
        propose(max(latest_end, window_start), REASON_AFTER_LAST_SHIFT)

    logger.debug(
        "Found %d alternative slot(s) for employee=%s on %s",
        len(suggestions),
        request.employee_id,
        day.isoformat(),
    )
    return suggestions[: max(0, limit)]
