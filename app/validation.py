"""Request parsing for the HTTP layer.

The scheduling engine assumes well-formed input; everything that reaches it goes
through these helpers first. Each raises ``ValueError`` with a user-facing message.
"""

from __future__ import annotations

import datetime
from typing import Any, Dict, List, Optional, Tuple

from records import ShiftRequest, ShiftStatus
from settings import DEFAULT_REQUIRED_EMPLOYEES
from timeutils import as_local, parse_time_of_day

TEMPLATE_FIELDS = {
    "name": "name",
    "dayOfWeek": "day_of_week",
    "startTime": "start_time",
    "endTime": "end_time",
    "position": "position",
    "departmentId": "department_id",
    "requiredEmployees": "required_employees",
}


def parse_datetime(value: Any, field: str) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return as_local(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required.")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return as_local(datetime.datetime.fromisoformat(text))
    except ValueError:
        raise ValueError(f"{field} must be an ISO 8601 date-time.")


def parse_date(value: Any, field: str) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return as_local(value).date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required.")
    try:
        return datetime.date.fromisoformat(value.strip()[:10])
    except ValueError:
        raise ValueError(f"{field} must be YYYY-MM-DD.")


def parse_id(value: Any, field: str, *, required: bool = True) -> Optional[int]:
    if value is None or value == "":
        if required:
            raise ValueError(f"{field} is required.")
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer id.")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer id.")
    if parsed <= 0:
        raise ValueError(f"{field} must be a positive id.")
    return parsed


def parse_day_of_week(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("dayOfWeek must be an integer from 0 (Sunday) to 6 (Saturday).")
    if value < 0 or value > 6:
        raise ValueError("dayOfWeek must be from 0 (Sunday) to 6 (Saturday).")
    return value


def parse_shift_request(payload: Dict[str, Any], *, exclude_shift_id: Optional[int] = None) -> ShiftRequest:
    employee_id = parse_id(payload.get("employeeId"), "employeeId")
    start = parse_datetime(payload.get("startTime"), "startTime")
    end = parse_datetime(payload.get("endTime"), "endTime")
    if end <= start:
        raise ValueError("endTime must be after startTime.")
    if exclude_shift_id is None:
        exclude_shift_id = parse_id(payload.get("shiftId"), "shiftId", required=False)
    return ShiftRequest(employee_id=employee_id, start_time=start, end_time=end, exclude_shift_id=exclude_shift_id)


def parse_shift_payload(payload: Dict[str, Any], *, existing: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return snake_case shift fields; ``existing`` supplies values an update leaves out."""
    merged: Dict[str, Any] = dict(existing or {})
    if "employeeId" in payload:
        merged["employee_id"] = parse_id(payload.get("employeeId"), "employeeId")
    if "startTime" in payload:
        merged["start_time"] = parse_datetime(payload.get("startTime"), "startTime")
    if "endTime" in payload:
        merged["end_time"] = parse_datetime(payload.get("endTime"), "endTime")
    if "position" in payload:
        merged["position"] = str(payload.get("position") or "").strip()
    if "departmentId" in payload:
        merged["department_id"] = parse_id(payload.get("departmentId"), "departmentId", required=False)
    if "notes" in payload:
        merged["notes"] = str(payload.get("notes") or "")
    if "status" in payload and payload.get("status"):
        try:
            merged["status"] = ShiftStatus(str(payload["status"]).lower())
        except ValueError:
            choices = ", ".join(status.value for status in ShiftStatus)
            raise ValueError(f"status must be one of: {choices}.")

    if merged.get("employee_id") is None:
        raise ValueError("employeeId is required.")
    if merged.get("start_time") is None or merged.get("end_time") is None:
        raise ValueError("startTime and endTime are required.")
    if merged["end_time"] <= merged["start_time"]:
        raise ValueError("endTime must be after startTime.")
    if not merged.get("position"):
        raise ValueError("position is required.")
    return merged


def parse_template_payload(payload: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
    if not partial:
        missing = [key for key in ("name", "dayOfWeek", "startTime", "endTime", "position") if payload.get(key) in (None, "")]
        if missing:
            raise ValueError(f"Missing required template fields: {', '.join(missing)}.")
    fields: Dict[str, Any] = {}
    for wire_key, column in TEMPLATE_FIELDS.items():
        if wire_key not in payload:
            continue
        value = payload[wire_key]
        if wire_key == "dayOfWeek":
            value = parse_day_of_week(value)
        elif wire_key in ("startTime", "endTime"):
            value = parse_time_of_day(value)
        elif wire_key == "departmentId":
            value = parse_id(value, "departmentId", required=False)
        elif wire_key == "requiredEmployees":
            value = _parse_required_employees(value)
        else:
            value = str(value or "").strip()
            if not value:
                raise ValueError(f"{wire_key} must not be empty.")
        fields[column] = value
    if not partial and "required_employees" not in fields:
        fields["required_employees"] = DEFAULT_REQUIRED_EMPLOYEES
    return fields


def _parse_required_employees(value: Any) -> int:
    if value is None:
        return DEFAULT_REQUIRED_EMPLOYEES
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError("requiredEmployees must be a positive integer.")
    return value


def parse_availability(entries: Any) -> List[Tuple[int, datetime.time, datetime.time]]:
    """Parse weekly availability; a window must end after it starts on the same day."""
    if not isinstance(entries, list):
        raise ValueError("availability must be a list of {dayOfWeek, startTime, endTime} entries.")
    windows: List[Tuple[int, datetime.time, datetime.time]] = []
    seen = set()
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValueError("availability entries must be objects.")
        day = parse_day_of_week(entry.get("dayOfWeek"))
        start = parse_time_of_day(entry.get("startTime"))
        end = parse_time_of_day(entry.get("endTime"))
        if end <= start:
            raise ValueError(
                "Availability windows cannot span midnight; split them into two days."
            )
        if day in seen:
            raise ValueError(f"Only one availability window is allowed per day (dayOfWeek={day}).")
        seen.add(day)
        windows.append((day, start, end))
    return windows


def parse_apply_payload(payload: Dict[str, Any]) -> Tuple[List[int], datetime.date, datetime.date]:
    template_ids = payload.get("templateIds")
    if not isinstance(template_ids, list) or not template_ids:
        raise ValueError("Select at least one template.")
    ids = [parse_id(value, "templateIds") for value in template_ids]
    start = parse_date(payload.get("startDate"), "startDate")
    end = parse_date(payload.get("endDate"), "endDate")
    if end < start:
        raise ValueError("endDate must not be before startDate.")
    return ids, start, end
