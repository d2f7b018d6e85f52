"""Argument and weekly-pattern validation shared by the engine components."""

from collections import Counter
from datetime import date, datetime, time
from typing import Iterable

from .domain import EmergencyPriority
from .exceptions import ValidationError
from .models import WorkDay

MIN_APPOINTMENT_DURATION = 5
MAX_APPOINTMENT_DURATION = 120


def require_duration(minutes) -> int:
    # bool is an int subclass; True is not a duration.
    if isinstance(minutes, bool) or not isinstance(minutes, int):
        raise ValidationError(f"Appointment duration must be an integer, got {minutes!r}.")
    if minutes <= 0:
        raise ValidationError("Appointment duration must be positive.")
    return minutes


def require_date(value, name: str = "date") -> date:
    # datetime is a date subclass and would silently carry a time component.
    if isinstance(value, datetime) or not isinstance(value, date):
        raise ValidationError(f"{name} must be a date, got {value!r}.")
    return value


def require_time(value, name: str = "time") -> time:
    if not isinstance(value, time):
        raise ValidationError(f"{name} must be a time, got {value!r}.")
    return value


def require_priority(value) -> EmergencyPriority:
    if not isinstance(value, EmergencyPriority):
        raise ValidationError(f"Unknown emergency priority {value!r}.")
    return value


def require_date_range(start, end) -> tuple[date, date]:
    require_date(start, "start")
    require_date(end, "end")
    if start >= end:
        raise ValidationError("Start date must be before end date.")
    return start, end


def validate_weekly_pattern(appointment_duration: int, work_days: Iterable[WorkDay]) -> None:
    """Check the weekly-pattern invariants before a pattern is stored.

    - the appointment duration lies within the clinic bounds
    - at most one active work day per weekday
    - every time range ends after it starts
    - active ranges of one work day do not overlap
    """
    require_duration(appointment_duration)
    if not MIN_APPOINTMENT_DURATION <= appointment_duration <= MAX_APPOINTMENT_DURATION:
        raise ValidationError(
            f"Appointment duration must be between {MIN_APPOINTMENT_DURATION} and "
            f"{MAX_APPOINTMENT_DURATION} minutes."
        )

    work_days = list(work_days)
    active_days = Counter(wd.day_of_week for wd in work_days if wd.is_active)
    for work_day in work_days:
        if not 0 <= work_day.day_of_week <= 6:
            raise ValidationError(f"Day of week must be 0..6, got {work_day.day_of_week}.")
        if active_days[work_day.day_of_week] > 1:
            raise ValidationError(
                f"Only one active work day is allowed per weekday ({work_day.day_of_week})."
            )
        for time_range in work_day.time_ranges:
            if time_range.end_time <= time_range.start_time:
                raise ValidationError(
                    f"Time range {time_range.start_time:%H:%M}-{time_range.end_time:%H:%M} "
                    "must end after it starts."
                )
        ranges = work_day.active_ranges()
        for previous, current in zip(ranges, ranges[1:]):
            if current.start_time < previous.end_time:
                raise ValidationError(
                    f"Time ranges overlap on weekday {work_day.day_of_week}: "
                    f"{previous.start_time:%H:%M}-{previous.end_time:%H:%M} and "
                    f"{current.start_time:%H:%M}-{current.end_time:%H:%M}."
                )
