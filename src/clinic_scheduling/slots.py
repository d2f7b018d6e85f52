"""Fixed-duration slot generation for a single work day."""

from datetime import date, datetime, timedelta

from .domain import TimeSlot
from .models import TimeRange, WorkDay
from .validation import require_date, require_duration


def generate_range_slots(
    time_range: TimeRange,
    day: date,
    duration_minutes: int,
    doctor_id: int | None = None,
) -> list[TimeSlot]:
    """Cut one time range into back-to-back slots.

    A trailing remainder shorter than ``duration_minutes`` is discarded rather
    than emitted as a short slot.
    """
    require_duration(duration_minutes)
    step = timedelta(minutes=duration_minutes)
    current = datetime.combine(day, time_range.start_time)
    range_end = datetime.combine(day, time_range.end_time)

    slots: list[TimeSlot] = []
    while current + step <= range_end:
        slot_end = current + step
        slots.append(
            TimeSlot(
                date=day,
                start_time=current.time(),
                end_time=slot_end.time(),
                duration_minutes=duration_minutes,
                doctor_id=doctor_id,
            )
        )
        current = slot_end
    return slots


def generate_slots(
    work_day: WorkDay | None,
    day: date,
    duration_minutes: int,
    doctor_id: int | None = None,
) -> list[TimeSlot]:
    """Return the bookable slots of ``work_day`` on ``day``, ordered by start time.

    Every active range is processed independently. A missing or inactive work
    day yields no slots; a non-positive duration is rejected.
    """
    require_duration(duration_minutes)
    require_date(day, "day")
    if work_day is None or not work_day.is_active:
        return []

    slots: list[TimeSlot] = []
    for time_range in work_day.active_ranges():
        slots.extend(generate_range_slots(time_range, day, duration_minutes, doctor_id))
    slots.sort(key=lambda slot: slot.start_time)
    return slots
