"""Availability resolution: weekly pattern plus exceptions into dates and slots."""

import logging
from dataclasses import replace
from datetime import date, time, timedelta
from typing import Callable, Collection

from .config import SchedulingPolicy
from .domain import ExceptionType, TimeSlot, day_of_week
from .exceptions import ResourceNotFoundError, ValidationError
from .models import ScheduleException, WeeklyPattern, WorkDay
from .slots import generate_range_slots, generate_slots
from .validation import require_date, require_date_range

logger = logging.getLogger(__name__)


def covering_exception(
    exceptions: Collection[ScheduleException],
    day: date,
    exception_type: ExceptionType | None = None,
) -> ScheduleException | None:
    """First live exception covering ``day``, optionally of one type only."""
    for exception in exceptions:
        if exception_type is not None and exception.exception_type != exception_type:
            continue
        if exception.covers(day):
            return exception
    return None


def month_bounds(month_start: date) -> tuple[date, date]:
    first = month_start.replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    return first, next_month - timedelta(days=1)


def iter_days(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class AvailabilityResolver:
    """Turns a doctor's weekly pattern and exceptions into available dates and slots.

    Holidays remove a whole date from the date-level result. At slot level any
    live exception covering the day suppresses every slot of that day.
    """

    def __init__(
        self,
        schedules,
        doctors,
        bookings=None,
        policy: SchedulingPolicy | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.schedules = schedules
        self.doctors = doctors
        self.bookings = bookings
        self.policy = policy or SchedulingPolicy()
        self.today = today

    def _require_pattern(self, doctor_id: int) -> WeeklyPattern:
        if not self.doctors.exists(doctor_id):
            logger.warning("Doctor %s not found", doctor_id)
            raise ResourceNotFoundError(f"Doctor {doctor_id} not found.")
        pattern = self.schedules.get_weekly_pattern(doctor_id)
        if pattern is None:
            logger.warning("No weekly pattern defined for doctor %s", doctor_id)
            raise ResourceNotFoundError(f"No weekly pattern defined for doctor {doctor_id}.")
        return pattern

    def duration_for(self, pattern: WeeklyPattern | None) -> int:
        if pattern is not None and pattern.appointment_duration:
            return pattern.appointment_duration
        return self.policy.default_appointment_duration_minutes

    def resolve_available_dates(self, doctor_id: int, start: date, end: date) -> list[date]:
        """Dates in ``[start, end]`` with an active work day and no holiday."""
        require_date_range(start, end)
        pattern = self._require_pattern(doctor_id)
        exceptions = self.schedules.get_exceptions(doctor_id)

        available: list[date] = []
        for day in iter_days(start, end):
            if pattern.active_work_day(day_of_week(day)) is None:
                continue
            if covering_exception(exceptions, day, ExceptionType.HOLIDAY) is not None:
                continue
            available.append(day)

        logger.info(
            "Resolved %d available dates for doctor %s between %s and %s",
            len(available),
            doctor_id,
            start,
            end,
        )
        return available

    def _slots_for_work_day(
        self, work_day: WorkDay, day: date, duration: int, doctor_id: int
    ) -> list[TimeSlot]:
        if self.policy.use_all_time_ranges:
            return generate_slots(work_day, day, duration, doctor_id)
        ranges = work_day.active_ranges()
        if not ranges:
            return []
        return generate_range_slots(ranges[0], day, duration, doctor_id)

    def _mark_reserved(self, doctor_id: int, day: date, slots: list[TimeSlot]) -> list[TimeSlot]:
        if self.bookings is None or not slots:
            return slots
        reservations = self.bookings.list_active(doctor_id, day)
        if not reservations:
            return slots
        marked = []
        for slot in slots:
            taken = any(slot.overlaps(r.start_time, r.end_time) for r in reservations)
            marked.append(replace(slot, is_available=False) if taken else slot)
        return marked

    def _day_slots(self, pattern: WeeklyPattern, exceptions, doctor_id: int, day: date):
        work_day = pattern.active_work_day(day_of_week(day))
        if work_day is None:
            logger.debug("No work day for doctor %s on %s", doctor_id, day)
            return []
        exception = covering_exception(exceptions, day)
        if exception is not None:
            logger.info(
                "Exception %s (%s) suppresses slots of doctor %s on %s",
                exception.id,
                exception.exception_type.value,
                doctor_id,
                day,
            )
            return []
        slots = self._slots_for_work_day(work_day, day, self.duration_for(pattern), doctor_id)
        return self._mark_reserved(doctor_id, day, slots)

    def resolve_available_slots(self, doctor_id: int, day: date) -> list[TimeSlot]:
        require_date(day, "day")
        if day < self.today():
            raise ValidationError("Slots cannot be resolved for a date in the past.")
        pattern = self._require_pattern(doctor_id)
        exceptions = self.schedules.get_exceptions(doctor_id)
        slots = self._day_slots(pattern, exceptions, doctor_id, day)
        logger.info("Generated %d slots for doctor %s on %s", len(slots), doctor_id, day)
        return slots

    def resolve_slots_for_range(
        self, doctor_id: int, start: date, end: date
    ) -> dict[date, list[TimeSlot]]:
        """Slots per day for every non-past day in ``[start, end]`` that has any."""
        require_date(start, "start")
        require_date(end, "end")
        if start > end:
            raise ValidationError("Start date must not be after end date.")
        pattern = self._require_pattern(doctor_id)
        exceptions = self.schedules.get_exceptions(doctor_id)
        today = self.today()

        result: dict[date, list[TimeSlot]] = {}
        for day in iter_days(max(start, today), end):
            slots = self._day_slots(pattern, exceptions, doctor_id, day)
            if slots:
                result[day] = slots
        logger.info(
            "Generated slots for doctor %s from %s to %s: %d days with slots",
            doctor_id,
            start,
            end,
            len(result),
        )
        return result

    def resolve_week(self, doctor_id: int, week_start: date) -> dict[date, list[TimeSlot]]:
        require_date(week_start, "week_start")
        return self.resolve_slots_for_range(doctor_id, week_start, week_start + timedelta(days=6))

    def resolve_month(self, doctor_id: int, month_start: date) -> dict[date, list[TimeSlot]]:
        require_date(month_start, "month_start")
        first, last = month_bounds(month_start)
        return self.resolve_slots_for_range(doctor_id, first, last)

    def find_next_free_slot(
        self,
        doctor_id: int,
        start_day: date,
        horizon_days: int | None = None,
        exclude: Collection[tuple[date, time, time]] = (),
    ) -> TimeSlot | None:
        """First available slot on or after ``start_day`` within the horizon.

        ``exclude`` holds ``(day, start, end)`` windows already promised elsewhere.
        """
        horizon = self.policy.rebooking_horizon_days if horizon_days is None else horizon_days
        first_day = max(start_day, self.today())
        by_day = self.resolve_slots_for_range(
            doctor_id, first_day, first_day + timedelta(days=horizon)
        )
        for day in sorted(by_day):
            for slot in by_day[day]:
                if not slot.is_available:
                    continue
                if any(d == day and slot.overlaps(s, e) for d, s, e in exclude):
                    continue
                return slot
        return None
