"""Business logic layer for doctor schedules."""

import logging
from datetime import date, datetime, time
from typing import Callable, Iterable, Mapping, Sequence

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .availability import AvailabilityResolver
from .config import SchedulingPolicy
from .domain import ExceptionType, ReservationStatus
from .emergency import EmergencyAdmissionController, slot_end
from .exceptions import ResourceNotFoundError, ScheduleConflictError, ValidationError
from .locks import AdmissionLocks
from .models import Doctor, Reservation, ScheduleException, TimeRange, WeeklyPattern, WorkDay
from .repositories import BookingRepository, DoctorRepository, ScheduleRepository
from .validation import require_date, require_time, validate_weekly_pattern
from .workload import WorkloadClassifier

logger = logging.getLogger(__name__)

# weekday (0 = Sunday) -> [(start, end), ...]
WeeklyRanges = Mapping[int, Iterable[tuple[time, time]]]


def build_work_days(work_days: WeeklyRanges) -> list[WorkDay]:
    """Turn a weekday-to-ranges mapping into transient WorkDay rows."""
    rows = []
    for weekday, ranges in sorted(work_days.items()):
        rows.append(
            WorkDay(
                day_of_week=weekday,
                is_active=True,
                time_ranges=[
                    TimeRange(start_time=start, end_time=end, is_active=True)
                    for start, end in ranges
                ],
            )
        )
    return rows


class SchedulingService:
    """Facade that wires the scheduling engine to one session."""

    def __init__(
        self,
        session: Session,
        policy: SchedulingPolicy | None = None,
        locks: AdmissionLocks | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.session = session
        self.policy = policy or SchedulingPolicy()
        self.today = today
        self.doctors = DoctorRepository(session)
        self.schedules = ScheduleRepository(session)
        self.bookings = BookingRepository(session)
        self.availability = AvailabilityResolver(
            self.schedules, self.doctors, self.bookings, self.policy, today
        )
        self.workload = WorkloadClassifier(self.schedules, self.doctors, self.policy)
        self.emergency = EmergencyAdmissionController(
            self.schedules,
            self.doctors,
            self.bookings,
            self.policy,
            locks=locks,
            today=today,
            availability=self.availability,
        )

    # Doctor
    def create_doctor(self, name: str, specialization: str | None = None) -> Doctor:
        if not name or not name.strip():
            raise ValidationError("Doctor name cannot be empty.")
        return self.doctors.create(name=name.strip(), specialization=specialization)

    def list_doctors(self) -> Sequence[Doctor]:
        return self.doctors.list()

    # Weekly pattern
    def set_weekly_pattern(
        self,
        doctor_id: int,
        appointment_duration: int,
        work_days: WeeklyRanges,
        default_start_time: time | None = None,
        default_end_time: time | None = None,
    ) -> WeeklyPattern:
        # Ensure doctor exists
        self.doctors.get(doctor_id)
        rows = build_work_days(work_days)
        validate_weekly_pattern(appointment_duration, rows)
        pattern = self.schedules.save_weekly_pattern(
            doctor_id,
            appointment_duration,
            rows,
            default_start_time=default_start_time,
            default_end_time=default_end_time,
        )
        logger.info(
            "Weekly pattern saved for doctor %s: %d work days, %d-minute appointments",
            doctor_id,
            len(rows),
            appointment_duration,
        )
        return pattern

    def get_weekly_pattern(self, doctor_id: int) -> WeeklyPattern:
        self.doctors.get(doctor_id)
        pattern = self.schedules.get_weekly_pattern(doctor_id)
        if pattern is None:
            raise ResourceNotFoundError(f"No weekly pattern defined for doctor {doctor_id}.")
        return pattern

    # Exceptions
    def add_exception(
        self,
        doctor_id: int,
        exception_type: ExceptionType,
        start_date: date,
        end_date: date | None = None,
        reason: str | None = None,
    ) -> ScheduleException:
        self.doctors.get(doctor_id)
        if not isinstance(exception_type, ExceptionType):
            raise ValidationError(f"Unknown exception type {exception_type!r}.")
        require_date(start_date, "start_date")
        if end_date is not None:
            require_date(end_date, "end_date")
            if end_date < start_date:
                raise ValidationError("Exception end date cannot be before its start date.")
        exception = self.schedules.add_exception(
            doctor_id, exception_type, start_date, end_date=end_date, reason=reason
        )
        logger.info(
            "Added %s exception for doctor %s from %s to %s",
            exception_type.value,
            doctor_id,
            start_date,
            end_date or "open end",
        )
        return exception

    def block_time_range(
        self, doctor_id: int, start: datetime, end: datetime, reason: str
    ) -> ScheduleException:
        """Block a doctor's calendar between two moments.

        Exceptions are date-granular, so the block covers every day it touches.
        """
        if not isinstance(start, datetime) or not isinstance(end, datetime):
            raise ValidationError("Block start and end must be datetimes.")
        if start >= end:
            raise ValidationError("Block start must be before its end.")
        if start.date() < self.today():
            raise ValidationError("Cannot block time in the past.")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to block time.")
        return self.add_exception(
            doctor_id,
            ExceptionType.BLOCK,
            start.date(),
            end_date=end.date(),
            reason=reason.strip(),
        )

    def list_exceptions(self, doctor_id: int) -> Sequence[ScheduleException]:
        self.doctors.get(doctor_id)
        return self.schedules.get_exceptions(doctor_id)

    def remove_exception(self, exception_id: int) -> ScheduleException:
        exception = self.schedules.soft_delete_exception(exception_id)
        logger.info("Removed schedule exception %s", exception_id)
        return exception

    # Regular bookings
    def book_regular(
        self, doctor_id: int, day: date, at: time, patient_name: str
    ) -> Reservation:
        """Reserve a regular appointment at one of the doctor's slot start times.

        The slot lookup, the overlap check and the insert run under the same
        ``(doctor_id, day)`` lock as emergency admission.
        """
        require_date(day, "day")
        require_time(at, "time")
        if not patient_name or not patient_name.strip():
            raise ValidationError("Patient name cannot be empty.")

        with self.emergency.locks.hold(doctor_id, day, self.policy.lock_timeout_seconds):
            slots = self.availability.resolve_available_slots(doctor_id, day)
            slot = next((s for s in slots if s.start_time == at), None)
            if slot is None:
                raise ValidationError(f"{at:%H:%M} is not a slot of doctor {doctor_id} on {day}.")
            end = slot_end(day, at, slot.duration_minutes)
            overlapping = [
                r for r in self.bookings.list_active(doctor_id, day)
                if r.start_time < end and at < r.end_time
            ]
            if overlapping:
                raise ScheduleConflictError(
                    f"Slot {at:%H:%M} on {day} overlaps booking #{overlapping[0].id}."
                )
            try:
                reservation = self.bookings.reserve(
                    doctor_id,
                    day,
                    at,
                    {
                        "end_time": end,
                        "is_emergency": False,
                        "patient_name": patient_name.strip(),
                    },
                )
                if reservation is None:
                    raise ScheduleConflictError(f"Slot {at:%H:%M} on {day} is already booked.")
                self.bookings.commit()
            except OperationalError as exc:
                self.bookings.rollback()
                raise ValidationError("The database is read-only; cannot save the booking.") from exc
        logger.info(
            "Regular booking %s for doctor %s on %s at %s",
            reservation.id,
            doctor_id,
            day,
            at.strftime("%H:%M"),
        )
        return reservation

    def cancel_booking(self, reservation_id: int, reason: str | None = None) -> Reservation:
        reservation = self.bookings.get(reservation_id)
        try:
            self.bookings.update_status(reservation, ReservationStatus.CANCELLED, reason)
            self.bookings.commit()
        except OperationalError as exc:
            self.bookings.rollback()
            raise ValidationError("The database is read-only; cannot cancel the booking.") from exc
        return reservation
