"""Admission control for out-of-band emergency bookings.

Each request moves Received -> Validated -> Checked -> Admitted/Rejected.
Business failures come back as structured results carrying an
``AdmissionReason``; only malformed arguments raise ``ValidationError``.
Check-then-reserve runs under a per-(doctor, day) lock, and the reservation
store refuses a second live booking on the same start time.
"""

import logging
import threading
from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from .availability import AvailabilityResolver, covering_exception
from .config import SchedulingPolicy
from .domain import (
    AdmissionDecision,
    AdmissionReason,
    ConflictResolution,
    ConflictResolutionResult,
    EmergencyBookingRequest,
    EmergencyBookingResult,
    EmergencyConflict,
    EmergencyPriority,
    EmergencyStatistics,
    RebookingProposal,
    ReservationStatus,
    day_of_week,
    priority_rank,
)
from .exceptions import (
    OperationCancelledError,
    ResourceNotFoundError,
    ScheduleTimeoutError,
    ValidationError,
)
from .locks import AdmissionLocks, default_locks
from .models import Reservation
from .validation import (
    require_date,
    require_date_range,
    require_duration,
    require_priority,
    require_time,
)

logger = logging.getLogger(__name__)


def _require_doctor_id(doctor_id) -> int:
    if isinstance(doctor_id, bool) or not isinstance(doctor_id, int):
        raise ValidationError(f"Doctor id must be an integer, got {doctor_id!r}.")
    return doctor_id


def slot_end(day: date, start: time, duration_minutes: int) -> time:
    """End of a slot starting at ``start``, clamped to the end of the day."""
    end = datetime.combine(day, start) + timedelta(minutes=duration_minutes)
    if end.date() != day:
        return time.max
    return end.time()


def can_displace(incoming: EmergencyPriority | None, existing: Reservation) -> bool:
    """Strictly higher priority displaces; ties keep the earlier booking."""
    if existing.priority is EmergencyPriority.CRITICAL:
        return False
    return priority_rank(incoming) > priority_rank(existing.priority)


def _denied(reason: AdmissionReason, message: str) -> AdmissionDecision:
    return AdmissionDecision(admissible=False, message=message, reason=reason)


def _rejected(reason: AdmissionReason, message: str, **extra) -> EmergencyBookingResult:
    return EmergencyBookingResult(success=False, message=message, reason=reason, **extra)


class EmergencyAdmissionController:
    """Decides whether priority-tagged emergency requests may enter a doctor's day."""

    def __init__(
        self,
        schedules,
        doctors,
        bookings,
        policy: SchedulingPolicy | None = None,
        locks: AdmissionLocks | None = None,
        today: Callable[[], date] = date.today,
        availability: AvailabilityResolver | None = None,
    ):
        self.schedules = schedules
        self.doctors = doctors
        self.bookings = bookings
        self.policy = policy or SchedulingPolicy()
        self.locks = locks if locks is not None else default_locks
        self.today = today
        self.availability = availability or AvailabilityResolver(
            schedules, doctors, bookings, self.policy, today
        )

    # Admission
    def can_book_emergency(
        self, doctor_id: int, day: date, at: time, priority: EmergencyPriority
    ) -> AdmissionDecision:
        _require_doctor_id(doctor_id)
        require_date(day, "day")
        require_time(at, "time")
        require_priority(priority)
        logger.info(
            "Checking emergency admission for doctor %s on %s at %s (%s)",
            doctor_id,
            day,
            at.strftime("%H:%M"),
            priority.value,
        )

        if not self.doctors.exists(doctor_id):
            logger.warning("Doctor %s not found", doctor_id)
            return _denied(AdmissionReason.DOCTOR_NOT_FOUND, "Doctor not found.")
        if day < self.today():
            return _denied(AdmissionReason.PAST_DATE, "The requested date is in the past.")

        pattern = self.schedules.get_weekly_pattern(doctor_id)
        if pattern is None:
            logger.warning("No weekly pattern defined for doctor %s", doctor_id)
            return _denied(AdmissionReason.NO_SCHEDULE, "No work schedule is defined for this doctor.")

        work_day = pattern.active_work_day(day_of_week(day))
        if work_day is None:
            return _denied(AdmissionReason.NO_WORK_DAY, "No work day is defined for this date.")
        ranges = work_day.active_ranges()
        if not ranges:
            return _denied(AdmissionReason.NO_TIME_RANGE, "No time range is defined for this day.")
        if not any(time_range.contains(at) for time_range in ranges):
            return _denied(
                AdmissionReason.OUTSIDE_RANGE, "The requested time is outside the doctor's hours."
            )

        exception = covering_exception(self.schedules.get_exceptions(doctor_id), day)
        if exception is not None:
            logger.info(
                "Exception %s (%s) blocks emergency admission for doctor %s on %s",
                exception.id,
                exception.exception_type.value,
                doctor_id,
                day,
            )
            return _denied(
                AdmissionReason.EXCEPTION_PRESENT, "A schedule exception covers this date."
            )

        if not self.policy.is_admissible(priority):
            logger.info("Priority %s is not admissible by policy", priority.value)
            return _denied(
                AdmissionReason.PRIORITY_DENIED,
                f"{priority.value.capitalize()} priority emergencies are not accepted.",
            )
        return AdmissionDecision(admissible=True, message="Emergency booking is admissible.")

    # Conflicts
    def _duration(self, doctor_id: int, duration_minutes: int | None) -> int:
        if duration_minutes is not None:
            return require_duration(duration_minutes)
        return self.availability.duration_for(self.schedules.get_weekly_pattern(doctor_id))

    def _conflict(
        self, reservation: Reservation, incoming: EmergencyPriority | None
    ) -> EmergencyConflict:
        kind = "emergency" if reservation.is_emergency else "regular"
        label = reservation.priority.value if reservation.priority else "normal"
        resolution = (
            ConflictResolution.DISPLACE_EXISTING
            if can_displace(incoming, reservation)
            else ConflictResolution.KEEP_EXISTING
        )
        return EmergencyConflict(
            reservation_id=reservation.id,
            doctor_id=reservation.doctor_id,
            date=reservation.booking_date,
            start_time=reservation.start_time,
            end_time=reservation.end_time,
            existing_priority=reservation.priority,
            is_emergency=reservation.is_emergency,
            description=(
                f"Overlaps {kind} booking #{reservation.id} ({label}) for "
                f"{reservation.patient_name} at {reservation.start_time:%H:%M}-"
                f"{reservation.end_time:%H:%M}."
            ),
            suggested_resolution=resolution,
        )

    def check_emergency_conflicts(
        self,
        doctor_id: int,
        day: date,
        at: time,
        priority: EmergencyPriority | None = None,
        duration_minutes: int | None = None,
    ) -> list[EmergencyConflict]:
        """Live reservations overlapping ``[at, at + duration)`` on that day.

        Without a priority the request is treated as the lowest emergency, so
        only regular bookings are suggested for displacement.
        """
        _require_doctor_id(doctor_id)
        require_date(day, "day")
        require_time(at, "time")
        incoming = require_priority(priority) if priority is not None else EmergencyPriority.LOW
        end = slot_end(day, at, self._duration(doctor_id, duration_minutes))

        conflicts = [
            self._conflict(reservation, incoming)
            for reservation in self.bookings.list_active(doctor_id, day)
            if reservation.start_time < end and at < reservation.end_time
        ]
        if conflicts:
            logger.info(
                "Found %d conflicts for doctor %s on %s at %s",
                len(conflicts),
                doctor_id,
                day,
                at.strftime("%H:%M"),
            )
        return conflicts

    def _resolve_locked(
        self,
        doctor_id: int,
        day: date,
        conflicts: Iterable[EmergencyConflict],
        priority: EmergencyPriority,
        claimed: Iterable[tuple[date, time, time]] = (),
    ) -> ConflictResolutionResult:
        displaced: list[Reservation] = []
        kept: list[int] = []
        for conflict in conflicts:
            reservation = self.bookings.get(conflict.reservation_id)
            if reservation.status is not ReservationStatus.BOOKED:
                continue
            if can_displace(priority, reservation):
                self.bookings.update_status(
                    reservation,
                    ReservationStatus.DISPLACED,
                    reason=f"Displaced by a {priority.value} priority emergency.",
                )
                displaced.append(reservation)
            else:
                kept.append(reservation.id)

        promised = list(claimed) + [(day, r.start_time, r.end_time) for r in displaced]
        rebooking: list[RebookingProposal] = []
        for reservation in displaced:
            slot = self.availability.find_next_free_slot(doctor_id, day, exclude=promised)
            if slot is not None:
                promised.append((slot.date, slot.start_time, slot.end_time))
            rebooking.append(
                RebookingProposal(
                    reservation_id=reservation.id,
                    patient_name=reservation.patient_name,
                    slot=slot,
                )
            )

        if kept:
            message = f"{len(kept)} conflicting bookings outrank the request and were kept."
        else:
            message = f"Resolved {len(displaced)} conflicts by displacement."
        logger.info(
            "Conflict resolution for doctor %s on %s: displaced=%s kept=%s",
            doctor_id,
            day,
            [r.id for r in displaced],
            kept,
        )
        return ConflictResolutionResult(
            success=not kept,
            message=message,
            displaced=tuple(r.id for r in displaced),
            kept=tuple(kept),
            rebooking=tuple(rebooking),
        )

    def resolve_emergency_conflicts(
        self,
        doctor_id: int,
        day: date,
        conflicts: list[EmergencyConflict],
        priority: EmergencyPriority,
        timeout: float | None = None,
    ) -> ConflictResolutionResult:
        """Displace lower-priority bookings in favor of an incoming emergency.

        Higher priority displaces lower; equal priority keeps the earlier
        booking; critical bookings are never displaced. Displaced patients get a
        rebooking proposal for the next free slot.
        """
        _require_doctor_id(doctor_id)
        require_date(day, "day")
        require_priority(priority)
        if not conflicts:
            return ConflictResolutionResult(success=True, message="No conflicts to resolve.")

        wait = self.policy.lock_timeout_seconds if timeout is None else timeout
        try:
            with self.locks.hold(doctor_id, day, wait):
                try:
                    result = self._resolve_locked(doctor_id, day, conflicts, priority)
                    self.bookings.commit()
                except ResourceNotFoundError as exc:
                    self.bookings.rollback()
                    return ConflictResolutionResult(success=False, message=str(exc))
                except SQLAlchemyError:
                    self.bookings.rollback()
                    raise
        except ScheduleTimeoutError as exc:
            logger.warning("%s", exc)
            return ConflictResolutionResult(success=False, message=str(exc))
        return result

    # Booking
    @staticmethod
    def _check_cancelled(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("Emergency booking was cancelled by the caller.")

    def book_emergency(
        self,
        request: EmergencyBookingRequest,
        displace_lower_priority: bool = False,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> EmergencyBookingResult:
        if not isinstance(request, EmergencyBookingRequest):
            raise ValidationError("An EmergencyBookingRequest is required.")
        logger.info(
            "Received emergency request for doctor %s on %s at %s (%s)",
            request.doctor_id,
            request.date,
            request.time.strftime("%H:%M") if isinstance(request.time, time) else request.time,
            getattr(request.priority, "value", request.priority),
        )

        decision = self.can_book_emergency(
            request.doctor_id, request.date, request.time, request.priority
        )
        if not decision.admissible:
            logger.info("Emergency request rejected: %s", decision.reason.value)
            return _rejected(decision.reason, decision.message)

        if not (request.patient_name or "").strip():
            return _rejected(AdmissionReason.INVALID_REQUEST, "Patient name is required.")
        if not (request.reason or "").strip():
            return _rejected(AdmissionReason.INVALID_REQUEST, "Emergency reason is required.")

        wait = self.policy.lock_timeout_seconds if timeout is None else timeout
        try:
            with self.locks.hold(request.doctor_id, request.date, wait):
                return self._book_locked(request, displace_lower_priority, cancel_event)
        except ScheduleTimeoutError as exc:
            logger.warning("%s", exc)
            return _rejected(AdmissionReason.LOCK_TIMEOUT, str(exc))
        except OperationCancelledError as exc:
            logger.info("%s", exc)
            return _rejected(AdmissionReason.CANCELLED, str(exc))

    def _book_locked(
        self,
        request: EmergencyBookingRequest,
        displace_lower_priority: bool,
        cancel_event: threading.Event | None,
    ) -> EmergencyBookingResult:
        self._check_cancelled(cancel_event)
        self.doctors.lock(request.doctor_id)

        end = slot_end(request.date, request.time, self._duration(request.doctor_id, None))
        conflicts = self.check_emergency_conflicts(
            request.doctor_id, request.date, request.time, request.priority
        )
        resolution = None
        if conflicts:
            displaceable = all(
                c.suggested_resolution is ConflictResolution.DISPLACE_EXISTING for c in conflicts
            )
            if not (displace_lower_priority and displaceable):
                logger.info(
                    "Emergency request for doctor %s on %s at %s rejected: conflict",
                    request.doctor_id,
                    request.date,
                    request.time.strftime("%H:%M"),
                )
                return _rejected(
                    AdmissionReason.SLOT_CONFLICT,
                    "The requested time conflicts with existing bookings.",
                    conflicts=tuple(conflicts),
                )
            resolution = self._resolve_locked(
                request.doctor_id,
                request.date,
                conflicts,
                request.priority,
                claimed=[(request.date, request.time, end)],
            )

        self._check_cancelled(cancel_event)
        payload = {
            "end_time": end,
            "is_emergency": True,
            "priority": request.priority,
            "patient_name": request.patient_name.strip(),
            "reason": request.reason.strip(),
        }
        try:
            reservation = self.bookings.reserve(
                request.doctor_id, request.date, request.time, payload
            )
            if reservation is None:
                return _rejected(
                    AdmissionReason.SLOT_CONFLICT,
                    "The requested time was taken by another booking.",
                    conflicts=tuple(conflicts),
                )
            self.bookings.commit()
        except OperationalError:
            self.bookings.rollback()
            logger.exception("Schedule store failed while booking for doctor %s", request.doctor_id)
            return _rejected(AdmissionReason.LOCK_TIMEOUT, "The schedule store did not respond.")
        except SQLAlchemyError:
            self.bookings.rollback()
            raise

        logger.info(
            "Emergency booking %s admitted for doctor %s on %s at %s",
            reservation.id,
            request.doctor_id,
            request.date,
            request.time.strftime("%H:%M"),
        )
        return EmergencyBookingResult(
            success=True,
            message="Emergency appointment booked.",
            reservation_id=reservation.id,
            conflicts=tuple(conflicts),
            resolution=resolution,
        )

    # Management
    def _emergency_reservation(self, reservation_id: int) -> Reservation | None:
        try:
            reservation = self.bookings.get(reservation_id)
        except ResourceNotFoundError:
            return None
        return reservation if reservation.is_emergency else None

    def cancel_emergency(self, reservation_id: int, reason: str) -> EmergencyBookingResult:
        if not (reason or "").strip():
            return _rejected(AdmissionReason.INVALID_REQUEST, "Cancellation reason is required.")
        reservation = self._emergency_reservation(reservation_id)
        if reservation is None:
            return _rejected(
                AdmissionReason.BOOKING_NOT_FOUND,
                f"Emergency booking {reservation_id} not found.",
            )

        try:
            with self.locks.hold(
                reservation.doctor_id, reservation.booking_date, self.policy.lock_timeout_seconds
            ):
                if reservation.status is not ReservationStatus.BOOKED:
                    return _rejected(
                        AdmissionReason.INVALID_REQUEST,
                        f"Emergency booking {reservation_id} is already {reservation.status.value}.",
                    )
                self.bookings.update_status(reservation, ReservationStatus.CANCELLED, reason.strip())
                self.bookings.commit()
        except ScheduleTimeoutError as exc:
            return _rejected(AdmissionReason.LOCK_TIMEOUT, str(exc))

        logger.info("Emergency booking %s cancelled: %s", reservation_id, reason)
        return EmergencyBookingResult(
            success=True, message="Emergency booking cancelled.", reservation_id=reservation_id
        )

    def set_emergency_priority(
        self, reservation_id: int, priority: EmergencyPriority
    ) -> EmergencyBookingResult:
        require_priority(priority)
        reservation = self._emergency_reservation(reservation_id)
        if reservation is None:
            return _rejected(
                AdmissionReason.BOOKING_NOT_FOUND,
                f"Emergency booking {reservation_id} not found.",
            )
        self.bookings.update_priority(reservation, priority)
        self.bookings.commit()
        logger.info("Emergency booking %s priority set to %s", reservation_id, priority.value)
        return EmergencyBookingResult(
            success=True, message="Emergency priority updated.", reservation_id=reservation_id
        )

    def _require_doctor(self, doctor_id: int) -> None:
        _require_doctor_id(doctor_id)
        if not self.doctors.exists(doctor_id):
            logger.warning("Doctor %s not found", doctor_id)
            raise ResourceNotFoundError(f"Doctor {doctor_id} not found.")

    def get_emergency_bookings(
        self,
        doctor_id: int,
        day: date | None = None,
        priority: EmergencyPriority | None = None,
    ) -> list[Reservation]:
        self._require_doctor(doctor_id)
        if day is not None:
            require_date(day, "day")
        if priority is not None:
            require_priority(priority)
        return list(self.bookings.list_emergencies(doctor_id, day=day, priority=priority))

    def get_emergency_statistics(
        self, doctor_id: int, start: date, end: date
    ) -> EmergencyStatistics:
        require_date_range(start, end)
        self._require_doctor(doctor_id)
        reservations = self.bookings.list_emergencies(
            doctor_id, start=start, end=end, include_inactive=True
        )
        statuses = Counter(r.status for r in reservations)
        by_priority = Counter(
            r.priority.value
            for r in reservations
            if r.status is ReservationStatus.BOOKED and r.priority is not None
        )
        return EmergencyStatistics(
            doctor_id=doctor_id,
            start=start,
            end=end,
            total=len(reservations),
            cancelled=statuses[ReservationStatus.CANCELLED],
            displaced=statuses[ReservationStatus.DISPLACED],
            by_priority=dict(by_priority),
        )

    @staticmethod
    def get_emergency_priorities() -> list[EmergencyPriority]:
        return list(EmergencyPriority)
