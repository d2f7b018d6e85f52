"""Data access layer built on SQLAlchemy sessions.

These repositories are the concrete collaborators the engine talks to:
``DoctorRepository`` is the doctor directory, ``ScheduleRepository`` the
schedule store and ``BookingRepository`` the reservation store.
"""

import logging
from datetime import date, time
from typing import Any, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from . import models
from .domain import EmergencyPriority, ExceptionType, ReservationStatus
from .exceptions import ResourceNotFoundError

logger = logging.getLogger(__name__)


class DoctorRepository:
    """CRUD operations for Doctor."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, name: str, specialization: str | None = None) -> models.Doctor:
        doctor = models.Doctor(name=name, specialization=specialization, is_active=True)
        self.session.add(doctor)
        self.session.flush()
        return doctor

    def get(self, doctor_id: int) -> models.Doctor:
        doctor = self.session.get(models.Doctor, doctor_id)
        if doctor is None:
            raise ResourceNotFoundError(f"Doctor {doctor_id} not found.")
        return doctor

    def exists(self, doctor_id: int) -> bool:
        """True when the doctor is known and active."""
        doctor = self.session.get(models.Doctor, doctor_id)
        return doctor is not None and doctor.is_active

    def lock(self, doctor_id: int) -> models.Doctor | None:
        """Take a row lock on the doctor for the rest of the transaction."""
        stmt = select(models.Doctor).where(models.Doctor.id == doctor_id).with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def list(self) -> Sequence[models.Doctor]:
        return self.session.scalars(select(models.Doctor).order_by(models.Doctor.id)).all()


class ScheduleRepository:
    """Weekly patterns and calendar exceptions per doctor."""

    def __init__(self, session: Session):
        self.session = session

    def get_weekly_pattern(self, doctor_id: int) -> models.WeeklyPattern | None:
        stmt = (
            select(models.WeeklyPattern)
            .where(
                models.WeeklyPattern.doctor_id == doctor_id,
                models.WeeklyPattern.is_active.is_(True),
            )
            .options(
                selectinload(models.WeeklyPattern.work_days).selectinload(
                    models.WorkDay.time_ranges
                )
            )
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def save_weekly_pattern(
        self,
        doctor_id: int,
        appointment_duration: int,
        work_days: list[models.WorkDay],
        default_start_time: time | None = None,
        default_end_time: time | None = None,
    ) -> models.WeeklyPattern:
        """Create the doctor's pattern or replace its contents in place."""
        pattern = self.session.execute(
            select(models.WeeklyPattern).where(models.WeeklyPattern.doctor_id == doctor_id)
        ).scalar_one_or_none()
        if pattern is None:
            pattern = models.WeeklyPattern(doctor_id=doctor_id)
            self.session.add(pattern)
        pattern.appointment_duration = appointment_duration
        pattern.default_start_time = default_start_time
        pattern.default_end_time = default_end_time
        pattern.is_active = True
        pattern.work_days.clear()
        pattern.work_days.extend(work_days)
        self.session.flush()
        return pattern

    def get_exceptions(self, doctor_id: int) -> Sequence[models.ScheduleException]:
        stmt = (
            select(models.ScheduleException)
            .where(models.ScheduleException.doctor_id == doctor_id)
            .order_by(models.ScheduleException.start_date, models.ScheduleException.id)
        )
        return self.session.scalars(stmt).all()

    def add_exception(
        self,
        doctor_id: int,
        exception_type: ExceptionType,
        start_date: date,
        end_date: date | None = None,
        reason: str | None = None,
    ) -> models.ScheduleException:
        exception = models.ScheduleException(
            doctor_id=doctor_id,
            exception_type=exception_type,
            start_date=start_date,
            end_date=end_date,
            reason=reason,
            is_deleted=False,
        )
        self.session.add(exception)
        self.session.flush()
        return exception

    def soft_delete_exception(self, exception_id: int) -> models.ScheduleException:
        exception = self.session.get(models.ScheduleException, exception_id)
        if exception is None:
            raise ResourceNotFoundError(f"Schedule exception {exception_id} not found.")
        exception.is_deleted = True
        self.session.flush()
        return exception


class BookingRepository:
    """Reservations, with the store enforcing one live booking per start time."""

    def __init__(self, session: Session):
        self.session = session

    def reserve(
        self, doctor_id: int, day: date, at: time, payload: Mapping[str, Any]
    ) -> models.Reservation | None:
        """Insert a live reservation; return None if the start time is already taken.

        A conflicting insert rolls back the whole unit of work.
        """
        reservation = models.Reservation(
            doctor_id=doctor_id,
            booking_date=day,
            start_time=at,
            end_time=payload["end_time"],
            is_emergency=payload.get("is_emergency", False),
            priority=payload.get("priority"),
            patient_name=payload["patient_name"],
            reason=payload.get("reason"),
            status=ReservationStatus.BOOKED,
        )
        self.session.add(reservation)
        try:
            self.session.flush()
        except IntegrityError:
            self.session.rollback()
            logger.info(
                "Reservation for doctor %s on %s at %s rejected by the store",
                doctor_id,
                day,
                at.strftime("%H:%M"),
            )
            return None
        return reservation

    def get(self, reservation_id: int) -> models.Reservation:
        reservation = self.session.get(models.Reservation, reservation_id)
        if reservation is None:
            raise ResourceNotFoundError(f"Reservation {reservation_id} not found.")
        return reservation

    def list_active(self, doctor_id: int, day: date) -> Sequence[models.Reservation]:
        stmt = (
            select(models.Reservation)
            .where(
                models.Reservation.doctor_id == doctor_id,
                models.Reservation.booking_date == day,
                models.Reservation.status == ReservationStatus.BOOKED,
            )
            .order_by(models.Reservation.start_time, models.Reservation.created_at)
        )
        return self.session.scalars(stmt).all()

    def list_emergencies(
        self,
        doctor_id: int,
        day: date | None = None,
        priority: EmergencyPriority | None = None,
        start: date | None = None,
        end: date | None = None,
        include_inactive: bool = False,
    ) -> Sequence[models.Reservation]:
        stmt = select(models.Reservation).where(
            models.Reservation.doctor_id == doctor_id,
            models.Reservation.is_emergency.is_(True),
        )
        if day is not None:
            stmt = stmt.where(models.Reservation.booking_date == day)
        if priority is not None:
            stmt = stmt.where(models.Reservation.priority == priority)
        if start is not None:
            stmt = stmt.where(models.Reservation.booking_date >= start)
        if end is not None:
            stmt = stmt.where(models.Reservation.booking_date <= end)
        if not include_inactive:
            stmt = stmt.where(models.Reservation.status == ReservationStatus.BOOKED)
        stmt = stmt.order_by(models.Reservation.booking_date, models.Reservation.start_time)
        return self.session.scalars(stmt).all()

    def update_status(
        self,
        reservation: models.Reservation,
        status: ReservationStatus,
        reason: str | None = None,
    ) -> models.Reservation:
        reservation.status = status
        if reason is not None:
            reservation.cancellation_reason = reason
        self.session.flush()
        return reservation

    def update_priority(
        self, reservation: models.Reservation, priority: EmergencyPriority
    ) -> models.Reservation:
        reservation.priority = priority
        self.session.flush()
        return reservation

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
