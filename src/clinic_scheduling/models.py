"""SQLAlchemy ORM models for doctor schedules and reservations."""

from datetime import date, datetime, time, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base
from .domain import EmergencyPriority, ExceptionType, ReservationStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, length: int = 20) -> Enum:
    return Enum(
        enum_cls,
        native_enum=False,
        length=length,
        values_callable=lambda members: [member.value for member in members],
    )


class Doctor(Base):
    __tablename__ = "doctors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    specialization: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    pattern: Mapped[Optional["WeeklyPattern"]] = relationship(
        "WeeklyPattern", back_populates="doctor", uselist=False, cascade="all, delete-orphan"
    )
    exceptions: Mapped[list["ScheduleException"]] = relationship(
        "ScheduleException", back_populates="doctor", order_by="ScheduleException.start_date"
    )
    reservations: Mapped[list["Reservation"]] = relationship(
        "Reservation", back_populates="doctor"
    )

    def __repr__(self) -> str:
        return f"<Doctor id={self.id} name={self.name}>"


class WeeklyPattern(Base):
    __tablename__ = "weekly_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id"), unique=True, nullable=False)
    appointment_duration: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    default_start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    default_end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    doctor: Mapped[Doctor] = relationship("Doctor", back_populates="pattern")
    work_days: Mapped[list["WorkDay"]] = relationship(
        "WorkDay",
        back_populates="pattern",
        cascade="all, delete-orphan",
        order_by="WorkDay.day_of_week",
    )

    def active_work_day(self, weekday: int) -> "WorkDay | None":
        """Return the active work day for a weekday (0 = Sunday, see ``domain.day_of_week``)."""
        for work_day in self.work_days:
            if work_day.day_of_week == weekday and work_day.is_active:
                return work_day
        return None

    def __repr__(self) -> str:
        return (
            f"<WeeklyPattern id={self.id} doctor_id={self.doctor_id} "
            f"duration={self.appointment_duration}>"
        )


class WorkDay(Base):
    __tablename__ = "work_days"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pattern_id: Mapped[int] = mapped_column(ForeignKey("weekly_patterns.id"), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    pattern: Mapped[WeeklyPattern] = relationship("WeeklyPattern", back_populates="work_days")
    time_ranges: Mapped[list["TimeRange"]] = relationship(
        "TimeRange",
        back_populates="work_day",
        cascade="all, delete-orphan",
        order_by="TimeRange.start_time",
    )

    def active_ranges(self) -> list["TimeRange"]:
        return sorted(
            (time_range for time_range in self.time_ranges if time_range.is_active),
            key=lambda time_range: time_range.start_time,
        )

    def __repr__(self) -> str:
        return f"<WorkDay id={self.id} day_of_week={self.day_of_week} active={self.is_active}>"


class TimeRange(Base):
    __tablename__ = "time_ranges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    work_day_id: Mapped[int] = mapped_column(ForeignKey("work_days.id"), nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    work_day: Mapped[WorkDay] = relationship("WorkDay", back_populates="time_ranges")

    def contains(self, at: time) -> bool:
        return self.start_time <= at < self.end_time

    def __repr__(self) -> str:
        return f"<TimeRange {self.start_time:%H:%M}-{self.end_time:%H:%M} active={self.is_active}>"


class ScheduleException(Base):
    __tablename__ = "schedule_exceptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    exception_type: Mapped[ExceptionType] = mapped_column(
        _enum_column(ExceptionType), nullable=False
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    doctor: Mapped[Doctor] = relationship("Doctor", back_populates="exceptions")

    def covers(self, day: date) -> bool:
        """True when this exception is live and its date range contains ``day``."""
        if self.is_deleted:
            return False
        if self.start_date > day:
            return False
        return self.end_date is None or self.end_date >= day

    def __repr__(self) -> str:
        return (
            f"<ScheduleException id={self.id} type={self.exception_type} "
            f"{self.start_date}..{self.end_date}>"
        )


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        # Store-level exclusivity: one live booking per doctor/day/start time.
        Index(
            "uq_reservations_live_slot",
            "doctor_id",
            "booking_date",
            "start_time",
            unique=True,
            sqlite_where=text("status = 'booked'"),
            postgresql_where=text("status = 'booked'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doctor_id: Mapped[int] = mapped_column(ForeignKey("doctors.id"), nullable=False)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    is_emergency: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[EmergencyPriority | None] = mapped_column(
        _enum_column(EmergencyPriority), nullable=True
    )
    patient_name: Mapped[str] = mapped_column(String(200), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum_column(ReservationStatus), nullable=False, default=ReservationStatus.BOOKED
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    doctor: Mapped[Doctor] = relationship("Doctor", back_populates="reservations")

    def __repr__(self) -> str:
        return (
            f"<Reservation id={self.id} doctor_id={self.doctor_id} "
            f"{self.booking_date} {self.start_time:%H:%M} status={self.status}>"
        )
