"""Value objects exchanged by the scheduling engine.

Slots, workload results and emergency outcomes are computed on demand and
never stored; only reservations are persisted (see ``models``).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, time


def day_of_week(day: date) -> int:
    """Stored weekday number of ``day``: 0 = Sunday through 6 = Saturday."""
    return (day.weekday() + 1) % 7


class ExceptionType(str, enum.Enum):
    HOLIDAY = "holiday"
    LEAVE = "leave"
    BLOCK = "block"


class EmergencyPriority(str, enum.Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Higher rank wins a displacement; regular bookings rank 0."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    EmergencyPriority.CRITICAL: 4,
    EmergencyPriority.HIGH: 3,
    EmergencyPriority.MEDIUM: 2,
    EmergencyPriority.LOW: 1,
}

REGULAR_RANK = 0
REGULAR_PRIORITY_LABEL = "normal"


def priority_rank(priority: EmergencyPriority | None) -> int:
    return REGULAR_RANK if priority is None else priority.rank


class WorkloadStatus(str, enum.Enum):
    NO_WORK_DAY = "no_work_day"
    LIGHT = "light"
    BALANCED = "balanced"
    HEAVY = "heavy"
    OVERLOADED = "overloaded"


class ReservationStatus(str, enum.Enum):
    BOOKED = "booked"
    CANCELLED = "cancelled"
    DISPLACED = "displaced"


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    CONFLICT = "conflict"
    POLICY_DENIED = "policy_denied"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class AdmissionReason(str, enum.Enum):
    DOCTOR_NOT_FOUND = "doctor_not_found"
    BOOKING_NOT_FOUND = "booking_not_found"
    PAST_DATE = "past_date"
    NO_SCHEDULE = "no_schedule"
    NO_WORK_DAY = "no_work_day"
    NO_TIME_RANGE = "no_time_range"
    OUTSIDE_RANGE = "outside_range"
    EXCEPTION_PRESENT = "exception_present"
    PRIORITY_DENIED = "priority_denied"
    INVALID_REQUEST = "invalid_request"
    SLOT_CONFLICT = "slot_conflict"
    LOCK_TIMEOUT = "lock_timeout"
    CANCELLED = "cancelled"

    @property
    def kind(self) -> ErrorKind:
        return _REASON_KIND[self]


_REASON_KIND = {
    AdmissionReason.DOCTOR_NOT_FOUND: ErrorKind.NOT_FOUND,
    AdmissionReason.BOOKING_NOT_FOUND: ErrorKind.NOT_FOUND,
    AdmissionReason.NO_SCHEDULE: ErrorKind.NOT_FOUND,
    AdmissionReason.PAST_DATE: ErrorKind.INVALID_ARGUMENT,
    AdmissionReason.INVALID_REQUEST: ErrorKind.INVALID_ARGUMENT,
    AdmissionReason.NO_WORK_DAY: ErrorKind.POLICY_DENIED,
    AdmissionReason.NO_TIME_RANGE: ErrorKind.POLICY_DENIED,
    AdmissionReason.OUTSIDE_RANGE: ErrorKind.POLICY_DENIED,
    AdmissionReason.EXCEPTION_PRESENT: ErrorKind.POLICY_DENIED,
    AdmissionReason.PRIORITY_DENIED: ErrorKind.POLICY_DENIED,
    AdmissionReason.SLOT_CONFLICT: ErrorKind.CONFLICT,
    AdmissionReason.LOCK_TIMEOUT: ErrorKind.TIMEOUT,
    AdmissionReason.CANCELLED: ErrorKind.CANCELLED,
}


class ConflictResolution(str, enum.Enum):
    DISPLACE_EXISTING = "displace_existing"
    KEEP_EXISTING = "keep_existing"


@dataclass(frozen=True)
class TimeSlot:
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    doctor_id: int | None = None
    is_available: bool = True
    is_emergency_slot: bool = False
    priority_label: str = REGULAR_PRIORITY_LABEL

    def overlaps(self, start: time, end: time) -> bool:
        return self.start_time < end and start < self.end_time


@dataclass(frozen=True)
class WorkloadBalanceResult:
    date: date
    status: WorkloadStatus
    message: str
    total_appointments: int = 0
    total_work_minutes: int = 0
    break_minutes: int = 0
    recommendations: tuple[str, ...] = ()
    slots: tuple[TimeSlot, ...] = ()


@dataclass(frozen=True)
class BreakSuggestion:
    start_time: time
    end_time: time
    minutes: int
    is_existing_gap: bool


@dataclass(frozen=True)
class EmergencyBookingRequest:
    doctor_id: int
    date: date
    time: time
    priority: EmergencyPriority
    patient_name: str
    reason: str


@dataclass(frozen=True)
class AdmissionDecision:
    admissible: bool
    message: str
    reason: AdmissionReason | None = None

    @property
    def kind(self) -> ErrorKind | None:
        return self.reason.kind if self.reason else None


@dataclass(frozen=True)
class EmergencyConflict:
    reservation_id: int
    doctor_id: int
    date: date
    start_time: time
    end_time: time
    existing_priority: EmergencyPriority | None
    is_emergency: bool
    description: str
    suggested_resolution: ConflictResolution


@dataclass(frozen=True)
class RebookingProposal:
    reservation_id: int
    patient_name: str
    slot: TimeSlot | None


@dataclass(frozen=True)
class ConflictResolutionResult:
    success: bool
    message: str
    displaced: tuple[int, ...] = ()
    kept: tuple[int, ...] = ()
    rebooking: tuple[RebookingProposal, ...] = ()


@dataclass(frozen=True)
class EmergencyBookingResult:
    success: bool
    message: str
    reason: AdmissionReason | None = None
    reservation_id: int | None = None
    conflicts: tuple[EmergencyConflict, ...] = ()
    resolution: ConflictResolutionResult | None = None

    @property
    def kind(self) -> ErrorKind | None:
        return self.reason.kind if self.reason else None


@dataclass(frozen=True)
class EmergencyStatistics:
    doctor_id: int
    start: date
    end: date
    total: int
    cancelled: int
    displaced: int
    by_priority: dict[str, int] = field(default_factory=dict)
