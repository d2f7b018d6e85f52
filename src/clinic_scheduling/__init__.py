"""Doctor availability and slot scheduling engine."""

from .db import Base, engine, session_scope
from .exceptions import (
    DatabaseConnectionError,
    OperationCancelledError,
    ResourceNotFoundError,
    ScheduleConflictError,
    ScheduleTimeoutError,
    ValidationError,
)
from .config import SchedulingPolicy, WorkloadThresholds, load_policy
from .domain import (
    EmergencyBookingRequest,
    EmergencyPriority,
    ErrorKind,
    ExceptionType,
    TimeSlot,
    WorkloadStatus,
)
from .models import Doctor, Reservation, ScheduleException, TimeRange, WeeklyPattern, WorkDay
from .services import SchedulingService

__all__ = [
    "Base",
    "engine",
    "session_scope",
    "init_db",
    "SchedulingService",
    "SchedulingPolicy",
    "WorkloadThresholds",
    "load_policy",
    "Doctor",
    "WeeklyPattern",
    "WorkDay",
    "TimeRange",
    "ScheduleException",
    "Reservation",
    "EmergencyBookingRequest",
    "EmergencyPriority",
    "ErrorKind",
    "ExceptionType",
    "TimeSlot",
    "WorkloadStatus",
    "DatabaseConnectionError",
    "ResourceNotFoundError",
    "ValidationError",
    "ScheduleConflictError",
    "ScheduleTimeoutError",
    "OperationCancelledError",
]


def init_db(bind=None) -> None:
    """Create database tables."""
    try:
        Base.metadata.create_all(bind=bind or engine)
    except Exception as exc:  # noqa: BLE001
        raise DatabaseConnectionError("Failed to initialize database schema.") from exc
