"""Custom exceptions used across the clinic scheduling package."""


class DatabaseConnectionError(Exception):
    """Raised when the database connection cannot be established."""


class ResourceNotFoundError(Exception):
    """Raised when a doctor, weekly pattern or reservation lookup returns no result."""


class ValidationError(Exception):
    """Raised when incoming arguments fail domain or business validation."""


class ScheduleConflictError(Exception):
    """Raised when a reservation would claim a start time that is already booked."""


class ScheduleTimeoutError(Exception):
    """Raised when a schedule lock or store call exceeds its deadline."""


class OperationCancelledError(Exception):
    """Raised when the caller cancels a pending admission."""


__all__ = [
    "DatabaseConnectionError",
    "ResourceNotFoundError",
    "ValidationError",
    "ScheduleConflictError",
    "ScheduleTimeoutError",
    "OperationCancelledError",
]
