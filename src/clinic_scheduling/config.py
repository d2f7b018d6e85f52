"""Environment-driven configuration and the injectable scheduling policy."""

import os
from dataclasses import dataclass, field
from datetime import time
from pathlib import Path

from .domain import EmergencyPriority
from .exceptions import ValidationError

DEFAULT_APPOINTMENT_DURATION_MINUTES = 30


def _load_env_file() -> None:
    """Load a local .env file without overriding existing environment variables."""
    env_locations = [
        Path.cwd() / ".env",
        Path(__file__).resolve().parents[2] / ".env",
    ]
    for env_path in env_locations:
        if not env_path.exists():
            continue
        try:
            lines = env_path.read_text().splitlines()
        except OSError:
            continue
        for raw_line in lines:
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if line.startswith("export "):
                line = line[len("export ") :].strip()
            if "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key.strip(), value.strip().strip('"').strip("'"))
        break


_load_env_file()


@dataclass(frozen=True)
class WorkloadThresholds:
    """Inclusive upper bounds of the light, balanced and heavy bands."""

    light_max: int = 8
    balanced_max: int = 12
    heavy_max: int = 16

    def __post_init__(self) -> None:
        if not 0 <= self.light_max < self.balanced_max < self.heavy_max:
            raise ValidationError(
                "Workload thresholds must be non-negative and strictly increasing."
            )


@dataclass(frozen=True)
class SchedulingPolicy:
    """Tunable behavior of the engine, one value per clinic."""

    default_appointment_duration_minutes: int = DEFAULT_APPOINTMENT_DURATION_MINUTES
    workload_thresholds: WorkloadThresholds = field(default_factory=WorkloadThresholds)
    admissible_priorities: frozenset = frozenset(
        {EmergencyPriority.CRITICAL, EmergencyPriority.HIGH, EmergencyPriority.MEDIUM}
    )
    min_break_minutes: int = 60
    lunch_break: tuple[time, time] = (time(12, 0), time(13, 0))
    # False: slots come from the first active range of a work day only.
    use_all_time_ranges: bool = False
    lock_timeout_seconds: float = 10.0
    rebooking_horizon_days: int = 7

    def __post_init__(self) -> None:
        if self.default_appointment_duration_minutes <= 0:
            raise ValidationError("Default appointment duration must be positive.")
        if self.lock_timeout_seconds <= 0:
            raise ValidationError("Lock timeout must be positive.")
        if self.lunch_break[0] >= self.lunch_break[1]:
            raise ValidationError("Lunch break must start before it ends.")

    def is_admissible(self, priority: EmergencyPriority) -> bool:
        return priority in self.admissible_priorities


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer, got {raw!r}.") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number, got {raw!r}.") from exc


def _thresholds_env(name: str) -> WorkloadThresholds:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return WorkloadThresholds()
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 3:
        raise ValidationError(f"{name} must hold three comma-separated integers.")
    try:
        light, balanced, heavy = (int(part) for part in parts)
    except ValueError as exc:
        raise ValidationError(f"{name} must hold three comma-separated integers.") from exc
    return WorkloadThresholds(light_max=light, balanced_max=balanced, heavy_max=heavy)


def _priorities_env(name: str, default: frozenset) -> frozenset:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return frozenset(
            EmergencyPriority(part.strip().lower()) for part in raw.split(",") if part.strip()
        )
    except ValueError as exc:
        raise ValidationError(f"{name} contains an unknown priority: {raw!r}.") from exc


def load_policy() -> SchedulingPolicy:
    """Build a SchedulingPolicy from CLINIC_* environment variables."""
    defaults = SchedulingPolicy()
    return SchedulingPolicy(
        default_appointment_duration_minutes=_int_env(
            "CLINIC_DEFAULT_APPOINTMENT_DURATION_MINUTES",
            DEFAULT_APPOINTMENT_DURATION_MINUTES,
        ),
        workload_thresholds=_thresholds_env("CLINIC_WORKLOAD_THRESHOLDS"),
        admissible_priorities=_priorities_env(
            "CLINIC_ADMISSIBLE_PRIORITIES", defaults.admissible_priorities
        ),
        min_break_minutes=_int_env("CLINIC_MIN_BREAK_MINUTES", defaults.min_break_minutes),
        lock_timeout_seconds=_float_env(
            "CLINIC_LOCK_TIMEOUT_SECONDS", defaults.lock_timeout_seconds
        ),
    )


__all__ = [
    "DEFAULT_APPOINTMENT_DURATION_MINUTES",
    "SchedulingPolicy",
    "WorkloadThresholds",
    "load_policy",
]
