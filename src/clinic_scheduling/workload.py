"""Workload classification and advisory recommendations."""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, Mapping

import pandas as pd

from .availability import iter_days, month_bounds
from .config import SchedulingPolicy
from .domain import BreakSuggestion, WorkloadBalanceResult, WorkloadStatus, day_of_week
from .exceptions import ResourceNotFoundError
from .models import WorkDay
from .slots import generate_slots
from .validation import require_date, require_duration

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    WorkloadStatus.NO_WORK_DAY: "No work day is defined for this date.",
    WorkloadStatus.LIGHT: "Light workload - room for more appointments.",
    WorkloadStatus.BALANCED: "Balanced workload - desired state.",
    WorkloadStatus.HEAVY: "Heavy workload - optimization needed.",
    WorkloadStatus.OVERLOADED: "Overloaded - reduce the workload immediately.",
}

RECOMMENDATIONS = {
    WorkloadStatus.NO_WORK_DAY: (),
    WorkloadStatus.LIGHT: (
        "Increase the number of appointments to make better use of the time.",
        "Add consultation services.",
    ),
    WorkloadStatus.BALANCED: (
        "Keep the current schedule.",
        "Look for ways to improve service quality.",
    ),
    WorkloadStatus.HEAVY: (
        "Reduce the number of appointments.",
        "Add rest time between appointments.",
        "Use smart appointment allocation.",
    ),
    WorkloadStatus.OVERLOADED: (
        "Reduce the number of appointments immediately.",
        "Increase rest time.",
        "Bring in an assisting doctor.",
        "Review the work schedule.",
    ),
}

SHORT_BREAK_RECOMMENDATION = "Increase break time to maintain service quality."

# Bands ordered from least to most loaded, used to pick a week's peak.
_BAND_ORDER = [
    WorkloadStatus.NO_WORK_DAY,
    WorkloadStatus.LIGHT,
    WorkloadStatus.BALANCED,
    WorkloadStatus.HEAVY,
    WorkloadStatus.OVERLOADED,
]


def _minutes_between(start, end) -> int:
    anchor = date.min
    delta = datetime.combine(anchor, end) - datetime.combine(anchor, start)
    return int(delta.total_seconds() // 60)


def iso_week_key(day: date) -> str:
    iso = day.isocalendar()
    return f"{iso[0]}-W{iso[1]:02d}"


class WorkloadClassifier:
    """Capacity metrics per day, week and month, classified into workload bands."""

    def __init__(self, schedules, doctors, policy: SchedulingPolicy | None = None):
        self.schedules = schedules
        self.doctors = doctors
        self.policy = policy or SchedulingPolicy()

    def classify_status(self, appointment_count: int) -> WorkloadStatus:
        thresholds = self.policy.workload_thresholds
        if appointment_count <= thresholds.light_max:
            return WorkloadStatus.LIGHT
        if appointment_count <= thresholds.balanced_max:
            return WorkloadStatus.BALANCED
        if appointment_count <= thresholds.heavy_max:
            return WorkloadStatus.HEAVY
        return WorkloadStatus.OVERLOADED

    def recommendations_for(self, status: WorkloadStatus, break_minutes: int) -> tuple[str, ...]:
        recommendations = list(RECOMMENDATIONS[status])
        if status is not WorkloadStatus.NO_WORK_DAY and break_minutes < self.policy.min_break_minutes:
            recommendations.append(SHORT_BREAK_RECOMMENDATION)
        return tuple(recommendations)

    def classify_daily_load(
        self,
        work_day: WorkDay | None,
        day: date,
        duration_minutes: int | None = None,
        doctor_id: int | None = None,
    ) -> WorkloadBalanceResult:
        require_date(day, "day")
        duration = require_duration(
            duration_minutes
            if duration_minutes is not None
            else self.policy.default_appointment_duration_minutes
        )
        ranges = work_day.active_ranges() if work_day is not None and work_day.is_active else []
        if not ranges:
            return WorkloadBalanceResult(
                date=day,
                status=WorkloadStatus.NO_WORK_DAY,
                message=STATUS_MESSAGES[WorkloadStatus.NO_WORK_DAY],
            )

        total_work_minutes = sum(_minutes_between(r.start_time, r.end_time) for r in ranges)
        break_minutes = sum(
            max(0, _minutes_between(previous.end_time, current.start_time))
            for previous, current in zip(ranges, ranges[1:])
        )
        appointment_count = total_work_minutes // duration
        status = self.classify_status(appointment_count)

        return WorkloadBalanceResult(
            date=day,
            status=status,
            message=STATUS_MESSAGES[status],
            total_appointments=appointment_count,
            total_work_minutes=total_work_minutes,
            break_minutes=break_minutes,
            recommendations=self.recommendations_for(status, break_minutes),
            slots=tuple(generate_slots(work_day, day, duration, doctor_id)),
        )

    def _pattern(self, doctor_id: int):
        if not self.doctors.exists(doctor_id):
            logger.warning("Doctor %s not found", doctor_id)
            raise ResourceNotFoundError(f"Doctor {doctor_id} not found.")
        return self.schedules.get_weekly_pattern(doctor_id)

    def _classify(self, pattern, doctor_id: int, day: date) -> WorkloadBalanceResult:
        if pattern is None:
            return self.classify_daily_load(None, day, doctor_id=doctor_id)
        return self.classify_daily_load(
            pattern.active_work_day(day_of_week(day)),
            day,
            duration_minutes=pattern.appointment_duration,
            doctor_id=doctor_id,
        )

    def classify_day(self, doctor_id: int, day: date) -> WorkloadBalanceResult:
        result = self._classify(self._pattern(doctor_id), doctor_id, day)
        logger.info(
            "Workload of doctor %s on %s classified as %s", doctor_id, day, result.status.value
        )
        return result

    def classify_week(self, doctor_id: int, week_start: date) -> list[WorkloadBalanceResult]:
        require_date(week_start, "week_start")
        pattern = self._pattern(doctor_id)
        return [
            self._classify(pattern, doctor_id, week_start + timedelta(days=offset))
            for offset in range(7)
        ]

    def classify_month(
        self, doctor_id: int, month_start: date
    ) -> dict[str, list[WorkloadBalanceResult]]:
        """Daily results for the calendar month, grouped by ISO week key."""
        require_date(month_start, "month_start")
        pattern = self._pattern(doctor_id)
        first, last = month_bounds(month_start)

        grouped: dict[str, list[WorkloadBalanceResult]] = {}
        for day in iter_days(first, last):
            grouped.setdefault(iso_week_key(day), []).append(
                self._classify(pattern, doctor_id, day)
            )
        logger.info(
            "Monthly workload of doctor %s for %s: %d weeks", doctor_id, first, len(grouped)
        )
        return grouped

    def suggest_break_times(self, doctor_id: int, day: date) -> list[BreakSuggestion]:
        """Existing gaps between ranges, or the lunch window when one range spans it."""
        pattern = self._pattern(doctor_id)
        work_day = pattern.active_work_day(day_of_week(day)) if pattern is not None else None
        ranges = work_day.active_ranges() if work_day is not None else []
        if not ranges:
            return []

        gaps = [
            BreakSuggestion(
                start_time=previous.end_time,
                end_time=current.start_time,
                minutes=_minutes_between(previous.end_time, current.start_time),
                is_existing_gap=True,
            )
            for previous, current in zip(ranges, ranges[1:])
            if current.start_time > previous.end_time
        ]
        if gaps:
            return gaps

        lunch_start, lunch_end = self.policy.lunch_break
        for time_range in ranges:
            if time_range.start_time < lunch_start and lunch_end < time_range.end_time:
                return [
                    BreakSuggestion(
                        start_time=lunch_start,
                        end_time=lunch_end,
                        minutes=_minutes_between(lunch_start, lunch_end),
                        is_existing_gap=False,
                    )
                ]
        return []


def workload_frame(results: Iterable[WorkloadBalanceResult]) -> pd.DataFrame:
    """One row per classified day."""
    rows = [
        {
            "date": result.date,
            "week": iso_week_key(result.date),
            "status": result.status.value,
            "appointments": result.total_appointments,
            "work_minutes": result.total_work_minutes,
            "break_minutes": result.break_minutes,
        }
        for result in results
    ]
    columns = ["date", "week", "status", "appointments", "work_minutes", "break_minutes"]
    return pd.DataFrame(rows, columns=columns)


def summarize_weeks(monthly: Mapping[str, list[WorkloadBalanceResult]]) -> pd.DataFrame:
    """Per-week totals and the most loaded band of each week."""
    frame = workload_frame(result for results in monthly.values() for result in results)
    columns = ["week", "work_days", "appointments", "work_minutes", "peak_status"]
    if frame.empty:
        return pd.DataFrame(columns=columns)

    frame["band"] = frame["status"].map({status.value: i for i, status in enumerate(_BAND_ORDER)})
    frame["is_work_day"] = frame["status"] != WorkloadStatus.NO_WORK_DAY.value
    summary = (
        frame.groupby("week", sort=True)
        .agg(
            work_days=("is_work_day", "sum"),
            appointments=("appointments", "sum"),
            work_minutes=("work_minutes", "sum"),
            peak_band=("band", "max"),
        )
        .reset_index()
    )
    summary["peak_status"] = summary["peak_band"].map(lambda i: _BAND_ORDER[int(i)].value)
    summary["work_days"] = summary["work_days"].astype(int)
    return summary[columns]
