"""Tests for WorkloadClassifier and the weekly pandas summaries."""

from datetime import date, time, timedelta

import pytest

from clinic_scheduling.config import SchedulingPolicy, WorkloadThresholds
from clinic_scheduling.domain import WorkloadStatus
from clinic_scheduling.exceptions import ResourceNotFoundError, ValidationError
from clinic_scheduling.models import TimeRange, WorkDay
from clinic_scheduling.workload import (
    RECOMMENDATIONS,
    SHORT_BREAK_RECOMMENDATION,
    WorkloadClassifier,
    iso_week_key,
    summarize_weeks,
    workload_frame,
)

from conftest import TODAY, TODAY_WEEKDAY


def make_work_day(*ranges):
    return WorkDay(
        day_of_week=TODAY_WEEKDAY,
        is_active=True,
        time_ranges=[
            TimeRange(start_time=start, end_time=end, is_active=True) for start, end in ranges
        ],
    )


@pytest.fixture
def classifier():
    return WorkloadClassifier(schedules=None, doctors=None)


class TestClassifyStatus:
    """Test band boundaries."""

    @pytest.mark.parametrize(
        "count, expected",
        [
            (0, WorkloadStatus.LIGHT),
            (8, WorkloadStatus.LIGHT),
            (9, WorkloadStatus.BALANCED),
            (12, WorkloadStatus.BALANCED),
            (13, WorkloadStatus.HEAVY),
            (16, WorkloadStatus.HEAVY),
            (17, WorkloadStatus.OVERLOADED),
        ],
    )
    def test_default_thresholds(self, classifier, count, expected):
        assert classifier.classify_status(count) is expected

    def test_injected_thresholds(self):
        policy = SchedulingPolicy(workload_thresholds=WorkloadThresholds(4, 6, 10))
        classifier = WorkloadClassifier(None, None, policy)

        assert classifier.classify_status(5) is WorkloadStatus.BALANCED
        assert classifier.classify_status(11) is WorkloadStatus.OVERLOADED


class TestClassifyDailyLoad:
    """Test the pure daily classification."""

    def test_single_eight_hour_range(self, classifier):
        result = classifier.classify_daily_load(make_work_day((time(8, 0), time(16, 0))), TODAY)

        assert result.status is WorkloadStatus.HEAVY
        assert result.total_appointments == 16
        assert result.total_work_minutes == 480
        assert result.break_minutes == 0
        assert len(result.slots) == 16
        assert result.recommendations[: len(RECOMMENDATIONS[WorkloadStatus.HEAVY])] == (
            RECOMMENDATIONS[WorkloadStatus.HEAVY]
        )
        assert result.recommendations[-1] == SHORT_BREAK_RECOMMENDATION

    def test_gap_between_ranges_counts_as_break(self, classifier):
        work_day = make_work_day((time(8, 0), time(12, 0)), (time(13, 0), time(17, 0)))

        result = classifier.classify_daily_load(work_day, TODAY)

        assert result.total_work_minutes == 480
        assert result.break_minutes == 60
        assert SHORT_BREAK_RECOMMENDATION not in result.recommendations

    def test_longer_appointments_lighten_the_day(self, classifier):
        result = classifier.classify_daily_load(
            make_work_day((time(8, 0), time(16, 0))), TODAY, duration_minutes=60
        )

        assert result.total_appointments == 8
        assert result.status is WorkloadStatus.LIGHT

    def test_overloaded_day(self, classifier):
        result = classifier.classify_daily_load(
            make_work_day((time(7, 0), time(19, 0))), TODAY, duration_minutes=30
        )

        assert result.total_appointments == 24
        assert result.status is WorkloadStatus.OVERLOADED
        assert "Bring in an assisting doctor." in result.recommendations

    def test_no_work_day(self, classifier):
        result = classifier.classify_daily_load(None, TODAY)

        assert result.status is WorkloadStatus.NO_WORK_DAY
        assert result.total_appointments == 0
        assert result.total_work_minutes == 0
        assert result.recommendations == ()
        assert result.slots == ()

    def test_work_day_without_ranges(self, classifier):
        result = classifier.classify_daily_load(make_work_day(), TODAY)

        assert result.status is WorkloadStatus.NO_WORK_DAY

    def test_invalid_duration(self, classifier):
        with pytest.raises(ValidationError):
            classifier.classify_daily_load(
                make_work_day((time(8, 0), time(16, 0))), TODAY, duration_minutes=0
            )


class TestClassifyCalendar:
    """Test day, week and month classification for stored doctors."""

    def test_week(self, service, doctor):
        week = service.workload.classify_week(doctor.id, TODAY)

        assert [result.date for result in week] == [
            TODAY + timedelta(days=offset) for offset in range(7)
        ]
        assert [result.status for result in week] == [WorkloadStatus.HEAVY] * 5 + [
            WorkloadStatus.NO_WORK_DAY
        ] * 2

    def test_month_grouped_by_iso_week(self, service, doctor):
        month = service.workload.classify_month(doctor.id, date(2026, 10, 1))

        assert list(month) == ["2026-W40", "2026-W41", "2026-W42", "2026-W43", "2026-W44"]
        assert sum(len(days) for days in month.values()) == 31
        assert [result.date for result in month["2026-W40"]] == [
            date(2026, 10, day) for day in range(1, 5)
        ]

    def test_doctor_without_pattern(self, service, doctor_without_pattern):
        result = service.workload.classify_day(doctor_without_pattern.id, TODAY)

        assert result.status is WorkloadStatus.NO_WORK_DAY

    def test_unknown_doctor(self, service):
        with pytest.raises(ResourceNotFoundError):
            service.workload.classify_day(999, TODAY)

    def test_iso_week_key(self):
        assert iso_week_key(date(2026, 10, 19)) == "2026-W43"
        assert iso_week_key(date(2027, 1, 1)) == "2026-W53"


class TestBreakSuggestions:
    """Test suggest_break_times."""

    def test_lunch_window_inside_single_range(self, service, doctor):
        suggestions = service.workload.suggest_break_times(doctor.id, TODAY)

        assert len(suggestions) == 1
        assert (suggestions[0].start_time, suggestions[0].end_time) == (time(12, 0), time(13, 0))
        assert not suggestions[0].is_existing_gap

    def test_existing_gap(self, service, doctor):
        service.set_weekly_pattern(
            doctor.id,
            30,
            {TODAY_WEEKDAY: [(time(8, 0), time(11, 30)), (time(12, 15), time(16, 0))]},
        )

        suggestions = service.workload.suggest_break_times(doctor.id, TODAY)

        assert [(s.start_time, s.minutes, s.is_existing_gap) for s in suggestions] == [
            (time(11, 30), 45, True)
        ]

    def test_day_off(self, service, doctor):
        assert service.workload.suggest_break_times(doctor.id, TODAY + timedelta(days=5)) == []


class TestWeeklySummary:
    """Test the pandas tabulation of monthly results."""

    def test_frame_has_one_row_per_day(self, service, doctor):
        week = service.workload.classify_week(doctor.id, TODAY)

        frame = workload_frame(week)

        assert len(frame) == 7
        assert frame["appointments"].sum() == 80

    def test_summarize_weeks(self, service, doctor):
        month = service.workload.classify_month(doctor.id, date(2026, 10, 1))

        summary = summarize_weeks(month)

        assert list(summary["week"]) == list(month)
        first, full = summary.iloc[0], summary.iloc[1]
        assert first["work_days"] == 2
        assert first["appointments"] == 32
        assert full["work_days"] == 5
        assert full["work_minutes"] == 5 * 480
        assert full["peak_status"] == WorkloadStatus.HEAVY.value

    def test_empty_summary(self):
        summary = summarize_weeks({})

        assert summary.empty
        assert list(summary.columns) == [
            "week",
            "work_days",
            "appointments",
            "work_minutes",
            "peak_status",
        ]
