"""Tests for environment-driven policy loading."""

from datetime import time

import pytest

from clinic_scheduling.config import SchedulingPolicy, WorkloadThresholds, load_policy
from clinic_scheduling.domain import EmergencyPriority
from clinic_scheduling.exceptions import ValidationError

ENV_VARS = [
    "CLINIC_DEFAULT_APPOINTMENT_DURATION_MINUTES",
    "CLINIC_WORKLOAD_THRESHOLDS",
    "CLINIC_ADMISSIBLE_PRIORITIES",
    "CLINIC_MIN_BREAK_MINUTES",
    "CLINIC_LOCK_TIMEOUT_SECONDS",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadPolicy:
    """Test load_policy."""

    def test_defaults(self):
        policy = load_policy()

        assert policy == SchedulingPolicy()
        assert policy.default_appointment_duration_minutes == 30
        assert policy.workload_thresholds == WorkloadThresholds(8, 12, 16)
        assert policy.min_break_minutes == 60
        assert not policy.is_admissible(EmergencyPriority.LOW)

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("CLINIC_DEFAULT_APPOINTMENT_DURATION_MINUTES", "20")
        monkeypatch.setenv("CLINIC_WORKLOAD_THRESHOLDS", "5, 10, 15")
        monkeypatch.setenv("CLINIC_ADMISSIBLE_PRIORITIES", "critical,HIGH")
        monkeypatch.setenv("CLINIC_MIN_BREAK_MINUTES", "30")
        monkeypatch.setenv("CLINIC_LOCK_TIMEOUT_SECONDS", "2.5")

        policy = load_policy()

        assert policy.default_appointment_duration_minutes == 20
        assert policy.workload_thresholds == WorkloadThresholds(5, 10, 15)
        assert policy.admissible_priorities == frozenset(
            {EmergencyPriority.CRITICAL, EmergencyPriority.HIGH}
        )
        assert policy.min_break_minutes == 30
        assert policy.lock_timeout_seconds == 2.5

    @pytest.mark.parametrize(
        "name, value",
        [
            ("CLINIC_DEFAULT_APPOINTMENT_DURATION_MINUTES", "thirty"),
            ("CLINIC_DEFAULT_APPOINTMENT_DURATION_MINUTES", "0"),
            ("CLINIC_WORKLOAD_THRESHOLDS", "8,12"),
            ("CLINIC_WORKLOAD_THRESHOLDS", "12,8,16"),
            ("CLINIC_ADMISSIBLE_PRIORITIES", "critical,urgent"),
            ("CLINIC_LOCK_TIMEOUT_SECONDS", "soon"),
        ],
    )
    def test_malformed_values(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            load_policy()


class TestPolicyValidation:
    """Test SchedulingPolicy and WorkloadThresholds invariants."""

    def test_thresholds_must_increase(self):
        with pytest.raises(ValidationError):
            WorkloadThresholds(light_max=10, balanced_max=10, heavy_max=16)

    def test_lunch_break_must_be_ordered(self):
        with pytest.raises(ValidationError):
            SchedulingPolicy(lunch_break=(time(13, 0), time(12, 0)))

    def test_lock_timeout_positive(self):
        with pytest.raises(ValidationError):
            SchedulingPolicy(lock_timeout_seconds=0)
