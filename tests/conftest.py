"""Shared fixtures: a throwaway SQLite database per test and a seeded doctor."""

import os

# The package builds a module-level engine on import; keep it off the disk.
os.environ.setdefault("CLINIC_SCHEDULING_DB_URL", "sqlite://")

from datetime import date, time, timedelta

import pytest

from clinic_scheduling import Base, SchedulingService
from clinic_scheduling.domain import day_of_week
from clinic_scheduling.db import create_sqlite_engine, make_session_factory
from clinic_scheduling.locks import AdmissionLocks

# A Monday, so the seeded doctor works on TODAY.
TODAY = date(2026, 10, 19)
# Stored weekday numbers, 0 = Sunday: Monday through Friday.
WEEKDAYS = range(1, 6)
TODAY_WEEKDAY = day_of_week(TODAY)
OFFICE_HOURS = [(time(8, 0), time(16, 0))]


def fixed_today() -> date:
    return TODAY


def next_weekday(weekday: int, start: date = TODAY) -> date:
    """Next date on or after ``start`` whose ``date.weekday()`` is ``weekday``."""
    return start + timedelta(days=(weekday - start.weekday()) % 7)


@pytest.fixture
def engine(tmp_path):
    engine = create_sqlite_engine(f"sqlite:///{tmp_path / 'scheduling.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def locks():
    return AdmissionLocks()


@pytest.fixture
def service(session, locks):
    return SchedulingService(session, locks=locks, today=fixed_today)


@pytest.fixture
def doctor(service, session):
    """Doctor working Monday to Friday, 08:00-16:00, 30-minute appointments."""
    doctor = service.create_doctor("Dr. Test", "General practice")
    service.set_weekly_pattern(doctor.id, 30, {weekday: OFFICE_HOURS for weekday in WEEKDAYS})
    session.commit()
    return doctor


@pytest.fixture
def doctor_without_pattern(service, session):
    doctor = service.create_doctor("Dr. Unscheduled")
    session.commit()
    return doctor
