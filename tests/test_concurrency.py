"""Concurrent admission: one live booking per doctor, day and start time."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import time, timedelta

import pytest

from clinic_scheduling import SchedulingService
from clinic_scheduling.domain import (
    AdmissionReason,
    EmergencyBookingRequest,
    EmergencyPriority,
    ErrorKind,
)
from clinic_scheduling.exceptions import ScheduleTimeoutError
from clinic_scheduling.locks import AdmissionLocks
from clinic_scheduling.models import Reservation

from conftest import TODAY, fixed_today

ATTEMPTS = 8


def book_in_own_session(session_factory, locks, doctor_id, index, at=time(10, 0), **options):
    session = session_factory()
    try:
        service = SchedulingService(session, locks=locks, today=fixed_today)
        return service.emergency.book_emergency(
            EmergencyBookingRequest(
                doctor_id=doctor_id,
                date=TODAY,
                time=at,
                priority=EmergencyPriority.HIGH,
                patient_name=f"Patient {index}",
                reason="Trauma",
            ),
            **options,
        )
    finally:
        session.close()


class TestConcurrentAdmission:
    """Test that check-then-reserve is serialized per doctor and day."""

    def test_exactly_one_winner(self, session_factory, locks, doctor, session):
        doctor_id = doctor.id

        with ThreadPoolExecutor(max_workers=ATTEMPTS) as executor:
            results = list(
                executor.map(
                    lambda i: book_in_own_session(session_factory, locks, doctor_id, i),
                    range(ATTEMPTS),
                )
            )

        winners = [r for r in results if r.success]
        losers = [r for r in results if not r.success]
        assert len(winners) == 1
        assert len(losers) == ATTEMPTS - 1
        assert all(r.reason is AdmissionReason.SLOT_CONFLICT for r in losers)
        assert all(r.kind is ErrorKind.CONFLICT for r in losers)

        session.expire_all()
        stored = session.query(Reservation).filter_by(doctor_id=doctor_id).all()
        assert [r.id for r in stored] == [winners[0].reservation_id]

    def test_different_times_do_not_conflict(self, session_factory, locks, doctor):
        doctor_id = doctor.id
        starts = [time(8, 0), time(9, 0), time(10, 0), time(11, 0)]

        with ThreadPoolExecutor(max_workers=len(starts)) as executor:
            results = list(
                executor.map(
                    lambda pair: book_in_own_session(
                        session_factory, locks, doctor_id, pair[0], at=pair[1]
                    ),
                    enumerate(starts),
                )
            )

        assert all(r.success for r in results)

    def test_store_rejects_second_live_booking(self, service, doctor):
        payload = {"end_time": time(10, 30), "patient_name": "First"}

        first = service.bookings.reserve(doctor.id, TODAY, time(10, 0), payload)
        service.bookings.commit()
        second = service.bookings.reserve(
            doctor.id, TODAY, time(10, 0), {**payload, "patient_name": "Second"}
        )

        assert first is not None
        assert second is None


class TestAdmissionLocks:
    """Test the lock registry."""

    def test_one_lock_per_key(self):
        locks = AdmissionLocks()

        with locks.hold(1, TODAY):
            with locks.hold(2, TODAY):
                assert len(locks) == 2
            with pytest.raises(ScheduleTimeoutError):
                with locks.hold(1, TODAY, timeout=0.05):
                    pass

    def test_released_keys_are_dropped(self):
        locks = AdmissionLocks()

        for offset in range(30):
            with locks.hold(1, TODAY + timedelta(days=offset)):
                pass

        assert len(locks) == 0
        with locks.hold(1, TODAY, timeout=0.05):
            assert len(locks) == 1

    def test_other_keys_do_not_block(self):
        locks = AdmissionLocks()

        with locks.hold(1, TODAY):
            with locks.hold(2, TODAY, timeout=0.05):
                pass


class TestRegularBookingRace:
    """Test regular booking against an emergency arriving mid-check."""

    def test_off_grid_emergency_cannot_slip_in(
        self, service, session_factory, locks, doctor, monkeypatch
    ):
        doctor_id = doctor.id
        outcome = {}
        resolve = service.availability.resolve_available_slots

        def resolve_while_emergency_arrives(doc_id, day):
            slots = resolve(doc_id, day)
            rival = threading.Thread(
                target=lambda: outcome.setdefault(
                    "emergency",
                    book_in_own_session(
                        session_factory, locks, doctor_id, 1, at=time(9, 15), timeout=0.2
                    ),
                )
            )
            rival.start()
            rival.join()
            return slots

        monkeypatch.setattr(
            service.availability, "resolve_available_slots", resolve_while_emergency_arrives
        )

        regular = service.book_regular(doctor_id, TODAY, time(9, 0), "Alice Martin")

        assert outcome["emergency"].reason is AdmissionReason.LOCK_TIMEOUT
        live = service.bookings.list_active(doctor_id, TODAY)
        assert [r.id for r in live] == [regular.id]
