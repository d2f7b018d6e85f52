"""Demo data seeding for the scheduling engine."""

from __future__ import annotations

from datetime import date, time, timedelta

from clinic_scheduling import SchedulingService, init_db, session_scope
from clinic_scheduling.domain import ExceptionType, day_of_week
from clinic_scheduling.exceptions import ScheduleConflictError, ValidationError

# Monday through Friday, 0 = Sunday
WEEKDAYS = (1, 2, 3, 4, 5)

DOCTORS_SEED = [
    # name, specialization, duration, ranges per work day
    ("Dr. Sara Haddad", "Internal medicine", 30, [(time(8, 0), time(16, 0))]),
    (
        "Dr. Omar Nasser",
        "Pediatrics",
        20,
        [(time(8, 0), time(12, 0)), (time(13, 0), time(17, 0))],
    ),
    ("Dr. Lina Farouk", "Cardiology", 45, [(time(9, 0), time(15, 0))]),
]


def _next_weekday(start: date) -> date:
    day = start + timedelta(days=1)
    while day_of_week(day) not in WEEKDAYS:
        day += timedelta(days=1)
    return day


def seed(factory=None) -> None:
    """Populate the database with demo doctors, weekly patterns and bookings."""
    init_db(factory.kw.get("bind") if factory is not None else None)
    with session_scope(factory) as session:
        service = SchedulingService(session)
        existing = {doctor.name: doctor for doctor in service.list_doctors()}

        for name, specialization, duration, ranges in DOCTORS_SEED:
            doctor = existing.get(name)
            if doctor is not None:
                print(f"[doctor] exists {name}")
                continue
            doctor = service.create_doctor(name=name, specialization=specialization)
            service.set_weekly_pattern(
                doctor.id, duration, {weekday: ranges for weekday in WEEKDAYS}
            )
            print(f"[doctor] created {name} ({duration} min)")

            # A public holiday four weeks out
            holiday = date.today() + timedelta(days=28)
            service.add_exception(doctor.id, ExceptionType.HOLIDAY, holiday, reason="Public holiday")
            print(f"[exception] holiday {holiday} for {name}")

            day = _next_weekday(date.today())
            slots = service.availability.resolve_available_slots(doctor.id, day)
            for patient_name, slot in zip(("Ahmad Saleh", "Mona Karim"), slots):
                at = slot.start_time
                try:
                    service.book_regular(doctor.id, day, at, patient_name)
                except (ScheduleConflictError, ValidationError) as exc:
                    print(f"[booking] skipped {patient_name}: {exc}")
                else:
                    print(f"[booking] {patient_name} with {name} on {day} at {at:%H:%M}")


if __name__ == "__main__":
    seed()
