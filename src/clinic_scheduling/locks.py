"""Per-(doctor, day) locks that serialize admission decisions within a process."""

import threading
import weakref
from contextlib import contextmanager
from datetime import date
from typing import Iterator

from .exceptions import ScheduleTimeoutError


class AdmissionLocks:
    """Registry of one lock per ``(doctor_id, day)`` key.

    Check-then-reserve sequences for the same doctor and day run one at a time;
    different keys never block each other. Share one registry between every
    controller that can book for the same doctors. A key's lock lives only while
    some caller holds or waits on it, so the registry does not grow with days.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[tuple[int, date], threading.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, doctor_id: int, day: date) -> threading.Lock:
        key = (doctor_id, day)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, doctor_id: int, day: date, timeout: float | None = None) -> Iterator[None]:
        lock = self._lock_for(doctor_id, day)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise ScheduleTimeoutError(
                f"Timed out after {timeout}s waiting for the schedule of doctor "
                f"{doctor_id} on {day}."
            )
        try:
            yield
        finally:
            lock.release()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


default_locks = AdmissionLocks()
