from contextlib import contextmanager
from threading import Lock


class DoctorLocks:
    """One mutex per doctor id, held around the check-then-insert of a booking.

    Only serialises requests inside this process. Multi-process deployments
    rely on the unique index on active appointments instead.
    """

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._locks: dict[int, Lock] = {}

    def lock_for(self, doctor_id: int) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(doctor_id)
            if lock is None:
                lock = Lock()
                self._locks[doctor_id] = lock
            return lock

    @contextmanager
    def hold(self, doctor_id: int, enabled: bool = True):
        if not enabled:
            yield
            return

        with self.lock_for(doctor_id):
            yield


doctor_locks = DoctorLocks()
