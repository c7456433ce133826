import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Set


class EmployeeLockManager:
    """
    Per-employee locks for attendance writes.
    Holding an employee's lock keeps "read latest event" and "create next event"
    for that employee from interleaving with another request in this process.
    """
    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, employee_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(employee_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[employee_id] = lock
            return lock

    @contextmanager
    def hold(self, employee_id: str) -> Iterator[None]:
        lock = self.lock_for(employee_id)
        with lock:
            yield

    def is_locked(self, employee_id: str) -> bool:
        with self._guard:
            lock = self._locks.get(employee_id)
        return lock is not None and lock.locked()

    def known_employees(self) -> Set[str]:
        with self._guard:
            return set(self._locks)
