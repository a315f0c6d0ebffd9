"""Keyed in-process locks for trip instance ledgers and slot creation."""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator

from shuttlebook.backend.core.config import settings
from shuttlebook.backend.core.errors import ConcurrencyConflict


class LockRegistry:
    """
    Hands out one re-entrant lock per key.

    Locks are created lazily and kept for the lifetime of the process; the
    key space is bounded by the number of trip instances and slots touched.
    """

    def __init__(self, timeout: float = None):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}
        self.timeout = timeout

    def _get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Acquire the lock for ``key``, raising ConcurrencyConflict on timeout."""
        timeout = self.timeout if self.timeout is not None else settings.lock_timeout_seconds
        lock = self._get(key)
        if not lock.acquire(timeout=timeout):
            raise ConcurrencyConflict(f"Timed out waiting for lock {key}")
        try:
            yield
        finally:
            lock.release()


def trip_instance_key(trip_instance_id: str) -> str:
    return f"trip-instance:{trip_instance_id}"


def slot_key(slot_owner: str, scheduled_date, start_time, end_time) -> str:
    return f"slot:{slot_owner}:{scheduled_date}:{start_time}:{end_time}"


ledger_locks = LockRegistry()
