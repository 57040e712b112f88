"""Per-working-copy locks: one pipeline at a time per path."""

import os
import threading
from contextlib import contextmanager


class PathLockRegistry:
    """Hands out one lock per resolved path. Different paths never contend.

    Entries are reference counted and removed once no run holds or waits on
    them, so the registry only grows with concurrent work.
    """

    def __init__(self):
        self._locks = {}    # realpath -> [lock, holders + waiters]
        self._lock = threading.Lock()

    def __len__(self):
        with self._lock:
            return len(self._locks)

    def is_locked(self, path):
        with self._lock:
            entry = self._locks.get(os.path.realpath(path))
            return bool(entry and entry[0].locked())

    def _checkout(self, key):
        with self._lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _release(self, key):
        with self._lock:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, path, timeout=None):
        """Hold the lock for *path*; waits indefinitely unless *timeout* is given.

        Raises:
            TimeoutError: If the lock could not be acquired within *timeout*.
        """
        key = os.path.realpath(path)
        lock = self._checkout(key)
        try:
            acquired = lock.acquire() if timeout is None else lock.acquire(timeout=timeout)
            if not acquired:
                raise TimeoutError(f"Working copy busy: {path}")
            try:
                yield
            finally:
                lock.release()
        finally:
            self._release(key)
