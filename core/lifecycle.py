"""Shutdown coordination for in-flight pipeline runs."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from core.runner import registry
from utils.logger import get_logger

log = get_logger(__name__)


class ShuttingDown(RuntimeError):
    """Raised when a new run is requested after shutdown began."""


class ShutdownController:
    """Tracks in-flight runs and their cancellation events.

    ``track()`` registers a run and yields its cancel event. ``shutdown(grace)``
    stops new runs, waits up to *grace* seconds for in-flight ones, then sets
    every remaining cancel event and kills any child still alive.
    """

    def __init__(self, process_registry=None):
        self._events = set()
        self._cond = threading.Condition()
        self._accepting = True
        self._registry = process_registry or registry

    @property
    def accepting(self):
        return self._accepting

    @property
    def in_flight(self):
        with self._cond:
            return len(self._events)

    @contextmanager
    def track(self):
        event = threading.Event()
        with self._cond:
            if not self._accepting:
                raise ShuttingDown("Service is shutting down")
            self._events.add(event)
        try:
            yield event
        finally:
            with self._cond:
                self._events.discard(event)
                self._cond.notify_all()

    def wait_idle(self, timeout):
        """Block until no run is in flight or *timeout* elapses. Returns True if idle."""
        deadline = time.monotonic() + timeout
        with self._cond:
            while self._events:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(remaining)
        return True

    def shutdown(self, grace):
        """Stop accepting runs and drain. Returns the number of runs force-cancelled."""
        with self._cond:
            self._accepting = False
            pending = len(self._events)
        log.info("Shutdown requested, %d run(s) in flight, grace %ss", pending, grace)

        if self.wait_idle(grace):
            return 0

        with self._cond:
            events = list(self._events)
        for event in events:
            event.set()
        killed = self._registry.terminate_all()
        log.warning("Grace period over: cancelled %d run(s), killed %d process(es)",
                    len(events), killed)
        return len(events)
