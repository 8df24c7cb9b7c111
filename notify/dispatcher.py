"""
notify/dispatcher.py -- Bounded pool for fire-and-forget background jobs.

Registration must not wait on SMTP. AuthService hands the welcome mail to
Dispatcher.submit(), which queues the job and returns at once. At most
`capacity` worker threads exist; each takes a slot per job, so however many
registrations arrive, at most `capacity` deliveries run at the same time.
Jobs beyond that wait in the backlog as plain callables, not as parked
threads. Workers exit when the backlog is empty and are started again by the
next submit().

Slot accounting is a threading.BoundedSemaphore, so a release() without a
matching acquire() raises ValueError instead of silently growing the pool.

Jobs are not cancelled with the request that submitted them, and their
exceptions stop here: logged, never re-raised, never retried.

Usage:
    pool = Dispatcher(capacity=5)
    pool.submit(lambda: notifier.send_welcome(addr, name), name="welcome")
    ...
    pool.join(timeout=30)       # on shutdown
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterator
from contextlib import contextmanager

logger = logging.getLogger("authservice.notify")


class Dispatcher:
    def __init__(self, capacity: int, name: str = "notify") -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.name = name
        self._slots = threading.BoundedSemaphore(capacity)
        self._state = threading.Lock()
        self._idle = threading.Condition(self._state)
        self._in_flight = 0
        self._waiting = 0
        self._backlog: deque[tuple[Callable[[], object], str]] = deque()
        self._workers = 0
        self._seq = 0

    # ------------------------------------------------------------------
    # Slot accounting
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> int:
        """Number of slots currently held."""
        with self._state:
            return self._in_flight

    @property
    def waiting(self) -> int:
        """Jobs queued for a worker plus callers blocked in acquire()."""
        with self._state:
            return self._waiting + len(self._backlog)

    def acquire(self, timeout: float | None = None) -> bool:
        """Block until a slot is free and take it.

        Returns False only if timeout elapsed first; with timeout=None it
        always returns True.
        """
        with self._state:
            self._waiting += 1
        try:
            acquired = self._slots.acquire(timeout=timeout)
        finally:
            with self._state:
                self._waiting -= 1
        if acquired:
            with self._state:
                self._in_flight += 1
        return acquired

    def release(self) -> None:
        """Return a slot taken by acquire(). Raises ValueError if none is held."""
        with self._state:
            if self._in_flight == 0:
                raise ValueError(f"{self.name}: release() without a matching acquire()")
            self._in_flight -= 1
        self._slots.release()

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Hold one slot for the duration of the with-block, released on any exit."""
        self.acquire()
        try:
            yield
        finally:
            self.release()

    # ------------------------------------------------------------------
    # Fire-and-forget
    # ------------------------------------------------------------------

    def submit(self, job: Callable[[], object], name: str | None = None) -> None:
        """Queue job to run once a slot is free. Returns without waiting.

        Starts a worker thread only while fewer than `capacity` exist.
        """
        with self._state:
            self._seq += 1
            self._backlog.append((job, name or f"job-{self._seq}"))
            start = self._workers < self.capacity
            if start:
                self._workers += 1
                worker_name = f"{self.name}-worker-{self._seq}"
        if start:
            threading.Thread(target=self._work, name=worker_name, daemon=True).start()

    def _work(self) -> None:
        while True:
            with self._state:
                if not self._backlog:
                    self._workers -= 1
                    self._idle.notify_all()
                    return
                job, label = self._backlog.popleft()
            try:
                with self.slot():
                    job()
            except Exception:
                logger.exception("%s: background job %s failed", self.name, label)

    @property
    def workers(self) -> int:
        """Number of live worker threads (never more than capacity)."""
        with self._state:
            return self._workers

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every queued job has run. Returns False on timeout."""
        with self._idle:
            done = self._idle.wait_for(lambda: self._workers == 0, timeout)
            queued = len(self._backlog)
        if not done:
            logger.warning("%s: background jobs still running after %.1fs (%d queued)", self.name, timeout, queued)
        return done
