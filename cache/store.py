"""
cache/store.py -- In-process read cache for user records, keyed by email.

Sits in front of UserStore so repeated logins for the same email skip the
database for the TTL window (default 5 minutes). One instance is created by
the API lifespan and handed to AuthService; there is no module-level cache.

Usage:
    cache = UserCache(ttl=300)
    cache.set("a@x.com", user)
    cache.get("a@x.com")        # returns User or None
    cache.delete("a@x.com")     # after a write to that email

Expiry is lazy: get() treats an entry past its deadline as missing and then
purges it. Nothing sweeps the dict in the background, so an expired entry
that is never read again stays in memory. The key space is one entry per
active email, which keeps that bounded in practice.

Concurrency: a reader/writer lock guards the dict. Lookups share the lock,
set()/delete() take it exclusively. The lock only ever wraps dict access --
callers fetch from the database outside of it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from auth.models import User

logger = logging.getLogger("authservice.cache")

_DEFAULT_TTL = 5 * 60  # seconds


class ReadWriteLock:
    """Many concurrent readers or one writer, never both.

    Writers are preferred: once a writer is waiting, new readers queue behind
    it, so a steady stream of lookups cannot starve set()/delete().
    Not reentrant -- a thread holding the read side must release it before
    asking for the write side.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


@dataclass(frozen=True)
class _Entry:
    user: User
    expires_at: float


class UserCache:
    """TTL cache mapping email -> User snapshot.

    clock must be monotonic non-decreasing seconds; it is injectable so tests
    can move past the TTL without sleeping.
    """

    def __init__(self, ttl: float = _DEFAULT_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = ReadWriteLock()

    def get(self, email: str) -> User | None:
        """Return the cached user for email if present and not expired."""
        with self._lock.read():
            entry = self._entries.get(email)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._purge(email, entry)
            return None
        logger.debug("Cache hit for %s", email)
        return entry.user

    def set(self, email: str, user: User) -> None:
        """Store user under email, replacing any entry and restarting its TTL."""
        entry = _Entry(user=user, expires_at=self._clock() + self.ttl)
        with self._lock.write():
            self._entries[email] = entry
        logger.debug("Cache set for %s", email)

    def delete(self, email: str) -> None:
        """Drop the entry for email. No-op if absent."""
        with self._lock.write():
            removed = self._entries.pop(email, None)
        if removed is not None:
            logger.debug("Cache delete for %s", email)

    def __len__(self) -> int:
        """Physical entry count, expired-but-unread entries included."""
        with self._lock.read():
            return len(self._entries)

    def _purge(self, email: str, stale: _Entry) -> None:
        # Another thread may have refreshed the key since we read it; only
        # remove the exact entry we saw expire.
        with self._lock.write():
            if self._entries.get(email) is stale:
                del self._entries[email]
