"""
tests/support.py -- Test doubles and constants shared by fixtures and tests.

Kept out of conftest.py so test modules can import them directly without
loading conftest a second time under another module name.
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from auth.errors import NotificationError

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"

# bcrypt cost 4 is the minimum; hashes stay valid bcrypt, just fast.
FAST_HASHER_ROUNDS = 4


class FakeClock:
    """Seconds-since-epoch clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def utc(self) -> datetime:
        return datetime.fromtimestamp(self.now, timezone.utc)


class RecordingNotifier:
    """Records send_welcome() calls; optionally fails or blocks on a gate."""

    enabled = True

    def __init__(self, fail: bool = False, gate: threading.Event | None = None) -> None:
        self.fail = fail
        self.gate = gate
        self.sent: list[tuple[str, str]] = []
        self.delivered = threading.Event()
        self._lock = threading.Lock()

    def send_welcome(self, address: str, display_name: str) -> None:
        if self.gate is not None:
            self.gate.wait(5)
        with self._lock:
            self.sent.append((address, display_name))
        self.delivered.set()
        if self.fail:
            raise NotificationError(f"simulated SMTP failure for {address}")


def memory_db_url(prefix: str = "test") -> str:
    """Return a shared-memory SQLite URL no other test uses."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it is true or timeout elapses. Returns the last result."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()
