# src/conduit/engine/clock.py
"""Clock abstraction for testable polling budgets and deadlines.

Production code uses SystemClock (the default). Tests inject MockClock
and advance it from inside a stub provider, so a polling timeout can be
exercised without waiting for it.
"""

from __future__ import annotations

import threading
import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic time source.

    Implementations:
    - SystemClock: Uses time.monotonic() (production)
    - MockClock: Returns controllable times (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds (never goes backwards)."""
        ...


class SystemClock:
    """Production clock using time.monotonic()."""

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Thread-safe: branch threads may read it while a stub advances it.

    Example:
        clock = MockClock(start=0.0)
        invoker = ProviderInvoker(registry, auditor, polling, clock=clock)
        clock.advance(30.0)  # e.g. from inside a stub provider's poll()
    """

    def __init__(self, start: float = 0.0) -> None:
        self._current = start
        self._lock = threading.Lock()

    def monotonic(self) -> float:
        with self._lock:
            return self._current

    def advance(self, seconds: float) -> None:
        """Advance mock time.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        with self._lock:
            self._current += seconds


DEFAULT_CLOCK: Clock = SystemClock()
