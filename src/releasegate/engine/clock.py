"""Clock abstraction for gate deadlines.

Every gate deadline and timer in the runtime is computed from a Clock.
Production uses SystemClock; tests inject MockClock and move time forward
explicitly, so a 96-hour test gate can time out in milliseconds.
"""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract monotonic clock.

    Implementations:
    - SystemClock: Uses time.monotonic() (production)
    - MockClock: Returns controllable times (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds. Never goes backwards."""
        ...


class SystemClock:
    """Production clock using time.monotonic()."""

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Safe to advance from a test thread while run threads read it.

    Example:
        clock = MockClock()
        runtime = DurableRuntime(clock=clock)
        handle = orchestrator.start(request)

        clock.advance(timedelta(hours=24))  # past the approval deadline
        handle.settle()
        assert handle.query("run_state").status == RunStatus.FAILED
    """

    def __init__(self, start: float = 0.0) -> None:
        self._current = start
        self._lock = threading.Lock()

    def monotonic(self) -> float:
        with self._lock:
            return self._current

    def advance(self, amount: float | timedelta) -> None:
        """Advance mock time.

        Args:
            amount: Seconds, or a timedelta (must be non-negative).

        Raises:
            ValueError: If amount is negative.
        """
        seconds = amount.total_seconds() if isinstance(amount, timedelta) else amount
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        with self._lock:
            self._current += seconds


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
