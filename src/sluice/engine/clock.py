"""Clock abstraction for testable time-budget logic.

The convergence loop reads the clock once at loop entry and again after
each merge to decide whether its batch_duration_secs budget is spent.

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Abstract clock for elapsed-time checks.

    Implementations:
    - SystemClock: Uses time.monotonic() (production)
    - MockClock: Returns controllable times (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds.

        Must never go backwards; only differences between two readings
        are meaningful.
        """
        ...


class SystemClock:
    """Production clock using time.monotonic().

    Immune to NTP and wall-clock adjustments, so a long-running loop
    cannot be cut short or extended by a system time change.
    """

    def monotonic(self) -> float:
        return time.monotonic()


class MockClock:
    """Controllable clock for deterministic testing.

    Allows tests to advance time programmatically without sleep().

    Example:
        clock = MockClock(start=0.0)
        loop = ConvergenceLoop(..., batch_duration_secs=60, clock=clock)

        backend = ScriptedOperationBackend(clock=clock, tick_secs=45.0)
        # Second iteration pushes elapsed past 60s -> TIMED_OUT
    """

    def __init__(self, start: float = 0.0) -> None:
        self._current = start

    def monotonic(self) -> float:
        return self._current

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds

    def set(self, value: float) -> None:
        """Set mock time to an absolute value.

        Unlike advance(), this can move time backwards. Monotonic clocks
        never do that in production.
        """
        self._current = value


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
