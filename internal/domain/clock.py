"""
Time sources for the domain.

Wall-clock timestamps are timezone-aware UTC. Logical timestamps order
events emitted by this process.
"""
import itertools
import threading
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class LogicalClock:
    """Monotonic counter used to stamp domain events."""

    def __init__(self, start: int = 0) -> None:
        self._counter = itertools.count(start + 1)
        self._lock = threading.Lock()
        self._last = start

    def tick(self) -> int:
        """
        Advance the clock.

        Returns:
            The next logical timestamp.
        """
        with self._lock:
            self._last = next(self._counter)
            return self._last

    @property
    def last(self) -> int:
        """Last issued timestamp."""
        return self._last


# Process-wide clock shared by all event factories
default_clock = LogicalClock()
