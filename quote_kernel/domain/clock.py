"""
Clock -- injectable time source.

Responsibility:
    Services receive a Clock through their constructor and never call
    ``datetime.now()`` directly, so idempotency expiry, version timestamps
    and status stamps are reproducible in tests.

Architecture position:
    Domain layer.  SystemClock is the one sanctioned I/O boundary for time.
"""

import threading
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Contract:
        ``now()`` returns the same value on repeated calls until ``advance()``
        or ``set_time()`` is called.  Safe to share across worker threads.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
        self._offset = timedelta(0)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        with self._lock:
            self._fixed_time = time
            self._offset = timedelta(0)

    def advance(self, seconds: float = 0, *, hours: float = 0) -> None:
        with self._lock:
            self._offset += timedelta(seconds=seconds, hours=hours)

    def tick(self) -> datetime:
        """Advance by 1 second and return new time."""
        self.advance(1)
        return self.now()
