"""
Clock -- injectable time source.

Responsibility:
    Lets services stamp submissions, reviews and audit entries without
    calling ``datetime.now()`` directly, so tests can pin and advance time.

Architecture position:
    Kernel > Domain -- pure core.  SystemClock is the one sanctioned
    I/O boundary for time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Contract:
        Services receive a Clock through their constructor and never read
        wall-clock time themselves.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current UTC time."""
        ...


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    Guarantees:
        - ``now()`` returns the same value until ``advance()``, ``tick()``
          or ``set_time()`` is called.
        - ``tick()`` advances by exactly one second and returns the new time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(
            2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc
        )

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            raise ValueError("DeterministicClock requires a timezone-aware datetime")
        self._current = time.astimezone(timezone.utc)

    def advance(self, seconds: float = 1, **delta: float) -> None:
        """Advance by ``seconds`` plus any extra ``timedelta`` keyword parts."""
        self._current += timedelta(seconds=seconds, **delta)

    def tick(self) -> datetime:
        self.advance(1)
        return self._current
