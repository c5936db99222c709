"""
Injectable time source.

Services take a ``Clock`` in their constructor and stamp ``posted_at``,
``reversed_at``, ``voided_at`` and audit timestamps from it, so a test can
pin every timestamp the kernel writes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

_EPOCH_FOR_TESTS = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current instant."""


class SystemClock(Clock):
    """Wall-clock UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests.

    ``now()`` returns the same instant on every call.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or _EPOCH_FOR_TESTS

    def now(self) -> datetime:
        return self._current
