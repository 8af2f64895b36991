"""
Core Module - Clock.

============================================================
RESPONSIBILITY
============================================================
Single time source for the copy engine.

USED FOR:
- 0DTE checks (option expiration vs. today)
- Daily trade count and volume windows (since UTC midnight)
- Execution, detection and API response timestamps

Every datetime handed out is timezone-aware UTC. Tests swap
in MockClock to pin "now" and move it explicitly.

============================================================
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Optional


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes; aware ones pass through."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================
# CLOCK INTERFACE
# ============================================================

class ClockProtocol(ABC):
    """Time source. Implementations only provide now()."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time, UTC."""
        pass

    def today(self) -> date:
        return self.now().date()

    def start_of_day(self) -> datetime:
        """UTC midnight of today; the lower bound of daily limits."""
        return self.now().replace(hour=0, minute=0, second=0, microsecond=0)

    def format_iso(self, value: Optional[datetime] = None) -> str:
        return ensure_utc(value or self.now()).isoformat()


class SystemClock(ClockProtocol):
    """Wall clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class MockClock(ClockProtocol):
    """
    Manually driven clock for tests.

    Time only moves through set_time() and advance().
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._now = ensure_utc(initial_time) or datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set_time(self, new_time: datetime) -> None:
        self._now = ensure_utc(new_time)

    def advance(self, seconds: float = 0, **delta) -> None:
        """
        Move time forward (or back, with negative values).

        Args:
            seconds: Seconds to add
            **delta: Extra timedelta fields (minutes, hours, days)
        """
        self._now += timedelta(seconds=seconds, **delta)


# ============================================================
# PARSING
# ============================================================

def parse_date(value: str) -> date:
    """
    Calendar date of an ISO date or datetime string.

    Accepts "2026-03-10", "2026-03-10T20:00:00" and a trailing "Z".

    Raises:
        ValueError: If the string is not ISO formatted
    """
    if len(value) == 10:
        return date.fromisoformat(value)
    return datetime.fromisoformat(value.replace("Z", "+00:00")).date()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ensure_utc",
    "parse_date",
]
