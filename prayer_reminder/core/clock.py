"""
Local civil time helpers: "now", HH:MM parsing and composing a time of day with a calendar date.
"""
import logging
from datetime import date, datetime, time, timedelta
from typing import Optional

logger = logging.getLogger(__name__)

END_OF_DAY = time(23, 59, 59)


class Clock:
    """Source of the current local instant. Naive datetimes in device local time."""

    def now(self) -> datetime:
        return datetime.now()

    def today(self) -> date:
        return self.now().date()


class FrozenClock(Clock):
    """Clock that only moves when told to. Used by tests and the manual test schedule."""

    def __init__(self, current: datetime):
        self.current = current

    def now(self) -> datetime:
        return self.current

    def set(self, current: datetime) -> None:
        self.current = current

    def advance(self, **kwargs) -> datetime:
        """Move forward by timedelta(**kwargs) and return the new instant."""
        self.current = self.current + timedelta(**kwargs)
        return self.current


def parse_time_of_day(value: Optional[str]) -> Optional[time]:
    """Parse "HH:MM" (24h) into a time. Returns None when the string is malformed.

    Provider strings sometimes carry a zone suffix ("05:12 (EET)"); only the first
    token is read.
    """
    if not value or not isinstance(value, str):
        return None
    token = value.strip().split(" ")[0]
    parts = token.split(":")
    if len(parts) != 2:
        return None
    try:
        hour, minute = int(parts[0]), int(parts[1])
        return time(hour, minute)
    except ValueError:
        return None


def compose(day: date, time_of_day: str) -> Optional[datetime]:
    """Combine an HH:MM string with a calendar day into an absolute local instant."""
    parsed = parse_time_of_day(time_of_day)
    if parsed is None:
        logger.debug(f"Cannot compose malformed time of day: {time_of_day!r}")
        return None
    return datetime.combine(day, parsed)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, END_OF_DAY)


def format_countdown(delta: timedelta) -> str:
    """Format an interval as "02h 30m", or "05m" when under an hour. Sign is ignored."""
    total = int(abs(delta.total_seconds()))
    hours = total // 3600
    minutes = total % 3600 // 60
    if hours > 0:
        return f"{hours:02d}h {minutes:02d}m"
    return f"{minutes:02d}m"
