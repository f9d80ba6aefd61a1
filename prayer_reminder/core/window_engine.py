"""
Window engine: every time-based fact about a PrayerSet is derived from one pair of
boundaries per point, so "active" and "ended" can never disagree.

A point's window is [start, end): start is its own time of day on the set's day, end is
the start of the next point with a valid time (actionable or not). The last point ends at
23:59:59 unless extend_last_window is set, in which case it runs until the first point's
time on the following day.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from prayer_reminder.core.clock import compose, end_of_day
from prayer_reminder.core.prayer_set import PrayerSet, PrayerStatus, TimePoint

logger = logging.getLogger(__name__)

Bounds = Tuple[datetime, datetime]


class WindowEngine:
    """Pure derivations over (PrayerSet, now). Holds only the last-window policy."""

    def __init__(self, extend_last_window: bool = False, daytime_start: str = "Fajr", daytime_end: str = "Maghrib"):
        self.extend_last_window = extend_last_window
        self.daytime_start = daytime_start
        self.daytime_end = daytime_end

    def _starts(self, prayer_set: PrayerSet) -> List[Optional[datetime]]:
        starts = []
        for point in prayer_set.points:
            start = compose(prayer_set.day, point.time_of_day)
            if start is None:
                logger.debug(f"Ignoring {point.name}: malformed time {point.time_of_day!r}")
            starts.append(start)
        return starts

    def window_bounds(self, point: TimePoint, prayer_set: PrayerSet) -> Optional[Bounds]:
        """Return (start, end) for point, or None if it is unknown or its time is malformed."""
        index = prayer_set.index_of(point.name)
        if index < 0:
            return None
        starts = self._starts(prayer_set)
        start = starts[index]
        if start is None:
            return None

        end = None
        for candidate in starts[index + 1:]:
            if candidate is not None:
                end = candidate
                break
        if end is None:
            end = self._last_window_end(prayer_set, starts)
        # successor out of chronological order: empty window
        if end < start:
            end = start
        return start, end

    def _last_window_end(self, prayer_set: PrayerSet, starts: List[Optional[datetime]]) -> datetime:
        if self.extend_last_window:
            first = next((s for s in starts if s is not None), None)
            if first is not None:
                return first + timedelta(days=1)
        return end_of_day(prayer_set.day)

    def is_active(self, point: TimePoint, prayer_set: PrayerSet, now: datetime) -> bool:
        if not point.actionable:
            return False
        bounds = self.window_bounds(point, prayer_set)
        if bounds is None:
            return False
        start, end = bounds
        return start <= now < end

    def has_window_ended(self, point: TimePoint, prayer_set: PrayerSet, now: datetime) -> bool:
        bounds = self.window_bounds(point, prayer_set)
        if bounds is None:
            return False
        return now >= bounds[1]

    def derive_status(self, point: TimePoint, prayer_set: PrayerSet, now: datetime) -> PrayerStatus:
        """Completed is sticky; otherwise Missed once the window has ended, else Upcoming."""
        if point.status == PrayerStatus.COMPLETED:
            return PrayerStatus.COMPLETED
        if self.has_window_ended(point, prayer_set, now):
            return PrayerStatus.MISSED
        return PrayerStatus.UPCOMING

    def current_active(self, prayer_set: PrayerSet, now: datetime) -> Optional[TimePoint]:
        """The single point whose window contains now, if any."""
        for point in prayer_set.points:
            if self.is_active(point, prayer_set, now):
                return point
        return None

    def next_upcoming(self, prayer_set: PrayerSet, now: datetime) -> Optional[Tuple[TimePoint, datetime]]:
        """First actionable point (list order) still Upcoming, with its own start instant.

        A point inside its own open window is returned with its already-passed start.
        None when nothing is left for the day; rolling over to tomorrow is the caller's call.
        """
        for point in prayer_set.points:
            if not point.actionable:
                continue
            if self.derive_status(point, prayer_set, now) != PrayerStatus.UPCOMING:
                continue
            bounds = self.window_bounds(point, prayer_set)
            if bounds is None:
                continue
            return point, bounds[0]
        return None

    def status_label(self, point: TimePoint, prayer_set: PrayerSet, now: datetime) -> str:
        """Display label: Completed, Missed, Active or Upcoming."""
        status = self.derive_status(point, prayer_set, now)
        if status == PrayerStatus.COMPLETED:
            return "Completed"
        if status == PrayerStatus.MISSED:
            return "Missed"
        return "Active" if self.is_active(point, prayer_set, now) else "Upcoming"

    def is_daytime(self, prayer_set: PrayerSet, now: datetime) -> bool:
        """Between Fajr and Maghrib. Defaults to True when either is missing."""
        fajr = prayer_set.get(self.daytime_start)
        maghrib = prayer_set.get(self.daytime_end)
        if fajr is None or maghrib is None:
            return True
        start = compose(prayer_set.day, fajr.time_of_day)
        end = compose(prayer_set.day, maghrib.time_of_day)
        if start is None or end is None:
            return True
        return start < now < end
