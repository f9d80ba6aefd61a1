"""
In-memory model of one day's prayers: ordered time points with their stored status.
"""
import copy
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class PrayerStatus(str, Enum):
    """Stored status. "Active" is never stored; it is derived from the window engine."""
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    MISSED = "missed"


@dataclass
class TimePoint:
    name: str
    time_of_day: str  # "HH:MM", local civil time
    status: PrayerStatus = PrayerStatus.UPCOMING
    actionable: bool = True

    def to_record(self) -> Dict[str, Any]:
        return {"name": self.name, "time": self.time_of_day, "status": self.status.value}


@dataclass
class PrayerSet:
    """Ordered time points for one calendar day. List order is chronological order."""
    day: date
    points: List[TimePoint] = field(default_factory=list)

    @classmethod
    def from_times(
        cls,
        day: date,
        times: Dict[str, str],
        order: Optional[Iterable[str]] = None,
        non_actionable: Iterable[str] = (),
    ) -> "PrayerSet":
        """Build a fresh set (all Upcoming) from provider output.

        order: names in the order they should appear; names missing from times are skipped.
        Without an order the mapping's own order is used.
        """
        skip = set(non_actionable)
        names = list(order) if order is not None else list(times.keys())
        points = [
            TimePoint(name=name, time_of_day=times[name], actionable=name not in skip)
            for name in names
            if name in times
        ]
        return cls(day=day, points=points)

    @classmethod
    def from_records(cls, day: date, records: List[Dict[str, Any]], non_actionable: Iterable[str] = ()) -> "PrayerSet":
        """Rebuild a set from stored records ({name, time, status})."""
        skip = set(non_actionable)
        points = []
        for rec in records or []:
            try:
                status = PrayerStatus(rec.get("status", PrayerStatus.UPCOMING.value))
            except ValueError:
                status = PrayerStatus.UPCOMING
            points.append(TimePoint(
                name=rec["name"],
                time_of_day=rec.get("time", ""),
                status=status,
                actionable=rec["name"] not in skip,
            ))
        return cls(day=day, points=points)

    def to_records(self) -> List[Dict[str, Any]]:
        return [p.to_record() for p in self.points]

    def copy(self) -> "PrayerSet":
        return copy.deepcopy(self)

    def get(self, name: str) -> Optional[TimePoint]:
        for point in self.points:
            if point.name == name:
                return point
        return None

    def index_of(self, name: str) -> int:
        for i, point in enumerate(self.points):
            if point.name == name:
                return i
        return -1

    def actionable_points(self) -> List[TimePoint]:
        return [p for p in self.points if p.actionable]

    def is_empty(self) -> bool:
        return not self.points

    def all_completed(self) -> bool:
        """True iff there is at least one actionable point and every one is Completed."""
        relevant = self.actionable_points()
        return bool(relevant) and all(p.status == PrayerStatus.COMPLETED for p in relevant)

    def merge_completed(self, previous: Optional["PrayerSet"]) -> "PrayerSet":
        """Carry Completed forward from a previous fetch of the same day.

        A point keeps Completed only if both its name and time of day are unchanged.
        Returns a new set; self is not modified.
        """
        merged = self.copy()
        if previous is None or previous.day != self.day:
            return merged
        for point in merged.points:
            old = previous.get(point.name)
            if old and old.status == PrayerStatus.COMPLETED and old.time_of_day == point.time_of_day:
                point.status = PrayerStatus.COMPLETED
        return merged
