"""
Service layer: save and load daily prayer sets from DB.

The store is a cache of what the engine already holds in memory; it is never consulted
for "now".
"""
import logging
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import select

from prayer_reminder.core.db import session_scope
from prayer_reminder.core.prayer_set import PrayerSet
from prayer_reminder.prayer.models import PrayerDayRecord

logger = logging.getLogger(__name__)


def save_prayer_set(prayer_set: PrayerSet) -> None:
    """Insert or replace the row for prayer_set.day."""
    saved_at = datetime.now(timezone.utc).replace(tzinfo=None)
    with session_scope() as session:
        row = session.execute(
            select(PrayerDayRecord).where(PrayerDayRecord.day == prayer_set.day)
        ).scalars().first()
        if row:
            row.data = prayer_set.to_records()
            row.saved_at = saved_at
        else:
            session.add(
                PrayerDayRecord(
                    day=prayer_set.day,
                    saved_at=saved_at,
                    data=prayer_set.to_records(),
                )
            )


def get_prayer_day_record(day: date) -> Optional[PrayerDayRecord]:
    """Return the PrayerDayRecord row for day (for API serialization)."""
    with session_scope() as session:
        return session.execute(
            select(PrayerDayRecord).where(PrayerDayRecord.day == day)
        ).scalars().first()


def get_prayer_set(day: date, non_actionable: Iterable[str] = ()) -> Optional[PrayerSet]:
    row = get_prayer_day_record(day)
    if row is None:
        return None
    return PrayerSet.from_records(row.day, row.data, non_actionable)


def get_all_prayer_day_records() -> List[PrayerDayRecord]:
    with session_scope() as session:
        return list(
            session.execute(select(PrayerDayRecord).order_by(PrayerDayRecord.day)).scalars().all()
        )


def load_all_prayer_sets(non_actionable: Iterable[str] = ()) -> List[PrayerSet]:
    """Every stored day, oldest first."""
    skip = list(non_actionable)
    return [PrayerSet.from_records(r.day, r.data, skip) for r in get_all_prayer_day_records()]


def completed_days(non_actionable: Iterable[str] = ()) -> List[date]:
    """Days where every actionable prayer was completed."""
    return [s.day for s in load_all_prayer_sets(non_actionable) if s.all_completed()]


class SqlPrayerStore:
    """Store contract (save / load_all) over the service functions."""

    def __init__(self, non_actionable: Iterable[str] = ("Sunrise",)):
        self.non_actionable = list(non_actionable)
        self.logger = logging.getLogger(self.__class__.__name__)

    def save(self, day: date, prayer_set: PrayerSet) -> None:
        if prayer_set.day != day:
            prayer_set = PrayerSet(day=day, points=prayer_set.copy().points)
        save_prayer_set(prayer_set)
        self.logger.debug(f"Saved prayer set for {day}")

    def load(self, day: date) -> Optional[PrayerSet]:
        return get_prayer_set(day, self.non_actionable)

    def load_all(self) -> List[PrayerSet]:
        return load_all_prayer_sets(self.non_actionable)
