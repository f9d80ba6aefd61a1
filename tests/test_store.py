from datetime import timedelta

from conftest import DAY, make_set
from prayer_reminder.core.prayer_set import PrayerStatus
from prayer_reminder.prayer import service
from prayer_reminder.prayer.service import SqlPrayerStore


def test_save_and_load_day(database):
    store = SqlPrayerStore()
    prayer_set = make_set()
    prayer_set.get("Fajr").status = PrayerStatus.COMPLETED
    store.save(DAY, prayer_set)

    loaded = store.load(DAY)
    assert loaded == prayer_set
    assert not loaded.get("Sunrise").actionable
    assert store.load(DAY + timedelta(days=1)) is None


def test_save_replaces_existing_row(database):
    store = SqlPrayerStore()
    prayer_set = make_set()
    store.save(DAY, prayer_set)
    prayer_set.get("Dhuhr").status = PrayerStatus.MISSED
    store.save(DAY, prayer_set)

    records = service.get_all_prayer_day_records()
    assert len(records) == 1
    assert store.load(DAY).get("Dhuhr").status == PrayerStatus.MISSED


def test_load_all_oldest_first_and_completed_days(database):
    store = SqlPrayerStore()
    yesterday = DAY - timedelta(days=1)
    done = make_set(day=yesterday)
    for point in done.actionable_points():
        point.status = PrayerStatus.COMPLETED
    store.save(DAY, make_set())
    store.save(yesterday, done)

    assert [s.day for s in store.load_all()] == [yesterday, DAY]
    assert service.completed_days(["Sunrise"]) == [yesterday]


def test_record_row_serializes(database):
    service.save_prayer_set(make_set())
    row = service.get_prayer_day_record(DAY)
    assert row.day == DAY
    assert row.data[2] == {"name": "Dhuhr", "time": "13:00", "status": "upcoming"}
    assert row.saved_at is not None
