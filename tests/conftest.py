"""
Shared fixtures: a fixed test day, prayer sets, engine/planner, a temp SQLite DB and config.
"""
from datetime import date, datetime
from typing import Dict

import pytest

from prayer_reminder.core import db as db_module
from prayer_reminder.core.clock import FrozenClock
from prayer_reminder.core.config import Config
from prayer_reminder.core.prayer_set import PrayerSet
from prayer_reminder.core.reminder_planner import ReminderPlanner
from prayer_reminder.core.window_engine import WindowEngine
from prayer_reminder.prayer.prayer_base import PrayerBackend, ProviderUnavailableError

DAY = date(2025, 7, 24)

FULL_TIMES = {
    "Fajr": "04:30",
    "Sunrise": "06:00",
    "Dhuhr": "13:00",
    "Asr": "17:00",
    "Maghrib": "20:30",
    "Isha": "22:00",
}
ORDER = ["Fajr", "Sunrise", "Dhuhr", "Asr", "Maghrib", "Isha"]


def at(hour: int, minute: int = 0, second: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, second)


def make_set(times: Dict[str, str] = None, day: date = DAY) -> PrayerSet:
    return PrayerSet.from_times(day, times if times is not None else FULL_TIMES, non_actionable=["Sunrise"])


class FakeBackend(PrayerBackend):
    """Returns canned times, or raises once per queued error."""

    def __init__(self, times: Dict[str, str] = None):
        super().__init__({})
        self.times = dict(times if times is not None else FULL_TIMES)
        self.errors = []
        self.calls = []

    def get_prayer_times(self, day, force_fetch=False):
        self.calls.append((day, force_fetch))
        if self.errors:
            raise self.errors.pop(0)
        return dict(self.times)


@pytest.fixture
def prayer_set():
    return make_set()


@pytest.fixture
def engine():
    return WindowEngine()


@pytest.fixture
def planner(engine):
    return ReminderPlanner(engine, interval_minutes=10)


@pytest.fixture
def clock():
    return FrozenClock(at(5, 0))


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def unavailable_error():
    return ProviderUnavailableError("The prayer time server is currently unavailable.", 503)


@pytest.fixture
def database(tmp_path):
    db_module.dispose_db()
    db_module.init_db(db_url=f"sqlite:///{tmp_path / 'test.db'}")
    yield
    db_module.dispose_db()


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "reminders:\n"
        "  enabled: true\n"
        "  interval_minutes: 10\n"
        f"cache:\n  directory: {tmp_path / 'cache'}\n"
        f"logging:\n  level: DEBUG\n  file: {tmp_path / 'test.log'}\n"
    )
    cfg = Config(config_path=str(path), watch=False)
    yield cfg
    cfg.cleanup()


@pytest.fixture
def reminder_app(config, database, clock, fake_backend):
    """ReminderApp on a frozen clock that runs fetches inline."""
    from prayer_reminder.core.app import ReminderApp

    app = ReminderApp(
        config=config,
        clock=clock,
        backend=fake_backend,
        executor=lambda name, callback: callback(),
    )
    yield app
    app.task_manager.stop()
