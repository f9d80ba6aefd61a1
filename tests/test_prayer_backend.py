from datetime import date, datetime
from queue import Queue

import pytest
import requests

from conftest import DAY, FakeBackend
from prayer_reminder.core.lifecycle import FetchFailed, TimesFetched
from prayer_reminder.core.task import TaskType, compute_next_run, seconds_until
from prayer_reminder.prayer import prayer_base
from prayer_reminder.prayer.prayer_base import (
    AladhanBackend,
    FALLBACK_LATITUDE,
    MalformedPayloadError,
    NoDataError,
    ProviderUnavailableError,
    create_backend,
)
from prayer_reminder.prayer.task import COMPONENT_NAME, PrayerTimesTask

TIMINGS = {
    "Fajr": "04:30 (EEST)",
    "Sunrise": "06:00 (EEST)",
    "Dhuhr": "13:00 (EEST)",
    "Asr": "17:00 (EEST)",
    "Sunset": "20:28 (EEST)",
    "Maghrib": "20:30 (EEST)",
    "Isha": "22:00 (EEST)",
}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, bad_json=False):
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self):
        if self._bad_json:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._payload


@pytest.fixture
def backend_config(tmp_path):
    return {
        "location": {"latitude": 32.9, "longitude": -96.6, "method": 2},
        "cache": {"directory": str(tmp_path / "cache")},
    }


@pytest.fixture
def calls(monkeypatch):
    """Queue of responses for requests.get; records each call."""
    state = {"responses": [], "calls": []}

    def fake_get(url, params=None, timeout=None):
        state["calls"].append((url, params, timeout))
        response = state["responses"].pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(prayer_base.requests, "get", fake_get)
    return state


def test_parses_timings_and_strips_zone_suffix(backend_config, calls):
    calls["responses"].append(FakeResponse(payload={"code": 200, "data": {"timings": TIMINGS}}))
    backend = AladhanBackend(backend_config)
    times = backend.get_prayer_times(DAY)
    assert times == {
        "Fajr": "04:30", "Sunrise": "06:00", "Dhuhr": "13:00",
        "Asr": "17:00", "Maghrib": "20:30", "Isha": "22:00",
    }
    url, params, timeout = calls["calls"][0]
    assert url.endswith("/24-07-2025")
    assert params == {"latitude": 32.9, "longitude": -96.6, "method": 2}
    assert timeout == 10


def test_second_call_same_day_uses_cache(backend_config, calls):
    calls["responses"].append(FakeResponse(payload={"data": {"timings": TIMINGS}}))
    backend = AladhanBackend(backend_config)
    backend.get_prayer_times(DAY)
    again = AladhanBackend(backend_config).get_prayer_times(DAY)
    assert again["Dhuhr"] == "13:00"
    assert len(calls["calls"]) == 1


def test_force_fetch_and_other_day_bypass_cache(backend_config, calls):
    for _ in range(3):
        calls["responses"].append(FakeResponse(payload={"data": {"timings": TIMINGS}}))
    backend = AladhanBackend(backend_config)
    backend.get_prayer_times(DAY)
    backend.get_prayer_times(DAY, force_fetch=True)
    backend.get_prayer_times(date(2025, 7, 25))
    assert len(calls["calls"]) == 3


@pytest.mark.parametrize("status,client_error", [(503, False), (404, True)])
def test_http_errors_raise_unavailable(backend_config, calls, status, client_error):
    calls["responses"].append(FakeResponse(status_code=status))
    with pytest.raises(ProviderUnavailableError) as excinfo:
        AladhanBackend(backend_config).get_prayer_times(DAY)
    assert excinfo.value.status_code == status
    assert excinfo.value.is_client_error is client_error


def test_network_error_raises_unavailable(backend_config, calls):
    calls["responses"].append(requests.ConnectionError("connection refused"))
    with pytest.raises(ProviderUnavailableError) as excinfo:
        AladhanBackend(backend_config).get_prayer_times(DAY)
    assert excinfo.value.status_code is None


def test_bad_json_is_malformed(backend_config, calls):
    calls["responses"].append(FakeResponse(bad_json=True))
    with pytest.raises(MalformedPayloadError):
        AladhanBackend(backend_config).get_prayer_times(DAY)


@pytest.mark.parametrize("payload,error", [
    ({"data": None}, NoDataError),
    ({"code": 200}, NoDataError),
    ({"data": {"timings": "none"}}, MalformedPayloadError),
    ({"data": {"timings": {"Sunset": "20:28"}}}, NoDataError),
    (["not", "an", "object"], MalformedPayloadError),
])
def test_unusable_payloads(backend_config, calls, payload, error):
    calls["responses"].append(FakeResponse(payload=payload))
    with pytest.raises(error):
        AladhanBackend(backend_config).get_prayer_times(DAY)


def test_test_schedule_overrides_times(backend_config, calls):
    backend_config["test_schedule"] = {"times": {"Dhuhr": "09:15", "Asr": "bogus"}}
    calls["responses"].append(FakeResponse(payload={"data": {"timings": TIMINGS}}))
    times = AladhanBackend(backend_config).get_prayer_times(DAY)
    assert times["Dhuhr"] == "09:15"
    assert times["Asr"] == "17:00"


def test_fallback_location_and_factory(tmp_path):
    backend = create_backend({"cache": {"directory": str(tmp_path)}})
    assert isinstance(backend, AladhanBackend)
    assert backend.latitude == FALLBACK_LATITUDE
    with pytest.raises(ValueError):
        create_backend({"backend": "unknown"})


def test_task_reports_times_fetched():
    queue = Queue()
    PrayerTimesTask({}, backend=FakeBackend()).run(queue, day=DAY)
    name, event = queue.get_nowait()
    assert name == COMPONENT_NAME
    assert isinstance(event, TimesFetched)
    assert event.day == DAY
    assert event.times["Fajr"] == "04:30"


def test_task_reports_fetch_failed(unavailable_error):
    backend = FakeBackend()
    backend.errors.append(unavailable_error)
    queue = Queue()
    PrayerTimesTask({}, backend=backend).run(queue, day=DAY, force_fetch=True)
    _, event = queue.get_nowait()
    assert event == FetchFailed(DAY, "The prayer time server is currently unavailable.")
    assert backend.calls == [(DAY, True)]


def test_task_reports_unexpected_crash():
    backend = FakeBackend()
    backend.errors.append(KeyError("timings"))
    queue = Queue()
    PrayerTimesTask({}, backend=backend).run(queue, day=DAY)
    _, event = queue.get_nowait()
    assert isinstance(event, FetchFailed)
    assert event.error.startswith("Unexpected error")


def test_daily_next_run():
    task = PrayerTimesTask({"refresh_time": "10:00"}, backend=FakeBackend())
    assert task.schedule_type == TaskType.DAILY
    assert task.get_next_run(datetime(2025, 7, 24, 9, 0)) == datetime(2025, 7, 24, 10, 0)
    assert task.get_next_run(datetime(2025, 7, 24, 10, 0)) == datetime(2025, 7, 25, 10, 0)


def test_compute_next_run_fallbacks():
    last = datetime(2025, 7, 24, 12, 0)
    assert compute_next_run(TaskType.DAILY, {"time": "xx"}, last) == datetime(2025, 7, 25, 0, 0)
    assert compute_next_run("weekly", None, last) == datetime(2025, 7, 25, 12, 0)
    assert seconds_until(datetime(2025, 7, 24, 11, 0), last) == 0
    assert seconds_until(datetime(2025, 7, 24, 12, 1), last) == 60
