import requests
from datetime import date, datetime
from typing import Dict, Any, List, Optional
import logging
from abc import ABC, abstractmethod
from prayer_reminder.core.cache_helper import CacheHelper
from prayer_reminder.core.clock import parse_time_of_day

DEFAULT_PRAYER_NAMES = ['Fajr', 'Sunrise', 'Dhuhr', 'Asr', 'Maghrib', 'Isha']

# Used when no location is configured
FALLBACK_LATITUDE = 41.0082
FALLBACK_LONGITUDE = 28.9784


class PrayerTimesError(Exception):
    """Any failure to produce a day's prayer times."""


class NoDataError(PrayerTimesError):
    pass


class MalformedPayloadError(PrayerTimesError):
    pass


class ProviderUnavailableError(PrayerTimesError):
    """Network failure or non-2xx response. status_code is None for network errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        return self.status_code is not None and 400 <= self.status_code < 500


class PrayerBackend(ABC):
    """Base class for prayer time providers"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.logger = logging.getLogger(self.__class__.__name__)
        self.prayer_names: List[str] = list(config.get('prayers') or DEFAULT_PRAYER_NAMES)

    @abstractmethod
    def get_prayer_times(self, day: date, force_fetch: bool = False) -> Dict[str, str]:
        """Get raw prayer times for day
        Args:
            day: calendar day the times are for
            force_fetch: If True, bypass cache and fetch fresh data
        Returns:
            {prayer_name: "HH:MM"} in local civil time
        Raises:
            PrayerTimesError
        """
        pass

    def _apply_test_times(self, times: Dict[str, str]) -> Dict[str, str]:
        """Override provider times with test_schedule.times entries."""
        test_times = (self.config.get('test_schedule') or {}).get('times') or {}
        for prayer, time_str in test_times.items():
            if parse_time_of_day(str(time_str)) is None:
                self.logger.error(f"Invalid test time format for {prayer}: {time_str}")
                continue
            self.logger.info(f"Overriding {prayer} with test time: {time_str}")
            times[prayer] = str(time_str)
        return times


class AladhanBackend(PrayerBackend):
    """Prayer times backend using api.aladhan.com"""

    BASE_URL = "https://api.aladhan.com/v1/timings"

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        location = config.get('location') or {}
        self.latitude = location.get('latitude', FALLBACK_LATITUDE)
        self.longitude = location.get('longitude', FALLBACK_LONGITUDE)
        self.method = location.get('method')
        self.timeout = config.get('request_timeout', 10)
        cache_dir = (config.get('cache') or {}).get('directory')
        self.cache_helper = CacheHelper(cache_dir, "prayer_times")

    def _cache_key(self) -> str:
        return f"aladhan_{self.latitude}_{self.longitude}_{self.method}"

    def get_prayer_times(self, day: date, force_fetch: bool = False) -> Dict[str, str]:
        if not force_fetch:
            cached = self.cache_helper.get(self._cache_key(), day)
            if cached:
                self.logger.info(f"Got prayer times for {day} from cache")
                return self._apply_test_times(dict(cached))

        times = self._get_api_prayer_times(day)
        self.cache_helper.save(self._cache_key(), day, times)
        return self._apply_test_times(dict(times))

    def _get_api_prayer_times(self, day: date) -> Dict[str, str]:
        url = f"{self.BASE_URL}/{day.strftime('%d-%m-%Y')}"
        params = {'latitude': self.latitude, 'longitude': self.longitude}
        if self.method is not None:
            params['method'] = self.method

        self.logger.info(f"Making API request to {url} with params {params}")
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderUnavailableError(f"Network error: {e}") from e

        if response.status_code >= 500:
            raise ProviderUnavailableError(
                "The prayer time server is currently unavailable.", response.status_code
            )
        if response.status_code >= 400:
            raise ProviderUnavailableError(
                "Could not find prayer times for the specified location.", response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedPayloadError(f"Failed to decode response: {e}") from e
        return self._parse_timings(payload)

    def _parse_timings(self, payload: Any) -> Dict[str, str]:
        if not isinstance(payload, dict):
            raise MalformedPayloadError("Response is not a JSON object")
        data = payload.get('data')
        if not data:
            raise NoDataError("No data received from the API.")
        timings = data.get('timings') if isinstance(data, dict) else None
        if not isinstance(timings, dict):
            raise MalformedPayloadError("Response has no timings")

        times = {}
        for prayer in self.prayer_names:
            raw = timings.get(prayer)
            if raw is None:
                continue
            # "05:12 (EET)" -> "05:12"
            times[prayer] = str(raw).strip().split(' ')[0]
        if not times:
            raise NoDataError("Response contains none of the configured prayers")
        self.logger.info(f"Final prayer times: {times}")
        return times


def create_backend(config: Dict[str, Any]) -> PrayerBackend:
    backend_type = config.get('backend', 'aladhan')
    if backend_type == 'aladhan':
        return AladhanBackend(config)
    raise ValueError(f"Unknown prayer times backend: {backend_type}")
