"""
Background task: fetch a day's prayer times from the backend and report the outcome as a
lifecycle event on the result queue.
"""
from datetime import date
from queue import Queue
from typing import Any, Dict, Optional

from prayer_reminder.core.lifecycle import FetchFailed, TimesFetched
from prayer_reminder.core.task import BaseTask, TaskType
from prayer_reminder.prayer.prayer_base import PrayerBackend, PrayerTimesError, create_backend

COMPONENT_NAME = "Prayer Times"


class PrayerTimesTask(BaseTask):
    """Fetch prayer times, put TimesFetched or FetchFailed on the queue. Refreshes daily at refresh_time."""

    def __init__(self, config: Dict[str, Any], backend: Optional[PrayerBackend] = None):
        super().__init__(COMPONENT_NAME, TaskType.DAILY, {"time": config.get("refresh_time", "10:00")})
        self.config = config
        self.backend = backend or create_backend(config)
        self.retry_interval = int(config.get("retry_interval", 300))

    def run(self, result_queue: Queue, day: Optional[date] = None, force_fetch: bool = False, **kwargs: Any) -> None:
        day = day or date.today()
        try:
            times = self.backend.get_prayer_times(day, force_fetch=force_fetch)
        except PrayerTimesError as e:
            self.logger.error(f"Prayer times fetch for {day} failed: {e}")
            result_queue.put((self.component_name, FetchFailed(day, str(e))))
            return
        except Exception as e:
            self.logger.exception(f"Prayer times backend crashed: {e}")
            result_queue.put((self.component_name, FetchFailed(day, f"Unexpected error: {e}")))
            return
        self.logger.info(f"Prayer times fetched for {day}: {times}")
        result_queue.put((self.component_name, TimesFetched(day, times)))
