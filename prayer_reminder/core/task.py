"""
Base task type and abstract BaseTask for work that runs outside the engine (fetches, refreshes).
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from queue import Queue
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class TaskType:
    """Schedule kind for tasks."""
    DAILY = "daily"


def compute_next_run(
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    last_run: Optional[datetime],
    now: Optional[datetime] = None,
) -> datetime:
    """Compute next run (local time) from schedule_type, schedule_config, and last_run."""
    if last_run is None:
        last_run = now or datetime.now()

    if schedule_type == TaskType.DAILY and schedule_config:
        time_str = schedule_config.get("time", "00:00")
        parts = str(time_str).strip().split(":")
        try:
            hour = int(parts[0]) if parts else 0
            minute = int(parts[1]) if len(parts) > 1 else 0
        except ValueError:
            logger.warning(f"Invalid daily schedule time {time_str!r}, using 00:00")
            hour, minute = 0, 0
        next_run = last_run.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if next_run <= last_run:
            next_run += timedelta(days=1)
        return next_run

    return last_run + timedelta(days=1)


def seconds_until(target: datetime, now: datetime) -> int:
    return max(0, int((target - now).total_seconds()))


class BaseTask(ABC):
    """
    Abstract base for background tasks. Subclasses implement run() and report their
    outcome on the result queue as (component_name, event).
    """

    def __init__(self, component_name: str, schedule_type: str, schedule_config: Optional[Dict[str, Any]] = None):
        self.component_name = component_name
        self.schedule_type = schedule_type
        self.schedule_config = schedule_config or {}
        self.logger = logging.getLogger(self.__class__.__name__)

    def get_next_run(self, last_run: Optional[datetime] = None, now: Optional[datetime] = None) -> datetime:
        """Compute next run time from schedule_type and schedule_config."""
        return compute_next_run(self.schedule_type, self.schedule_config, last_run, now)

    @abstractmethod
    def run(self, result_queue: Queue, **kwargs: Any) -> None:
        """Execute the task and put (component_name, result) on result_queue."""
        pass
