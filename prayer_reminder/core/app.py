import logging
import sys
import threading
from dataclasses import replace
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from .clock import Clock, format_countdown
from .config import Config
from .lifecycle import (
    Acknowledge,
    CancelAlerts,
    EngineState,
    Event,
    FetchFailed,
    IntervalChanged,
    PersistSet,
    PrayerLifecycle,
    Refresh,
    RequestFetch,
    ScheduleAlert,
    Tick,
    TimesFetched,
    Transition,
)
from .prayer_set import PrayerSet
from .reminder_planner import ReminderPlanner
from .task import seconds_until
from .task_manager import TaskManager
from .window_engine import WindowEngine

Executor = Callable[[str, Callable[[], None]], None]

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


class ReminderApp:
    """Owns the engine state. Every event goes through dispatch() under one lock."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        config: Optional[Config] = None,
        clock: Optional[Clock] = None,
        task_manager: Optional[TaskManager] = None,
        backend: Optional[Any] = None,
        store: Optional[Any] = None,
        executor: Optional[Executor] = None,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.config = config or Config(config_path=config_path)
        self.config.register_change_callback(self.handle_config_change)
        self.clock = clock or Clock()

        data = self.config.data
        self._build_engine(data)
        self.task_manager = task_manager or TaskManager(clock=self.clock)

        if store is None:
            from prayer_reminder.prayer.service import SqlPrayerStore
            store = SqlPrayerStore(self.non_actionable)
        self.store = store

        from prayer_reminder.prayer.task import PrayerTimesTask
        self._backend_override = backend
        self.fetch_task = PrayerTimesTask(data, backend)

        self.executor = executor or self._run_in_background
        self.state = EngineState()
        self._lock = threading.RLock()
        self._stop = threading.Event()

    def _build_engine(self, data: Dict[str, Any]) -> None:
        """Engine, planner and lifecycle from the window/prayer/reminder sections of config."""
        self.non_actionable = list(data.get("non_actionable") or [])
        self.engine = WindowEngine(
            extend_last_window=bool((data.get("windows") or {}).get("extend_last_window_to_next_day", False))
        )
        settings = self.config.reminder_settings()
        self.planner = ReminderPlanner(self.engine, settings["interval_minutes"], settings["enabled"])
        self.lifecycle = PrayerLifecycle(self.planner, data.get("prayers"), self.non_actionable)

    def setup_logging(self) -> None:
        """Configure logging to write to both file and stdout"""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        log_config = self.config.data["logging"]
        root_logger.setLevel(getattr(logging, str(log_config.get("level", "INFO")).upper(), logging.INFO))

        formatter = logging.Formatter(LOG_FORMAT)

        log_file = log_config.get("file")
        if log_file:
            from pathlib import Path
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Prayer reminder starting...")

    def _run_in_background(self, name: str, callback: Callable[[], None]) -> None:
        self.task_manager.schedule_task(name, callback, 0, one_time=True)

    # Event handling

    def dispatch(self, event: Event) -> Transition:
        """Apply one event and its effects atomically."""
        with self._lock:
            now = self.clock.now()
            transition = self.lifecycle.transition(self.state, now, event)
            self.state = transition.state
            self._apply(transition.effects)
            return transition

    def _apply(self, effects: List[Any]) -> None:
        for effect in effects:
            if isinstance(effect, CancelAlerts):
                self.task_manager.cancel(effect.predicate())
            elif isinstance(effect, ScheduleAlert):
                alert = effect.alert
                self.task_manager.schedule(alert.fire_at, alert.payload(), alert.owner_key)
            elif isinstance(effect, PersistSet):
                self._persist(effect)
            elif isinstance(effect, RequestFetch):
                self.request_fetch(effect.day, effect.force)

    def _persist(self, effect: PersistSet) -> None:
        try:
            self.store.save(effect.prayer_set.day, effect.prayer_set)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to persist prayer set for {effect.prayer_set.day}: {e}")

    def request_fetch(self, day: date, force: bool = False) -> None:
        self.logger.info(f"Requesting prayer times for {day} (force={force})")
        queue = self.task_manager.result_queue
        self.executor(
            f"{self.fetch_task.component_name}_fetch",
            lambda: self.fetch_task.run(queue, day=day, force_fetch=force),
        )

    def drain_results(self) -> None:
        """Feed finished background fetches into the engine."""
        queue = self.task_manager.result_queue
        while not queue.empty():
            _name, event = queue.get_nowait()
            if isinstance(event, FetchFailed):
                self._schedule_retry(event.day)
            elif isinstance(event, TimesFetched) and event.day >= self.clock.today():
                self.task_manager.cancel_task(self._retry_task_name())
            self.dispatch(event)

    def _retry_task_name(self) -> str:
        return f"{self.fetch_task.component_name}_retry"

    def _schedule_retry(self, day: date) -> None:
        delay = self.fetch_task.retry_interval
        self.logger.info(f"Retrying prayer times fetch (failed for {day}) in {delay} seconds")
        # the retry may fire after midnight; it always asks for the day it runs on
        self.task_manager.schedule_task(
            self._retry_task_name(),
            lambda: self.request_fetch(self.clock.today(), force=True),
            delay,
        )

    def tick(self) -> Transition:
        self.drain_results()
        return self.dispatch(Tick())

    def acknowledge(self, name: str) -> Transition:
        return self.dispatch(Acknowledge(name))

    def refresh(self) -> None:
        """Re-fetch today's times and replan when they arrive."""
        self.request_fetch(self.clock.today(), force=True)

    def update_reminder_settings(self, interval_minutes: int, enabled: bool = True, persist: bool = False) -> Transition:
        transition = self.dispatch(IntervalChanged(interval_minutes, enabled))
        if persist:
            self.config.save_reminder_settings(self.planner.interval_minutes, enabled)
        return transition

    def handle_config_change(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        """Handle configuration changes"""
        if old_config.get("reminders") != new_config.get("reminders"):
            settings = self.config.reminder_settings()
            self.logger.info(f"Reminder settings changed: {settings}")
            self.dispatch(IntervalChanged(settings["interval_minutes"], settings["enabled"]))
        if any(old_config.get(key) != new_config.get(key) for key in ("windows", "prayers", "non_actionable")):
            self.logger.info("Window settings changed, rebuilding window engine")
            with self._lock:
                self._build_engine(new_config)
                if hasattr(self.store, "non_actionable"):
                    self.store.non_actionable = list(self.non_actionable)
                held = self.state.prayer_set
                if held is not None:
                    regrouped = PrayerSet.from_records(held.day, held.to_records(), self.non_actionable)
                    self.state = replace(self.state, prayer_set=regrouped)
                self.dispatch(Refresh())
        if old_config.get("location") != new_config.get("location") or \
                old_config.get("prayers") != new_config.get("prayers") or \
                old_config.get("test_schedule") != new_config.get("test_schedule"):
            from prayer_reminder.prayer.task import PrayerTimesTask
            self.logger.info("Location or prayer list changed, refetching prayer times")
            self.fetch_task = PrayerTimesTask(new_config, self._backend_override)
            self.refresh()

    # Lifecycle

    def start(self) -> None:
        """Load today's set from the store if present, otherwise let the first tick request it."""
        today = self.clock.today()
        try:
            stored = self.store.load(today)
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to load stored prayer set: {e}")
            stored = None
        if stored is not None and not stored.is_empty():
            self.logger.info(f"Loaded prayer set for {today} from store")
            with self._lock:
                self.state = EngineState(prayer_set=stored, fetch_requested_for=today)
            self.dispatch(Refresh())
        self.tick()
        self._schedule_daily_refresh()

    def _schedule_daily_refresh(self) -> None:
        now = self.clock.now()
        next_run = self.fetch_task.get_next_run(now=now)

        def refresh_and_reschedule():
            self.refresh()
            self._schedule_daily_refresh()

        self.task_manager.schedule_task(
            f"{self.fetch_task.component_name}_daily_refresh",
            refresh_and_reschedule,
            seconds_until(next_run, now),
        )
        self.logger.info(f"Scheduled daily prayer times refresh for {next_run.strftime('%Y-%m-%d %H:%M')}")

    def run(self) -> None:
        from .db import init_db
        init_db(self.config.data)
        try:
            from prayer_reminder.api.server import run_api_server
            run_api_server(self)
        except ImportError as e:
            self.logger.warning(f"API server not started: {e}")

        self.start()
        interval = float(self.config.data.get("tick_interval", 1.0))
        try:
            while not self._stop.wait(interval):
                try:
                    self.tick()
                except Exception as e:
                    self.logger.exception(f"Tick failed: {e}")
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")
        finally:
            self.shutdown()

    def stop(self) -> None:
        self._stop.set()

    def shutdown(self) -> None:
        self.task_manager.stop()
        self.config.cleanup()

    # Read side

    def snapshot(self) -> Dict[str, Any]:
        """Everything a status view needs, derived at the current instant."""
        with self._lock:
            now = self.clock.now()
            state = self.state
            prayer_set = state.prayer_set
            result: Dict[str, Any] = {
                "now": now,
                "day": prayer_set.day if prayer_set else None,
                "load_failed": state.load_failed,
                "last_error": state.last_error,
                "active": None,
                "next_prayer": None,
                "next_prayer_at": None,
                "countdown": None,
                "is_daytime": True,
                "all_completed": False,
                "reminder_interval_minutes": self.planner.interval_minutes,
                "reminders_enabled": self.planner.follow_ups_enabled,
                "prayers": [],
            }
            if prayer_set is None:
                return result

            active = self.engine.current_active(prayer_set, now)
            result["active"] = active.name if active else None
            upcoming = self.engine.next_upcoming(prayer_set, now)
            if upcoming is not None:
                point, start = upcoming
                result["next_prayer"] = point.name
                result["next_prayer_at"] = start
                result["countdown"] = format_countdown(start - now)
            result["is_daytime"] = self.engine.is_daytime(prayer_set, now)
            result["all_completed"] = prayer_set.all_completed()

            for point in prayer_set.points:
                bounds = self.engine.window_bounds(point, prayer_set)
                result["prayers"].append({
                    "name": point.name,
                    "time": point.time_of_day,
                    "status": point.status.value,
                    "label": self.engine.status_label(point, prayer_set, now) if point.actionable else None,
                    "actionable": point.actionable,
                    "window_start": bounds[0] if bounds else None,
                    "window_end": bounds[1] if bounds else None,
                })
            return result

    def pending_reminders(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {"owner": a.owner, "kind": a.kind.value, "fire_at": a.fire_at, "owner_key": a.owner_key}
                for a in self.planner.pending()
            ]
