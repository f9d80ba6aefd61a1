"""
Single place for timers: named background jobs (fetch, daily refresh, retry) and the
alert sink that holds scheduled prayer notifications until they fire.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from queue import Queue
from threading import Timer
from typing import Any, Callable, Dict, List, Optional

from prayer_reminder.core.clock import Clock

Delivery = Callable[[Dict[str, Any]], None]


class AlertSink(ABC):
    """Accepts and revokes scheduled alerts. Cancellation works on owner keys in bulk."""

    @abstractmethod
    def schedule(self, instant: datetime, payload: Dict[str, Any], owner_key: str) -> None:
        pass

    @abstractmethod
    def cancel(self, predicate: Callable[[str], bool]) -> int:
        """Revoke every pending alert whose owner key matches; returns how many were removed."""
        pass


def log_delivery(payload: Dict[str, Any]) -> None:
    logging.getLogger("AlertDelivery").info(f"🔔 {payload.get('title')}: {payload.get('body')}")


class TaskManager(AlertSink):
    """Named background timers plus the alert sink.

    Pending alerts live in one dict; a single Timer is armed for the earliest of them
    and re-armed whenever that earliest instant changes.
    """

    def __init__(self, clock: Optional[Clock] = None, deliver: Optional[Delivery] = None):
        self.clock = clock or Clock()
        self.deliver = deliver or log_delivery
        self.tasks: Dict[str, Timer] = {}
        self.alerts: Dict[str, Dict[str, Any]] = {}
        self.result_queue = Queue()
        self.logger = logging.getLogger("TaskManager")
        self._lock = threading.RLock()
        self._alert_timer: Optional[Timer] = None
        self._armed_for: Optional[datetime] = None

    def schedule_task(self, name: str, callback: Callable, delay: float, one_time: bool = True) -> None:
        """Schedule a task to run after delay seconds."""
        with self._lock:
            self.logger.info(f"Scheduling task {name} with delay {delay} seconds")
            if name in self.tasks:
                self.logger.info(f"Cancelling existing task {name}")
                self.tasks[name].cancel()

            scheduled_time = datetime.now().timestamp() + delay
            timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time))
            timer.daemon = True
            timer.scheduled_time = scheduled_time

            self.tasks[name] = timer
            timer.start()
        self.logger.debug(f"Timer started for {name}, scheduled for {datetime.fromtimestamp(scheduled_time)}")

    def _run_task(self, name: str, callback: Callable, delay: float, one_time: bool) -> None:
        """Run the task and reschedule if needed."""
        try:
            callback()
        except Exception as e:
            self.logger.exception(f"Error running task {name}: {e}")
        if not one_time:
            self.schedule_task(name, callback, delay, one_time)
        else:
            with self._lock:
                # only forget it if it was not rescheduled by the callback
                if self.tasks.get(name) is threading.current_thread():
                    del self.tasks[name]

    def cancel_task(self, name: str) -> None:
        with self._lock:
            timer = self.tasks.pop(name, None)
        if timer is not None:
            timer.cancel()

    def schedule(self, instant: datetime, payload: Dict[str, Any], owner_key: str) -> None:
        """Hold an alert until instant. Rescheduling the same owner key and instant replaces it."""
        alert_id = f"{owner_key}@{instant.isoformat()}"
        with self._lock:
            self.alerts[alert_id] = {"owner_key": owner_key, "fire_at": instant, "payload": payload}
            if self._armed_for is None or instant < self._armed_for:
                self._arm_alert_timer()
        self.logger.debug(f"Alert {alert_id} scheduled")

    def _arm_alert_timer(self) -> None:
        """Point the alert timer at the earliest pending alert. Caller holds the lock."""
        if self._alert_timer is not None:
            self._alert_timer.cancel()
        self._alert_timer = None
        self._armed_for = None
        if not self.alerts:
            return
        earliest = min(a["fire_at"] for a in self.alerts.values())
        delay = max(0.0, (earliest - self.clock.now()).total_seconds())
        timer = Timer(delay, self._fire_due, args=(earliest,))
        timer.daemon = True
        self._alert_timer = timer
        self._armed_for = earliest
        timer.start()

    def _fire_due(self, armed_for: datetime) -> None:
        with self._lock:
            # a timer replaced while it was waiting for the lock does nothing
            if self._alert_timer is not threading.current_thread():
                return
            cutoff = max(armed_for, self.clock.now())
            due = sorted(
                ((k, a) for k, a in self.alerts.items() if a["fire_at"] <= cutoff),
                key=lambda item: item[1]["fire_at"],
            )
            for alert_id, _ in due:
                del self.alerts[alert_id]
            self._alert_timer = None
            self._arm_alert_timer()
        for alert_id, alert in due:
            try:
                self.deliver(alert["payload"])
            except Exception as e:
                self.logger.exception(f"Alert delivery failed for {alert_id}: {e}")

    def cancel(self, predicate: Callable[[str], bool]) -> int:
        with self._lock:
            matching = [k for k, a in self.alerts.items() if predicate(a["owner_key"])]
            removed = [self.alerts.pop(alert_id) for alert_id in matching]
            if any(a["fire_at"] == self._armed_for for a in removed):
                self._arm_alert_timer()
        if matching:
            self.logger.info(f"Revoked {len(matching)} scheduled alert(s)")
        return len(matching)

    def pending_alerts(self) -> List[Dict[str, Any]]:
        with self._lock:
            alerts = [dict(a) for a in self.alerts.values()]
        return sorted(alerts, key=lambda a: (a["fire_at"], a["owner_key"]))

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active task names and their next run time (for API)."""
        with self._lock:
            items = list(self.tasks.items())
        return [
            {"name": name, "next_run_at": datetime.fromtimestamp(timer.scheduled_time)}
            for name, timer in items
            if getattr(timer, "scheduled_time", None) is not None
        ]

    def stop(self) -> None:
        """Stop all scheduled tasks and alerts."""
        with self._lock:
            timers = list(self.tasks.values())
            if self._alert_timer is not None:
                timers.append(self._alert_timer)
            self.tasks.clear()
            self.alerts.clear()
            self._alert_timer = None
            self._armed_for = None
        for timer in timers:
            timer.cancel()
