"""
Reminder planner: turns window boundaries into concrete alert instants, computed ahead of
time so a sink can hold them while the process is not running.

Each actionable window gets one primary alert at its start and follow-ups every
interval minutes after that, strictly inside the window. The planner keeps a ledger of
what it has handed out so a window can be revoked in one call.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from prayer_reminder.core.prayer_set import PrayerSet, PrayerStatus, TimePoint
from prayer_reminder.core.window_engine import WindowEngine

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 10

PRIMARY_PREFIX = "prayer-reminder-"
FOLLOW_UP_PREFIX = "repeating-prayer-reminder-"
PRAYER_CATEGORY = "PRAYER_REMINDER_CATEGORY"
PRAYED_ACTION = "PRAYED_ACTION"


class AlertKind(str, Enum):
    PRIMARY = "primary"
    FOLLOW_UP = "follow_up"


def owner_key(kind: AlertKind, owner: str) -> str:
    """Sink key shared by every alert of one kind for one window."""
    prefix = PRIMARY_PREFIX if kind == AlertKind.PRIMARY else FOLLOW_UP_PREFIX
    return f"{prefix}{owner}"


def matches_owner(owner: str):
    """Predicate for Sink.cancel: every alert (either kind) belonging to owner."""
    keys = {owner_key(AlertKind.PRIMARY, owner), owner_key(AlertKind.FOLLOW_UP, owner)}
    return lambda key: key in keys


def matches_any(key: str) -> bool:
    return key.startswith(PRIMARY_PREFIX) or key.startswith(FOLLOW_UP_PREFIX)


@dataclass(frozen=True)
class ScheduledAlert:
    owner: str
    kind: AlertKind
    fire_at: datetime

    @property
    def owner_key(self) -> str:
        return owner_key(self.kind, self.owner)

    @property
    def alert_id(self) -> str:
        return f"{self.owner_key}-{self.fire_at.strftime('%Y%m%d%H%M%S')}"

    def payload(self) -> Dict[str, Any]:
        if self.kind == AlertKind.PRIMARY:
            title = "Prayer Time"
            body = f"It's time for {self.owner}."
        else:
            title = "Prayer Reminder"
            body = f"Have you prayed {self.owner} yet? Tap 'Prayed' to stop these reminders."
        return {
            "title": title,
            "body": body,
            "category": PRAYER_CATEGORY,
            "action": PRAYED_ACTION,
            "prayerName": self.owner,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class ReminderPlan:
    """Follow-up instants for one window, strictly increasing, inside [start + interval, end)."""
    window_owner: str
    instants: Tuple[datetime, ...] = ()

    def __len__(self) -> int:
        return len(self.instants)


@dataclass
class ReplanResult:
    cancellations: Dict[str, FrozenSet[datetime]] = field(default_factory=dict)
    plans: Dict[str, ReminderPlan] = field(default_factory=dict)
    primaries: Dict[str, datetime] = field(default_factory=dict)
    scheduled: List[ScheduledAlert] = field(default_factory=list)

    def scheduled_instants(self) -> List[Tuple[str, datetime]]:
        return sorted((a.owner_key, a.fire_at) for a in self.scheduled)


def clamp_interval(minutes: Any) -> int:
    """Intervals below one minute fall back to one minute."""
    try:
        value = int(minutes)
    except (TypeError, ValueError):
        logger.warning(f"Invalid reminder interval {minutes!r}, using {DEFAULT_INTERVAL_MINUTES} minutes")
        return DEFAULT_INTERVAL_MINUTES
    if value < 1:
        logger.warning(f"Reminder interval must be at least 1 minute, got {value}. Using 1 minute instead.")
        return 1
    return value


class ReminderPlanner:
    def __init__(
        self,
        engine: WindowEngine,
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
        follow_ups_enabled: bool = True,
    ):
        self.engine = engine
        self.interval_minutes = clamp_interval(interval_minutes)
        self.follow_ups_enabled = follow_ups_enabled
        self.logger = logging.getLogger(self.__class__.__name__)
        self._pending: Dict[str, List[ScheduledAlert]] = {}

    def plan_follow_ups(
        self,
        point: TimePoint,
        prayer_set: PrayerSet,
        interval_minutes: Optional[int] = None,
    ) -> ReminderPlan:
        """Every start + k*interval (k >= 1) that is still before the window end."""
        if not point.actionable:
            return ReminderPlan(point.name)
        bounds = self.engine.window_bounds(point, prayer_set)
        if bounds is None:
            return ReminderPlan(point.name)
        start, end = bounds
        step = timedelta(minutes=clamp_interval(
            self.interval_minutes if interval_minutes is None else interval_minutes
        ))
        instants = []
        instant = start + step
        while instant < end:
            instants.append(instant)
            instant += step
        return ReminderPlan(point.name, tuple(instants))

    def plan_primary(self, point: TimePoint, prayer_set: PrayerSet, now: datetime) -> Optional[datetime]:
        """The window start, unless it is not in the future."""
        if not point.actionable:
            return None
        bounds = self.engine.window_bounds(point, prayer_set)
        if bounds is None:
            return None
        start = bounds[0]
        return start if start > now else None

    def schedule_window(
        self,
        point: TimePoint,
        prayer_set: PrayerSet,
        now: datetime,
        result: Optional[ReplanResult] = None,
    ) -> List[ScheduledAlert]:
        """Plan one window and record every future alert in the ledger."""
        primary = self.plan_primary(point, prayer_set, now)
        alerts = []
        if primary is not None:
            alerts.append(ScheduledAlert(point.name, AlertKind.PRIMARY, primary))
        plan = ReminderPlan(point.name)
        if self.follow_ups_enabled:
            plan = self.plan_follow_ups(point, prayer_set)
            for instant in plan.instants:
                if instant <= now or instant == primary:
                    continue
                alerts.append(ScheduledAlert(point.name, AlertKind.FOLLOW_UP, instant))
        if result is not None:
            result.plans[point.name] = plan
            if primary is not None:
                result.primaries[point.name] = primary
            result.scheduled.extend(alerts)
        if alerts:
            self._pending[point.name] = sorted(alerts, key=lambda a: a.fire_at)
        return alerts

    def cancel(self, window_owner: str, now: Optional[datetime] = None) -> FrozenSet[datetime]:
        """Drop every alert of window_owner from the ledger.

        Returns the instants that were still outstanding (after now, when now is given).
        """
        alerts = self._pending.pop(window_owner, [])
        revoked = frozenset(a.fire_at for a in alerts if now is None or a.fire_at > now)
        if revoked:
            self.logger.info(f"Cancelled {len(revoked)} pending alert(s) for {window_owner}")
        return revoked

    def cancel_all(self, now: Optional[datetime] = None) -> Dict[str, FrozenSet[datetime]]:
        return {owner: self.cancel(owner, now) for owner in list(self._pending)}

    def replan(
        self,
        prayer_set: PrayerSet,
        now: datetime,
        interval_minutes: Optional[int] = None,
        follow_ups_enabled: Optional[bool] = None,
    ) -> ReplanResult:
        """Cancel everything outstanding, then plan every window whose derived status is Upcoming."""
        if interval_minutes is not None:
            self.interval_minutes = clamp_interval(interval_minutes)
        if follow_ups_enabled is not None:
            self.follow_ups_enabled = follow_ups_enabled

        result = ReplanResult(cancellations=self.cancel_all(now))
        for point in prayer_set.actionable_points():
            if self.engine.derive_status(point, prayer_set, now) != PrayerStatus.UPCOMING:
                continue
            self.schedule_window(point, prayer_set, now, result)
        self.logger.info(
            f"Replanned {prayer_set.day}: {len(result.scheduled)} alert(s), "
            f"interval {self.interval_minutes}m, follow-ups {'on' if self.follow_ups_enabled else 'off'}"
        )
        return result

    def prune(self, now: datetime) -> None:
        """Forget alerts whose instant has passed; the sink has fired them."""
        for owner in list(self._pending):
            remaining = [a for a in self._pending[owner] if a.fire_at > now]
            if remaining:
                self._pending[owner] = remaining
            else:
                del self._pending[owner]

    def pending(self, window_owner: Optional[str] = None) -> List[ScheduledAlert]:
        if window_owner is not None:
            return list(self._pending.get(window_owner, []))
        alerts = [a for group in self._pending.values() for a in group]
        return sorted(alerts, key=lambda a: (a.fire_at, a.owner))
