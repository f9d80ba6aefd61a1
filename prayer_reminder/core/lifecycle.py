"""
Prayer lifecycle: a single transition function (state, now, event) -> (state', effects).

Events come from the periodic tick, the fetch task, the user and config changes. Effects
are instructions for the outside world (sink, store, provider); the transition itself does
no I/O. The caller is expected to serialize calls.
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from prayer_reminder.core.prayer_set import PrayerSet, PrayerStatus
from prayer_reminder.core.reminder_planner import (
    ReminderPlanner,
    ReplanResult,
    ScheduledAlert,
    clamp_interval,
    matches_any,
    matches_owner,
)

logger = logging.getLogger(__name__)


class InvalidAcknowledgement(ValueError):
    """Acknowledgment that the state machine cannot accept."""


class UnknownPrayerError(InvalidAcknowledgement):
    pass


class NotActionableError(InvalidAcknowledgement):
    pass


# Events

@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class TimesFetched:
    day: date
    times: Dict[str, str]


@dataclass(frozen=True)
class FetchFailed:
    day: date
    error: str


@dataclass(frozen=True)
class Acknowledge:
    name: str


@dataclass(frozen=True)
class IntervalChanged:
    interval_minutes: int
    follow_ups_enabled: bool = True


@dataclass(frozen=True)
class Refresh:
    pass


Event = Union[Tick, TimesFetched, FetchFailed, Acknowledge, IntervalChanged, Refresh]


# Effects

@dataclass(frozen=True)
class ScheduleAlert:
    alert: ScheduledAlert


@dataclass(frozen=True)
class CancelAlerts:
    """Revoke alerts of one window, or of every window when owner is None."""
    owner: Optional[str]
    instants: FrozenSet[datetime] = frozenset()

    def predicate(self) -> Callable[[str], bool]:
        if self.owner is None:
            return matches_any
        return matches_owner(self.owner)


@dataclass(frozen=True)
class RequestFetch:
    day: date
    force: bool = False


@dataclass(frozen=True)
class PersistSet:
    prayer_set: PrayerSet


Effect = Union[ScheduleAlert, CancelAlerts, RequestFetch, PersistSet]


@dataclass
class EngineState:
    prayer_set: Optional[PrayerSet] = None
    load_failed: bool = False
    last_error: Optional[str] = None
    fetch_requested_for: Optional[date] = None


@dataclass
class Transition:
    state: EngineState
    effects: List[Effect] = field(default_factory=list)

    def revoked(self) -> FrozenSet[datetime]:
        instants = set()
        for effect in self.effects:
            if isinstance(effect, CancelAlerts):
                instants.update(effect.instants)
        return frozenset(instants)

    def scheduled(self) -> List[ScheduledAlert]:
        return [e.alert for e in self.effects if isinstance(e, ScheduleAlert)]


class PrayerLifecycle:
    """Owns the planner ledger and applies events to an EngineState."""

    def __init__(
        self,
        planner: ReminderPlanner,
        order: Optional[Iterable[str]] = None,
        non_actionable: Iterable[str] = ("Sunrise",),
    ):
        self.planner = planner
        self.engine = planner.engine
        self.order = list(order) if order is not None else None
        self.non_actionable = list(non_actionable)
        self.logger = logging.getLogger(self.__class__.__name__)

    def transition(self, state: EngineState, now: datetime, event: Event) -> Transition:
        if isinstance(event, Tick):
            return self._on_tick(state, now)
        if isinstance(event, TimesFetched):
            return self._on_times_fetched(state, now, event)
        if isinstance(event, FetchFailed):
            if self._is_stale(state, now, event.day):
                self.logger.info(f"Ignoring fetch failure for past day {event.day}")
                return Transition(state)
            self.logger.error(f"Prayer times load failed for {event.day}: {event.error}")
            return Transition(replace(state, load_failed=True, last_error=event.error))
        if isinstance(event, Acknowledge):
            return self._on_acknowledge(state, now, event.name)
        if isinstance(event, IntervalChanged):
            return self._replan(state, now, event.interval_minutes, event.follow_ups_enabled)
        if isinstance(event, Refresh):
            return self._replan(state, now)
        raise TypeError(f"Unknown event: {event!r}")

    def _on_tick(self, state: EngineState, now: datetime) -> Transition:
        today = now.date()
        if state.prayer_set is None:
            if state.fetch_requested_for == today:
                return Transition(state)
            return Transition(replace(state, fetch_requested_for=today), [RequestFetch(today)])

        prayer_set = state.prayer_set.copy()
        effects: List[Effect] = []
        for point in prayer_set.actionable_points():
            if point.status != PrayerStatus.UPCOMING:
                continue
            if self.engine.has_window_ended(point, prayer_set, now):
                point.status = PrayerStatus.MISSED
                self.logger.info(f"{point.name} window ended, marked missed")
                effects.append(CancelAlerts(point.name, self.planner.cancel(point.name, now)))
        self.planner.prune(now)
        if effects:
            effects.append(PersistSet(prayer_set))
        new_state = replace(state, prayer_set=prayer_set)

        if prayer_set.day != today and state.fetch_requested_for != today:
            self.logger.info(f"Day rollover {prayer_set.day} -> {today}, keeping last set until new times arrive")
            rollover = self._replan(new_state, now)
            effects.extend(rollover.effects)
            effects.append(RequestFetch(today))
            new_state = replace(rollover.state, fetch_requested_for=today)
        return Transition(new_state, effects)

    @staticmethod
    def _is_stale(state: EngineState, now: datetime, day: date) -> bool:
        """A result for a day before today, or before the held set, never replaces anything."""
        if day < now.date():
            return True
        return state.prayer_set is not None and day < state.prayer_set.day

    def _on_times_fetched(self, state: EngineState, now: datetime, event: TimesFetched) -> Transition:
        if self._is_stale(state, now, event.day):
            self.logger.warning(f"Ignoring prayer times for past day {event.day}")
            return Transition(state)
        fresh = PrayerSet.from_times(event.day, event.times, self.order, self.non_actionable)
        prayer_set = fresh.merge_completed(state.prayer_set)
        for point in prayer_set.actionable_points():
            if point.status == PrayerStatus.UPCOMING and self.engine.has_window_ended(point, prayer_set, now):
                point.status = PrayerStatus.MISSED
        self.logger.info(f"Loaded {len(prayer_set.points)} prayer times for {event.day}")
        new_state = replace(state, prayer_set=prayer_set, load_failed=False, last_error=None)
        result = self._replan(new_state, now)
        result.effects.append(PersistSet(prayer_set))
        return result

    def _on_acknowledge(self, state: EngineState, now: datetime, name: str) -> Transition:
        if state.prayer_set is None:
            raise UnknownPrayerError(f"No prayer times loaded, cannot acknowledge {name}")
        prayer_set = state.prayer_set.copy()
        point = prayer_set.get(name)
        if point is None:
            raise UnknownPrayerError(f"Unknown prayer: {name}")
        if not point.actionable:
            raise NotActionableError(f"{name} cannot be marked completed")
        if point.status == PrayerStatus.COMPLETED:
            return Transition(state)

        previous = point.status
        point.status = PrayerStatus.COMPLETED
        revoked = self.planner.cancel(name, now)
        self.logger.info(f"{name} acknowledged ({previous.value} -> completed), revoked {len(revoked)} alert(s)")
        return Transition(
            replace(state, prayer_set=prayer_set),
            [CancelAlerts(name, revoked), PersistSet(prayer_set)],
        )

    def _replan(
        self,
        state: EngineState,
        now: datetime,
        interval_minutes: Optional[int] = None,
        follow_ups_enabled: Optional[bool] = None,
    ) -> Transition:
        if state.prayer_set is None:
            if interval_minutes is not None:
                self.planner.interval_minutes = clamp_interval(interval_minutes)
            if follow_ups_enabled is not None:
                self.planner.follow_ups_enabled = follow_ups_enabled
            return Transition(state)
        result = self.planner.replan(state.prayer_set, now, interval_minutes, follow_ups_enabled)
        return Transition(state, replan_effects(result))


def replan_effects(result: ReplanResult) -> List[Effect]:
    """One total cancellation, then every new alert in firing order."""
    cancelled = frozenset(i for instants in result.cancellations.values() for i in instants)
    effects: List[Effect] = [CancelAlerts(None, cancelled)]
    for alert in sorted(result.scheduled, key=lambda a: (a.fire_at, a.owner)):
        effects.append(ScheduleAlert(alert))
    return effects
