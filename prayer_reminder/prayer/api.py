"""
Per-component API for prayer times. Mounted at /api/components/prayer/.
"""
from datetime import date, datetime
from typing import Any, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from prayer_reminder.core.lifecycle import NotActionableError, UnknownPrayerError
from prayer_reminder.core.prayer_set import PrayerSet
from .service import get_all_prayer_day_records


class PrayerView(BaseModel):
    name: str
    time: str
    status: str
    label: Optional[str] = None
    actionable: bool = True
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None


class TodayResponse(BaseModel):
    day: Optional[date] = None
    load_failed: bool = False
    prayers: List[PrayerView] = []


class AcknowledgeResponse(BaseModel):
    name: str
    status: str
    revoked: List[datetime] = []


class ReminderView(BaseModel):
    owner: str
    kind: str
    fire_at: datetime
    owner_key: str


class ReminderSettings(BaseModel):
    interval_minutes: int = Field(default=10)
    enabled: bool = True


class PrayerDayRecordResponse(BaseModel):
    """Pydantic view of PrayerDayRecord; serializes from ORM."""

    model_config = ConfigDict(from_attributes=True)

    day: date
    saved_at: Optional[datetime] = None
    data: Optional[List[Any]] = None
    all_completed: bool = False


def get_router(reminder_app) -> Optional[APIRouter]:
    """Return router for this component; mounted with prefix /api/components/prayer."""
    router = APIRouter(tags=["Prayer Times"])

    @router.get("/today", response_model=TodayResponse)
    def get_today() -> TodayResponse:
        snapshot = reminder_app.snapshot()
        return TodayResponse(
            day=snapshot["day"],
            load_failed=snapshot["load_failed"],
            prayers=[PrayerView(**p) for p in snapshot["prayers"]],
        )

    @router.post("/{name}/acknowledge", response_model=AcknowledgeResponse)
    def acknowledge(name: str) -> AcknowledgeResponse:
        """Mark a prayer as prayed and revoke its pending reminders."""
        try:
            transition = reminder_app.acknowledge(name)
        except UnknownPrayerError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except NotActionableError as e:
            raise HTTPException(status_code=409, detail=str(e))
        point = transition.state.prayer_set.get(name)
        return AcknowledgeResponse(
            name=name,
            status=point.status.value,
            revoked=sorted(transition.revoked()),
        )

    @router.get("/reminders", response_model=List[ReminderView])
    def list_reminders() -> List[ReminderView]:
        return [ReminderView(**r) for r in reminder_app.pending_reminders()]

    @router.get("/settings", response_model=ReminderSettings)
    def get_settings() -> ReminderSettings:
        return ReminderSettings(
            interval_minutes=reminder_app.planner.interval_minutes,
            enabled=reminder_app.planner.follow_ups_enabled,
        )

    @router.put("/settings", response_model=ReminderSettings)
    def put_settings(settings: ReminderSettings) -> ReminderSettings:
        """Change the follow-up interval / enable flag; replans every open window."""
        reminder_app.update_reminder_settings(settings.interval_minutes, settings.enabled)
        return get_settings()

    @router.get("/history", response_model=List[PrayerDayRecordResponse])
    def get_history() -> List[PrayerDayRecordResponse]:
        """Stored days, oldest first, with whether every actionable prayer was completed."""
        history = []
        for record in get_all_prayer_day_records():
            item = PrayerDayRecordResponse.model_validate(record)
            prayer_set = PrayerSet.from_records(record.day, record.data, reminder_app.non_actionable)
            item.all_completed = prayer_set.all_completed()
            history.append(item)
        return history

    return router
