"""
FastAPI server for the reminder API. Run with run_api_server(app) in a background thread.
Central endpoints: GET /api/status, GET /api/tasks. Prayer routes are mounted from
prayer_reminder.prayer.api (get_router(reminder_app)) under /api/components/prayer/.
Docs when enabled: http://<host>:<port>/docs
"""
import logging
import threading
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    now: datetime
    day: Optional[date] = None
    load_failed: bool = False
    last_error: Optional[str] = None
    active: Optional[str] = None
    next_prayer: Optional[str] = None
    next_prayer_at: Optional[datetime] = None
    countdown: Optional[str] = None
    is_daytime: bool = True
    all_completed: bool = False
    reminder_interval_minutes: int
    reminders_enabled: bool


def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize local naive datetime to ISO string."""
    if dt is None:
        return None
    return dt.isoformat()


def create_app(reminder_app: Any) -> FastAPI:
    """Create FastAPI app with routes that use the given ReminderApp instance."""
    app = FastAPI(title="Prayer Reminder API", description="Prayer windows, reminders and history")

    @app.get("/api/status", response_model=StatusResponse)
    def get_status() -> StatusResponse:
        """Active prayer, next prayer with countdown, and load state."""
        snapshot = dict(reminder_app.snapshot())
        snapshot.pop("prayers", None)
        return StatusResponse(**snapshot)

    @app.get("/api/tasks")
    def list_tasks() -> Dict[str, List[Dict[str, Any]]]:
        """Active background timers and scheduled alerts in the sink."""
        task_manager = reminder_app.task_manager
        timers = [
            {"name": t["name"], "next_run_at": _serialize_datetime(t["next_run_at"])}
            for t in task_manager.get_active_timers()
        ]
        alerts = [
            {"owner_key": a["owner_key"], "fire_at": _serialize_datetime(a["fire_at"])}
            for a in task_manager.pending_alerts()
        ]
        return {"active_timers": timers, "scheduled_alerts": alerts}

    from prayer_reminder.prayer.api import get_router
    router = get_router(reminder_app)
    if router is not None:
        app.include_router(router, prefix="/api/components/prayer")

    return app


def run_api_server(reminder_app: Any) -> None:
    """
    Start the API server in a daemon thread if api.enabled is true.
    Reads api.host (default 127.0.0.1) and api.port (default 8765) from config.
    """
    api_config = reminder_app.config.data.get("api") or {}
    if not api_config.get("enabled", False):
        logger.info("API server not started: set api.enabled to true in your config file to enable.")
        return
    host = api_config.get("host", "127.0.0.1")
    port = int(api_config.get("port", 8765))
    fastapi_app = create_app(reminder_app)

    def run_uvicorn():
        try:
            import uvicorn
            logger.info(f"API server listening at http://{host}:{port} (docs at /docs)")
            uvicorn.run(fastapi_app, host=host, port=port)
        except Exception as e:
            logger.exception(f"API server thread failed: {e}")

    thread = threading.Thread(target=run_uvicorn, daemon=True)
    thread.start()
    logger.info("API server thread started.")
