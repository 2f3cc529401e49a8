"""
APARTRACK Reminders — API Routes
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..geo import utc_now
from ..delivery.internal import get_notifications
from .engine import dispatch_reminders, send_schedule_reminder
from .models import init_reminder_schema, get_dispatch_log


def register_reminder_routes(app: FastAPI, clock=utc_now):
    """Register reminder dispatch endpoints."""

    init_reminder_schema()

    @app.post("/api/reminders/run")
    async def api_run_reminders(request: Request):
        try:
            summary = dispatch_reminders(now=clock())
        except ValueError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)
        return {"ok": True, "summary": summary.to_dict()}

    @app.get("/api/reminders/log")
    async def api_reminder_log(status: str = None, limit: int = 100):
        return {"ok": True, "dispatches": get_dispatch_log(status=status, limit=limit)}

    @app.post("/api/schedules/{schedule_id}/remind")
    async def api_send_reminder(schedule_id: int):
        try:
            result = send_schedule_reminder(schedule_id)
        except LookupError:
            return JSONResponse({"ok": False, "error": "Schedule not found"}, status_code=404)
        except ValueError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)
        if not result.success:
            return JSONResponse({"ok": False, "result": result.to_dict(), "error": result.error}, status_code=502)
        return {"ok": True, "result": result.to_dict()}

    @app.get("/api/notifications/{user_id}")
    async def api_notifications(user_id: int, unread_only: bool = False, limit: int = 50):
        return {"ok": True, "notifications": get_notifications(user_id, unread_only=unread_only, limit=limit)}
