"""
APARTRACK Schedules — API Routes
"""
import datetime
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import get_timezone
from ..geo import parse_instant, to_utc, utc_now
from ..registry.models import get_asset
from .models import (
    init_schedule_schema, Schedule, InvalidScheduleWindow,
    create_schedule, get_schedule, update_schedule, list_schedules,
)
from .status import ScheduleStatus, derive_status, days_until, minutes_until_start

logger = logging.getLogger(__name__)


def _instant_from_payload(data: dict, key: str, zone) -> datetime.datetime:
    """
    `<key>` is an absolute instant (naive = UTC); `<key>_local` is wall-clock
    time in the configured zone, as an admin would type it.
    """
    local_key = key.replace("_at", "_local")
    if data.get(local_key):
        return to_utc(datetime.datetime.fromisoformat(data[local_key]), zone)
    return parse_instant(data[key])


def _with_status(schedule: Schedule, now: datetime.datetime, zone) -> dict:
    item = schedule.to_dict(zone)
    item["status"] = derive_status(schedule, now).value
    item["days_until"] = days_until(schedule, now, zone)
    return item


def _notify_assignee(schedule: Schedule, action: str) -> bool:
    """Best-effort created/updated notice; the schedule is already saved."""
    from ..reminders.engine import send_schedule_notification

    try:
        result = send_schedule_notification(schedule, action)
    except Exception as e:
        logger.error(f"[Schedules] Failed to send {action} notice for schedule {schedule.id}: {e}")
        return False
    return bool(result and result.success)


def register_schedule_routes(app: FastAPI, clock=utc_now):
    """Register inspection schedule endpoints."""

    init_schedule_schema()

    @app.get("/api/schedules")
    async def api_list_schedules(request: Request):
        params = request.query_params
        status = params.get("status")
        if status and status not in {s.value for s in ScheduleStatus}:
            return JSONResponse({"ok": False, "error": f"Unknown status: {status}"}, status_code=422)

        try:
            schedules = list_schedules(
                asset_id=int(params["asset_id"]) if params.get("asset_id") else None,
                assignee_id=int(params["assignee_id"]) if params.get("assignee_id") else None,
                limit=int(params.get("limit", 500)),
            )
        except ValueError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)

        now = clock()
        zone = get_timezone()
        items = [_with_status(s, now, zone) for s in schedules]
        if status:
            items = [i for i in items if i["status"] == status]
        return {"ok": True, "schedules": items}

    @app.get("/api/schedules/upcoming")
    async def api_upcoming_schedules(days: int = 7, assignee_id: int = None):
        now = clock()
        zone = get_timezone()
        horizon = now + datetime.timedelta(days=days)
        items = []
        for s in list_schedules(assignee_id=assignee_id, is_active=True, is_completed=False):
            if not (now < s.start_at <= horizon):
                continue
            item = _with_status(s, now, zone)
            item["minutes_until_start"] = minutes_until_start(s, now)
            items.append(item)
        return {"ok": True, "schedules": items}

    @app.get("/api/schedules/mine/{inspector_id}")
    async def api_my_schedules(inspector_id: int, include_completed: bool = False):
        now = clock()
        zone = get_timezone()
        schedules = list_schedules(
            assignee_id=inspector_id,
            is_active=True,
            is_completed=None if include_completed else False,
        )
        return {"ok": True, "schedules": [_with_status(s, now, zone) for s in schedules]}

    @app.get("/api/schedules/{schedule_id}")
    async def api_get_schedule(schedule_id: int):
        schedule = get_schedule(schedule_id)
        if not schedule:
            return JSONResponse({"ok": False, "error": "Schedule not found"}, status_code=404)
        return {"ok": True, "schedule": _with_status(schedule, clock(), get_timezone())}

    @app.post("/api/schedules")
    async def api_create_schedule(request: Request):
        data = await request.json()
        zone = get_timezone()
        try:
            asset_id = int(data["asset_id"])
            schedule = Schedule(
                asset_id=asset_id,
                assignee_id=int(data["assignee_id"]) if data.get("assignee_id") is not None else None,
                start_at=_instant_from_payload(data, "start_at", zone),
                end_at=_instant_from_payload(data, "end_at", zone),
                cadence=data.get("cadence", "weekly"),
                is_active=data.get("is_active", True),
                notes=data.get("notes"),
            )
        except InvalidScheduleWindow as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)
        except (KeyError, TypeError, ValueError) as e:
            return JSONResponse({"ok": False, "error": f"Invalid request: {e}"}, status_code=422)

        if not get_asset(asset_id):
            return JSONResponse({"ok": False, "error": "Asset not found"}, status_code=404)

        created = create_schedule(schedule)
        logger.info(f"[Schedules] Created schedule {created.id} for asset {asset_id}")
        notified = _notify_assignee(created, "created")
        return {"ok": True, "schedule": _with_status(created, clock(), zone), "notified": notified}

    @app.put("/api/schedules/{schedule_id}")
    async def api_update_schedule(schedule_id: int, request: Request):
        data = await request.json()
        zone = get_timezone()
        current = get_schedule(schedule_id)
        if not current:
            return JSONResponse({"ok": False, "error": "Schedule not found"}, status_code=404)

        changes = {k: v for k, v in data.items() if not k.endswith("_local")}
        try:
            for key in ("start_at", "end_at"):
                if key in data or key.replace("_at", "_local") in data:
                    changes[key] = _instant_from_payload(data, key, zone)
            updated = update_schedule(schedule_id, **changes)
        except InvalidScheduleWindow as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)
        except (TypeError, ValueError) as e:
            return JSONResponse({"ok": False, "error": f"Invalid request: {e}"}, status_code=422)

        notified = _notify_assignee(updated, "updated")
        return {"ok": True, "schedule": _with_status(updated, clock(), zone), "notified": notified}
