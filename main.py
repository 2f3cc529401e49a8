# ============================================================================
# APARTRACK — Extinguisher Inspection Scheduling & Validation Backend
# ============================================================================
# Run:  uvicorn main:app --host 0.0.0.0 --port 8000
#
# Database path comes from APARTRACK_DB (default apartrack.db). All other
# tunables live in the settings table (see apartrack/config.py).
# ============================================================================

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from apartrack import __version__
from apartrack.db import init_all_schemas
from apartrack.config import AppConfig, DEFAULT_CONFIG, get_all_config, get_config, set_config
from apartrack.delivery import get_channel
from apartrack.geo import utc_now
from apartrack.registry import register_registry_routes
from apartrack.schedules import register_schedule_routes
from apartrack.validation import register_inspection_routes
from apartrack.reminders import register_reminder_routes, init_reminder_scheduler, shutdown_reminder_scheduler
from apartrack.audit import register_audit_routes

logger = logging.getLogger(__name__)

SECRET_KEYS = ("sendgrid_api_key", "smtp_pass")


def register_config_routes(app: FastAPI):
    """Settings read/write. Secrets are masked on read."""

    @app.get("/api/config")
    async def api_get_config():
        values = get_all_config()
        for key in SECRET_KEYS:
            if values.get(key):
                values[key] = "********"
        return {"ok": True, "config": values}

    @app.put("/api/config/{key}")
    async def api_set_config(key: str, request: Request):
        if key not in DEFAULT_CONFIG:
            return JSONResponse({"ok": False, "error": f"Unknown setting: {key}"}, status_code=404)
        data = await request.json()
        if "value" not in data:
            return JSONResponse({"ok": False, "error": "value is required"}, status_code=422)
        set_config(key, data["value"], user=data.get("user"))
        return {"ok": True, "key": key, "value": get_config(key)}


def create_app(clock=utc_now) -> FastAPI:
    """Build the app. `clock` is the UTC time source used by every route."""
    init_all_schemas()
    AppConfig.init_defaults()

    app = FastAPI(title="APARTRACK", version=__version__)

    @app.on_event("startup")
    async def _startup():
        init_all_schemas()
        if get_config("scheduler_enabled", True):
            init_reminder_scheduler()
        logger.info(f"[APARTRACK] Backend {__version__} started")

    @app.on_event("shutdown")
    async def _shutdown():
        shutdown_reminder_scheduler()

    @app.get("/api/health")
    async def api_health():
        return {
            "ok": True,
            "version": __version__,
            "timezone": get_config("timezone"),
            "email_configured": get_channel("email").test_connection(),
        }

    register_config_routes(app)
    register_registry_routes(app)
    register_schedule_routes(app, clock=clock)
    register_inspection_routes(app, clock=clock)
    register_reminder_routes(app, clock=clock)
    register_audit_routes(app, clock=clock)
    return app


app = create_app()
