"""
APARTRACK Audit Log — API Routes
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import get_config, get_timezone
from ..geo import parse_instant, to_zone, utc_now
from .models import init_audit_schema, query_events, audit_stats, cleanup_events, cleanup_stats
from .anomaly import detect_anomalies


def _optional_instant(value):
    return parse_instant(value) if value else None


def register_audit_routes(app: FastAPI, clock=utc_now):
    """Register audit log, statistics and anomaly endpoints."""

    init_audit_schema()

    @app.get("/api/audit/anomalies")
    async def api_anomalies(days: int = None):
        zone = get_timezone()
        anomalies = detect_anomalies(now=clock(), days=days, zone=zone)
        return {"ok": True, "count": len(anomalies), "anomalies": [a.to_dict(zone) for a in anomalies]}

    @app.get("/api/audit/logs")
    async def api_audit_logs(request: Request):
        params = request.query_params
        try:
            successful = params.get("is_successful")
            events = query_events(
                asset_id=int(params["asset_id"]) if params.get("asset_id") else None,
                actor_id=int(params["actor_id"]) if params.get("actor_id") else None,
                action=params.get("action"),
                is_successful=None if successful is None else successful.lower() in ("1", "true", "yes"),
                since=_optional_instant(params.get("start_date")),
                until=_optional_instant(params.get("end_date")),
                limit=int(params.get("limit", 100)),
                offset=int(params.get("offset", 0)),
            )
        except ValueError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)

        zone = get_timezone()
        logs = []
        for ev in events:
            item = ev.to_dict()
            item["occurred_local"] = to_zone(ev.occurred_at, zone).isoformat()
            logs.append(item)
        return {"ok": True, "logs": logs}

    @app.get("/api/audit/stats")
    async def api_audit_stats(start_date: str = None, end_date: str = None):
        try:
            stats = audit_stats(_optional_instant(start_date), _optional_instant(end_date))
        except ValueError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)
        return {"ok": True, "stats": stats}

    @app.post("/api/audit/cleanup")
    async def api_audit_cleanup(request: Request):
        body = await request.body()
        data = await request.json() if body else {}
        try:
            days = int(data.get("days", get_config("audit_retention_days", 365)))
            result = cleanup_events(days, clock())
        except (TypeError, ValueError) as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)
        return {"ok": True, **result}

    @app.get("/api/audit/cleanup/stats")
    async def api_cleanup_stats():
        return {"ok": True, "stats": cleanup_stats(clock())}
