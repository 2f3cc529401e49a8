"""
APARTRACK Validation — Inspection API Routes
"""
import base64
import binascii
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import get_timezone
from ..geo import parse_instant, utc_now
from ..registry.models import get_asset
from ..audit.models import insert_event, ACTION_SCAN, ACTION_START
from .gate import ValidationGate, InspectionAttempt, AssetNotFound
from .photo import PhotoMetadata, extract_photo_metadata

logger = logging.getLogger(__name__)


def _optional_float(value):
    if value is None or value == "":
        return None
    return float(value)


def _photo_from_payload(data: dict, zone) -> PhotoMetadata:
    """Photo metadata from an uploaded image, or from fields the client already extracted."""
    if data.get("photo_base64"):
        try:
            raw = base64.b64decode(data["photo_base64"], validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("photo_base64 is not valid base64")
        return extract_photo_metadata(raw, zone)

    if any(data.get(k) is not None for k in ("photo_capture_time", "photo_lat", "photo_lng", "photo_hash")):
        return PhotoMetadata(
            capture_time=parse_instant(data["photo_capture_time"]) if data.get("photo_capture_time") else None,
            gps_lat=_optional_float(data.get("photo_lat")),
            gps_lng=_optional_float(data.get("photo_lng")),
            content_hash=data.get("photo_hash"),
        )
    return None


def register_inspection_routes(app: FastAPI, clock=utc_now):
    """Register QR scan, start and submit endpoints."""

    async def _log_action(request: Request, action: str):
        data = await request.json()
        try:
            asset_id = int(data["asset_id"])
            actor_id = int(data["actor_id"])
            occurred_at = parse_instant(data["occurred_at"]) if data.get("occurred_at") else clock()
            lat = _optional_float(data.get("lat"))
            lng = _optional_float(data.get("lng"))
        except (KeyError, TypeError, ValueError) as e:
            return JSONResponse({"ok": False, "error": f"Invalid request: {e}"}, status_code=422)

        asset = get_asset(asset_id)
        if not asset:
            return JSONResponse({"ok": False, "error": "Asset not found"}, status_code=404)

        event_id = insert_event(
            asset_id=asset_id,
            actor_id=actor_id,
            action=action,
            occurred_at=occurred_at,
            lat=lat,
            lng=lng,
            details=data.get("details") or f"{action} {asset.serial_number}",
        )
        return {"ok": True, "event_id": event_id, "asset": {"id": asset.id, "serial_number": asset.serial_number,
                                                           "location_type": asset.location_type}}

    @app.post("/api/inspections/scan")
    async def api_scan(request: Request):
        return await _log_action(request, ACTION_SCAN)

    @app.post("/api/inspections/start")
    async def api_start(request: Request):
        return await _log_action(request, ACTION_START)

    @app.post("/api/inspections/submit")
    async def api_submit(request: Request):
        data = await request.json()
        zone = get_timezone()
        gate = ValidationGate(clock=clock)
        try:
            attempt = InspectionAttempt(
                asset_id=int(data["asset_id"]),
                submitted_by=int(data["submitted_by"]),
                reported_at=parse_instant(data["reported_at"]) if data.get("reported_at") else gate.now(),
                reported_lat=_optional_float(data.get("lat")),
                reported_lng=_optional_float(data.get("lng")),
                photo=_photo_from_payload(data, zone),
            )
            decision = gate.submit(attempt)
        except AssetNotFound as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=404)
        except (KeyError, TypeError, ValueError) as e:
            return JSONResponse({"ok": False, "error": f"Invalid request: {e}"}, status_code=422)

        payload = {"ok": decision.accepted, "decision": decision.to_dict(zone)}
        if not decision.accepted:
            payload["error"] = decision.message
            return JSONResponse(payload, status_code=422)
        return payload
