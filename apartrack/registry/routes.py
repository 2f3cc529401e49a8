"""
APARTRACK Registry — API Routes
"""
from dataclasses import asdict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .models import init_registry_schema, create_asset, get_asset, get_asset_by_serial, create_inspector


def register_registry_routes(app: FastAPI):
    """Register asset and inspector endpoints."""

    init_registry_schema()

    @app.post("/api/assets")
    async def api_create_asset(request: Request):
        data = await request.json()
        if not data.get("serial_number"):
            return JSONResponse({"ok": False, "error": "serial_number is required"}, status_code=422)
        if get_asset_by_serial(data["serial_number"]):
            return JSONResponse({"ok": False, "error": "serial_number already exists"}, status_code=409)
        try:
            asset_id = create_asset(data)
        except ValueError as e:
            return JSONResponse({"ok": False, "error": str(e)}, status_code=422)
        return {"ok": True, "asset_id": asset_id}

    @app.get("/api/assets/{asset_id}")
    async def api_get_asset(asset_id: int):
        asset = get_asset(asset_id)
        if not asset:
            return JSONResponse({"ok": False, "error": "Asset not found"}, status_code=404)
        return {"ok": True, "asset": asdict(asset)}

    @app.post("/api/inspectors")
    async def api_create_inspector(request: Request):
        data = await request.json()
        if not data.get("name"):
            return JSONResponse({"ok": False, "error": "name is required"}, status_code=422)
        inspector_id = create_inspector(
            data["name"],
            email=data.get("email"),
            phone=data.get("phone"),
            is_active=bool(data.get("is_active", True)),
        )
        return {"ok": True, "inspector_id": inspector_id}
