"""
API routes for the meter hub
"""
import json
import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Body, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from meterhub.api.schemas import (
    DeviceOut,
    ErrorDetail,
    HealthResponse,
    IngestResponse,
    ProxyResponse,
    SettingsResponse,
    SettingsUpdate,
)
from meterhub.core.exceptions import GatewayError, StoreError
from meterhub.services.broadcaster import RealtimeBroadcaster
from meterhub.services.device_registry import DeviceRegistry, now_ms
from meterhub.services.proxy_gateway import ProxyGateway
from meterhub.services.store import MeterStore

logger = logging.getLogger(__name__)

# Create routers
api_router = APIRouter()
realtime_router = APIRouter()

# Global services (will be injected)
store: Optional[MeterStore] = None
registry: Optional[DeviceRegistry] = None
broadcaster: Optional[RealtimeBroadcaster] = None
proxy_gateway: Optional[ProxyGateway] = None

def set_services(ms: MeterStore, dr: DeviceRegistry, rb: RealtimeBroadcaster, pg: ProxyGateway):
    """Set global services"""
    global store, registry, broadcaster, proxy_gateway
    store = ms
    registry = dr
    broadcaster = rb
    proxy_gateway = pg

def _storage_error(e: StoreError) -> HTTPException:
    logger.error(f"Storage error: {e}")
    return HTTPException(status_code=500, detail=ErrorDetail(error="storage unavailable", message=str(e)).model_dump(exclude_none=True))

# Readings Routes
@api_router.get("/readings")
async def get_readings():
    """Get all stored readings"""
    if not store:
        raise HTTPException(status_code=503, detail="Store not available")

    try:
        return store.list_readings()
    except StoreError as e:
        raise _storage_error(e)

@api_router.get("/readings/{device_id}")
async def get_device_readings(device_id: str):
    """Get stored readings for one device"""
    if not store:
        raise HTTPException(status_code=503, detail="Store not available")

    try:
        return store.list_readings(device_id)
    except StoreError as e:
        raise _storage_error(e)

@api_router.post("/readings", response_model=IngestResponse)
async def post_readings(payload: Any = Body(default=None)):
    """Append one reading or a batch; invalid items are dropped"""
    if not broadcaster:
        raise HTTPException(status_code=503, detail="Broadcaster not available")
    if payload is None:
        raise HTTPException(status_code=400, detail={"error": "missing body"})

    items = payload if isinstance(payload, list) else [payload]
    try:
        accepted = broadcaster.ingest_readings(items)
    except StoreError as e:
        raise _storage_error(e)

    return IngestResponse(ok=True, added=len(accepted))

# Device Routes
@api_router.get("/devices", response_model=List[DeviceOut])
async def get_devices():
    """Get currently connected devices"""
    if not registry:
        raise HTTPException(status_code=503, detail="Device registry not available")

    return registry.snapshot()

# Settings Routes
@api_router.get("/settings")
async def get_settings():
    """Get the settings record"""
    if not store:
        raise HTTPException(status_code=503, detail="Store not available")

    try:
        return store.get_settings()
    except StoreError as e:
        raise _storage_error(e)

@api_router.post("/settings", response_model=SettingsResponse)
async def post_settings(payload: Any = Body(default=None)):
    """Merge a partial settings record and broadcast the result"""
    if not broadcaster:
        raise HTTPException(status_code=503, detail="Broadcaster not available")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail={"error": "settings must be a JSON object"})

    try:
        partial = SettingsUpdate.model_validate(payload).to_partial()
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(error="invalid settings", errors=e.errors(include_url=False, include_context=False)).model_dump(exclude_none=True),
        )

    try:
        merged = broadcaster.update_settings(partial)
    except StoreError as e:
        raise _storage_error(e)

    return SettingsResponse(ok=True, settings=merged)

# System Routes
@api_router.get("/health", response_model=HealthResponse)
async def health():
    """Liveness probe"""
    return HealthResponse(ok=True, time=now_ms())

# Proxy Routes
@api_router.post("/proxy", response_model=ProxyResponse)
async def proxy(payload: Any = Body(default=None)):
    """Fetch a device on the local network on behalf of the dashboard"""
    if not proxy_gateway:
        raise HTTPException(status_code=503, detail="Proxy not available")

    try:
        result = await proxy_gateway.fetch(payload or {})
    except GatewayError as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict())

    return result.to_dict()

# Push channel
@realtime_router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    """Bidirectional push channel for dashboards and devices"""
    if not broadcaster:
        await websocket.close(code=1013)
        return

    channel = await broadcaster.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                channel.enqueue({"event": "error", "data": {"message": "invalid JSON"}})
                continue
            await broadcaster.handle_message(channel, message)
    except WebSocketDisconnect:
        pass
    finally:
        await broadcaster.disconnect(channel)
