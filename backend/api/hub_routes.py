"""REST API routes served by the hub."""

import logging

from fastapi import APIRouter, HTTPException

from discovery.hub import HubState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

# These will be injected by main.py at startup
_hub_service = None
_registry = None
_ws_manager = None


def init_routes(hub_service, registry, ws_manager=None) -> None:
    """Inject service dependencies into the routes module."""
    global _hub_service, _registry, _ws_manager
    _hub_service = hub_service
    _registry = registry
    _ws_manager = ws_manager


# --- Devices ---

@router.get("/devices")
async def list_devices():
    """Return every registered device."""
    records = await _registry.snapshot()
    return {"devices": [r.model_dump() for r in records]}


@router.get("/devices/{record_id}")
async def get_device(record_id: int):
    record = await _registry.get(record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Device not found")
    return record.model_dump()


# --- Discovery ---

@router.post("/discovery/request")
async def send_discovery_request():
    """Broadcast a discovery request now instead of waiting for the timer."""
    if _hub_service.state == HubState.STOPPED:
        return {"status": _hub_service.state.value, "requests_sent": _hub_service.requests_sent}
    await _hub_service.send_request()
    return {"status": "sent", "requests_sent": _hub_service.requests_sent}


@router.get("/discovery/status")
async def discovery_status():
    status = _hub_service.status()
    status["dashboard_clients"] = _ws_manager.client_count if _ws_manager else 0
    return status
