"""REST API routes served by an agent, including its silence callback."""

import logging

from fastapi import APIRouter

from config import SILENCE_PATH

logger = logging.getLogger(__name__)

router = APIRouter()

# Injected by main.py at startup
_agent_service = None


def init_routes(agent_service) -> None:
    """Inject the agent service into the routes module."""
    global _agent_service
    _agent_service = agent_service


@router.get(SILENCE_PATH)
async def silence():
    """Stop announcing; called by a hub once this device is registered."""
    _agent_service.stop_broadcasting()
    return {"status": "silenced"}


@router.get("/api/discovery/status")
async def discovery_status():
    return _agent_service.status()


@router.post("/api/discovery/announce")
async def announce():
    """Open a broadcasting window without waiting for a request."""
    started = _agent_service.start_broadcasting()
    return {"status": "broadcasting" if started else _agent_service.state.value}
