"""
IoT LAN discovery: FastAPI application entry point.

Runs either role:

* ``hub``: owns the device registry, broadcasts discovery requests and
  serves the registry over REST and WebSocket.
* ``agent``: answers discovery requests for this device and serves the
  silence callback a hub uses to stop its announcements.
"""

import argparse
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from api import agent_routes, hub_routes
from api.websocket import ConnectionManager
from config import (
    API_HOST,
    API_PORT,
    CONTROL_PORT,
    DEVICE_INFO_FILE,
    DEVICE_NAME,
    DEVICE_SERIAL,
    DEVICE_TYPE,
    LOG_LEVEL,
    REGISTRY_FILE,
    SILENCE_PATH,
)
from discovery.agent import AgentDiscoveryService
from discovery.hub import HubDiscoveryService
from discovery.models import FixedResponse, FreeformResponse, ResponsePayload
from discovery.netutil import local_ip_address
from registry.poller import StatePoller
from registry.registry import DeviceRegistry
from registry.store import JsonFileRecordStore

# --- Logging ---
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_self_info() -> ResponsePayload:
    """Describe this device the way it will announce itself."""
    ip_address = local_ip_address()
    if DEVICE_INFO_FILE:
        device_info = json.loads(Path(DEVICE_INFO_FILE).read_text())
        device_info.setdefault("ipAddress", ip_address)
        device_info.setdefault("serialNumber", DEVICE_SERIAL)
        device_info.setdefault("discoverySilenceUrl", f":{API_PORT}{SILENCE_PATH}")
        return FreeformResponse.model_validate(device_info)

    return FixedResponse(
        ip_address=ip_address,
        name=DEVICE_NAME,
        serial_number=DEVICE_SERIAL,
        tcp_port=CONTROL_PORT,
        device_type=DEVICE_TYPE or None,
    )


def create_hub_app(registry: DeviceRegistry | None = None) -> FastAPI:
    registry = registry or DeviceRegistry(JsonFileRecordStore(REGISTRY_FILE))
    hub_service = HubDiscoveryService(registry)
    poller = StatePoller(registry)
    ws_manager = ConnectionManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start/stop background services."""
        logger.info("Starting hub services...")
        try:
            registry.on_change(ws_manager.handle_registry_event)
            await hub_service.start()
            await poller.start()
            logger.info(f"Hub ready, API: {API_HOST}:{API_PORT}, discovery port: {hub_service.port}")
            yield
        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("Shutting down hub services...")
            await poller.stop()
            await hub_service.stop()

    app = FastAPI(title="IoT Discovery Hub", version="1.0.0", lifespan=lifespan)

    hub_routes.init_routes(hub_service, registry, ws_manager)
    app.include_router(hub_routes.router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await ws_manager.connect(websocket)
        try:
            while True:
                # Keep the connection alive; we don't expect client messages
                await websocket.receive_text()
        except WebSocketDisconnect:
            await ws_manager.disconnect(websocket)
        except Exception:
            await ws_manager.disconnect(websocket)

    return app


def create_agent_app(self_info: ResponsePayload | None = None) -> FastAPI:
    agent_service = AgentDiscoveryService(self_info or build_self_info())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting agent services...")
        try:
            await agent_service.start()
            name, serial_number = agent_service.self_info.identity
            logger.info(f"Agent ready as {name}/{serial_number} at {agent_service.self_info.address}")
            yield
        except Exception as e:
            logger.error(f"Startup failed: {e}", exc_info=True)
            raise
        finally:
            logger.info("Shutting down agent services...")
            await agent_service.stop()

    app = FastAPI(title="IoT Discovery Agent", version="1.0.0", lifespan=lifespan)

    agent_routes.init_routes(agent_service)
    app.include_router(agent_routes.router)
    return app


if __name__ == "__main__":
    import uvicorn

    parser = argparse.ArgumentParser(description="IoT LAN discovery service")
    parser.add_argument("role", choices=["hub", "agent"])
    args = parser.parse_args()

    app = create_hub_app() if args.role == "hub" else create_agent_app()
    uvicorn.run(
        app,
        host=API_HOST,
        port=API_PORT,
        log_level=LOG_LEVEL.lower(),
    )
