"""WebSocket fan-out of registry changes."""

import asyncio
import json
import logging

from fastapi import WebSocket

from registry.models import PeerRecord

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks dashboard WebSocket clients and pushes device events to them."""

    def __init__(self) -> None:
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()

    @property
    def client_count(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"Dashboard client joined ({self.client_count} watching)")

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            if websocket in self._connections:
                self._connections.remove(websocket)
        logger.info(f"Dashboard client left ({self.client_count} watching)")

    async def broadcast(self, event: str, data: dict) -> None:
        """Send an event to every client, dropping the ones that went away."""
        message = json.dumps({"event": event, "data": data})
        async with self._lock:
            dead: list[WebSocket] = []
            for ws in self._connections:
                try:
                    await ws.send_text(message)
                except Exception:
                    dead.append(ws)
            for ws in dead:
                self._connections.remove(ws)
        if dead:
            logger.debug(f"Dropped {len(dead)} stale dashboard clients")

    async def handle_registry_event(self, event: str, record: PeerRecord) -> None:
        """Callback compatible with DeviceRegistry.on_change()."""
        await self.broadcast(event, record.model_dump())
