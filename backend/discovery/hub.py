"""
Hub side of UDP LAN discovery.

Periodically broadcasts a discovery request carrying the identity and address
of every registered device, and reconciles incoming responses into the
registry. Newly registered or moved devices are sent a StopSignal.
"""

import asyncio
import logging
from enum import Enum

from config import DISCOVERY_PORT, HUB_NAME, REQUEST_INTERVAL, SILENCE_KNOWN_PEERS
from discovery.codec import encode, parse_response
from discovery.models import DiscoveryRequest, InvalidMessage, ResponsePayload
from discovery.netutil import broadcast_addresses, local_ip_address, open_udp_socket
from discovery.stop_signal import StopSignalSender
from registry.models import UpsertResult
from registry.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class HubState(str, Enum):
    STOPPED = "stopped"
    BOUND = "bound"
    REQUESTING = "requesting"


class HubProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol for receiving discovery responses."""

    def __init__(self, service: "HubDiscoveryService"):
        self.service = service

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            self.service.handle_datagram(data, addr)
        except Exception as e:
            logger.error(f"Error handling datagram from {addr}: {e}")

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")


class HubDiscoveryService:
    """Owns the request timer and feeds discovery responses to the registry."""

    def __init__(
        self,
        registry: DeviceRegistry,
        port: int = DISCOVERY_PORT,
        interval: float = REQUEST_INTERVAL,
        device_name: str = HUB_NAME,
        stop_signals: StopSignalSender | None = None,
        silence_known_peers: bool = SILENCE_KNOWN_PEERS,
    ) -> None:
        self.registry = registry
        self.port = port
        self.interval = interval
        self.device_name = device_name
        self.ip_address = local_ip_address()
        self.silence_known_peers = silence_known_peers
        self.stop_signals = stop_signals or StopSignalSender(
            device_name=device_name, ip_address=self.ip_address
        )

        self._state = HubState.STOPPED
        self._transport: asyncio.DatagramTransport | None = None
        self._request_task: asyncio.Task | None = None
        self._handlers: set[asyncio.Task] = set()
        self.requests_sent = 0

    @property
    def state(self) -> HubState:
        return self._state

    async def start(self) -> None:
        """Bind the listener and arm the request timer. Raises BindError."""
        if self._state != HubState.STOPPED:
            return
        logger.info(f"Starting hub discovery on UDP port {self.port}")

        loop = asyncio.get_running_loop()
        sock = open_udp_socket(self.port)
        transport, _ = await loop.create_datagram_endpoint(
            lambda: HubProtocol(self),
            sock=sock,
        )
        self._transport = transport
        self._state = HubState.BOUND

        self._request_task = asyncio.create_task(self._request_loop())
        logger.info("Hub discovery started")

    async def stop(self) -> None:
        """Cancel the timer, drop pending work and release the socket."""
        if self._request_task:
            self._request_task.cancel()
            try:
                await self._request_task
            except asyncio.CancelledError:
                pass
            self._request_task = None

        handlers = list(self._handlers)
        for task in handlers:
            task.cancel()
        await asyncio.gather(*handlers, return_exceptions=True)
        await self.stop_signals.close()

        if self._transport:
            self._transport.close()
            self._transport = None
        self._state = HubState.STOPPED
        logger.info("Hub discovery stopped")

    async def build_request(self) -> DiscoveryRequest:
        return DiscoveryRequest(
            device=self.device_name,
            ip_address=self.ip_address,
            known_devices=await self.registry.known_peers(),
        )

    async def send_request(self) -> None:
        """Broadcast one discovery request. Send errors are logged, not raised."""
        if not self._transport:
            return

        self._state = HubState.REQUESTING
        try:
            data = encode(await self.build_request())
            for bcast_ip in broadcast_addresses():
                try:
                    self._transport.sendto(data, (bcast_ip, self.port))
                except OSError as e:
                    # Some interfaces might not support broadcast
                    logger.debug(f"Request to {bcast_ip} failed: {e}")
            self.requests_sent += 1
            logger.debug(f"Discovery request sent ({len(data)} bytes)")
        except Exception as e:
            logger.warning(f"Discovery request failed: {e}")
        finally:
            if self._transport:
                self._state = HubState.BOUND

    def handle_datagram(self, data: bytes, addr: tuple[str, int]) -> asyncio.Task | None:
        """
        Validate a packet and schedule its reconciliation.

        The responder is registered at the address the datagram came from,
        whatever address it reports for itself.
        """
        response = parse_response(data, source_address=addr[0])
        if isinstance(response, InvalidMessage):
            logger.debug(f"Ignoring packet from {addr}: {response.reason}")
            return None
        if response.ip_address != addr[0]:
            logger.debug(f"{response.identity} reports {response.ip_address}, seen at {addr[0]}")
            response = response.model_copy(update={"ip_address": addr[0]})

        task = asyncio.create_task(self.reconcile(response))
        self._handlers.add(task)
        task.add_done_callback(self._handlers.discard)
        return task

    async def reconcile(self, response: ResponsePayload) -> UpsertResult | None:
        """Upsert a response into the registry and silence the responder."""
        try:
            result = await self.registry.upsert(response)
        except Exception as e:
            logger.error(f"Reconciliation failed for {response.identity}: {e}")
            return None

        if result != UpsertResult.NOOP or self.silence_known_peers:
            self.stop_signals.dispatch(response)
        return result

    async def _request_loop(self) -> None:
        """Send a request now, then once per interval."""
        while True:
            await self.send_request()
            await asyncio.sleep(self.interval)

    def status(self) -> dict:
        return {
            "state": self._state.value,
            "port": self.port,
            "interval": self.interval,
            "requests_sent": self.requests_sent,
            "pending_stop_signals": self.stop_signals.pending,
        }
