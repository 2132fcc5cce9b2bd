"""
Agent side of UDP LAN discovery.

Listens for discovery requests and answers by broadcasting its own
announcement for a bounded window, unless the requester already lists this
device with its current address. The window ends early when a StopSignal
arrives, either as an ACCEPT frame on the control port or through the
silence endpoint of the agent's HTTP API.
"""

import asyncio
import logging
from enum import Enum

from config import (
    DISCOVERY_PORT,
    RESPONSE_INTERVAL,
    RESPONSE_LIMIT,
    RESPONSE_WINDOW,
    STOP_SIGNAL_TIMEOUT,
)
from discovery.codec import encode, parse_accept, parse_request
from discovery.models import DiscoveryRequest, InvalidMessage, ResponsePayload
from discovery.netutil import BindError, broadcast_addresses, open_udp_socket
from discovery.stop_signal import MessageType, recv_message

logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    BROADCASTING = "broadcasting"


class AgentProtocol(asyncio.DatagramProtocol):
    """asyncio UDP protocol for receiving discovery requests."""

    def __init__(self, service: "AgentDiscoveryService"):
        self.service = service

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        try:
            self.service.handle_datagram(data, addr)
        except Exception as e:
            logger.error(f"Error handling datagram from {addr}: {e}")

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")


class AgentDiscoveryService:
    """Answers discovery requests on behalf of one device."""

    def __init__(
        self,
        self_info: ResponsePayload,
        port: int = DISCOVERY_PORT,
        interval: float = RESPONSE_INTERVAL,
        limit: int = RESPONSE_LIMIT,
        window: float = RESPONSE_WINDOW,
        accept_port: int | None = None,
    ) -> None:
        self.self_info = self_info
        self.port = port
        self.interval = interval
        self.limit = limit
        self.window = window
        # Only fixed-field announcements advertise a TCP control port
        self._accept_port = accept_port if accept_port is not None else self_info.tcp_port

        self._state = AgentState.IDLE
        self._transport: asyncio.DatagramTransport | None = None
        self._accept_server: asyncio.Server | None = None
        self._broadcast_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self.responses_sent = 0

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def accept_port(self) -> int | None:
        """Port the accept listener is actually bound to."""
        if self._accept_server and self._accept_server.sockets:
            return self._accept_server.sockets[0].getsockname()[1]
        return self._accept_port

    async def start(self) -> None:
        """Bind the UDP listener and, if needed, the accept listener. Raises BindError."""
        if self._state != AgentState.IDLE:
            return
        logger.info(f"Starting agent discovery on UDP port {self.port}")

        loop = asyncio.get_running_loop()
        sock = open_udp_socket(self.port)
        transport, _ = await loop.create_datagram_endpoint(
            lambda: AgentProtocol(self),
            sock=sock,
        )
        self._transport = transport

        if self._accept_port is not None:
            try:
                self._accept_server = await asyncio.start_server(
                    self._handle_accept, "0.0.0.0", self._accept_port
                )
            except OSError as e:
                transport.close()
                self._transport = None
                raise BindError(f"Could not bind accept listener on TCP {self._accept_port}: {e}") from e
            logger.info(f"Accept listener on TCP port {self.accept_port}")

        self._state = AgentState.LISTENING
        logger.info("Agent discovery started")

    async def stop(self) -> None:
        """Stop broadcasting and release both listeners. Safe to call when idle."""
        self.stop_broadcasting()
        if self._broadcast_task:
            try:
                await self._broadcast_task
            except asyncio.CancelledError:
                pass
            self._broadcast_task = None

        if self._accept_server:
            self._accept_server.close()
            await self._accept_server.wait_closed()
            self._accept_server = None
        if self._transport:
            self._transport.close()
            self._transport = None
        self._state = AgentState.IDLE
        logger.info("Agent discovery stopped")

    def is_known_by(self, request: DiscoveryRequest) -> bool:
        """True when the requester already lists this device at its current address."""
        name, serial_number = self.self_info.identity
        return any(
            peer.matches(name, serial_number, self.self_info.address)
            for peer in request.known_devices
        )

    def handle_datagram(self, data: bytes, addr: tuple[str, int]) -> bool:
        """Handle one inbound packet. Returns True if it started a broadcast window."""
        request = parse_request(data)
        if isinstance(request, InvalidMessage):
            logger.debug(f"Ignoring packet from {addr}: {request.reason}")
            return False

        if self.is_known_by(request):
            logger.debug(f"Already known by {request.device or addr[0]}, staying quiet")
            return False

        logger.info(f"Discovery request from {request.device or addr[0]}")
        return self.start_broadcasting()

    def start_broadcasting(self) -> bool:
        """Open a broadcasting window. No-op unless listening."""
        if self._state != AgentState.LISTENING:
            return False
        self._stop_event = asyncio.Event()
        self._state = AgentState.BROADCASTING
        self._broadcast_task = asyncio.create_task(self._broadcast_loop())
        return True

    def stop_broadcasting(self) -> None:
        """End the current broadcasting window, if any."""
        if self._state == AgentState.BROADCASTING:
            logger.info("Stopping discovery response broadcast")
        self._stop_event.set()

    def send_response(self) -> None:
        if not self._transport:
            return
        data = encode(self.self_info)
        for bcast_ip in broadcast_addresses():
            try:
                self._transport.sendto(data, (bcast_ip, self.port))
            except OSError as e:
                logger.debug(f"Response to {bcast_ip} failed: {e}")
        self.responses_sent += 1

    async def _broadcast_loop(self) -> None:
        """Announce every interval until stopped, the limit or the window runs out."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.window
        count = 0
        try:
            while not self._stop_event.is_set():
                try:
                    self.send_response()
                except Exception as e:
                    logger.warning(f"Broadcast failed: {e}")
                count += 1
                if count >= self.limit:
                    break

                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=min(self.interval, remaining)
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._state == AgentState.BROADCASTING:
                self._state = AgentState.LISTENING
            logger.debug(f"Broadcast window closed after {count} responses")

    async def _handle_accept(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Handle one ACCEPT connection from a hub."""
        peer = writer.get_extra_info("peername")
        try:
            msg_type, payload = await asyncio.wait_for(
                recv_message(reader), timeout=STOP_SIGNAL_TIMEOUT
            )
            if msg_type != MessageType.ACCEPT:
                logger.debug(f"Unexpected message type {msg_type:#x} from {peer}")
                return

            accept = parse_accept(payload)
            if isinstance(accept, InvalidMessage):
                logger.debug(f"Ignoring accept from {peer}: {accept.reason}")
                return
            if accept.serial_number and accept.serial_number != self.self_info.serial_number:
                logger.debug(f"Accept from {peer} is for {accept.serial_number}, not us")
                return

            logger.info(f"Accepted by {accept.device or peer}")
            self.stop_broadcasting()
        except (asyncio.IncompleteReadError, asyncio.TimeoutError, ConnectionError) as e:
            logger.debug(f"Accept connection from {peer} failed: {e!r}")
        except Exception as e:
            logger.error(f"Accept handler error: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    def status(self) -> dict:
        name, serial_number = self.self_info.identity
        return {
            "state": self._state.value,
            "name": name,
            "serial_number": serial_number,
            "ip_address": self.self_info.address,
            "port": self.port,
            "responses_sent": self.responses_sent,
        }
