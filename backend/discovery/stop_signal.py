"""
StopSignal delivery.

An announcing agent is told to stop either by a direct ACCEPT frame sent over
a short-lived TCP connection to its control port, or by an HTTP GET to the
silence path it advertised. Both are best-effort: failures are logged and
never retried, the agent simply keeps announcing until its own window ends.
"""

import asyncio
import logging
import struct

import aiohttp

from config import HUB_NAME, STOP_SIGNAL_TIMEOUT
from discovery.codec import encode
from discovery.models import DiscoveryAccept, ResponsePayload
from discovery.netutil import endpoint_url

logger = logging.getLogger(__name__)

# --- Wire protocol helpers ---

HEADER_FORMAT = "!BI"  # 1-byte type + 4-byte length (big-endian)
HEADER_SIZE = struct.calcsize(HEADER_FORMAT)
MAX_FRAME_SIZE = 64 * 1024


class MessageType:
    ACCEPT = 0x01


class DeliveryError(ConnectionError):
    """A StopSignal could not be delivered."""


async def send_message(
    writer: asyncio.StreamWriter, msg_type: int, payload: bytes = b""
) -> None:
    """Send a type-length-payload message."""
    header = struct.pack(HEADER_FORMAT, msg_type, len(payload))
    writer.write(header + payload)
    await writer.drain()


async def recv_message(
    reader: asyncio.StreamReader,
) -> tuple[int, bytes]:
    """Receive a type-length-payload message. Returns (type, payload)."""
    header = await reader.readexactly(HEADER_SIZE)
    msg_type, length = struct.unpack(HEADER_FORMAT, header)
    if length > MAX_FRAME_SIZE:
        raise ConnectionError(f"Frame too large: {length} bytes")
    payload = b""
    if length > 0:
        payload = await reader.readexactly(length)
    return msg_type, payload


async def send_accept(
    ip_address: str, port: int, accept: DiscoveryAccept,
    timeout: float = STOP_SIGNAL_TIMEOUT,
) -> None:
    """Open a connection to ``ip_address:port``, send one ACCEPT frame, close."""
    payload = encode(accept)
    writer: asyncio.StreamWriter | None = None
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(ip_address, port), timeout=timeout
        )
        await asyncio.wait_for(
            send_message(writer, MessageType.ACCEPT, payload), timeout=timeout
        )
    except (OSError, asyncio.TimeoutError) as e:
        raise DeliveryError(f"Accept to {ip_address}:{port} failed: {e!r}") from e
    finally:
        if writer:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass


async def call_silence_url(
    ip_address: str, path: str, timeout: float = STOP_SIGNAL_TIMEOUT
) -> int:
    """GET ``http://<ip_address><path>`` and discard the body. Returns the status."""
    url = endpoint_url(ip_address, path)
    try:
        async with aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as session:
            async with session.get(url) as response:
                await response.read()
                return response.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise DeliveryError(f"Silence call to {url} failed: {e!r}") from e


class StopSignalSender:
    """Dispatches StopSignals as detached tasks so a slow peer never stalls discovery."""

    def __init__(
        self, device_name: str = HUB_NAME, ip_address: str = "",
        timeout: float = STOP_SIGNAL_TIMEOUT,
    ) -> None:
        self.device_name = device_name
        self.ip_address = ip_address
        self.timeout = timeout
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def dispatch(self, response: ResponsePayload) -> asyncio.Task | None:
        """
        Schedule delivery of a StopSignal to the responder.

        A response advertising neither a control port nor a silence path
        cannot be silenced; it is skipped.
        """
        if not response.tcp_port and not response.silence_url:
            logger.debug(f"No control endpoint for {response.identity}, not silencing")
            return None

        task = asyncio.create_task(self.deliver(response))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def deliver(self, response: ResponsePayload) -> bool:
        """Deliver one StopSignal. Returns False when delivery failed."""
        try:
            if response.tcp_port:
                accept = DiscoveryAccept(
                    device=self.device_name,
                    ip_address=self.ip_address,
                    serial_number=response.serial_number,
                )
                await send_accept(
                    response.address, response.tcp_port, accept, self.timeout
                )
                logger.debug(f"Accepted {response.identity} at {response.address}:{response.tcp_port}")
            else:
                status = await call_silence_url(
                    response.address, response.silence_url, self.timeout
                )
                logger.debug(f"Silenced {response.identity} at {response.address} (HTTP {status})")
            return True
        except DeliveryError as e:
            logger.warning(f"StopSignal not delivered: {e}")
        except Exception as e:
            logger.error(f"Unexpected StopSignal error for {response.identity}: {e}")
        return False

    async def close(self) -> None:
        """Cancel StopSignals still in flight."""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()
