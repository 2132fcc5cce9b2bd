"""Socket helpers shared by the hub and the agent."""

import logging
import socket

logger = logging.getLogger(__name__)


class BindError(RuntimeError):
    """A listener could not claim its port."""


def local_ip_address() -> str:
    """Best guess at this host's LAN IPv4 address."""
    try:
        _, _, ips = socket.gethostbyname_ex(socket.gethostname())
        for ip in ips:
            if not ip.startswith("127."):
                return ip
    except OSError as e:
        logger.debug(f"Error resolving local IPs: {e}")
    return "127.0.0.1"


def broadcast_addresses() -> set[str]:
    """Collect the addresses a discovery datagram should be sent to."""
    bcast_ips = {"255.255.255.255"}
    try:
        _, _, ips = socket.gethostbyname_ex(socket.gethostname())
        for ip in ips:
            if not ip.startswith("127."):
                # Simple heuristic for /24 subnets
                parts = ip.split(".")
                if len(parts) == 4:
                    parts[3] = "255"
                    bcast_ips.add(".".join(parts))
    except OSError as e:
        logger.debug(f"Error resolving local IPs: {e}")
    return bcast_ips


def open_udp_socket(port: int, host: str = "0.0.0.0") -> socket.socket:
    """
    Create a non-blocking, broadcast-capable UDP socket bound to ``port``.

    SO_REUSEADDR is set before binding so a hub and an agent can share
    the discovery port on one machine.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
        sock.setblocking(False)
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise BindError(f"Could not bind UDP {host}:{port}: {e}") from e
    return sock


def endpoint_url(ip_address: str, path: str) -> str:
    """
    Join a device address with an advertised path.

    The path may carry its own port, e.g. ``:8765/api/discovery/silence``.
    """
    if not path.startswith(("/", ":")):
        path = "/" + path
    return f"http://{ip_address}{path}"
