"""Shared fixtures for the discovery test suite."""

import os
import tempfile

# config.py persists a serial number under DATA_DIR at import time
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="iot-discovery-test-"))
os.environ.setdefault("DEVICE_SERIAL", "SN-TEST")

import pytest

from discovery.models import FixedResponse, FreeformResponse
from registry.registry import DeviceRegistry


class FakeTransport:
    """Stands in for an asyncio DatagramTransport and records what was sent."""

    def __init__(self):
        self.sent: list[tuple[bytes, tuple[str, int]]] = []
        self.closed = False

    def sendto(self, data, addr):
        self.sent.append((data, addr))

    def close(self):
        self.closed = True


def lamp(ip_address: str = "10.0.0.5") -> FixedResponse:
    return FixedResponse(
        ip_address=ip_address,
        name="lamp-01",
        serial_number="SN-123",
        tcp_port=9000,
        device_type="lamp",
    )


def kettle(ip_address: str = "10.0.0.7", status_url: str = "/state") -> FreeformResponse:
    return FreeformResponse.model_validate({
        "ipAddress": ip_address,
        "brand": "Acme",
        "model": "K-2000",
        "serialNumber": "AC-42",
        "discoverySilenceUrl": ":8765/api/discovery/silence",
        "statusUrl": status_url,
        "firmware": "1.2.3",
    })


@pytest.fixture
def registry():
    return DeviceRegistry()


@pytest.fixture
def fake_transport():
    return FakeTransport()
