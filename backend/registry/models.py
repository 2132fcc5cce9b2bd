"""Pydantic models for the hub's device registry."""

import time
from enum import Enum

from pydantic import BaseModel, Field

from discovery.models import KnownPeer, ResponsePayload


class UpsertResult(str, Enum):
    """Outcome of reconciling one discovery response."""
    NOOP = "noop"
    UPDATED = "updated"
    INSERTED = "inserted"


class PeerRecord(BaseModel):
    """A device the hub knows about. Only ip_address changes once registered."""
    id: int = 0
    name: str
    serial_number: str
    ip_address: str
    tcp_port: int | None = None
    silence_url: str | None = None
    device_type: str | None = None
    device_info: dict = Field(default_factory=dict)
    last_known_state: str | None = None
    generation: str = "fixed"
    discovered_at: float = Field(default_factory=time.time)

    @property
    def identity(self) -> tuple[str, str]:
        return self.name, self.serial_number

    @property
    def status_url(self) -> str | None:
        """Path the device advertises for state polling, if any."""
        status_url = self.device_info.get("statusUrl")
        if isinstance(status_url, str) and status_url.strip():
            return status_url
        return None

    @classmethod
    def from_response(cls, response: ResponsePayload) -> "PeerRecord":
        name, serial_number = response.identity
        return cls(
            name=name,
            serial_number=serial_number,
            ip_address=response.address,
            tcp_port=response.tcp_port,
            silence_url=response.silence_url,
            device_type=response.device_type,
            device_info=response.device_info,
            generation=response.generation,
        )

    def to_known_peer(self) -> KnownPeer:
        return KnownPeer(
            name=self.name,
            serial_number=self.serial_number,
            ip_address=self.ip_address,
            model=self.device_type,
        )
