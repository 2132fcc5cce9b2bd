"""Pydantic models for the discovery wire messages."""

from typing import Annotated, ClassVar, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints
from pydantic.alias_generators import to_camel

DISCOVER_COMMAND = "DISCOVER"
ACCEPT_COMMAND = "ACCEPT"

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class WireModel(BaseModel):
    """Base for every message that travels over the network (camelCase keys)."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class KnownPeer(WireModel):
    """Compact summary of a registered peer, carried inside a request."""
    name: str = Field(validation_alias=AliasChoices("name", "brand"))
    serial_number: str
    ip_address: str
    model: str | None = None

    def matches(self, name: str, serial_number: str, ip_address: str) -> bool:
        return (
            self.name == name
            and self.serial_number == serial_number
            and self.ip_address == ip_address
        )


class DiscoveryRequest(WireModel):
    """Broadcast by the hub to trigger announcements."""
    command: str = DISCOVER_COMMAND
    device: str = ""
    ip_address: str = ""
    known_devices: list[KnownPeer] = []

    @property
    def is_discover(self) -> bool:
        return self.command.lower() == DISCOVER_COMMAND.lower()


class FixedResponse(WireModel):
    """Fixed-field announcement: name, serial number and a TCP accept port."""
    generation: ClassVar[str] = "fixed"

    ip_address: NonEmptyStr
    name: NonEmptyStr
    serial_number: NonEmptyStr
    tcp_port: int = Field(ge=1, le=65535)
    device_type: str | None = None

    @property
    def identity(self) -> tuple[str, str]:
        return self.name, self.serial_number

    @property
    def address(self) -> str:
        return self.ip_address

    @property
    def silence_url(self) -> str | None:
        return None

    @property
    def device_info(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class FreeformResponse(WireModel):
    """
    Freeform announcement: a device info blob with brand, model and serial
    number, silenced through an HTTP callback path.

    Unknown keys are preserved and stored with the record.
    """
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )
    generation: ClassVar[str] = "freeform"

    ip_address: NonEmptyStr
    brand: NonEmptyStr
    model: NonEmptyStr
    serial_number: NonEmptyStr
    discovery_silence_url: NonEmptyStr

    @property
    def identity(self) -> tuple[str, str]:
        return self.brand, self.serial_number

    @property
    def address(self) -> str:
        return self.ip_address

    @property
    def tcp_port(self) -> int | None:
        return None

    @property
    def device_type(self) -> str:
        return self.model

    @property
    def silence_url(self) -> str:
        return self.discovery_silence_url

    @property
    def device_info(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


ResponsePayload = Union[FixedResponse, FreeformResponse]


class DiscoveryAccept(WireModel):
    """Sent point-to-point by the hub to tell an agent it has been registered."""
    command: str = ACCEPT_COMMAND
    device: str = ""
    ip_address: str = ""
    serial_number: str | None = None


class InvalidMessage(BaseModel):
    """Result of parsing a packet that is not a usable message."""
    reason: str
