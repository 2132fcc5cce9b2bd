"""
Encoding and parsing of discovery messages.

Discovery traffic is untrusted broadcast noise: the parse functions never
raise, they return an InvalidMessage describing why a packet was dropped.
"""

import json

from pydantic import BaseModel, ValidationError

from discovery.models import (
    ACCEPT_COMMAND,
    DiscoveryAccept,
    DiscoveryRequest,
    FixedResponse,
    FreeformResponse,
    InvalidMessage,
    ResponsePayload,
)


def encode(message: BaseModel) -> bytes:
    """Serialize a message to a single line of UTF-8 JSON."""
    return json.dumps(
        message.model_dump(by_alias=True, exclude_none=True),
        separators=(",", ":"),
    ).encode("utf-8")


def _load(data: bytes) -> dict | InvalidMessage:
    try:
        payload = json.loads(data.decode("utf-8"))
    except (ValueError, RecursionError) as e:
        return InvalidMessage(reason=f"undecodable payload: {e}")
    if not isinstance(payload, dict):
        return InvalidMessage(reason="payload is not a JSON object")
    return payload


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error["loc"]) or "message"
    return f"{location}: {error['msg']}"


def parse_request(data: bytes) -> DiscoveryRequest | InvalidMessage:
    """Parse a discovery request; anything but a DISCOVER command is invalid."""
    payload = _load(data)
    if isinstance(payload, InvalidMessage):
        return payload
    if "command" not in payload:
        return InvalidMessage(reason="missing command")

    try:
        request = DiscoveryRequest.model_validate(payload)
    except ValidationError as e:
        return InvalidMessage(reason=_first_error(e))

    if not request.is_discover:
        return InvalidMessage(reason=f"unsupported command {request.command!r}")
    return request


def parse_response(
    data: bytes, source_address: str | None = None
) -> ResponsePayload | InvalidMessage:
    """
    Parse a discovery response of either generation.

    A payload carrying ``brand`` is a freeform announcement; its address
    falls back to ``source_address`` when the device does not report one.
    Everything else must be a complete fixed-field announcement.
    """
    payload = _load(data)
    if isinstance(payload, InvalidMessage):
        return payload

    try:
        if "brand" in payload:
            if not payload.get("ipAddress") and source_address:
                payload["ipAddress"] = source_address
            return FreeformResponse.model_validate(payload)
        return FixedResponse.model_validate(payload)
    except ValidationError as e:
        return InvalidMessage(reason=_first_error(e))


def parse_accept(data: bytes) -> DiscoveryAccept | InvalidMessage:
    payload = _load(data)
    if isinstance(payload, InvalidMessage):
        return payload

    try:
        accept = DiscoveryAccept.model_validate(payload)
    except ValidationError as e:
        return InvalidMessage(reason=_first_error(e))

    if accept.command.upper() != ACCEPT_COMMAND:
        return InvalidMessage(reason=f"unsupported command {accept.command!r}")
    return accept
