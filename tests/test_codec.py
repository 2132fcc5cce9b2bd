"""Tests for discovery message parsing and encoding."""

import json

import pytest

from conftest import kettle, lamp
from discovery.codec import encode, parse_accept, parse_request, parse_response
from discovery.models import (
    DiscoveryAccept,
    DiscoveryRequest,
    FixedResponse,
    FreeformResponse,
    InvalidMessage,
    KnownPeer,
)


def _bytes(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


FIXED = {
    "ipAddress": "10.0.0.5",
    "name": "lamp-01",
    "serialNumber": "SN-123",
    "tcpPort": "9000",
}


class TestParseResponse:

    def test_fixed_response(self):
        response = parse_response(_bytes(FIXED))
        assert isinstance(response, FixedResponse)
        assert response.identity == ("lamp-01", "SN-123")
        assert response.address == "10.0.0.5"
        assert response.tcp_port == 9000
        assert response.silence_url is None

    @pytest.mark.parametrize("field", ["ipAddress", "name", "serialNumber", "tcpPort"])
    def test_missing_required_field(self, field):
        payload = {k: v for k, v in FIXED.items() if k != field}
        assert isinstance(parse_response(_bytes(payload)), InvalidMessage)

    @pytest.mark.parametrize("field", ["ipAddress", "name", "serialNumber", "tcpPort"])
    def test_empty_required_field(self, field):
        payload = dict(FIXED, **{field: "  "})
        assert isinstance(parse_response(_bytes(payload)), InvalidMessage)

    def test_fixed_response_ignores_source_address(self):
        payload = dict(FIXED, ipAddress="")
        result = parse_response(_bytes(payload), source_address="10.0.0.5")
        assert isinstance(result, InvalidMessage)

    def test_device_type_is_optional(self):
        response = parse_response(_bytes(dict(FIXED, deviceType="lamp")))
        assert response.device_type == "lamp"

    @pytest.mark.parametrize("data", [
        b"",
        b"\xff\xfe\x00",
        b"not json",
        b"[1, 2, 3]",
        b'"DISCOVER"',
        b"null",
    ])
    def test_garbage_is_invalid(self, data):
        result = parse_response(data, source_address="10.0.0.1")
        assert isinstance(result, InvalidMessage)
        assert result.reason

    @pytest.mark.parametrize("data", [
        b"[" * 60000 + b"]" * 60000,
        b'{"a":' * 30000 + b"1" + b"}" * 30000,
    ])
    def test_deeply_nested_json_is_invalid(self, data):
        assert isinstance(parse_response(data, source_address="10.0.0.1"), InvalidMessage)
        assert isinstance(parse_request(data), InvalidMessage)
        assert isinstance(parse_accept(data), InvalidMessage)

    def test_request_is_not_a_response(self):
        data = encode(DiscoveryRequest(device="hub", ip_address="10.0.0.1"))
        assert isinstance(parse_response(data, "10.0.0.1"), InvalidMessage)

    def test_freeform_uses_source_address(self):
        payload = {
            "brand": "Acme",
            "model": "K-2000",
            "serialNumber": "AC-42",
            "discoverySilenceUrl": "/silence",
            "firmware": "1.2.3",
        }
        response = parse_response(_bytes(payload), source_address="10.0.0.7")
        assert isinstance(response, FreeformResponse)
        assert response.identity == ("Acme", "AC-42")
        assert response.address == "10.0.0.7"
        assert response.tcp_port is None
        assert response.silence_url == "/silence"
        assert response.device_info["firmware"] == "1.2.3"

    def test_freeform_prefers_reported_address(self):
        payload = {
            "ipAddress": "10.0.0.8",
            "brand": "Acme",
            "model": "K-2000",
            "serialNumber": "AC-42",
            "discoverySilenceUrl": "/silence",
        }
        response = parse_response(_bytes(payload), source_address="10.0.0.7")
        assert response.address == "10.0.0.8"

    @pytest.mark.parametrize("field", ["model", "serialNumber", "discoverySilenceUrl"])
    def test_freeform_missing_field(self, field):
        payload = {
            "brand": "Acme",
            "model": "K-2000",
            "serialNumber": "AC-42",
            "discoverySilenceUrl": "/silence",
        }
        del payload[field]
        assert isinstance(parse_response(_bytes(payload), "10.0.0.7"), InvalidMessage)

    def test_freeform_without_any_address(self):
        payload = {
            "brand": "Acme",
            "model": "K-2000",
            "serialNumber": "AC-42",
            "discoverySilenceUrl": "/silence",
        }
        assert isinstance(parse_response(_bytes(payload)), InvalidMessage)


class TestParseRequest:

    def test_discover_request(self):
        payload = {
            "command": "DISCOVER",
            "device": "hub",
            "ipAddress": "10.0.0.1",
            "knownDevices": [
                {"name": "lamp-01", "serialNumber": "SN-123", "ipAddress": "10.0.0.5"},
                {"brand": "Acme", "serialNumber": "AC-42", "ipAddress": "10.0.0.7", "model": "K-2000"},
            ],
        }
        request = parse_request(_bytes(payload))
        assert isinstance(request, DiscoveryRequest)
        assert request.device == "hub"
        assert [p.name for p in request.known_devices] == ["lamp-01", "Acme"]

    def test_command_is_case_insensitive(self):
        assert isinstance(parse_request(_bytes({"command": "discover"})), DiscoveryRequest)

    @pytest.mark.parametrize("payload", [
        {"command": "PING"},
        {"device": "hub"},
        {"command": "DISCOVER", "knownDevices": "everyone"},
        {"command": "DISCOVER", "knownDevices": [{"name": "lamp-01"}]},
    ])
    def test_invalid_requests(self, payload):
        assert isinstance(parse_request(_bytes(payload)), InvalidMessage)

    def test_response_is_not_a_request(self):
        assert isinstance(parse_request(encode(lamp())), InvalidMessage)


class TestParseAccept:

    def test_accept(self):
        data = encode(DiscoveryAccept(device="hub", ip_address="10.0.0.1", serial_number="SN-123"))
        accept = parse_accept(data)
        assert isinstance(accept, DiscoveryAccept)
        assert accept.serial_number == "SN-123"

    def test_wrong_command(self):
        assert isinstance(parse_accept(_bytes({"command": "DISCOVER"})), InvalidMessage)


class TestEncode:

    def test_encoding_is_single_line_camel_case(self):
        data = encode(lamp())
        assert b"\n" not in data
        payload = json.loads(data)
        assert payload == {
            "ipAddress": "10.0.0.5",
            "name": "lamp-01",
            "serialNumber": "SN-123",
            "tcpPort": 9000,
            "deviceType": "lamp",
        }

    def test_freeform_encoding_keeps_extra_fields(self):
        payload = json.loads(encode(kettle()))
        assert payload["brand"] == "Acme"
        assert payload["firmware"] == "1.2.3"
        assert payload["discoverySilenceUrl"] == ":8765/api/discovery/silence"

    def test_request_carries_known_devices(self):
        request = DiscoveryRequest(
            device="hub",
            ip_address="10.0.0.1",
            known_devices=[KnownPeer(name="lamp-01", serial_number="SN-123", ip_address="10.0.0.5")],
        )
        payload = json.loads(encode(request))
        assert payload["command"] == "DISCOVER"
        assert payload["knownDevices"] == [
            {"name": "lamp-01", "serialNumber": "SN-123", "ipAddress": "10.0.0.5"}
        ]
