"""Tests for StopSignal delivery."""

import asyncio
import socket
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from aiohttp import web

from conftest import kettle, lamp
from discovery.netutil import endpoint_url
from discovery.stop_signal import (
    DeliveryError,
    MessageType,
    StopSignalSender,
    call_silence_url,
    recv_message,
    send_accept,
)
from discovery.models import DiscoveryAccept


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
def sender():
    return StopSignalSender(device_name="hub", ip_address="10.0.0.1", timeout=1)


class TestDispatch:

    @pytest.mark.asyncio
    async def test_fixed_response_gets_direct_accept(self, sender):
        with patch("discovery.stop_signal.send_accept", new_callable=AsyncMock) as mock_accept:
            task = sender.dispatch(lamp())
            assert await task is True

        address, port, accept, _ = mock_accept.call_args.args
        assert (address, port) == ("10.0.0.5", 9000)
        assert accept.device == "hub"
        assert accept.serial_number == "SN-123"

    @pytest.mark.asyncio
    async def test_freeform_response_gets_silence_call(self, sender):
        with patch("discovery.stop_signal.call_silence_url", new_callable=AsyncMock) as mock_call:
            mock_call.return_value = 200
            assert await sender.dispatch(kettle()) is True

        mock_call.assert_awaited_once_with("10.0.0.7", ":8765/api/discovery/silence", 1)

    def test_response_without_endpoint_is_skipped(self, sender):
        response = SimpleNamespace(identity=("x", "y"), tcp_port=None, silence_url=None)
        assert sender.dispatch(response) is None

    @pytest.mark.asyncio
    async def test_unreachable_agent_is_not_fatal(self, sender):
        response = lamp("127.0.0.1").model_copy(update={"tcp_port": unused_port()})
        assert await sender.dispatch(response) is False
        assert sender.pending == 0

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self, sender):
        async def hang(*args):
            await asyncio.sleep(60)

        with patch("discovery.stop_signal.send_accept", side_effect=hang):
            task = sender.dispatch(lamp())
            await asyncio.sleep(0)
            assert sender.pending == 1
            await sender.close()
        assert task.cancelled()
        assert sender.pending == 0


class TestDirectAccept:

    @pytest.mark.asyncio
    async def test_accept_frame_on_the_wire(self):
        received = asyncio.get_running_loop().create_future()

        async def handle(reader, writer):
            received.set_result(await recv_message(reader))
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            await send_accept("127.0.0.1", port, DiscoveryAccept(device="hub", serial_number="SN-123"))
            msg_type, payload = await asyncio.wait_for(received, 1)
        finally:
            server.close()
            await server.wait_closed()

        assert msg_type == MessageType.ACCEPT
        assert b'"serialNumber":"SN-123"' in payload

    @pytest.mark.asyncio
    async def test_refused_connection_raises_delivery_error(self):
        with pytest.raises(DeliveryError):
            await send_accept("127.0.0.1", unused_port(), DiscoveryAccept(), timeout=1)


class TestSilenceUrl:

    @pytest.mark.asyncio
    async def test_silence_call_hits_advertised_path(self):
        calls = []

        async def silence(request):
            calls.append(request.path)
            return web.json_response({"status": "silenced"})

        app = web.Application()
        app.router.add_get("/api/discovery/silence", silence)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, "127.0.0.1", 0)
        await site.start()
        port = runner.addresses[0][1]
        try:
            status = await call_silence_url("127.0.0.1", f":{port}/api/discovery/silence")
        finally:
            await runner.cleanup()

        assert status == 200
        assert calls == ["/api/discovery/silence"]

    @pytest.mark.asyncio
    async def test_unreachable_silence_url_raises_delivery_error(self):
        with pytest.raises(DeliveryError):
            await call_silence_url("127.0.0.1", f":{unused_port()}/silence", timeout=1)

    def test_endpoint_url(self):
        assert endpoint_url("10.0.0.7", "/silence") == "http://10.0.0.7/silence"
        assert endpoint_url("10.0.0.7", "silence") == "http://10.0.0.7/silence"
        assert endpoint_url("10.0.0.7", ":8765/silence") == "http://10.0.0.7:8765/silence"
