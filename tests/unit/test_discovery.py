"""Tests for the discovery handshake."""

import pytest
import zmq

from armlink.client.discovery import discover
from armlink.utils.errors import ConnectError
from fakes import NETINFO_BYTES, TIMEOUT, FakeTransport


@pytest.mark.asyncio
async def test_resolves_dealer_then_sub():
    transport = FakeTransport(discovery=[NETINFO_BYTES])
    info = await discover(transport, "tcp://127.0.0.1:5555", token=b"NETWORK_INFO")

    assert info.dealer.uri == "tcp://127.0.0.1:5556"
    assert info.sub.uri == "tcp://127.0.0.1:5557"

    (req,) = transport.of_kind(zmq.REQ)
    assert req.endpoint == "tcp://127.0.0.1:5555"
    assert req.sent == [b"NETWORK_INFO"]
    assert req.closed


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "reply",
    [TIMEOUT, NETINFO_BYTES[:6], zmq.ZMQError(zmq.ETERM)],
    ids=["timeout", "malformed", "transport-error"],
)
async def test_failures_raise_connect_error_and_close_socket(reply):
    transport = FakeTransport(discovery=[reply])
    with pytest.raises(ConnectError):
        await discover(transport, "tcp://127.0.0.1:5555", timeout_ms=10)

    (req,) = transport.of_kind(zmq.REQ)
    assert req.closed


@pytest.mark.asyncio
async def test_socket_open_failure():
    transport = FakeTransport()
    transport.fail_kinds.add(zmq.REQ)
    with pytest.raises(ConnectError, match="Cannot open discovery socket"):
        await discover(transport, "tcp://nowhere:1")
