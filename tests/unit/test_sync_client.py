"""Tests for the blocking ArmClient facade."""

import pytest
import zmq

from armlink.client.sync_client import ArmClient
from armlink.config import ConnectionConfig
from armlink.protocol.types import ConnectionStatus
from armlink.protocol.wire import CommandType, decode_command_request
from fakes import FakeTransport


@pytest.fixture
def arm():
    transport = FakeTransport()
    client = ArmClient(ConnectionConfig(host="127.0.0.1", port=5555), transport=transport, ack_timeout_ms=50)
    yield client, transport
    client.close()


def test_connect_and_command_from_sync_code(arm):
    client, transport = arm
    client.connect()
    assert client.status is ConnectionStatus.CONNECTED

    assert client.enable() is True
    result = client.execute("move_to_target", [0, 10, 20, 0, 0, 0])
    assert result.ok

    requests = [decode_command_request(d) for d in transport.dealer.sent]
    assert [r.command_type for r in requests] == [CommandType.CONTROL_MODE, CommandType.BASIC_MOVE]

    client.disconnect()
    assert not client.connected
    assert transport.dealer.closed


def test_listener_sees_status_changes(arm):
    client, _ = arm
    seen = []
    client.add_listener(seen.append)
    client.connect()
    client.disconnect()
    assert seen


def test_not_connected_command_returns_false_result(arm):
    client, transport = arm
    assert client.execute("enable").error_type == "NotConnectedError"
    assert transport.of_kind(zmq.DEALER) == []


@pytest.mark.asyncio
async def test_refuses_inside_running_loop(arm):
    client, _ = arm
    with pytest.raises(RuntimeError, match="AsyncArmClient"):
        client.connect()
