"""Tests for named command dispatch."""

import asyncio
import math

import pytest
import zmq

from armlink.client.dispatcher import CommandDispatcher
from armlink.client.events import LinkError, StatusChanged
from armlink.protocol.types import ConnectionStatus
from armlink.protocol.wire import (
    CartesianPoseTarget,
    CommandType,
    JointPositionTarget,
    OtherTarget,
    RequestType,
    decode_command_request,
)
from fakes import TIMEOUT, wait_until

HOME_DEFAULT = {"x": 0, "y": 0, "z": 400, "roll": 0, "pitch": 0, "yaw": 0}


@pytest.fixture
def dispatcher(make_client):
    return CommandDispatcher(make_client())


async def connected(dispatcher):
    await dispatcher.client.connect()
    return dispatcher


def sent_requests(transport):
    return [decode_command_request(d) for s in transport.of_kind(zmq.DEALER) for d in s.sent]


class TestValidation:
    @pytest.mark.asyncio
    async def test_unknown_command(self, dispatcher):
        result = await dispatcher.execute("fly")
        assert not result.ok
        assert result.error_type == "UnknownCommandError"
        assert result.message == "Unknown command: fly"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "command",
        ["enable", "disable", "home", "move_to_target", "stop", "reset",
         "save_home_position", "reset_home_position"],
    )
    async def test_requires_connection(self, dispatcher, transport, command):
        result = await dispatcher.execute(command, [0, 0, 0, 0, 0, 0])
        assert not result.ok
        assert result.error_type == "NotConnectedError"
        assert result.message == "Robot arm is not connected"
        assert transport.sockets == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "data",
        [None, {}, {"ipAddress": "10.0.0.2"}, {"port": 5555}, {"ipAddress": "", "port": 5555},
         {"ipAddress": "10.0.0.2", "port": 70000}],
    )
    async def test_connect_validates_parameters(self, dispatcher, transport, recorded, data):
        events = recorded(dispatcher.client)
        result = await dispatcher.execute("connect", data)

        assert not result.ok
        assert result.error_type == "InvalidParametersError"
        # Misuse is reported to the caller only
        assert events == []
        assert transport.sockets == []

    @pytest.mark.asyncio
    async def test_invalid_move_target(self, dispatcher):
        await connected(dispatcher)
        for data in ([1, 2, 3], {"x": 1}, "home", None):
            result = await dispatcher.execute("move_to_target", data)
            assert result.error_type == "InvalidParametersError", data


class TestLinkCommands:
    @pytest.mark.asyncio
    async def test_connect(self, dispatcher, transport):
        result = await dispatcher.execute("connect", {"ipAddress": "10.0.0.2", "port": "6000"})

        assert result.ok
        assert result.message == "Connected to robot arm at 10.0.0.2:6000"
        assert dispatcher.client.connected
        assert transport.of_kind(zmq.REQ)[0].endpoint == "tcp://10.0.0.2:6000"

    @pytest.mark.asyncio
    async def test_connect_failure_is_reported(self, dispatcher, transport, recorded):
        transport.discovery = [TIMEOUT]
        events = recorded(dispatcher.client)

        result = await dispatcher.execute("connect", {"ipAddress": "10.0.0.2", "port": 6000})

        assert not result.ok
        assert result.error_type == "ConnectError"
        assert result.message.startswith("Command connect failed:")
        assert any(isinstance(e, LinkError) for e in events)
        assert dispatcher.client.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_and_reconnect(self, dispatcher, recorded):
        await connected(dispatcher)
        assert (await dispatcher.execute("reconnect")).ok
        assert dispatcher.client.connected

        events = recorded(dispatcher.client)
        result = await dispatcher.execute("disconnect")
        assert result.ok
        assert [e.status for e in events if isinstance(e, StatusChanged)] == [
            ConnectionStatus.DISCONNECTED
        ]

    @pytest.mark.asyncio
    async def test_connect_elsewhere_while_connected_is_refused(self, dispatcher, transport):
        await connected(dispatcher)

        result = await dispatcher.execute("connect", {"ipAddress": "10.9.9.9", "port": 7000})

        assert not result.ok
        assert result.error_type == "AlreadyConnectedError"
        assert "127.0.0.1:5555" in result.message
        assert dispatcher.client.connected
        assert dispatcher.client.config.host == "127.0.0.1"
        assert len(transport.of_kind(zmq.REQ)) == 1

    @pytest.mark.asyncio
    async def test_connect_same_endpoint_while_connected(self, dispatcher, transport):
        await connected(dispatcher)

        result = await dispatcher.execute("connect", {"ipAddress": "127.0.0.1", "port": 5555})

        assert result.ok
        assert result.message == "Already connected to robot arm at 127.0.0.1:5555"
        assert len(transport.of_kind(zmq.REQ)) == 1

    @pytest.mark.asyncio
    async def test_connect_while_handshake_in_progress(self, dispatcher, transport):
        transport.discovery_gate = asyncio.Event()
        first = asyncio.create_task(dispatcher.client.connect())
        await wait_until(lambda: dispatcher.client.connecting)

        same = await dispatcher.execute("connect", {"ipAddress": "127.0.0.1", "port": 5555})
        other = await dispatcher.execute("connect", {"ipAddress": "10.9.9.9", "port": 7000})

        assert not same.ok
        assert "in progress" in same.message
        assert other.error_type == "AlreadyConnectedError"

        transport.discovery_gate.set()
        await first
        assert dispatcher.client.connected
        assert len(transport.of_kind(zmq.REQ)) == 1


class TestControlCommands:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "command, command_type, param",
        [
            ("enable", CommandType.CONTROL_MODE, 1.0),
            ("disable", CommandType.CONTROL_MODE, 0.0),
            ("reset", CommandType.CONTROL_MODE, 2.0),
            ("stop", CommandType.SET_STOP_EXECUTION, 0.0),
        ],
    )
    async def test_control_mapping(self, dispatcher, transport, command, command_type, param):
        await connected(dispatcher)
        result = await dispatcher.execute(command)

        assert result.ok, result.message
        (request,) = sent_requests(transport)
        assert request.command_type is command_type
        assert request.request_type is RequestType.CALLBACK
        assert request.target == OtherTarget((param, 0.0, 0.0, 0.0, 0.0, 0.0))
        assert result.command_id == request.command_id

    @pytest.mark.asyncio
    async def test_rejected_control_command(self, dispatcher, transport):
        transport.ack_result = 1
        await connected(dispatcher)
        result = await dispatcher.execute("enable")
        assert not result.ok
        assert "not accepted" in result.message

    @pytest.mark.asyncio
    async def test_missing_ack(self, dispatcher, transport):
        transport.ack_result = None
        await connected(dispatcher)
        result = await dispatcher.execute("enable")
        assert not result.ok

    @pytest.mark.asyncio
    async def test_command_ids_increment(self, dispatcher, transport):
        await connected(dispatcher)
        await dispatcher.execute("enable")
        await dispatcher.execute("stop")
        assert [r.command_id for r in sent_requests(transport)] == [1, 2]


class TestEmergencyStop:
    @pytest.mark.asyncio
    async def test_connected(self, dispatcher, transport):
        await connected(dispatcher)
        result = await dispatcher.execute("emergency_stop")

        assert result.ok
        (request,) = sent_requests(transport)
        assert request.command_type is CommandType.SET_STOP_EXECUTION
        assert request.request_type is RequestType.NON_CALLBACK
        assert request.target.params[0] == 1.0

    @pytest.mark.asyncio
    async def test_disconnected_still_attempts_send(self, dispatcher, transport):
        result = await dispatcher.execute("emergency_stop")

        assert result.error_type != "NotConnectedError"
        assert result.ok
        (request,) = sent_requests(transport)
        assert request.command_type is CommandType.SET_STOP_EXECUTION
        assert transport.dealer.endpoint == "tcp://127.0.0.1:5556"
        assert transport.dealer.closed
        assert dispatcher.client.status is ConnectionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_after_link_lost_uses_open_channel(self, make_client, transport):
        transport.telemetry = [TIMEOUT]
        client = make_client(max_consecutive_timeouts=1)
        dispatcher = CommandDispatcher(client)
        await client.connect()
        await client._rx_task
        assert client.status is ConnectionStatus.ERROR

        assert (await dispatcher.execute("enable")).error_type == "NotConnectedError"
        result = await dispatcher.execute("emergency_stop")

        assert result.ok
        assert len(transport.of_kind(zmq.DEALER)) == 1
        assert len(transport.dealer.sent) == 1

    @pytest.mark.asyncio
    async def test_unreachable_controller(self, dispatcher, transport):
        transport.discovery = [TIMEOUT]
        result = await dispatcher.execute("emergency_stop")

        assert not result.ok
        assert result.error_type != "NotConnectedError"
        assert len(transport.of_kind(zmq.REQ)) == 1


class TestMotionCommands:
    @pytest.mark.asyncio
    async def test_move_to_joint_target(self, dispatcher, transport):
        await connected(dispatcher)
        result = await dispatcher.execute("move_to_target", [90, 0, -45, 0, 0, 180])

        assert result.ok
        (request,) = sent_requests(transport)
        assert request.command_type is CommandType.BASIC_MOVE
        assert request.request_type is RequestType.NON_CALLBACK
        assert isinstance(request.target, JointPositionTarget)
        assert request.target.positions == pytest.approx(
            (math.pi / 2, 0, -math.pi / 4, 0, 0, math.pi)
        )

    @pytest.mark.asyncio
    async def test_move_to_pose_target(self, dispatcher, transport):
        await connected(dispatcher)
        pose = {"x": 150, "y": -200, "z": 350, "roll": 180, "pitch": 0, "yaw": 90}
        result = await dispatcher.execute("move_to_target", pose)

        assert result.ok
        (request,) = sent_requests(transport)
        assert isinstance(request.target, CartesianPoseTarget)
        assert request.target.position == pytest.approx((0.15, -0.2, 0.35))
        assert request.target.orientation == pytest.approx((math.pi, 0, math.pi / 2))

    @pytest.mark.asyncio
    async def test_home_uses_stored_pose(self, dispatcher, transport):
        await connected(dispatcher)
        result = await dispatcher.execute("home")

        assert result.ok
        (request,) = sent_requests(transport)
        assert request.target.position == pytest.approx((0.0, 0.0, 0.4))

    @pytest.mark.asyncio
    async def test_home_with_explicit_pose(self, dispatcher, transport):
        await connected(dispatcher)
        await dispatcher.execute("home", {"x": 100, "y": 0, "z": 300, "roll": 0, "pitch": 0, "yaw": 0})
        (request,) = sent_requests(transport)
        assert request.target.position == pytest.approx((0.1, 0.0, 0.3))

    @pytest.mark.asyncio
    async def test_home_with_joint_angles(self, dispatcher, transport):
        await connected(dispatcher)
        result = await dispatcher.execute("home", [0, 0, 0, 0, 0, 0])

        assert result.ok, result.message
        (request,) = sent_requests(transport)
        assert isinstance(request.target, JointPositionTarget)
        assert request.target.positions == (0.0,) * 6

    @pytest.mark.asyncio
    async def test_home_rejects_bad_shape(self, dispatcher):
        await connected(dispatcher)
        result = await dispatcher.execute("home", "somewhere")
        assert result.error_type == "InvalidParametersError"


class TestHomePose:
    @pytest.mark.asyncio
    async def test_save_then_home(self, dispatcher, transport):
        await connected(dispatcher)
        saved = {"x": 10, "y": 20, "z": 30, "roll": 0, "pitch": 90, "yaw": 0}

        result = await dispatcher.execute("save_home_position", saved)
        assert result.ok
        assert sent_requests(transport) == []
        assert dispatcher.home_pose.z == 30

        await dispatcher.execute("home")
        (request,) = sent_requests(transport)
        assert request.target.position == pytest.approx((0.01, 0.02, 0.03))

    @pytest.mark.asyncio
    async def test_reset_home(self, dispatcher):
        await connected(dispatcher)
        await dispatcher.execute("save_home_position", {"x": 1, "y": 2, "z": 3, "roll": 0, "pitch": 0, "yaw": 0})

        result = await dispatcher.execute("reset_home_position")

        assert result.ok
        assert '"z": 400.0' in result.message
        assert dispatcher.home_pose.as_tuple() == tuple(float(v) for v in HOME_DEFAULT.values())

    @pytest.mark.asyncio
    async def test_save_requires_pose(self, dispatcher):
        await connected(dispatcher)
        result = await dispatcher.execute("save_home_position")
        assert result.error_type == "InvalidParametersError"
