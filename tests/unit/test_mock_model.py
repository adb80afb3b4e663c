"""Tests for the MockController command handling and motion model (no sockets)."""

import numpy as np
import pytest

from armlink.protocol.wire import (
    CartesianVelocityTarget,
    CommandRequest,
    CommandType,
    JointPositionTarget,
    OtherTarget,
    RequestType,
    decode_frame,
)
from armlink.server.mock_controller import RESULT_REJECTED, MockController


def control(command_type, value, cid=1):
    return CommandRequest(
        RequestType.CALLBACK, cid, command_type, OtherTarget((float(value), 0, 0, 0, 0, 0))
    )


def move(target, cid=1):
    return CommandRequest(RequestType.NON_CALLBACK, cid, CommandType.BASIC_MOVE, target)


class TestApply:
    def test_motion_rejected_until_enabled(self):
        mock = MockController()
        target = JointPositionTarget((0.1, 0, 0, 0, 0, 0))
        assert mock.apply(move(target)) == RESULT_REJECTED
        assert mock.apply(control(CommandType.CONTROL_MODE, 1)) == 0
        assert mock.apply(move(target)) == 0

    def test_emergency_stop_latches_until_reset(self):
        mock = MockController()
        mock.apply(control(CommandType.CONTROL_MODE, 1))
        mock.apply(control(CommandType.SET_STOP_EXECUTION, 1))
        assert mock.estopped and not mock.enabled
        assert mock.apply(control(CommandType.CONTROL_MODE, 1)) == RESULT_REJECTED
        mock.apply(control(CommandType.CONTROL_MODE, 2))
        assert mock.apply(control(CommandType.CONTROL_MODE, 1)) == 0

    def test_unsupported_command(self):
        assert MockController().apply(control(CommandType.TEST_MESSAGE, 0)) == RESULT_REJECTED


class TestStep:
    def test_joint_target_is_approached_at_speed_limit(self):
        mock = MockController(joint_speed=1.0)
        mock.enabled = True
        mock.apply(move(JointPositionTarget((0.5, 0, 0, 0, 0, 0))))

        mock.step(0.1)
        assert mock.q[0] == pytest.approx(0.1)
        assert mock.qd[0] == pytest.approx(1.0)

        for _ in range(10):
            mock.step(0.1)
        assert mock.q[0] == pytest.approx(0.5)
        assert mock.qd[0] == pytest.approx(0.0, abs=1e-9)

    def test_cartesian_velocity_integrates_pose(self):
        mock = MockController()
        mock.enabled = True
        mock.apply(move(CartesianVelocityTarget((0.1, 0, 0), (0, 0, 0))))
        mock.step(0.5)
        assert mock.pose[0] == pytest.approx(0.05)

        state = decode_frame(mock.frame())
        assert state.moving
        assert state.current_pose.x == pytest.approx(50.0)

    def test_stop_halts_motion(self):
        mock = MockController()
        mock.enabled = True
        mock.apply(move(JointPositionTarget((1.0, 0, 0, 0, 0, 0))))
        mock.step(0.1)
        mock.apply(control(CommandType.SET_STOP_EXECUTION, 0))
        mock.step(0.1)
        assert np.all(mock.qd == 0)
        assert not decode_frame(mock.frame()).moving
