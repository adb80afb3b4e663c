"""
Named-command front end over :class:`AsyncArmClient`.

Collaborators (UIs, assistant tooling) issue commands by name with loosely
typed data; every outcome comes back as a :class:`CommandResult`, so caller
misuse never raises and never shows up as a link event.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any

import msgspec

from .. import config as cfg
from ..protocol.types import CommandResult, ConnectionStatus, RobotPose
from ..utils.errors import (
    AlreadyConnectedError,
    ArmLinkError,
    CommandError,
    InvalidParametersError,
    NotConnectedError,
    UnknownCommandError,
)
from .async_client import AsyncArmClient

logger = logging.getLogger(__name__)


class ConnectParams(msgspec.Struct):
    ipAddress: Annotated[str, msgspec.Meta(min_length=1)]
    port: Annotated[int, msgspec.Meta(ge=1, le=65535)]
    topic: str | None = None


class PoseParams(msgspec.Struct):
    """Cartesian pose in mm and degrees."""

    x: float
    y: float
    z: float
    roll: float
    pitch: float
    yaw: float

    def to_pose(self) -> RobotPose:
        return RobotPose(self.x, self.y, self.z, self.roll, self.pitch, self.yaw)


JointParams = Annotated[list[float], msgspec.Meta(min_length=6, max_length=6)]


def _convert(data: Any, type_: Any, what: str) -> Any:
    try:
        return msgspec.convert(data, type_, strict=False)
    except msgspec.ValidationError as e:
        raise InvalidParametersError(f"Invalid {what}: {e}") from e


def _pose_params(data: Any) -> PoseParams:
    return _convert(data, PoseParams, "pose (x, y, z, roll, pitch, yaw)")


def _fmt(obj: Any) -> str:
    return json.dumps(msgspec.to_builtins(obj))


Handler = Callable[[Any], Awaitable[CommandResult]]


class CommandDispatcher:
    """Maps command names to client operations.

    Commands: connect, disconnect, reconnect, enable, disable, home,
    move_to_target, stop, emergency_stop, reset, save_home_position,
    reset_home_position.
    """

    # Commands accepted outside the CONNECTED state
    UNGATED = frozenset({"connect", "disconnect", "reconnect", "emergency_stop"})

    def __init__(self, client: AsyncArmClient) -> None:
        self.client = client
        self._home = PoseParams(**cfg.DEFAULT_HOME_POSE)
        self._handlers: dict[str, Handler] = {
            "connect": self._connect,
            "disconnect": self._disconnect,
            "reconnect": self._reconnect,
            "enable": self._enable,
            "disable": self._disable,
            "home": self._go_home,
            "move_to_target": self._move_to_target,
            "stop": self._stop,
            "emergency_stop": self._emergency_stop,
            "reset": self._reset,
            "save_home_position": self._save_home,
            "reset_home_position": self._reset_home,
        }

    @property
    def commands(self) -> frozenset[str]:
        return frozenset(self._handlers)

    @property
    def home_pose(self) -> RobotPose:
        return self._home.to_pose()

    async def execute(self, command: str, data: Any = None) -> CommandResult:
        """Run one named command.

        Args:
            command: Command name
            data: Command-specific payload (dict or list), may be None

        Returns:
            CommandResult with ``ok`` False and ``error_type`` set on failure.
        """
        try:
            handler = self._handlers.get(command)
            if handler is None:
                raise UnknownCommandError(command)
            if command not in self.UNGATED and not self.client.connected:
                raise NotConnectedError()
            return await handler(data)
        except CommandError as e:
            logger.warning(f"Command {command} rejected: {e}")
            return CommandResult(command, False, str(e), type(e).__name__)
        except ArmLinkError as e:
            logger.error(f"Command {command} failed: {e}")
            return CommandResult(
                command, False, f"Command {command} failed: {e}", type(e).__name__
            )

    def _sent(self, command: str, delivered: bool, message: str) -> CommandResult:
        cid = self.client.last_command_id
        if delivered:
            return CommandResult(command, True, message, command_id=cid)
        return CommandResult(
            command, False, f"Command {command} was not accepted by the controller", command_id=cid
        )

    # --------------- Link ---------------

    async def _connect(self, data: Any) -> CommandResult:
        if not data:
            raise InvalidParametersError("Missing connection parameters (ipAddress, port)")
        params = _convert(data, ConnectParams, "connection parameters (ipAddress, port)")
        requested = f"{params.ipAddress}:{params.port}"

        status = self.client.status
        if status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            active = self.client.config
            current = f"{active.host}:{active.port}"
            if current != requested:
                raise AlreadyConnectedError(
                    f"Robot arm link to {current} is {status.value}; disconnect before connecting to {requested}"
                )
            if status is ConnectionStatus.CONNECTING:
                return CommandResult(
                    "connect", False, f"Connection to robot arm at {current} is already in progress"
                )
            return CommandResult("connect", True, f"Already connected to robot arm at {current}")

        logger.info(f"Connecting to robot arm at {requested}")
        await self.client.connect(host=params.ipAddress, port=params.port, topic=params.topic)
        if not self.client.connected:
            # disconnect() ran while the handshake was in flight
            return CommandResult("connect", False, f"Connection to robot arm at {requested} was cancelled")
        active = self.client.config
        return CommandResult("connect", True, f"Connected to robot arm at {active.host}:{active.port}")

    async def _disconnect(self, data: Any) -> CommandResult:
        logger.info("Disconnecting from robot arm")
        await self.client.disconnect()
        return CommandResult("disconnect", True, "Disconnected from robot arm")

    async def _reconnect(self, data: Any) -> CommandResult:
        logger.info("Reconnecting to robot arm")
        await self.client.reconnect()
        return CommandResult("reconnect", True, "Reconnected to robot arm")

    # --------------- Control ---------------

    async def _enable(self, data: Any) -> CommandResult:
        return self._sent("enable", await self.client.enable(), "Robot arm enabled")

    async def _disable(self, data: Any) -> CommandResult:
        return self._sent("disable", await self.client.disable(), "Robot arm disabled")

    async def _reset(self, data: Any) -> CommandResult:
        return self._sent("reset", await self.client.reset(), "Robot arm reset")

    async def _stop(self, data: Any) -> CommandResult:
        return self._sent("stop", await self.client.stop(), "Robot arm stopped")

    async def _emergency_stop(self, data: Any) -> CommandResult:
        logger.warning("Emergency stop activated")
        delivered = await self.client.emergency_stop()
        if not delivered:
            return CommandResult(
                "emergency_stop",
                False,
                "Emergency stop could not be delivered",
                command_id=self.client.last_command_id,
            )
        return self._sent("emergency_stop", True, "Emergency stop activated")

    # --------------- Motion ---------------

    async def _move(self, command: str, data: Any) -> tuple[bool, str]:
        """Send a joint (6-sequence) or pose (mapping) target; returns (delivered, text)."""
        match data:
            case list() | tuple():
                joints = _convert(data, JointParams, "joint target (6 angles in degrees)")
                return await self.client.move_joints(joints), json.dumps(joints)
            case dict():
                pose = _pose_params(data)
                return await self.client.move_pose(pose.to_pose()), _fmt(pose)
            case _:
                raise InvalidParametersError(
                    f"{command} expects 6 joint angles or a pose (x, y, z, roll, pitch, yaw)"
                )

    async def _go_home(self, data: Any) -> CommandResult:
        delivered, target = await self._move("home", data if data else msgspec.to_builtins(self._home))
        logger.info(f"Moving to home position: {target}")
        return self._sent("home", delivered, f"Moving to home position: {target}")

    async def _move_to_target(self, data: Any) -> CommandResult:
        delivered, target = await self._move("move_to_target", data)
        logger.info(f"Moving to target position: {target}")
        return self._sent("move_to_target", delivered, f"Moving to target position: {target}")

    # --------------- Home pose (in memory only) ---------------

    async def _save_home(self, data: Any) -> CommandResult:
        if not data:
            raise InvalidParametersError("Missing home pose (x, y, z, roll, pitch, yaw)")
        self._home = _pose_params(data)
        logger.info(f"Home position saved: {_fmt(self._home)}")
        return CommandResult("save_home_position", True, f"Home position saved: {_fmt(self._home)}")

    async def _reset_home(self, data: Any) -> CommandResult:
        self._home = PoseParams(**cfg.DEFAULT_HOME_POSE)
        logger.info("Resetting home position to default")
        return CommandResult(
            "reset_home_position",
            True,
            f"Home position reset to default: {_fmt(self._home)}",
        )
