"""
Type definitions for the robot link protocol.

Defines enums and dataclasses used across the public API.
"""

from dataclasses import dataclass
from enum import Enum


class ConnectionStatus(Enum):
    """Connection lifecycle states as reported to collaborators."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class RobotPose:
    """Cartesian pose in millimeters and degrees."""

    x: float
    y: float
    z: float
    roll: float
    pitch: float
    yaw: float

    def as_tuple(self) -> tuple[float, float, float, float, float, float]:
        return (self.x, self.y, self.z, self.roll, self.pitch, self.yaw)


@dataclass(slots=True, frozen=True)
class RobotArmState:
    """Decoded, unit-normalized controller state.

    Built only by ``decode_frame``. Angles are degrees, rates degrees per
    second, linear pose millimeters, torques newton-meters.
    """

    connected: bool
    enabled: bool
    moving: bool
    error: str | None
    current_pose: RobotPose
    joint_positions: tuple[float, ...]
    joint_velocities: tuple[float, ...]
    joint_torques: tuple[float, ...]


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Outcome of one dispatched command."""

    command: str
    ok: bool
    message: str
    error_type: str | None = None
    command_id: int | None = None
