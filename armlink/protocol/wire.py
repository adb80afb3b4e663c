"""
Wire protocol for the robot controller link.

This module contains all protocol definitions:
- Endpoint descriptors returned by the rendezvous (discovery) socket
- Command header and fixed-size command requests sent on the DEALER socket
- Basic response (acknowledgement) frames received on the DEALER socket
- Telemetry frames received on the SUB socket

All multi-byte fields are little-endian. Layouts:
- ENDPOINT:  [a, b, c, d: u8][port: u16]                                  (6 bytes)
- NETINFO:   [dealer: ENDPOINT][sub: ENDPOINT]                            (12 bytes)
- HEADER:    [request_type: u8][command_id: u32][command_type: u16]       (7 bytes)
- REQUEST:   [HEADER][move_type: u8][target union, zero padded to 240]   (248 bytes)
             joint targets sit 4 bytes into the union, Cartesian ones at 0
- RESPONSE:  [HEADER][result: u8]                                         (8 bytes)
- TELEMETRY: [HEADER][30 doubles: q, qd, tau, pose, twist]                (>= 247 bytes)
"""

import ipaddress
import logging
import struct
from enum import IntEnum
from typing import NamedTuple, TypeAlias, Union

import msgspec
import numpy as np

from armlink import config as cfg
from armlink.protocol.types import RobotArmState, RobotPose
from armlink.utils.errors import DecodeError, TruncatedFrame, UnknownMoveType

logger = logging.getLogger(__name__)


# =============================================================================
# Enumerations
# =============================================================================


class RequestType(IntEnum):
    """Whether the controller should answer a request with a BASIC_RESPONSE."""

    CALLBACK = 0
    NON_CALLBACK = 1


class CommandType(IntEnum):
    """Command type codes carried in every header."""

    TEST_MESSAGE = 0
    BASIC_MOVE = 1
    ARM_STATE_MSG = 2
    BASIC_SYNC_WAIT = 3
    BASIC_RESPONSE = 4
    CONTROL_MODE = 5
    SET_END_EFFECTOR_LOAD_WEIGHT = 6
    SET_END_EFFECTOR_LOAD_POSE = 7
    SET_STOP_EXECUTION = 8
    SET_COLLISION_DETECTION = 9
    UNKNOWN = 10


class MoveType(IntEnum):
    """Discriminant selecting the move-target variant of a request."""

    JOINT_POSITION = 0
    JOINT_VELOCITY = 1
    JOINT_TORQUE = 2
    CARTESIAN_POSE = 3
    CARTESIAN_VELOCITY = 4
    OTHER = 5


class ControlMode(IntEnum):
    """First parameter of a CONTROL_MODE request."""

    DISABLED = 0
    ENABLED = 1
    RESET = 2


class StopMode(IntEnum):
    """First parameter of a SET_STOP_EXECUTION request."""

    NORMAL = 0
    EMERGENCY = 1


# =============================================================================
# Endpoint descriptors (discovery reply)
# =============================================================================

_ENDPOINT = struct.Struct("<4BH")
ENDPOINT_SIZE = _ENDPOINT.size  # 6
NETWORK_INFO_SIZE = 2 * ENDPOINT_SIZE  # 12


class Endpoint(msgspec.Struct, frozen=True):
    """IPv4 address and TCP port of one controller socket."""

    a: int
    b: int
    c: int
    d: int
    port: int

    @property
    def host(self) -> str:
        return f"{self.a}.{self.b}.{self.c}.{self.d}"

    @property
    def uri(self) -> str:
        return f"tcp://{self.host}:{self.port}"

    @classmethod
    def from_host(cls, host: str, port: int) -> "Endpoint":
        """Build from a dotted-quad string."""
        a, b, c, d = ipaddress.IPv4Address(host).packed
        return cls(a, b, c, d, port)


class NetworkInfo(NamedTuple):
    """Dealer and subscriber endpoints, in wire order."""

    dealer: Endpoint
    sub: Endpoint


def decode_endpoint(data: bytes, offset: int = 0) -> Endpoint:
    """Decode one 6-byte endpoint descriptor starting at ``offset``.

    Raises:
        TruncatedFrame: If fewer than 6 bytes are available.
    """
    if len(data) - offset < ENDPOINT_SIZE:
        raise TruncatedFrame("endpoint descriptor", offset + ENDPOINT_SIZE, len(data))
    a, b, c, d, port = _ENDPOINT.unpack_from(data, offset)
    return Endpoint(a, b, c, d, port)


def encode_endpoint(endpoint: Endpoint) -> bytes:
    return _ENDPOINT.pack(endpoint.a, endpoint.b, endpoint.c, endpoint.d, endpoint.port)


def decode_network_info(data: bytes) -> NetworkInfo:
    """Decode a discovery reply: dealer descriptor first, then subscriber."""
    if len(data) < NETWORK_INFO_SIZE:
        raise TruncatedFrame("discovery reply", NETWORK_INFO_SIZE, len(data))
    if len(data) > NETWORK_INFO_SIZE:
        logger.debug(
            "Discovery reply has %d trailing bytes", len(data) - NETWORK_INFO_SIZE
        )
    return NetworkInfo(
        dealer=decode_endpoint(data, 0),
        sub=decode_endpoint(data, ENDPOINT_SIZE),
    )


def encode_network_info(info: NetworkInfo) -> bytes:
    return encode_endpoint(info.dealer) + encode_endpoint(info.sub)


# =============================================================================
# Command header
# =============================================================================

_HEADER = struct.Struct("<BIH")
HEADER_SIZE = _HEADER.size  # 7

COMMAND_ID_MAX = 0xFFFFFFFF


class CommandHeader(NamedTuple):
    request_type: RequestType
    command_id: int
    command_type: CommandType


def _request_type(value: int) -> RequestType:
    try:
        return RequestType(value)
    except ValueError:
        raise DecodeError(f"Unknown request type: {value}") from None


def _command_type(value: int) -> CommandType:
    try:
        return CommandType(value)
    except ValueError:
        raise DecodeError(f"Unknown command type: {value}") from None


def decode_command_header(data: bytes, offset: int = 0) -> CommandHeader:
    """Decode the 7-byte header shared by requests, responses and telemetry."""
    if len(data) - offset < HEADER_SIZE:
        raise TruncatedFrame("command header", offset + HEADER_SIZE, len(data))
    rt, cid, ct = _HEADER.unpack_from(data, offset)
    return CommandHeader(_request_type(rt), cid, _command_type(ct))


def encode_command_header(header: CommandHeader) -> bytes:
    return _HEADER.pack(header.request_type, header.command_id, header.command_type)


# =============================================================================
# Move targets - Tagged union, one struct per MoveType
# Every variant carries exactly six doubles in wire units (m, rad).
# =============================================================================

Six: TypeAlias = tuple[float, float, float, float, float, float]
Three: TypeAlias = tuple[float, float, float]

_ZERO6: Six = (0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


class JointPositionTarget(
    msgspec.Struct, tag=int(MoveType.JOINT_POSITION), array_like=True, frozen=True
):
    """JOINT_POSITION: joint angles in radians."""

    positions: Six

    def values(self) -> Six:
        return self.positions

    @classmethod
    def from_values(cls, values: Six) -> "JointPositionTarget":
        return cls(tuple(values))  # type: ignore[arg-type]


class JointVelocityTarget(
    msgspec.Struct, tag=int(MoveType.JOINT_VELOCITY), array_like=True, frozen=True
):
    """JOINT_VELOCITY: joint rates in rad/s."""

    velocities: Six

    def values(self) -> Six:
        return self.velocities

    @classmethod
    def from_values(cls, values: Six) -> "JointVelocityTarget":
        return cls(tuple(values))  # type: ignore[arg-type]


class JointTorqueTarget(
    msgspec.Struct, tag=int(MoveType.JOINT_TORQUE), array_like=True, frozen=True
):
    """JOINT_TORQUE: joint torques in N*m."""

    torques: Six

    def values(self) -> Six:
        return self.torques

    @classmethod
    def from_values(cls, values: Six) -> "JointTorqueTarget":
        return cls(tuple(values))  # type: ignore[arg-type]


class CartesianPoseTarget(
    msgspec.Struct, tag=int(MoveType.CARTESIAN_POSE), array_like=True, frozen=True
):
    """CARTESIAN_POSE: position (m) then roll/pitch/yaw (rad)."""

    position: Three
    orientation: Three

    def values(self) -> Six:
        return self.position + self.orientation

    @classmethod
    def from_values(cls, values: Six) -> "CartesianPoseTarget":
        return cls(tuple(values[:3]), tuple(values[3:]))  # type: ignore[arg-type]


class CartesianVelocityTarget(
    msgspec.Struct, tag=int(MoveType.CARTESIAN_VELOCITY), array_like=True, frozen=True
):
    """CARTESIAN_VELOCITY: linear (m/s) then angular (rad/s) velocity."""

    linear: Three
    angular: Three

    def values(self) -> Six:
        return self.linear + self.angular

    @classmethod
    def from_values(cls, values: Six) -> "CartesianVelocityTarget":
        return cls(tuple(values[:3]), tuple(values[3:]))  # type: ignore[arg-type]


class OtherTarget(
    msgspec.Struct, tag=int(MoveType.OTHER), array_like=True, frozen=True
):
    """OTHER: generic parameter block for non-motion commands."""

    params: Six = _ZERO6

    def values(self) -> Six:
        return self.params

    @classmethod
    def from_values(cls, values: Six) -> "OtherTarget":
        return cls(tuple(values))  # type: ignore[arg-type]


# =============================================================================
# Auto-generated MoveTarget union and STRUCT_TO_MOVETYPE
# =============================================================================


def _collect_target_structs() -> list[type]:
    """Collect all move-target struct classes from this module."""
    import sys

    module = sys.modules[__name__]
    structs = []
    for name, cls in vars(module).items():
        if not name.endswith("Target"):
            continue
        if not isinstance(cls, type):
            continue
        if not issubclass(cls, msgspec.Struct):
            continue
        config = getattr(cls, "__struct_config__", None)
        if config is not None and config.tag is not None:
            structs.append(cls)
    return structs


def _build_struct_to_movetype(structs: list[type]) -> dict[type, MoveType]:
    """Auto-generate struct -> MoveType mapping from tagged structs."""
    mapping: dict[type, MoveType] = {}
    for struct_cls in structs:
        tag = struct_cls.__struct_config__.tag  # type: ignore[attr-defined]
        mapping[struct_cls] = MoveType(tag)
    return mapping


_TARGET_STRUCTS = _collect_target_structs()
STRUCT_TO_MOVETYPE: dict[type, MoveType] = _build_struct_to_movetype(_TARGET_STRUCTS)

MoveTarget: TypeAlias = Union[tuple(_TARGET_STRUCTS)]  # type: ignore[valid-type]


# =============================================================================
# Command requests
# =============================================================================

_REQUEST_PREFIX = struct.Struct("<BIHB")
_SLOT = struct.Struct("<6d")

MOVE_SLOT_SIZE = _SLOT.size  # 48
MOVE_SLOT_COUNT = 5
PAYLOAD_SIZE = MOVE_SLOT_SIZE * MOVE_SLOT_COUNT  # 240
REQUEST_SIZE = _REQUEST_PREFIX.size + PAYLOAD_SIZE  # 248

# Every variant shares the payload start; joint variants are shifted by 4 bytes.
_JOINT_PAD = 4
_TARGET_PAD: dict[MoveType, int] = {
    MoveType.JOINT_POSITION: _JOINT_PAD,
    MoveType.JOINT_VELOCITY: _JOINT_PAD,
    MoveType.JOINT_TORQUE: _JOINT_PAD,
    MoveType.CARTESIAN_POSE: 0,
    MoveType.CARTESIAN_VELOCITY: 0,
    MoveType.OTHER: 0,
}


class CommandRequest(msgspec.Struct, frozen=True):
    """One outbound request; the move type follows from the target variant."""

    request_type: RequestType
    command_id: int
    command_type: CommandType
    target: MoveTarget = msgspec.field(default_factory=OtherTarget)

    @property
    def move_type(self) -> MoveType:
        return STRUCT_TO_MOVETYPE[type(self.target)]

    @property
    def header(self) -> CommandHeader:
        return CommandHeader(self.request_type, self.command_id, self.command_type)


def target_offset(move_type: MoveType) -> int:
    """Byte offset of the six target doubles inside a request."""
    return _REQUEST_PREFIX.size + _TARGET_PAD[move_type]


def encode_command_request(request: CommandRequest) -> bytes:
    """Encode a request into its fixed 248-byte wire form.

    The payload is a union: the selected variant is written right after the
    move type byte and the remaining bytes stay zero.
    """
    move_type = request.move_type
    buf = bytearray(REQUEST_SIZE)
    _REQUEST_PREFIX.pack_into(
        buf,
        0,
        request.request_type,
        request.command_id,
        request.command_type,
        move_type,
    )
    _SLOT.pack_into(buf, target_offset(move_type), *request.target.values())
    return bytes(buf)


def _decode_target(move_type: int, data: bytes) -> MoveTarget:
    match move_type:
        case MoveType.JOINT_POSITION:
            cls: type = JointPositionTarget
        case MoveType.JOINT_VELOCITY:
            cls = JointVelocityTarget
        case MoveType.JOINT_TORQUE:
            cls = JointTorqueTarget
        case MoveType.CARTESIAN_POSE:
            cls = CartesianPoseTarget
        case MoveType.CARTESIAN_VELOCITY:
            cls = CartesianVelocityTarget
        case MoveType.OTHER:
            cls = OtherTarget
        case _:
            raise UnknownMoveType(move_type)
    values = _SLOT.unpack_from(data, target_offset(MoveType(move_type)))
    return cls.from_values(values)


def decode_command_request(data: bytes) -> CommandRequest:
    """Decode a 248-byte request.

    Raises:
        TruncatedFrame: If fewer than 248 bytes are present.
        UnknownMoveType: If the discriminant is not a known MoveType.
        DecodeError: If the request or command type is unknown.
    """
    if len(data) < REQUEST_SIZE:
        raise TruncatedFrame("command request", REQUEST_SIZE, len(data))
    rt, cid, ct, mt = _REQUEST_PREFIX.unpack_from(data, 0)
    target = _decode_target(mt, data)
    return CommandRequest(
        request_type=_request_type(rt),
        command_id=cid,
        command_type=_command_type(ct),
        target=target,
    )


# =============================================================================
# Basic response (acknowledgement)
# =============================================================================

_RESPONSE = struct.Struct("<BIHB")
RESPONSE_SIZE = _RESPONSE.size  # 8

RESULT_ACCEPTED = 0


class BasicResponse(NamedTuple):
    command_id: int
    result: int

    @property
    def accepted(self) -> bool:
        return self.result == RESULT_ACCEPTED


def encode_basic_response(command_id: int, result: int = RESULT_ACCEPTED) -> bytes:
    return _RESPONSE.pack(
        RequestType.NON_CALLBACK, command_id, CommandType.BASIC_RESPONSE, result
    )


def decode_basic_response(data: bytes) -> BasicResponse:
    if len(data) < RESPONSE_SIZE:
        raise TruncatedFrame("basic response", RESPONSE_SIZE, len(data))
    header = decode_command_header(data)
    if header.command_type is not CommandType.BASIC_RESPONSE:
        raise DecodeError(f"Expected BASIC_RESPONSE, got {header.command_type.name}")
    return BasicResponse(header.command_id, data[HEADER_SIZE])


# =============================================================================
# Telemetry frames
# =============================================================================

FRAME_HEADER_SIZE = HEADER_SIZE
FRAME_DOUBLES = 30
FRAME_SIZE = FRAME_HEADER_SIZE + FRAME_DOUBLES * 8  # 247

_F64LE = np.dtype("<f8")

TELEMETRY_HEADER = CommandHeader(RequestType.NON_CALLBACK, 0, CommandType.ARM_STATE_MSG)


def decode_frame(data: bytes) -> RobotArmState:
    """Decode one telemetry frame into a normalized RobotArmState.

    The header is skipped. Trailing bytes beyond the 30 doubles are ignored.
    Receiving a frame is itself evidence of liveness, so ``connected`` is
    always True and ``error`` always None.

    Raises:
        TruncatedFrame: If fewer than 247 bytes are present.
    """
    if len(data) < FRAME_SIZE:
        raise TruncatedFrame("telemetry frame", FRAME_SIZE, len(data))

    raw = np.frombuffer(
        data, dtype=_F64LE, count=FRAME_DOUBLES, offset=FRAME_HEADER_SIZE
    ).reshape(5, 6)
    q, qd, tau, pose, twist = raw

    eps = cfg.MOVING_EPSILON
    moving = bool(np.any(np.abs(qd) > eps) or np.any(np.abs(twist) > eps))

    xyz = cfg.m_to_mm(pose[:3])
    rpy = cfg.rad_to_deg(pose[3:])

    return RobotArmState(
        connected=True,
        enabled=True,
        moving=moving,
        error=None,
        current_pose=RobotPose(*xyz.tolist(), *rpy.tolist()),
        joint_positions=tuple(cfg.rad_to_deg(q).tolist()),
        joint_velocities=tuple(cfg.rad_to_deg(qd).tolist()),
        joint_torques=tuple(tau.tolist()),
    )


def encode_frame(
    joint_positions=_ZERO6,
    joint_velocities=_ZERO6,
    joint_torques=_ZERO6,
    cartesian_pose=_ZERO6,
    cartesian_velocity=_ZERO6,
    header: CommandHeader = TELEMETRY_HEADER,
) -> bytes:
    """Pack a telemetry frame from native (m, rad) values."""
    body = np.concatenate(
        [
            np.asarray(joint_positions, dtype=_F64LE),
            np.asarray(joint_velocities, dtype=_F64LE),
            np.asarray(joint_torques, dtype=_F64LE),
            np.asarray(cartesian_pose, dtype=_F64LE),
            np.asarray(cartesian_velocity, dtype=_F64LE),
        ]
    )
    if body.size != FRAME_DOUBLES:
        raise ValueError(f"Telemetry body must hold {FRAME_DOUBLES} values, got {body.size}")
    return encode_command_header(header) + body.tobytes()
