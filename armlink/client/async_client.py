"""
Async ZeroMQ client for a 6-axis robot arm controller.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import replace

import zmq
import zmq.asyncio

from .. import config as cfg
from ..ack_policy import AckPolicy
from ..config import ConnectionConfig
from ..protocol.types import ConnectionStatus, RobotArmState, RobotPose
from ..protocol.wire import (
    COMMAND_ID_MAX,
    CartesianPoseTarget,
    CartesianVelocityTarget,
    CommandRequest,
    CommandType,
    ControlMode,
    JointPositionTarget,
    JointTorqueTarget,
    JointVelocityTarget,
    MoveTarget,
    NetworkInfo,
    OtherTarget,
    RequestType,
    StopMode,
    decode_basic_response,
    decode_frame,
    encode_command_request,
)
from ..utils.errors import (
    ArmLinkError,
    ConnectError,
    DecodeError,
    LinkLostError,
    MessageTimeoutError,
    NotConnectedError,
)
from .discovery import discover
from .events import (
    Connected,
    Disconnected,
    EventHub,
    LinkError,
    StateUpdate,
    StatusChanged,
)
from .transport import ZmqTransport

logger = logging.getLogger(__name__)


def _six(values: Sequence[float], what: str) -> tuple[float, ...]:
    if len(values) != 6:
        raise ValueError(f"{what} requires 6 values, got {len(values)}")
    return tuple(float(v) for v in values)


class AsyncArmClient:
    """
    Async client owning one link to the controller.

    Discovery: one-shot REQ/REP against the rendezvous endpoint
    Telemetry: SUB socket drained by a single background receive task
    Commands: DEALER socket, fire-and-forget or acknowledged per AckPolicy

    Events (state updates, errors, connection status) are published on
    :attr:`events`.
    """

    def __init__(
        self,
        config: ConnectionConfig | None = None,
        *,
        transport: ZmqTransport | None = None,
        ack_policy: AckPolicy | None = None,
        discovery_token: bytes = cfg.DISCOVERY_TOKEN,
        ack_timeout_ms: int = cfg.ACK_TIMEOUT_MS,
    ) -> None:
        self._config = replace(config) if config is not None else ConnectionConfig()
        self._transport = transport or ZmqTransport()
        self._ack_policy = ack_policy or AckPolicy.from_env()
        self._discovery_token = discovery_token
        self._ack_timeout_ms = ack_timeout_ms

        self.events = EventHub()

        # Lifecycle
        self._status = ConnectionStatus.DISCONNECTED
        self._last_error: str | None = None
        # Observed by the receive loop after every wait
        self._connected = False

        # Link resources, owned exclusively by this instance
        self._endpoints: NetworkInfo | None = None
        self._dealer: zmq.asyncio.Socket | None = None
        self._sub: zmq.asyncio.Socket | None = None
        self._rx_task: asyncio.Task | None = None

        # Serialize acknowledged request/response exchanges on the dealer
        self._req_lock = asyncio.Lock()
        self._next_command_id = 1
        self._last_command_id: int | None = None

        self._latest_state: RobotArmState | None = None

    # --------------- Properties ---------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def connected(self) -> bool:
        return self._status is ConnectionStatus.CONNECTED

    @property
    def connecting(self) -> bool:
        return self._status is ConnectionStatus.CONNECTING

    @property
    def config(self) -> ConnectionConfig:
        """Copy of the stored configuration."""
        return replace(self._config)

    @property
    def endpoints(self) -> NetworkInfo | None:
        """Endpoints resolved by the most recent successful discovery."""
        return self._endpoints

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def last_command_id(self) -> int | None:
        """Id assigned to the most recently sent request."""
        return self._last_command_id

    @property
    def latest_state(self) -> RobotArmState | None:
        return self._latest_state

    def update_config(self, **overrides) -> None:
        """Update the stored configuration; takes effect on the next connect."""
        self._config = self._config.merged(**overrides)

    # --------------- Internal helpers ---------------

    def _set_status(self, status: ConnectionStatus, error: str | None = None) -> None:
        self._status = status
        self.events.emit(StatusChanged(status, error))

    def _has_resources(self) -> bool:
        return (
            self._dealer is not None
            or self._sub is not None
            or (self._rx_task is not None and not self._rx_task.done())
        )

    def _close_sockets(self) -> None:
        for sock in (self._sub, self._dealer):
            if sock is not None:
                with contextlib.suppress(zmq.ZMQError):
                    sock.close(linger=0)
        self._sub = None
        self._dealer = None

    async def _stop_receive_loop(self) -> None:
        task, self._rx_task = self._rx_task, None
        if task is None or task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _release(self) -> None:
        self._connected = False
        await self._stop_receive_loop()
        self._close_sockets()

    def _report_failure(self, error: ArmLinkError) -> None:
        self._last_error = str(error)
        self._status = ConnectionStatus.ERROR
        self.events.emit(LinkError(error))
        self._set_status(ConnectionStatus.ERROR, str(error))

    # --------------- Lifecycle ---------------

    async def connect(self, config: ConnectionConfig | None = None, **overrides) -> None:
        """Discover the controller endpoints and open the link.

        Returns immediately if already connecting or connected.

        Args:
            config: Replaces the stored configuration when given
            **overrides: Partial updates applied on top (host, port, topic, ...)

        Raises:
            ConnectError: If discovery or socket setup failed. The failure is
                also emitted as LinkError and StatusChanged(ERROR) events and
                the client is left DISCONNECTED.
        """
        if self._status in (ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED):
            logger.info("Already connecting or connected")
            return

        # Leftovers from a lost link
        if self._has_resources():
            await self._release()

        if config is not None:
            self._config = replace(config)
        if overrides:
            self._config = self._config.merged(**overrides)
        active = replace(self._config)

        self._last_error = None
        self._set_status(ConnectionStatus.CONNECTING)
        logger.info(f"Connecting to {active.rendezvous}")

        try:
            info = await discover(
                self._transport,
                active.rendezvous,
                token=self._discovery_token,
                timeout_ms=active.message_timeout_ms,
            )
            if self._status is not ConnectionStatus.CONNECTING:
                # disconnect() ran while the handshake was in flight
                logger.info("Connect to %s abandoned", active.rendezvous)
                return
            self._dealer = self._transport.dealer_socket(info.dealer.uri)
            self._sub = self._transport.subscriber_socket(info.sub.uri, active.topic or "")
        except (ConnectError, zmq.ZMQError) as e:
            error = e if isinstance(e, ConnectError) else ConnectError(f"Socket setup failed: {e}")
            self._close_sockets()
            if self._status is not ConnectionStatus.CONNECTING:
                return
            logger.error(f"Failed to connect to {active.rendezvous}: {error}")
            self._report_failure(error)
            # Ready for a caller-driven retry
            self._status = ConnectionStatus.DISCONNECTED
            if error is e:
                raise
            raise error from e

        self._endpoints = info
        self._connected = True
        self.events.emit(Connected())
        self._set_status(ConnectionStatus.CONNECTED)
        self._rx_task = asyncio.create_task(
            self._receive_loop(self._sub, active), name="armlink-rx"
        )
        logger.info(f"Connected to {active.rendezvous}")

    async def disconnect(self) -> None:
        """Stop the receive loop, close all sockets and report DISCONNECTED.

        Safe to call multiple times.
        """
        if self._status is ConnectionStatus.DISCONNECTED and not self._has_resources():
            return
        logger.info("Disconnecting...")
        await self._release()
        self.events.emit(Disconnected())
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def reconnect(self) -> None:
        """Disconnect, then connect again with the stored configuration."""
        await self.disconnect()
        await self.connect()

    async def close(self) -> None:
        """Disconnect and end all event consumers.

        Safe to call multiple times.
        """
        await self.disconnect()
        self.events.close()

    async def __aenter__(self) -> "AsyncArmClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # --------------- Receive loop ---------------

    async def _wait_frame(self, sub: zmq.asyncio.Socket, timeout_ms: int) -> bytes:
        if not await sub.poll(timeout_ms, zmq.POLLIN):
            raise MessageTimeoutError(f"No telemetry within {timeout_ms} ms")
        parts = await sub.recv_multipart()
        # Topic-prefixed publishers send [topic, payload]
        return parts[-1]

    async def _receive_loop(self, sub: zmq.asyncio.Socket, config: ConnectionConfig) -> None:
        """Pull telemetry frames until disconnected or the link is lost."""
        timeouts = 0
        limit = config.max_consecutive_timeouts
        while self._connected:
            try:
                frame = await self._wait_frame(sub, config.message_timeout_ms)
            except MessageTimeoutError as e:
                if not self._connected:
                    return
                timeouts += 1
                logger.warning(f"{e} ({timeouts}/{limit})")
                if timeouts >= limit:
                    self._connected = False
                    self._report_failure(
                        LinkLostError(
                            f"Connection appears lost: {timeouts} consecutive "
                            f"telemetry timeouts of {config.message_timeout_ms} ms"
                        )
                    )
                    return
                continue
            except zmq.ZMQError as e:
                if not self._connected:
                    return
                self._connected = False
                self._report_failure(LinkLostError(f"Telemetry receive failed: {e}"))
                return

            if not self._connected:
                return
            timeouts = 0

            try:
                state = decode_frame(frame)
            except DecodeError as e:
                logger.warning(f"Dropping malformed telemetry frame: {e}")
                continue

            self._latest_state = state
            self.events.emit(StateUpdate(state))

    async def state_stream(self) -> AsyncIterator[RobotArmState]:
        """Async generator yielding decoded states in arrival order.

        Usage:
            async for state in client.state_stream():
                print(state.joint_positions)

        Terminates when :meth:`close` is called. Stop early through
        ``contextlib.aclosing`` so the event buffer is released.
        """
        async for event in self.events.stream():
            if isinstance(event, StateUpdate):
                yield event.state

    # --------------- Command path ---------------

    def _allocate_command_id(self) -> int:
        cid = self._next_command_id
        self._next_command_id = 1 if cid >= COMMAND_ID_MAX else cid + 1
        return cid

    def build_request(
        self,
        command_type: CommandType,
        target: MoveTarget | None = None,
        *,
        safety_critical: bool = False,
    ) -> CommandRequest:
        """Assign a command id and request type to a new request."""
        return CommandRequest(
            request_type=self._ack_policy.request_type(
                command_type, safety_critical=safety_critical
            ),
            command_id=self._allocate_command_id(),
            command_type=command_type,
            target=target if target is not None else OtherTarget(),
        )

    async def send_request(
        self, request: CommandRequest, *, allow_disconnected: bool = False
    ) -> bool:
        """
        Encode and send a request on the dealer socket.

        - NON_CALLBACK: fire-and-forget, True once handed to the transport
        - CALLBACK: wait for the matching BASIC_RESPONSE, True if accepted

        Args:
            request: Request to send
            allow_disconnected: Attempt delivery outside the CONNECTED state
                (reserved for the emergency stop path)

        Raises:
            NotConnectedError: If not connected and ``allow_disconnected`` is False.
        """
        if not allow_disconnected and self._status is not ConnectionStatus.CONNECTED:
            raise NotConnectedError()

        data = encode_command_request(request)
        dealer = self._dealer
        if dealer is None:
            return await self._send_transient(request, data)

        try:
            if request.request_type is RequestType.CALLBACK:
                return await self._request_ack(dealer, request.command_id, data)
            await dealer.send(data)
            return True
        except zmq.ZMQError as e:
            logger.error(f"Failed to send command {request.command_id}: {e}")
            return False

    async def _send_transient(self, request: CommandRequest, data: bytes) -> bool:
        """Deliver over a short-lived dealer outside an active connection.

        Uses the last discovered endpoint, or runs a discovery bounded by the
        ack timeout against the stored configuration if none is known.
        """
        if self._endpoints is None:
            try:
                self._endpoints = await discover(
                    self._transport,
                    self._config.rendezvous,
                    token=self._discovery_token,
                    timeout_ms=self._ack_timeout_ms,
                )
            except ConnectError as e:
                logger.error(
                    f"{request.command_type.name} request {request.command_id} "
                    f"not delivered: {e}"
                )
                return False
        uri = self._endpoints.dealer.uri
        logger.warning(f"Sending {request.command_type.name} over a transient channel to {uri}")
        try:
            sock = self._transport.dealer_socket(uri)
        except zmq.ZMQError as e:
            logger.error(f"Cannot open transient command channel to {uri}: {e}")
            return False
        try:
            await sock.send(data)
            return True
        except zmq.ZMQError as e:
            logger.error(f"Failed to send command {request.command_id}: {e}")
            return False
        finally:
            # Give the queued frame a chance to leave before the socket goes away
            sock.close(linger=self._ack_timeout_ms)

    async def _request_ack(self, dealer: zmq.asyncio.Socket, command_id: int, data: bytes) -> bool:
        """Send pre-encoded request bytes and wait for its BASIC_RESPONSE."""
        end_time = time.monotonic() + self._ack_timeout_ms / 1000.0
        async with self._req_lock:
            await dealer.send(data)
            while (remaining := end_time - time.monotonic()) > 0:
                if not await dealer.poll(int(remaining * 1000), zmq.POLLIN):
                    break
                reply = await dealer.recv()
                try:
                    resp = decode_basic_response(reply)
                except DecodeError as e:
                    logger.debug(f"Ignoring non-response frame on dealer: {e}")
                    continue
                if resp.command_id != command_id:
                    logger.debug(f"Ignoring stale response for command {resp.command_id}")
                    continue
                if not resp.accepted:
                    logger.warning(f"Command {command_id} rejected (result={resp.result})")
                return resp.accepted
        logger.warning(f"Command {command_id} not acknowledged within {self._ack_timeout_ms} ms")
        return False

    async def _send(
        self,
        command_type: CommandType,
        target: MoveTarget | None = None,
        *,
        safety_critical: bool = False,
    ) -> bool:
        request = self.build_request(command_type, target, safety_critical=safety_critical)
        self._last_command_id = request.command_id
        logger.debug(
            f"-> {command_type.name} id={request.command_id} "
            f"move={request.move_type.name} {request.request_type.name}"
        )
        return await self.send_request(request, allow_disconnected=safety_critical)

    @staticmethod
    def _param(value: int) -> OtherTarget:
        return OtherTarget((float(value), 0.0, 0.0, 0.0, 0.0, 0.0))

    # --------------- Motion / Control ---------------

    async def enable(self) -> bool:
        """Enable the controller, allowing motion commands."""
        return await self._send(CommandType.CONTROL_MODE, self._param(ControlMode.ENABLED))

    async def disable(self) -> bool:
        """Disable the controller."""
        return await self._send(CommandType.CONTROL_MODE, self._param(ControlMode.DISABLED))

    async def reset(self) -> bool:
        """Clear controller faults and return it to its initial mode."""
        return await self._send(CommandType.CONTROL_MODE, self._param(ControlMode.RESET))

    async def stop(self) -> bool:
        """Stop the current motion."""
        return await self._send(CommandType.SET_STOP_EXECUTION, self._param(StopMode.NORMAL))

    async def emergency_stop(self) -> bool:
        """Emergency stop. Attempted in every lifecycle state, never acknowledged.

        Returns:
            True if the request was handed to a transport.
        """
        return await self._send(
            CommandType.SET_STOP_EXECUTION,
            self._param(StopMode.EMERGENCY),
            safety_critical=True,
        )

    async def move_joints(self, angles_deg: Sequence[float]) -> bool:
        """Move to joint angles given in degrees [J1..J6]."""
        q = cfg.deg_to_rad(_six(angles_deg, "move_joints"))
        return await self._send(
            CommandType.BASIC_MOVE, JointPositionTarget(tuple(q.tolist()))
        )

    async def move_pose(self, pose: RobotPose | Sequence[float]) -> bool:
        """Move to a Cartesian pose [x, y, z, roll, pitch, yaw] in mm and degrees."""
        values = pose.as_tuple() if isinstance(pose, RobotPose) else _six(pose, "move_pose")
        xyz = cfg.mm_to_m(values[:3])
        rpy = cfg.deg_to_rad(values[3:])
        return await self._send(
            CommandType.BASIC_MOVE,
            CartesianPoseTarget(tuple(xyz.tolist()), tuple(rpy.tolist())),
        )

    async def move_joint_velocities(self, speeds_deg_s: Sequence[float]) -> bool:
        """Command joint velocities in deg/s."""
        qd = cfg.deg_to_rad(_six(speeds_deg_s, "move_joint_velocities"))
        return await self._send(
            CommandType.BASIC_MOVE, JointVelocityTarget(tuple(qd.tolist()))
        )

    async def move_cartesian_velocity(self, twist: Sequence[float]) -> bool:
        """Command a Cartesian velocity [vx, vy, vz] mm/s and [wx, wy, wz] deg/s."""
        values = _six(twist, "move_cartesian_velocity")
        linear = cfg.mm_to_m(values[:3])
        angular = cfg.deg_to_rad(values[3:])
        return await self._send(
            CommandType.BASIC_MOVE,
            CartesianVelocityTarget(tuple(linear.tolist()), tuple(angular.tolist())),
        )

    async def set_joint_torques(self, torques_nm: Sequence[float]) -> bool:
        """Command joint torques in N*m."""
        return await self._send(
            CommandType.BASIC_MOVE,
            JointTorqueTarget(_six(torques_nm, "set_joint_torques")),  # type: ignore[arg-type]
        )
