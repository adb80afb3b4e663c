"""
In-process stand-in for the arm controller.

Speaks the controller side of the wire protocol over real ZeroMQ sockets so the
client can be exercised end to end without hardware.
"""

import asyncio
import contextlib
import logging
import time

import numpy as np
import zmq
import zmq.asyncio

from armlink import config as cfg
from armlink.client.transport import get_global_context
from armlink.protocol.wire import (
    CartesianPoseTarget,
    CartesianVelocityTarget,
    CommandRequest,
    CommandType,
    ControlMode,
    Endpoint,
    JointPositionTarget,
    JointTorqueTarget,
    JointVelocityTarget,
    NetworkInfo,
    OtherTarget,
    RequestType,
    StopMode,
    decode_command_request,
    encode_basic_response,
    encode_frame,
    encode_network_info,
)
from armlink.utils.errors import DecodeError

logger = logging.getLogger(__name__)

RESULT_REJECTED = 1


class MockController:
    """
    Simulated controller with a trivial motion model.

    Sockets (all bound on ``host``, port 0 picks a free one):
      - REP    rendezvous: answers the discovery token with both endpoints
      - ROUTER commands: records every request, answers CALLBACK ones
      - PUB    telemetry: one frame every 1/rate_hz seconds

    Motion commands are accepted only while enabled and not emergency-stopped.
    Joint targets are approached at ``joint_speed`` rad/s, pose targets at
    ``linear_speed`` m/s and ``angular_speed`` rad/s.
    """

    def __init__(
        self,
        host: str = cfg.MOCK_BIND_HOST,
        port: int = 0,
        *,
        command_port: int = 0,
        telemetry_port: int = 0,
        rate_hz: float = cfg.MOCK_RATE_HZ,
        topic: str | None = None,
        token: bytes = cfg.DISCOVERY_TOKEN,
        joint_speed: float = 1.0,
        linear_speed: float = 0.1,
        angular_speed: float = 1.0,
        context: zmq.asyncio.Context | None = None,
    ) -> None:
        self.host = host
        self.rate_hz = rate_hz
        self.topic = topic
        self.token = token
        self.joint_speed = joint_speed
        self.linear_speed = linear_speed
        self.angular_speed = angular_speed
        self._ports = [port, command_port, telemetry_port]
        self._context = context

        # Test hooks
        self.publishing = True
        self.answer_discovery = True
        self.requests: list[CommandRequest] = []
        self._request_event = asyncio.Event()

        # Simulated robot
        self.enabled = False
        self.estopped = False
        self.q = np.zeros(6)
        self.qd = np.zeros(6)
        self.tau = np.zeros(6)
        self.pose = np.array([0.0, 0.0, 0.4, 0.0, 0.0, 0.0])
        self.twist = np.zeros(6)
        self._q_target = self.q.copy()
        self._pose_target = self.pose.copy()
        self._qd_cmd: np.ndarray | None = None
        self._twist_cmd: np.ndarray | None = None

        self._rep: zmq.asyncio.Socket | None = None
        self._router: zmq.asyncio.Socket | None = None
        self._pub: zmq.asyncio.Socket | None = None
        self._tasks: list[asyncio.Task] = []

    # --------------- Endpoints ---------------

    @property
    def port(self) -> int:
        return self._ports[0]

    @property
    def command_port(self) -> int:
        return self._ports[1]

    @property
    def telemetry_port(self) -> int:
        return self._ports[2]

    @property
    def network_info(self) -> NetworkInfo:
        return NetworkInfo(
            dealer=Endpoint.from_host(self.host, self.command_port),
            sub=Endpoint.from_host(self.host, self.telemetry_port),
        )

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def _bind(self, kind: int, index: int) -> zmq.asyncio.Socket:
        ctx = self._context or get_global_context()
        sock = ctx.socket(kind)
        sock.setsockopt(zmq.LINGER, 0)
        addr = f"tcp://{self.host}"
        if self._ports[index]:
            sock.bind(f"{addr}:{self._ports[index]}")
        else:
            self._ports[index] = sock.bind_to_random_port(addr)
        return sock

    # --------------- Lifecycle ---------------

    async def start(self) -> None:
        if self.running:
            return
        self._rep = self._bind(zmq.REP, 0)
        self._router = self._bind(zmq.ROUTER, 1)
        self._pub = self._bind(zmq.PUB, 2)
        logger.info(
            f"MockController rendezvous=tcp://{self.host}:{self.port} "
            f"commands={self.command_port} telemetry={self.telemetry_port}"
        )
        self._tasks = [
            asyncio.create_task(self._serve_discovery(), name="mock-discovery"),
            asyncio.create_task(self._serve_commands(), name="mock-commands"),
            asyncio.create_task(self._publish_loop(), name="mock-telemetry"),
        ]

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        for sock in (self._rep, self._router, self._pub):
            if sock is not None:
                sock.close(linger=0)
        self._rep = self._router = self._pub = None
        logger.info("MockController stopped")

    async def __aenter__(self) -> "MockController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def wait_for_requests(self, count: int, timeout: float = 2.0) -> list[CommandRequest]:
        """Block until at least ``count`` requests have been recorded."""
        deadline = time.monotonic() + timeout
        while len(self.requests) < count:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"Received {len(self.requests)} of {count} requests")
            self._request_event.clear()
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._request_event.wait(), remaining)
        return list(self.requests)

    # --------------- Discovery ---------------

    async def _serve_discovery(self) -> None:
        assert self._rep is not None
        reply = encode_network_info(self.network_info)
        while True:
            request = await self._rep.recv()
            if request != self.token:
                logger.warning(f"Unexpected discovery token {request!r}")
            if not self.answer_discovery:
                # REP must answer before it can receive again; stay silent instead
                logger.debug("Discovery request left unanswered")
                await asyncio.Event().wait()
            await self._rep.send(reply)

    # --------------- Commands ---------------

    async def _serve_commands(self) -> None:
        assert self._router is not None
        while True:
            frames = await self._router.recv_multipart()
            identity, payload = frames[0], frames[-1]
            try:
                request = decode_command_request(payload)
            except DecodeError as e:
                logger.warning(f"Dropping malformed command: {e}")
                continue
            self.requests.append(request)
            self._request_event.set()
            result = self.apply(request)
            if request.request_type is RequestType.CALLBACK:
                await self._router.send_multipart(
                    [identity, encode_basic_response(request.command_id, result)]
                )

    def _halt(self) -> None:
        self._q_target = self.q.copy()
        self._pose_target = self.pose.copy()
        self._qd_cmd = None
        self._twist_cmd = None

    def apply(self, request: CommandRequest) -> int:
        """Apply one request to the simulated robot; returns the result code."""
        logger.debug(
            f"<- {request.command_type.name} id={request.command_id} {request.target}"
        )
        target = request.target
        match request.command_type:
            case CommandType.CONTROL_MODE if isinstance(target, OtherTarget):
                mode = int(target.params[0])
                if mode == ControlMode.ENABLED:
                    if self.estopped:
                        return RESULT_REJECTED
                    self.enabled = True
                elif mode == ControlMode.DISABLED:
                    self.enabled = False
                    self._halt()
                elif mode == ControlMode.RESET:
                    self.enabled = False
                    self.estopped = False
                    self._halt()
                else:
                    return RESULT_REJECTED
            case CommandType.SET_STOP_EXECUTION if isinstance(target, OtherTarget):
                if int(target.params[0]) == StopMode.EMERGENCY:
                    self.estopped = True
                    self.enabled = False
                self._halt()
            case CommandType.BASIC_MOVE:
                if not self.enabled or self.estopped:
                    return RESULT_REJECTED
                self._apply_move(target)
            case _:
                return RESULT_REJECTED
        return 0

    def _apply_move(self, target) -> None:
        match target:
            case JointPositionTarget(positions=q):
                self._halt()
                self._q_target = np.asarray(q, dtype=np.float64)
            case JointVelocityTarget(velocities=qd):
                self._halt()
                self._qd_cmd = np.asarray(qd, dtype=np.float64)
            case JointTorqueTarget(torques=tau):
                self.tau = np.asarray(tau, dtype=np.float64)
            case CartesianPoseTarget():
                self._halt()
                self._pose_target = np.asarray(target.values(), dtype=np.float64)
            case CartesianVelocityTarget():
                self._halt()
                self._twist_cmd = np.asarray(target.values(), dtype=np.float64)

    # --------------- Telemetry ---------------

    def step(self, dt: float) -> None:
        """Advance the motion model by ``dt`` seconds."""
        if self._qd_cmd is not None:
            self.qd = self._qd_cmd.copy()
            self.q = self.q + self.qd * dt
        else:
            delta = np.clip(
                self._q_target - self.q, -self.joint_speed * dt, self.joint_speed * dt
            )
            self.q = self.q + delta
            self.qd = delta / dt

        if self._twist_cmd is not None:
            self.twist = self._twist_cmd.copy()
            self.pose = self.pose + self.twist * dt
        else:
            limit = np.repeat([self.linear_speed * dt, self.angular_speed * dt], 3)
            delta = np.clip(self._pose_target - self.pose, -limit, limit)
            self.pose = self.pose + delta
            self.twist = delta / dt

    def frame(self) -> bytes:
        return encode_frame(self.q, self.qd, self.tau, self.pose, self.twist)

    async def _publish_loop(self) -> None:
        assert self._pub is not None
        period = 1.0 / self.rate_hz
        topic = self.topic.encode() if self.topic else None
        while True:
            await asyncio.sleep(period)
            self.step(period)
            if not self.publishing:
                continue
            frame = self.frame()
            if topic is None:
                await self._pub.send(frame)
            else:
                await self._pub.send_multipart([topic, frame])
