"""
Synchronous facade for AsyncArmClient.

- In sync code: use ArmClient and call methods directly.
- In async code (event loop running): use AsyncArmClient and `await` the methods.
"""

import asyncio
import atexit
import contextlib
import threading
from collections.abc import Callable, Coroutine, Sequence
from typing import Any, TypeVar

from ..config import ConnectionConfig
from ..protocol.types import CommandResult, ConnectionStatus, RobotArmState, RobotPose
from .async_client import AsyncArmClient
from .dispatcher import CommandDispatcher
from .events import LinkEvent

T = TypeVar("T")


# Persistent background event loop for sync wrapper
_SYNC_LOOP: asyncio.AbstractEventLoop | None = None
_SYNC_THREAD: threading.Thread | None = None
_SYNC_LOOP_READY = threading.Event()


def _loop_worker(loop: asyncio.AbstractEventLoop) -> None:
    asyncio.set_event_loop(loop)
    _SYNC_LOOP_READY.set()
    loop.run_forever()


def _stop_sync_loop() -> None:
    global _SYNC_LOOP, _SYNC_THREAD
    if _SYNC_LOOP is not None:
        with contextlib.suppress(RuntimeError):
            _SYNC_LOOP.call_soon_threadsafe(_SYNC_LOOP.stop)
        _SYNC_LOOP = None
        _SYNC_THREAD = None


def _ensure_sync_loop() -> None:
    """Start a persistent background event loop if not started yet."""
    global _SYNC_LOOP, _SYNC_THREAD
    if _SYNC_LOOP is None:
        _SYNC_LOOP_READY.clear()
        _SYNC_LOOP = asyncio.new_event_loop()
        _SYNC_THREAD = threading.Thread(
            target=_loop_worker,
            args=(_SYNC_LOOP,),
            name="armlink-sync-loop",
            daemon=True,
        )
        _SYNC_THREAD.start()
        _SYNC_LOOP_READY.wait(timeout=1.0)
        atexit.register(_stop_sync_loop)


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run an async coroutine to completion using a persistent background event loop.
    If a loop is already running in this thread, raise to avoid deadlocks.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop in this thread -> submit to persistent loop
        _ensure_sync_loop()
        assert _SYNC_LOOP is not None
        fut = asyncio.run_coroutine_threadsafe(coro, _SYNC_LOOP)
        return fut.result()
    # A loop is running in this thread; blocking would be unsafe.
    coro.close()
    raise RuntimeError(
        "ArmClient was used while an event loop is running.\n"
        "Use AsyncArmClient and `await` the method instead."
    )


class ArmClient:
    """
    Synchronous wrapper around AsyncArmClient.
    All methods return concrete results (never coroutines).

    Event listeners registered with :meth:`add_listener` run on the background
    loop thread.

        with ArmClient(ConnectionConfig(host="10.0.0.2")) as arm:
            arm.connect()
            arm.enable()
            arm.move_joints([0, -30, 45, 0, 60, 0])
    """

    # ---------- lifecycle ----------

    def __init__(self, config: ConnectionConfig | None = None, **kwargs) -> None:
        self._inner = AsyncArmClient(config, **kwargs)
        self._dispatcher = CommandDispatcher(self._inner)

    def connect(self, config: ConnectionConfig | None = None, **overrides) -> None:
        _run(self._inner.connect(config, **overrides))

    def disconnect(self) -> None:
        _run(self._inner.disconnect())

    def reconnect(self) -> None:
        _run(self._inner.reconnect())

    def close(self) -> None:
        """Close underlying AsyncArmClient and release resources."""
        _run(self._inner.close())

    def __enter__(self) -> "ArmClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def async_client(self) -> AsyncArmClient:
        """Access the underlying async client if you need it."""
        return self._inner

    @property
    def status(self) -> ConnectionStatus:
        return self._inner.status

    @property
    def connected(self) -> bool:
        return self._inner.connected

    @property
    def last_error(self) -> str | None:
        return self._inner.last_error

    @property
    def latest_state(self) -> RobotArmState | None:
        return self._inner.latest_state

    def add_listener(self, listener: Callable[[LinkEvent], None]) -> Callable[[], None]:
        return self._inner.events.add_listener(listener)

    # ---------- commands ----------

    def execute(self, command: str, data: Any = None) -> CommandResult:
        """Run a named command, see :class:`CommandDispatcher`."""
        return _run(self._dispatcher.execute(command, data))

    def enable(self) -> bool:
        return _run(self._inner.enable())

    def disable(self) -> bool:
        return _run(self._inner.disable())

    def reset(self) -> bool:
        return _run(self._inner.reset())

    def stop(self) -> bool:
        return _run(self._inner.stop())

    def emergency_stop(self) -> bool:
        return _run(self._inner.emergency_stop())

    def move_joints(self, angles_deg: Sequence[float]) -> bool:
        """Move to joint angles in degrees."""
        return _run(self._inner.move_joints(angles_deg))

    def move_pose(self, pose: RobotPose | Sequence[float]) -> bool:
        """Move to a Cartesian pose in mm and degrees."""
        return _run(self._inner.move_pose(pose))

    def move_joint_velocities(self, speeds_deg_s: Sequence[float]) -> bool:
        return _run(self._inner.move_joint_velocities(speeds_deg_s))

    def move_cartesian_velocity(self, twist: Sequence[float]) -> bool:
        return _run(self._inner.move_cartesian_velocity(twist))

    def set_joint_torques(self, torques_nm: Sequence[float]) -> bool:
        return _run(self._inner.set_joint_torques(torques_nm))
