"""
armlink Python Package

Client library for 6-axis robot arm controllers reachable over a ZeroMQ message
bus: endpoint discovery, binary telemetry decoding and command dispatch.

Key components:
- AsyncArmClient: Async client owning the connection lifecycle and receive loop
- ArmClient: Sync wrapper with automatic event loop handling
- CommandDispatcher: Named-command front end returning CommandResult values
- MockController: In-process controller stand-in for development and tests
"""

from ._version import __version__
from .client.async_client import AsyncArmClient
from .client.dispatcher import CommandDispatcher
from .client.sync_client import ArmClient
from .config import ConnectionConfig
from .protocol.types import CommandResult, ConnectionStatus, RobotArmState, RobotPose

__all__ = [
    "__version__",
    "AsyncArmClient",
    "ArmClient",
    "CommandDispatcher",
    "ConnectionConfig",
    "ConnectionStatus",
    "CommandResult",
    "RobotArmState",
    "RobotPose",
]
