"""
Central configuration for armlink tunables and shared constants.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace

import numpy as np
from numpy.typing import ArrayLike, NDArray

TRACE: int = 5
logging.addLevelName(TRACE, "TRACE")
# Add Logger.trace if missing
if not hasattr(logging.Logger, "trace"):

    def _trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    logging.Logger.trace = _trace  # type: ignore[attr-defined]
    logging.TRACE = TRACE  # type: ignore[attr-defined]

TRACE_ENABLED = str(os.getenv("ARMLINK_TRACE", "0")).lower() in ("1", "true", "yes", "on")

logger = logging.getLogger(__name__)

# Rendezvous defaults (overridable by env or per-connect overrides)
DEFAULT_HOST: str = os.getenv("ARMLINK_HOST", "localhost")
DEFAULT_PORT: int = int(os.getenv("ARMLINK_PORT", "5555"))

# Receive loop deadlines
MESSAGE_TIMEOUT_MS: int = int(os.getenv("ARMLINK_MESSAGE_TIMEOUT_MS", "10000"))
MAX_CONSECUTIVE_TIMEOUTS: int = int(os.getenv("ARMLINK_MAX_TIMEOUTS", "3"))

# Literal token sent to the rendezvous REP socket
DISCOVERY_TOKEN: bytes = os.getenv("ARMLINK_DISCOVERY_TOKEN", "NETWORK_INFO").encode(
    "ascii"
)

# Bounded wait for a BASIC_RESPONSE on callback requests
ACK_TIMEOUT_MS: int = int(os.getenv("ARMLINK_ACK_TIMEOUT_MS", "1000"))

# Motion threshold on native velocities (rad/s, m/s)
MOVING_EPSILON: float = 1e-3

# Mock controller defaults
MOCK_BIND_HOST: str = os.getenv("ARMLINK_MOCK_HOST", "127.0.0.1")
MOCK_RATE_HZ: float = float(os.getenv("ARMLINK_MOCK_RATE_HZ", "50"))

LOG_LEVEL_DEFAULT: str = "INFO"

# Home pose (mm, deg) used by "home" when no pose is supplied
DEFAULT_HOME_POSE: dict[str, float] = {
    "x": 0.0,
    "y": 0.0,
    "z": 400.0,
    "roll": 0.0,
    "pitch": 0.0,
    "yaw": 0.0,
}


def _env_bool_optional(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    s = raw.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return None


@dataclass(slots=True)
class ConnectionConfig:
    """Parameters for one connection attempt.

    The client copies this at connect time, so mutating an instance afterwards
    does not affect an active link.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    topic: str | None = None
    message_timeout_ms: int = MESSAGE_TIMEOUT_MS
    max_consecutive_timeouts: int = MAX_CONSECUTIVE_TIMEOUTS

    @property
    def rendezvous(self) -> str:
        return f"tcp://{self.host}:{self.port}"

    def merged(self, **overrides) -> ConnectionConfig:
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


# =============================================================================
# Unit conversions between collaborator units (mm, deg) and wire units (m, rad)
# =============================================================================

M_TO_MM: float = 1000.0
RAD_TO_DEG: float = 180.0 / np.pi


def m_to_mm(m: ArrayLike) -> NDArray[np.float64]:
    """Convert meters to millimeters."""
    return np.asarray(m, dtype=np.float64) * M_TO_MM


def mm_to_m(mm: ArrayLike) -> NDArray[np.float64]:
    """Convert millimeters to meters."""
    return np.asarray(mm, dtype=np.float64) / M_TO_MM


def rad_to_deg(rad: ArrayLike) -> NDArray[np.float64]:
    """Convert radians (or rad/s) to degrees (or deg/s)."""
    return np.asarray(rad, dtype=np.float64) * RAD_TO_DEG


def deg_to_rad(deg: ArrayLike) -> NDArray[np.float64]:
    """Convert degrees (or deg/s) to radians (or rad/s)."""
    return np.asarray(deg, dtype=np.float64) / RAD_TO_DEG
