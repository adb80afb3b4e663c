from armlink import config as cfg
from armlink.protocol.wire import CommandType, RequestType

# Control command types (always request a BASIC_RESPONSE)
CONTROL_CMD_TYPES: set[CommandType] = {
    CommandType.CONTROL_MODE,
    CommandType.SET_STOP_EXECUTION,
    CommandType.SET_END_EFFECTOR_LOAD_WEIGHT,
    CommandType.SET_END_EFFECTOR_LOAD_POSE,
    CommandType.SET_COLLISION_DETECTION,
}


class AckPolicy:
    """
    Centralized heuristic for deciding if a request should be acknowledged.

    Rules:
    - Safety-critical requests are never acknowledged, so nothing waits on them.
    - If force_ack is set, it overrides everything else.
    - Control commands always require ack.
    - Motion and other commands: ACKs only when forced.
    """

    def __init__(self, force_ack: bool | None = None) -> None:
        self._force_ack = force_ack

    @staticmethod
    def from_env() -> "AckPolicy":
        return AckPolicy(force_ack=cfg._env_bool_optional("ARMLINK_FORCE_ACK"))

    def requires_ack(self, cmd_type: CommandType, *, safety_critical: bool = False) -> bool:
        """Check if a command type should be sent as a CALLBACK request."""
        if safety_critical:
            return False

        # Forced override (e.g., diagnostics)
        if self._force_ack is not None:
            return bool(self._force_ack)

        if cmd_type in CONTROL_CMD_TYPES:
            return True

        # Motion and other commands: ACKs only when forced
        return False

    def request_type(self, cmd_type: CommandType, *, safety_critical: bool = False) -> RequestType:
        if self.requires_ack(cmd_type, safety_critical=safety_critical):
            return RequestType.CALLBACK
        return RequestType.NON_CALLBACK
