"""Exception taxonomy for the robot link."""


class ArmLinkError(Exception):
    """Base class for every error raised by armlink."""


# Wire data


class DecodeError(ArmLinkError, ValueError):
    """Malformed or truncated wire data. Always recoverable."""


class TruncatedFrame(DecodeError):
    """Fewer bytes than the fixed layout requires."""

    def __init__(self, what: str, expected: int, actual: int) -> None:
        super().__init__(f"{what} needs at least {expected} bytes, got {actual}")
        self.expected = expected
        self.actual = actual


class UnknownMoveType(DecodeError):
    """Move type discriminant outside the known variants."""

    def __init__(self, value: int) -> None:
        super().__init__(f"Unknown move type discriminant: {value}")
        self.value = value


# Link


class ConnectError(ArmLinkError):
    """Discovery handshake or socket setup failed."""


class MessageTimeoutError(ArmLinkError, TimeoutError):
    """A single receive wait exceeded its deadline."""


class LinkLostError(ArmLinkError):
    """The telemetry stream stopped; the caller must reconnect."""


# Caller misuse


class CommandError(ArmLinkError):
    """A command request was rejected before anything was sent."""


class UnknownCommandError(CommandError):
    def __init__(self, command: str) -> None:
        super().__init__(f"Unknown command: {command}")
        self.command = command


class InvalidParametersError(CommandError):
    pass


class NotConnectedError(CommandError):
    def __init__(self, message: str = "Robot arm is not connected") -> None:
        super().__init__(message)


class AlreadyConnectedError(CommandError):
    """A link to a different controller is already open or opening."""
