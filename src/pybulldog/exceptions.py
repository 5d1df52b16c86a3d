"""Custom exception hierarchy for pybulldog."""

from __future__ import annotations


class BulldogError(Exception):
    """Base exception for all pybulldog errors."""


class BulldogConfigError(BulldogError):
    """Invalid or missing configuration."""


class DecodeError(BulldogError):
    """Payload could not be decoded, not even heuristically.

    The ingestion path logs these and skips the message; state is never
    mutated by an undecodable payload.
    """

    def __init__(self, message: str, *, channel: str = "", topic: str = "") -> None:
        self.channel = channel
        self.topic = topic
        super().__init__(message)


class StaleUpdateError(BulldogError):
    """Patch is older than the last update applied for its channel.

    Raised and handled inside the state store; callers only ever observe
    a ``False`` "nothing changed" result.
    """

    def __init__(self, message: str, *, robot_id: str = "", channel: str = "") -> None:
        self.robot_id = robot_id
        self.channel = channel
        super().__init__(message)


class TransportError(BulldogError):
    """MQTT-level failure (socket, refused CONNACK, timeout, publish)."""

    def __init__(
        self,
        message: str,
        *,
        host: str = "",
        reason_code: int | None = None,
    ) -> None:
        self.host = host
        self.reason_code = reason_code
        super().__init__(message)


class CommandError(BulldogError):
    """Base for failures surfaced to command callers."""

    def __init__(self, message: str, *, robot_id: str = "", command_type: str = "") -> None:
        self.robot_id = robot_id
        self.command_type = command_type
        super().__init__(message)


class NotConnectedError(CommandError):
    """Transport is not connected; the command was not sent.

    Commands are never queued. The caller decides whether to retry.
    """


class CommandRejectedError(CommandError):
    """Robot's last known state does not allow this command."""


class CommandPublishError(CommandError):
    """The broker client refused to publish the encoded command."""
