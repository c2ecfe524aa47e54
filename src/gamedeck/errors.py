"""Error taxonomy for gamedeck.

Fatal errors (``ConfigurationError``, ``LaunchError``) unwind to the CLI
boundary after cleanup has run. ``IntegrationError`` and its subclasses are
absorbed at the managed application boundary and only surface in logs.
"""

from __future__ import annotations


class GamedeckError(Exception):
    """Base class for all gamedeck errors."""


class ConfigurationError(GamedeckError):
    """Raised before a session starts when profiles are malformed.

    Attributes:
        subject: Identifier of the offending game or application profile
    """

    def __init__(self, message: str, subject: str | None = None) -> None:
        self.subject = subject
        if subject:
            message = f"{subject}: {message}"
        super().__init__(message)


class LaunchError(GamedeckError):
    """Raised when a platform launcher is unavailable or rejects a launch."""

    def __init__(self, message: str, platform: str | None = None) -> None:
        self.platform = platform
        super().__init__(message)


class IntegrationError(GamedeckError):
    """Raised when a managed application or remote-control action fails."""


class RemoteControlError(IntegrationError):
    """Raised on socket, timeout, or protocol failures of a remote connection."""


class AuthenticationError(RemoteControlError):
    """Raised when the remote-control handshake does not complete."""


class RemoteRequestFailed(RemoteControlError):
    """Raised when the remote end answers a request with a failed status.

    Attributes:
        request_type: Type of the request that failed
        code: Status code reported by the remote end
        comment: Optional human-readable comment from the remote end
    """

    def __init__(self, request_type: str, code: int, comment: str | None = None) -> None:
        self.request_type = request_type
        self.code = code
        self.comment = comment
        msg = f"Request {request_type} failed with code {code}"
        if comment:
            msg += f": {comment}"
        super().__init__(msg)


class WaitRefusedError(GamedeckError):
    """Raised when the native process wait primitive is refused by the OS."""
