"""Exception types raised by the relay.

Fatal errors (credential, connect, link closed, send timeout) end the
session. Recoverable errors (malformed upstream payloads, recording
failures) are logged and absorbed where they occur.
"""

import enum
from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class UpstreamErrorKind(str, enum.Enum):
    """Reason the upstream link could not be established."""

    CREDENTIAL_FAILURE = "credential_failure"
    CONNECT_FAILURE = "connect_failure"


class UpstreamError(RelayError):
    """Raised when the upstream handshake fails."""

    def __init__(self, kind: UpstreamErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind.value}: {super().__str__()}"


class LinkClosed(RelayError):
    """Raised when sending on an upstream link that has already closed."""

    def __init__(self, message: str = "Upstream link is closed", code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class SendTimeout(RelayError):
    """Raised when an upstream send exceeds its time bound."""


class MalformedUpstreamEvent(RelayError):
    """Raised when an upstream frame is not a JSON object with a type."""


class RecordingSinkFailure(RelayError):
    """Raised when the recording sink cannot be written."""
