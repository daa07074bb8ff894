"""Upstream realtime service connection."""

from .credentials import CredentialProvider, UpstreamCredential
from .events import (
    ErrorEvent,
    Other,
    ResponseDone,
    SessionReady,
    TranscriptDelta,
    TranscriptDone,
    UpstreamEvent,
    parse_upstream_event,
)
from .handshake import UpstreamHandshake
from .link import UpstreamLink

__all__ = [
    "CredentialProvider",
    "UpstreamCredential",
    "ErrorEvent",
    "Other",
    "ResponseDone",
    "SessionReady",
    "TranscriptDelta",
    "TranscriptDone",
    "UpstreamEvent",
    "parse_upstream_event",
    "UpstreamHandshake",
    "UpstreamLink",
]
