"""
Parsing of upstream server events.

Every upstream frame becomes one ``UpstreamEvent`` variant. The relay only
acts on a few of them; everything else is an ``Other`` that is still
forwarded to the device. Every variant keeps the ``raw`` dict it was parsed from.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Union

from edgerelay.errors import MalformedUpstreamEvent
from edgerelay.models.openai_api import ServerEventType


@dataclass(frozen=True)
class UpstreamEvent:
    raw: Dict[str, Any]

    @property
    def type(self) -> str:
        return self.raw.get("type", "")


@dataclass(frozen=True)
class SessionReady(UpstreamEvent):
    """The upstream session object exists and accepts audio."""


@dataclass(frozen=True)
class TranscriptDelta(UpstreamEvent):
    text: str = ""


@dataclass(frozen=True)
class TranscriptDone(UpstreamEvent):
    text: str = ""


@dataclass(frozen=True)
class ResponseDone(UpstreamEvent):
    """The requested response finished, with or without a transcript."""


@dataclass(frozen=True)
class ErrorEvent(UpstreamEvent):
    detail: str = ""


@dataclass(frozen=True)
class Other(UpstreamEvent):
    pass


DELTA_TYPES = frozenset(
    {
        ServerEventType.RESPONSE_TEXT_DELTA.value,
        ServerEventType.RESPONSE_OUTPUT_TEXT_DELTA.value,
        ServerEventType.RESPONSE_AUDIO_TRANSCRIPT_DELTA.value,
        ServerEventType.CONVERSATION_ITEM_INPUT_AUDIO_TRANSCRIPTION_DELTA.value,
    }
)

DONE_TYPES = frozenset(
    {
        ServerEventType.RESPONSE_TEXT_DONE.value,
        ServerEventType.RESPONSE_OUTPUT_TEXT_DONE.value,
        ServerEventType.RESPONSE_AUDIO_TRANSCRIPT_DONE.value,
        ServerEventType.CONVERSATION_ITEM_INPUT_AUDIO_TRANSCRIPTION_COMPLETED.value,
    }
)

RESPONSE_DONE_TYPES = frozenset(
    {
        ServerEventType.RESPONSE_DONE.value,
        ServerEventType.RESPONSE_COMPLETED.value,
    }
)


def _text_of(raw: Dict[str, Any]) -> str:
    for key in ("text", "transcript", "delta"):
        value = raw.get(key)
        if isinstance(value, str):
            return value
    return ""


def _error_detail(raw: Dict[str, Any]) -> str:
    error = raw.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        return str(error)
    return json.dumps(raw)


def parse_upstream_event(message: Union[str, bytes]) -> UpstreamEvent:
    """Parse one upstream frame.

    Raises:
        MalformedUpstreamEvent: if the frame is not a JSON object with a type
    """
    try:
        raw = json.loads(message)
    except (TypeError, ValueError) as e:
        raise MalformedUpstreamEvent(f"Invalid JSON from upstream: {e}") from e

    if not isinstance(raw, dict) or not isinstance(raw.get("type"), str):
        raise MalformedUpstreamEvent("Upstream frame has no type field")

    event_type = raw["type"]
    if event_type == ServerEventType.SESSION_CREATED.value:
        return SessionReady(raw)
    if event_type in DELTA_TYPES:
        return TranscriptDelta(raw, text=_text_of(raw))
    if event_type in DONE_TYPES:
        return TranscriptDone(raw, text=_text_of(raw))
    if event_type in RESPONSE_DONE_TYPES:
        return ResponseDone(raw)
    if event_type == ServerEventType.ERROR.value:
        return ErrorEvent(raw, detail=_error_detail(raw))
    return Other(raw)
