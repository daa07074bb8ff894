"""
Models for the device-facing WebSocket protocol.

The device sends raw PCM audio as binary frames and a handful of plain-text
control signals. The relay answers with small JSON frames, defined here as
pydantic models, plus whatever the upstream emits (passed through as-is).
"""

import enum
from typing import Optional

from pydantic import BaseModel, Field

from edgerelay.config.constants import (
    STREAM_STARTED_KEYWORDS,
    STREAM_STOPPED_KEYWORDS,
)


class ControlSignal(str, enum.Enum):
    """Control signals a device can raise."""

    STREAM_STARTED = "stream_started"
    STREAM_STOPPED = "stream_stopped"
    DEVICE_DISCONNECTED = "device_disconnected"


class DeviceEventType(str, enum.Enum):
    """Frame types the relay sends to the device."""

    CONNECTION_ACK = "connection.ack"
    STT_RESULT = "stt_result"
    ERROR = "error"


class DeviceMessage(BaseModel):
    """Base model for frames sent to the device."""

    type: DeviceEventType


class ConnectionAckMessage(DeviceMessage):
    """Sent once the device socket is accepted."""

    type: DeviceEventType = DeviceEventType.CONNECTION_ACK
    session_id: Optional[str] = Field(None, description="Relay session identifier")


class SttResultMessage(DeviceMessage):
    """Final transcript for a segment."""

    type: DeviceEventType = DeviceEventType.STT_RESULT
    text: str


class ErrorMessage(DeviceMessage):
    """Terminal (or informational) error for the device."""

    type: DeviceEventType = DeviceEventType.ERROR
    error: str


def parse_control_signal(text: str) -> Optional[ControlSignal]:
    """Parse a device text frame into a control signal.

    Matching is a case-insensitive substring test. Start keywords are checked
    before stop keywords. Anything else returns None and is ignored by the
    caller.
    """
    if not text:
        return None

    normalized = text.strip().upper()
    if any(keyword in normalized for keyword in STREAM_STARTED_KEYWORDS):
        return ControlSignal.STREAM_STARTED
    if any(keyword in normalized for keyword in STREAM_STOPPED_KEYWORDS):
        return ControlSignal.STREAM_STOPPED
    return None
