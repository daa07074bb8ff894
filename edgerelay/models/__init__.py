"""Wire and state models for the relay."""

from .device_api import (
    ConnectionAckMessage,
    ControlSignal,
    DeviceEventType,
    ErrorMessage,
    SttResultMessage,
    parse_control_signal,
)
from .openai_api import (
    ClientEventType,
    InputAudioBufferAppendEvent,
    InputAudioBufferCommitEvent,
    RealtimeSessionResponse,
    ResponseCreateEvent,
    ResponseCreateOptions,
    ServerEventType,
)
from .session_state import InvalidStateTransition, SessionState, SessionStateMachine

__all__ = [
    "ConnectionAckMessage",
    "ControlSignal",
    "DeviceEventType",
    "ErrorMessage",
    "SttResultMessage",
    "parse_control_signal",
    "ClientEventType",
    "InputAudioBufferAppendEvent",
    "InputAudioBufferCommitEvent",
    "RealtimeSessionResponse",
    "ResponseCreateEvent",
    "ResponseCreateOptions",
    "ServerEventType",
    "InvalidStateTransition",
    "SessionState",
    "SessionStateMachine",
]
