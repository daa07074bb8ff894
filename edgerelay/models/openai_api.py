"""
Pydantic models for the OpenAI Realtime API messages used by the relay.

Only the subset of the protocol the relay speaks is modelled here:

- the ephemeral session (credential) endpoint response
- the three client events the sequencer emits
  (``input_audio_buffer.append``, ``input_audio_buffer.commit``,
  ``response.create``)
- the server event type strings the relay recognises

Everything else the upstream sends is passed through to the device untouched.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ClientEventType(str, Enum):
    """Client event types sent to the upstream."""

    INPUT_AUDIO_BUFFER_APPEND = "input_audio_buffer.append"
    INPUT_AUDIO_BUFFER_COMMIT = "input_audio_buffer.commit"
    RESPONSE_CREATE = "response.create"


class ServerEventType(str, Enum):
    """Server event types the relay reacts to."""

    ERROR = "error"
    SESSION_CREATED = "session.created"
    SESSION_UPDATED = "session.updated"
    INPUT_AUDIO_BUFFER_COMMITTED = "input_audio_buffer.committed"
    RESPONSE_CREATED = "response.created"
    RESPONSE_DONE = "response.done"
    RESPONSE_COMPLETED = "response.completed"
    RESPONSE_TEXT_DELTA = "response.text.delta"
    RESPONSE_TEXT_DONE = "response.text.done"
    RESPONSE_OUTPUT_TEXT_DELTA = "response.output_text.delta"
    RESPONSE_OUTPUT_TEXT_DONE = "response.output_text.done"
    RESPONSE_AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    RESPONSE_AUDIO_TRANSCRIPT_DONE = "response.audio_transcript.done"
    CONVERSATION_ITEM_INPUT_AUDIO_TRANSCRIPTION_DELTA = (
        "conversation.item.input_audio_transcription.delta"
    )
    CONVERSATION_ITEM_INPUT_AUDIO_TRANSCRIPTION_COMPLETED = (
        "conversation.item.input_audio_transcription.completed"
    )


class ClientSecret(BaseModel):
    """Ephemeral key issued by the session endpoint."""

    value: str
    expires_at: Optional[int] = None


class RealtimeSessionResponse(BaseModel):
    """Response from the session creation endpoint.

    Older API revisions returned ``client_secret`` as a bare string, newer
    ones as an object with ``value`` and ``expires_at``. Both are accepted.
    """

    id: Optional[str] = None
    model: Optional[str] = None
    client_secret: Optional[Union[ClientSecret, str]] = None
    expires_at: Optional[int] = None

    def secret_value(self) -> Optional[str]:
        if isinstance(self.client_secret, ClientSecret):
            return self.client_secret.value or None
        return self.client_secret or None

    def secret_expiry(self) -> Optional[int]:
        if isinstance(self.client_secret, ClientSecret) and self.client_secret.expires_at:
            return self.client_secret.expires_at
        return self.expires_at


class RealtimeSessionRequest(BaseModel):
    """Body of the session creation request."""

    model: str
    voice: Optional[str] = None
    modalities: Optional[List[str]] = None


class ClientEvent(BaseModel):
    """Base model for events sent to the server."""

    type: str
    event_id: Optional[str] = None


class InputAudioBufferAppendEvent(ClientEvent):
    """Event to append audio to the input buffer.

    The server does not send a confirmation response to this event.
    """

    type: Literal["input_audio_buffer.append"] = "input_audio_buffer.append"
    audio: str  # Base64 encoded audio


class InputAudioBufferCommitEvent(ClientEvent):
    """Event to commit the audio buffer to the conversation.

    The server will respond with an input_audio_buffer.committed event, and
    with an error if the buffer is empty.
    """

    type: Literal["input_audio_buffer.commit"] = "input_audio_buffer.commit"


class ResponseCreateOptions(BaseModel):
    """Options for creating a response."""

    modalities: List[Literal["audio", "text"]] = Field(default_factory=lambda: ["text"])
    instructions: Optional[str] = None


class ResponseCreateEvent(ClientEvent):
    """Event to create a model response.

    The server will respond with a response.created event, followed by
    delta events, and finally a response.done event.
    """

    type: Literal["response.create"] = "response.create"
    response: ResponseCreateOptions


def frame_to_dict(event: ClientEvent) -> Dict[str, Any]:
    """Serialize a client event without unset optional fields."""
    return event.model_dump(exclude_none=True)
