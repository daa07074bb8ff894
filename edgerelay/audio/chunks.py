"""Audio chunk and batch value types."""

import base64
import time
from dataclasses import dataclass, field
from typing import Sequence


@dataclass(frozen=True)
class AudioChunk:
    """One binary frame of PCM audio received from the device."""

    data: bytes
    received_at: float = field(default_factory=time.monotonic)

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class AudioBatch:
    """Concatenation of chunks emitted by a single flush."""

    data: bytes = b""
    chunk_count: int = 0

    @classmethod
    def from_chunks(cls, chunks: Sequence[AudioChunk]) -> "AudioBatch":
        return cls(data=b"".join(c.data for c in chunks), chunk_count=len(chunks))

    @property
    def byte_length(self) -> int:
        return len(self.data)

    @property
    def is_empty(self) -> bool:
        return self.chunk_count == 0

    def to_base64(self) -> str:
        """Encode the batch for an input_audio_buffer.append frame."""
        return base64.b64encode(self.data).decode("utf-8")
