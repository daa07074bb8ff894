"""Audio buffering for the relay."""

from .chunks import AudioBatch, AudioChunk
from .flush_controller import FlushController

__all__ = ["AudioBatch", "AudioChunk", "FlushController"]
