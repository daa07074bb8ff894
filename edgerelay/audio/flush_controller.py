"""
Audio accumulation and flush policy.

The FlushController collects device chunks and decides when they are sent
upstream as one batch. Three thresholds apply, checked in this order:

1. Bytes: if the pending data already reached ``max_bytes_per_batch``, or
   the incoming chunk alone exceeds it, whatever is pending is flushed
   before the chunk is queued.
2. Chunks: reaching ``max_chunks_per_batch`` pending chunks flushes.
3. Idle: ``max_idle_ms`` after the most recent push, pending audio is
   flushed by ``tick()``.

The controller never owns a timer. The session loop asks for
``idle_deadline()`` and calls ``tick()`` when it passes.
"""

import time
from typing import Callable, List, Optional

from edgerelay.audio.chunks import AudioBatch, AudioChunk
from edgerelay.config.logging_config import configure_logging
from edgerelay.config.models import FlushConfig

logger = configure_logging("flush_controller")


class FlushController:
    """Accumulates audio chunks and emits batches according to FlushConfig."""

    def __init__(
        self,
        config: Optional[FlushConfig] = None,
        on_flush: Optional[Callable[[AudioBatch], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            config: Batching thresholds
            on_flush: Called once for every non-empty batch produced
            clock: Monotonic time source in seconds
        """
        self.config = config or FlushConfig()
        self.on_flush = on_flush
        self._clock = clock
        self._pending: List[AudioChunk] = []
        self._pending_bytes = 0
        self._last_push_at: Optional[float] = None
        self.total_batches = 0
        self.total_bytes = 0

    @property
    def pending_chunks(self) -> int:
        return len(self._pending)

    @property
    def pending_bytes(self) -> int:
        return self._pending_bytes

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def push(self, chunk: AudioChunk) -> List[AudioBatch]:
        """Queue a chunk and return any batches the thresholds produced."""
        batches: List[AudioBatch] = []
        max_bytes = self.config.max_bytes_per_batch

        if self._pending and (
            self._pending_bytes >= max_bytes or len(chunk.data) > max_bytes
        ):
            batches.append(self._flush("bytes"))

        self._pending.append(chunk)
        self._pending_bytes += len(chunk.data)
        self._last_push_at = self._clock()

        if len(self._pending) >= self.config.max_chunks_per_batch:
            batches.append(self._flush("chunks"))

        return batches

    def idle_deadline(self) -> Optional[float]:
        """Clock time at which the idle flush is due, or None."""
        if not self._pending or self._last_push_at is None:
            return None
        return self._last_push_at + self.config.max_idle_ms / 1000.0

    def tick(self, now: Optional[float] = None) -> Optional[AudioBatch]:
        """Flush pending audio if the idle window has elapsed."""
        deadline = self.idle_deadline()
        if deadline is None:
            return None
        if now is None:
            now = self._clock()
        if now < deadline:
            return None
        return self._flush("idle")

    def force_flush(self) -> AudioBatch:
        """Flush whatever is pending. Returns an empty batch if nothing is."""
        if not self._pending:
            return AudioBatch()
        return self._flush("forced")

    def reset(self) -> int:
        """Discard pending audio. Returns the number of bytes dropped."""
        dropped = self._pending_bytes
        if dropped:
            logger.info(
                f"Discarding {len(self._pending)} unflushed chunks ({dropped} bytes)"
            )
        self._pending = []
        self._pending_bytes = 0
        self._last_push_at = None
        return dropped

    def _flush(self, reason: str) -> AudioBatch:
        batch = AudioBatch.from_chunks(self._pending)
        self._pending = []
        self._pending_bytes = 0
        self._last_push_at = None
        self.total_batches += 1
        self.total_bytes += batch.byte_length

        logger.debug(
            f"Flushed {batch.chunk_count} chunks ({batch.byte_length} bytes) on {reason}"
        )
        if self.on_flush is not None:
            self.on_flush(batch)
        return batch
