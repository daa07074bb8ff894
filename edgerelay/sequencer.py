"""
Protocol sequencing between device control signals and upstream frames.

The ProtocolSequencer turns device audio and control signals into the three
upstream frames the relay speaks:

- ``input_audio_buffer.append`` carries one AudioBatch
- ``input_audio_buffer.commit`` ends a segment
- ``response.create`` asks for the segment's transcript

Ordering rules for one segment:

- appends only while the session is STREAMING and the upstream is ready
- exactly one commit, after the segment's last append
- exactly one response request, after the commit
- a segment without audio is never committed

Audio that arrives while the session is not STREAMING is held in a bounded
pending queue (oldest dropped on overflow) and pushed into the
FlushController once the session is STREAMING again.
A stop received while an earlier response is outstanding is held until
that response finishes, then ends the segment built from the held audio.

The sequencer owns no tasks or timers. The relay session loop asks for
``next_deadline()`` and calls ``service_deadlines()`` once it passes; this
drives both the idle flush and the settle delay between commit and
response request.
"""

import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from edgerelay.audio.chunks import AudioBatch, AudioChunk
from edgerelay.audio.flush_controller import FlushController
from edgerelay.config.constants import PRE_READY_POLICY_DROP
from edgerelay.config.logging_config import configure_logging
from edgerelay.config.models import FlushConfig, SequencerConfig
from edgerelay.errors import LinkClosed
from edgerelay.models.openai_api import (
    InputAudioBufferAppendEvent,
    InputAudioBufferCommitEvent,
    ResponseCreateEvent,
    ResponseCreateOptions,
    frame_to_dict,
)
from edgerelay.models.session_state import SessionState, SessionStateMachine

logger = configure_logging("sequencer")

BatchHook = Callable[[AudioBatch], Awaitable[None]]
SegmentHook = Callable[[int], Awaitable[None]]


class ProtocolSequencer:
    """Orders append, commit and response frames for one session."""

    def __init__(
        self,
        state_machine: SessionStateMachine,
        flush_config: Optional[FlushConfig] = None,
        config: Optional[SequencerConfig] = None,
        link: Any = None,
        clock: Callable[[], float] = time.monotonic,
        on_batch_sent: Optional[BatchHook] = None,
        on_segment_committed: Optional[SegmentHook] = None,
    ):
        """
        Args:
            state_machine: The session's state machine
            flush_config: Batching thresholds for the FlushController
            config: Settle delay, pre-ready policy and response options
            link: Anything with ``async send(frame: dict)``; may be attached later
            clock: Monotonic time source shared with the FlushController
            on_batch_sent: Awaited after each append frame is sent
            on_segment_committed: Awaited with the segment index after each commit
        """
        self.state_machine = state_machine
        self.config = config or SequencerConfig()
        self.link = link
        self._clock = clock
        self.on_batch_sent = on_batch_sent
        self.on_segment_committed = on_segment_committed

        self._outbox: List[AudioBatch] = []
        self.flush_controller = FlushController(
            flush_config, on_flush=self._outbox.append, clock=clock
        )
        self._pending: Deque[AudioChunk] = deque()
        self._segment_has_audio = False
        self._stop_deferred = False
        self._response_due_at: Optional[float] = None
        self._responses_outstanding = 0

        self.segment_index = 0
        self.batches_sent = 0
        self.bytes_sent = 0
        self.commits_sent = 0
        self.responses_requested = 0
        self.segments_skipped = 0
        self.chunks_dropped = 0

    @property
    def session_id(self) -> str:
        return self.state_machine.session_id

    @property
    def state(self) -> SessionState:
        return self.state_machine.state

    @property
    def pending_chunks(self) -> int:
        return len(self._pending)

    @property
    def response_due_at(self) -> Optional[float]:
        return self._response_due_at

    def attach_link(self, link: Any) -> None:
        self.link = link

    # Device side

    async def on_audio(self, chunk: AudioChunk) -> None:
        if self.state == SessionState.STREAMING:
            self.flush_controller.push(chunk)
            self._segment_has_audio = True
            await self._send_outbox()
            return

        pre_ready = self.state in (
            SessionState.INITIALIZING,
            SessionState.AWAITING_UPSTREAM_READY,
        )
        if pre_ready and self.config.pre_ready_policy == PRE_READY_POLICY_DROP:
            self.chunks_dropped += 1
            logger.debug(
                f"[{self.session_id}] Dropping {len(chunk.data)} bytes received before upstream ready"
            )
            return

        self._enqueue_pending(chunk)

    async def on_stream_started(self) -> None:
        """Begin a new segment, discarding anything not yet sent."""
        dropped = self.flush_controller.reset()
        if self._pending:
            logger.info(
                f"[{self.session_id}] Discarding {len(self._pending)} pending chunks on stream start"
            )
            self._pending.clear()
        if dropped or self._segment_has_audio:
            logger.info(f"[{self.session_id}] Previous segment abandoned by stream start")
        self._segment_has_audio = False
        self._stop_deferred = False

        if self.state == SessionState.COMMITTING:
            await self._request_response()
        if self.state == SessionState.RESPONSE_PENDING:
            self.state_machine.transition(SessionState.STREAMING, "stream started")

    async def on_stream_stopped(self) -> None:
        state = self.state
        if state in (SessionState.INITIALIZING, SessionState.AWAITING_UPSTREAM_READY):
            logger.info(f"[{self.session_id}] Stream stop deferred until upstream ready")
            self._stop_deferred = True
            return
        if state in (SessionState.COMMITTING, SessionState.RESPONSE_PENDING):
            if self._pending or self.flush_controller.has_pending:
                logger.info(
                    f"[{self.session_id}] Stream stop deferred until the previous response finishes"
                )
                self._stop_deferred = True
            else:
                logger.debug(f"[{self.session_id}] Ignoring stream stop in {state.value}")
            return
        if state != SessionState.STREAMING:
            logger.debug(f"[{self.session_id}] Ignoring stream stop in {state.value}")
            return

        await self._end_segment("stream stopped")

    async def on_device_disconnected(self) -> None:
        """Finish the current segment without waiting for the settle delay.

        The caller closes the link and moves the session to CLOSED afterwards.
        """
        state = self.state
        if state == SessionState.STREAMING:
            await self._end_segment("device disconnected", settle=False)
        elif state == SessionState.COMMITTING:
            await self._request_response()

        leftover = len(self._pending) + self.flush_controller.pending_chunks
        if leftover:
            logger.info(
                f"[{self.session_id}] Dropping {leftover} chunks never sent upstream"
            )
            self._pending.clear()
            self.flush_controller.reset()

    # Upstream side

    async def on_upstream_ready(self) -> None:
        if self.state != SessionState.AWAITING_UPSTREAM_READY:
            return
        await self._enter_streaming("session.created")

    async def on_transcript_done(self) -> None:
        """A finished transcript closes the newest response.

        A late transcript for an earlier segment is recognised by another
        response still being outstanding, and leaves the state alone.
        """
        if self._responses_outstanding > 1:
            logger.debug(
                f"[{self.session_id}] Transcript for an earlier response, "
                f"{self._responses_outstanding} still outstanding"
            )
            return
        if self.state == SessionState.RESPONSE_PENDING:
            await self._enter_streaming("transcript done")

    async def on_response_finished(self) -> None:
        """Called once per ``response.done``; one arrives for every request."""
        if self._responses_outstanding:
            self._responses_outstanding -= 1
        if self._responses_outstanding:
            return
        if self.state == SessionState.RESPONSE_PENDING:
            await self._enter_streaming("response finished")

    # Deadlines

    def next_deadline(self) -> Optional[float]:
        deadlines = []
        if self.state == SessionState.STREAMING:
            idle = self.flush_controller.idle_deadline()
            if idle is not None:
                deadlines.append(idle)
        if self._response_due_at is not None:
            deadlines.append(self._response_due_at)
        return min(deadlines) if deadlines else None

    async def service_deadlines(self, now: Optional[float] = None) -> None:
        if now is None:
            now = self._clock()

        if self.state == SessionState.STREAMING:
            batch = self.flush_controller.tick(now)
            if batch is not None:
                await self._send_outbox()
                if self.config.commit_on_idle:
                    await self._end_segment("idle")

        if self._response_due_at is not None and now >= self._response_due_at:
            if self.state == SessionState.COMMITTING:
                await self._request_response()
            else:
                self._response_due_at = None

    def clear_deadlines(self) -> None:
        self._response_due_at = None
        self.flush_controller.reset()
        self._pending.clear()

    def get_stats(self) -> Dict[str, int]:
        return {
            "segments": self.segment_index,
            "batches_sent": self.batches_sent,
            "bytes_sent": self.bytes_sent,
            "commits_sent": self.commits_sent,
            "responses_requested": self.responses_requested,
            "responses_outstanding": self._responses_outstanding,
            "segments_skipped": self.segments_skipped,
            "chunks_dropped": self.chunks_dropped,
            "pending_chunks": len(self._pending),
        }

    # Internals

    def _enqueue_pending(self, chunk: AudioChunk) -> None:
        limit = self.config.pre_ready_queue_limit
        if limit <= 0:
            self.chunks_dropped += 1
            return
        if len(self._pending) >= limit:
            self._pending.popleft()
            self.chunks_dropped += 1
            logger.warning(
                f"[{self.session_id}] Pending audio queue full ({limit} chunks), dropped oldest"
            )
        self._pending.append(chunk)

    async def _drain_pending(self) -> None:
        if not self._pending:
            return
        logger.info(
            f"[{self.session_id}] Releasing {len(self._pending)} queued chunks"
        )
        while self._pending and self.state == SessionState.STREAMING:
            self.flush_controller.push(self._pending.popleft())
            self._segment_has_audio = True
            await self._send_outbox()

    async def _enter_streaming(self, reason: str) -> None:
        self.state_machine.transition(SessionState.STREAMING, reason)
        await self._drain_pending()

        if self._stop_deferred:
            self._stop_deferred = False
            await self._end_segment("deferred stream stop")

    async def _end_segment(self, reason: str, settle: bool = True) -> None:
        self.flush_controller.force_flush()
        await self._send_outbox()

        if not self._segment_has_audio:
            self.segments_skipped += 1
            logger.info(f"[{self.session_id}] No audio in segment, skipping commit ({reason})")
            return

        await self._send(frame_to_dict(InputAudioBufferCommitEvent()))
        self.commits_sent += 1
        self._segment_has_audio = False
        committed = self.segment_index
        self.segment_index += 1
        self.state_machine.transition(SessionState.COMMITTING, reason)

        if self.on_segment_committed is not None:
            await self.on_segment_committed(committed)

        delay = self.config.settle_delay_ms / 1000.0
        if settle and delay > 0:
            self._response_due_at = self._clock() + delay
        else:
            await self._request_response()

    async def _request_response(self) -> None:
        self._response_due_at = None
        event = ResponseCreateEvent(
            response=ResponseCreateOptions(
                modalities=self.config.response_modalities,
                instructions=self.config.response_instructions,
            )
        )
        await self._send(frame_to_dict(event))
        self.responses_requested += 1
        self._responses_outstanding += 1
        self.state_machine.transition(SessionState.RESPONSE_PENDING, "response requested")

    async def _send_outbox(self) -> None:
        while self._outbox:
            batch = self._outbox.pop(0)
            if batch.is_empty:
                continue
            await self._send(
                frame_to_dict(InputAudioBufferAppendEvent(audio=batch.to_base64()))
            )
            self.batches_sent += 1
            self.bytes_sent += batch.byte_length
            if self.on_batch_sent is not None:
                await self.on_batch_sent(batch)

    async def _send(self, frame: Dict[str, Any]) -> None:
        if self.link is None:
            raise LinkClosed("No upstream link attached")
        await self.link.send(frame)
