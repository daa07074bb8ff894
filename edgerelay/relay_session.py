"""
Per-connection relay between one edge device and the upstream service.

A RelaySession is a small actor. Two reader tasks feed one queue:

- the device reader turns binary frames into AudioChunks and text frames
  into ControlSignals
- the upstream reader parses every upstream frame into an UpstreamEvent

A single consumer loop takes items off the queue in order and is the only
code that touches the session state, the FlushController or the
ProtocolSequencer. Idle flushes and the settle delay are deadlines the loop
waits on with ``asyncio.wait_for(queue.get(), timeout=...)``.

Whatever way the loop ends, ``close()`` cancels the readers, finalizes the
recording and closes both sockets.
"""

import asyncio
import enum
import json
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocketDisconnect
from starlette.websockets import WebSocketState

from edgerelay.audio.chunks import AudioBatch, AudioChunk
from edgerelay.config.logging_config import configure_logging
from edgerelay.config.models import ApplicationConfig
from edgerelay.errors import (
    LinkClosed,
    MalformedUpstreamEvent,
    RecordingSinkFailure,
    RelayError,
    SendTimeout,
    UpstreamError,
    UpstreamErrorKind,
)
from edgerelay.handlers.error_handler import ErrorContext, ErrorSeverity, handle_error
from edgerelay.models.device_api import (
    ConnectionAckMessage,
    ControlSignal,
    ErrorMessage,
    SttResultMessage,
    parse_control_signal,
)
from edgerelay.models.session_state import SessionState, SessionStateMachine
from edgerelay.recording import RecordingSink
from edgerelay.sequencer import ProtocolSequencer
from edgerelay.stats import RelayStats
from edgerelay.upstream.credentials import CredentialProvider
from edgerelay.upstream.events import (
    ErrorEvent,
    ResponseDone,
    SessionReady,
    TranscriptDone,
    UpstreamEvent,
    parse_upstream_event,
)
from edgerelay.upstream.handshake import UpstreamHandshake
from edgerelay.upstream.link import UpstreamLink

logger = configure_logging("relay_session")

# WebSocket close codes sent to the device
CLOSE_NORMAL = 1000
CLOSE_INTERNAL_ERROR = 1011


class _Kind(enum.Enum):
    AUDIO = "audio"
    SIGNAL = "signal"
    UPSTREAM_EVENT = "upstream_event"
    UPSTREAM_CLOSED = "upstream_closed"
    SHUTDOWN = "shutdown"


@dataclass
class _Envelope:
    kind: _Kind
    payload: Any = None


class RelaySession:
    """Relays one device connection to one upstream realtime session."""

    def __init__(
        self,
        device: Any,
        config: Optional[ApplicationConfig] = None,
        handshake: Optional[UpstreamHandshake] = None,
        session_id: Optional[str] = None,
        stats: Optional[RelayStats] = None,
        recording: Optional[RecordingSink] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            device: Accepted device WebSocket (starlette interface)
            config: Application configuration
            handshake: Upstream handshake; built from config when omitted
            session_id: Identifier used in logs and recordings
            stats: Shared counters
            recording: Recording sink; built from config when recording is enabled
            clock: Monotonic time source for flushing and deadlines
        """
        self.device = device
        self.config = config or ApplicationConfig()
        self.session_id = session_id or str(uuid.uuid4())
        self.stats = stats or RelayStats()
        self._clock = clock

        self.state_machine = SessionStateMachine(self.session_id)
        self.handshake = handshake or UpstreamHandshake(
            self.config.openai,
            credential_provider=CredentialProvider(
                self.config.openai, modalities=self.config.sequencer.response_modalities
            ),
            session_id=self.session_id,
        )
        if recording is None and self.config.recording.enabled:
            recording = RecordingSink(
                self.session_id, self.config.recording, self.config.audio
            )
        self.recording = recording
        self.sequencer = ProtocolSequencer(
            self.state_machine,
            flush_config=self.config.flush,
            config=self.config.sequencer,
            clock=clock,
            on_batch_sent=self._record_batch,
            on_segment_committed=self._record_segment_end,
        )

        self.transcripts: List[str] = []
        self.failure_reason: Optional[str] = None
        self.created_at = time.time()

        self._queue: asyncio.Queue = asyncio.Queue()
        self._device_task: Optional[asyncio.Task] = None
        self._upstream_task: Optional[asyncio.Task] = None
        self._device_closed = False
        self._closed = False

    @property
    def state(self) -> SessionState:
        return self.state_machine.state

    async def run(self) -> SessionState:
        """Run the session until the device leaves or a fatal error occurs."""
        logger.info(f"[{self.session_id}] Relay session started")
        try:
            await self._send_device(
                ConnectionAckMessage(session_id=self.session_id).model_dump(mode="json")
            )
            self._device_task = asyncio.create_task(self._read_device())

            try:
                link = await self.handshake.establish()
            except UpstreamError as e:
                context = (
                    ErrorContext.CREDENTIAL
                    if e.kind == UpstreamErrorKind.CREDENTIAL_FAILURE
                    else ErrorContext.UPSTREAM
                )
                await handle_error(
                    e, context, ErrorSeverity.HIGH, "establish", session_id=self.session_id
                )
                await self._fail(str(e))
                return self.state

            self.sequencer.attach_link(link)
            self.state_machine.transition(
                SessionState.AWAITING_UPSTREAM_READY, "upstream link open"
            )
            self._upstream_task = asyncio.create_task(self._read_upstream(link))

            await self._event_loop()

        except (LinkClosed, SendTimeout) as e:
            await handle_error(
                e,
                ErrorContext.UPSTREAM,
                ErrorSeverity.HIGH,
                "send_frame",
                session_id=self.session_id,
            )
            await self._fail(str(e))
        except asyncio.CancelledError:
            logger.info(f"[{self.session_id}] Relay session cancelled")
            raise
        finally:
            await self.close()

        return self.state

    def request_close(self) -> None:
        """Ask the loop to finish the current segment and close (server shutdown)."""
        self._queue.put_nowait(_Envelope(_Kind.SHUTDOWN))

    async def close(self) -> None:
        """Release every resource the session holds. Safe to call twice."""
        if self._closed:
            return
        self._closed = True

        tasks = [t for t in (self._device_task, self._upstream_task) if t is not None]
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.sequencer.clear_deadlines()

        if self.recording is not None:
            await self.recording.close()
            logger.info(
                f"[{self.session_id}] Recording summary: {self.recording.get_recording_summary()}"
            )

        await self.handshake.close()

        if not self._is_device_closed():
            code = CLOSE_INTERNAL_ERROR if self.state == SessionState.FAILED else CLOSE_NORMAL
            try:
                await self.device.close(code=code)
            except Exception as e:
                logger.debug(f"[{self.session_id}] Error closing device socket: {e}")
            self._device_closed = True

        if not self.state_machine.is_terminal:
            self.state_machine.transition(SessionState.CLOSED, "session closed")

        seq = self.sequencer.get_stats()
        self.stats.increment("batches_sent", seq["batches_sent"])
        self.stats.increment("bytes_sent", seq["bytes_sent"])
        self.stats.increment("commits_sent", seq["commits_sent"])
        self.stats.increment("responses_requested", seq["responses_requested"])

        logger.info(
            f"[{self.session_id}] Relay session finished in {self.state.value}: {seq}"
        )

    def get_status(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "upstream_ready": self.handshake.is_ready(),
            "created_at": self.created_at,
            "transcripts": len(self.transcripts),
            "failure_reason": self.failure_reason,
            **self.sequencer.get_stats(),
        }

    # Consumer loop

    async def _event_loop(self) -> None:
        while not self.state_machine.is_terminal:
            timeout = None
            deadline = self.sequencer.next_deadline()
            if deadline is not None:
                timeout = deadline - self._clock()
                if timeout <= 0:
                    await self.sequencer.service_deadlines(self._clock())
                    continue

            try:
                envelope = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            except asyncio.TimeoutError:
                continue

            await self._dispatch(envelope)

    async def _dispatch(self, envelope: _Envelope) -> None:
        if self.state_machine.is_terminal:
            return

        if envelope.kind == _Kind.AUDIO:
            chunk: AudioChunk = envelope.payload
            self.stats.increment("audio_chunks_received")
            self.stats.increment("audio_bytes_received", len(chunk.data))
            await self.sequencer.on_audio(chunk)

        elif envelope.kind == _Kind.SIGNAL:
            await self._handle_signal(envelope.payload)

        elif envelope.kind == _Kind.UPSTREAM_EVENT:
            await self._handle_upstream_event(envelope.payload)

        elif envelope.kind == _Kind.UPSTREAM_CLOSED:
            error = LinkClosed("Upstream connection closed")
            await handle_error(
                error,
                ErrorContext.UPSTREAM,
                ErrorSeverity.HIGH,
                "receive",
                session_id=self.session_id,
            )
            await self._fail(str(error))

        elif envelope.kind == _Kind.SHUTDOWN:
            logger.info(f"[{self.session_id}] Shutdown requested")
            await self._finish_and_close()

    async def _handle_signal(self, signal: ControlSignal) -> None:
        logger.info(f"[{self.session_id}] Device signal: {signal.value}")
        if signal == ControlSignal.STREAM_STARTED:
            await self.sequencer.on_stream_started()
        elif signal == ControlSignal.STREAM_STOPPED:
            await self.sequencer.on_stream_stopped()
        elif signal == ControlSignal.DEVICE_DISCONNECTED:
            self._device_closed = True
            await self._finish_and_close()

    async def _finish_and_close(self) -> None:
        await self.sequencer.on_device_disconnected()
        await self.handshake.close()
        self.state_machine.transition(SessionState.CLOSED, "device disconnected")

    async def _handle_upstream_event(self, event: UpstreamEvent) -> None:
        self.stats.increment("upstream_events")
        await self._send_device(event.raw)

        if isinstance(event, SessionReady):
            self.handshake.mark_ready()
            await self.sequencer.on_upstream_ready()

        elif isinstance(event, TranscriptDone):
            self.transcripts.append(event.text)
            self.stats.increment("transcripts_delivered")
            logger.info(f"[{self.session_id}] Transcript: {event.text}")
            await self._send_device(SttResultMessage(text=event.text).model_dump(mode="json"))
            if self.recording is not None:
                self.recording.add_transcript(event.text)
            await self.sequencer.on_transcript_done()

        elif isinstance(event, ResponseDone):
            await self.sequencer.on_response_finished()

        elif isinstance(event, ErrorEvent):
            await handle_error(
                RelayError(event.detail),
                ErrorContext.UPSTREAM,
                ErrorSeverity.MEDIUM,
                "upstream_event",
                session_id=self.session_id,
            )

    async def _fail(self, reason: str) -> None:
        if self.state_machine.is_terminal:
            return
        self.failure_reason = reason
        self.state_machine.transition(SessionState.FAILED, reason)
        await self._send_device(ErrorMessage(error=reason).model_dump(mode="json"))

    # Readers

    async def _read_device(self) -> None:
        try:
            while True:
                message = await self.device.receive()
                if message.get("type") == "websocket.disconnect":
                    logger.info(f"[{self.session_id}] Device disconnected")
                    break

                data = message.get("bytes")
                if data is not None:
                    if data:
                        chunk = AudioChunk(data=data, received_at=self._clock())
                        self._queue.put_nowait(_Envelope(_Kind.AUDIO, chunk))
                    continue

                text = message.get("text")
                if text is None:
                    continue
                signal = parse_control_signal(text)
                if signal is None:
                    logger.debug(f"[{self.session_id}] Ignoring device text: {text[:80]}")
                    continue
                self._queue.put_nowait(_Envelope(_Kind.SIGNAL, signal))

        except WebSocketDisconnect:
            logger.info(f"[{self.session_id}] Device disconnected")
        except Exception as e:
            await handle_error(
                e,
                ErrorContext.DEVICE,
                ErrorSeverity.MEDIUM,
                "receive",
                session_id=self.session_id,
            )

        self._queue.put_nowait(
            _Envelope(_Kind.SIGNAL, ControlSignal.DEVICE_DISCONNECTED)
        )

    async def _read_upstream(self, link: UpstreamLink) -> None:
        try:
            async for message in link:
                try:
                    event = parse_upstream_event(message)
                except MalformedUpstreamEvent as e:
                    self.stats.increment("malformed_upstream_events")
                    await handle_error(
                        e,
                        ErrorContext.UPSTREAM,
                        ErrorSeverity.LOW,
                        "parse_event",
                        session_id=self.session_id,
                    )
                    continue
                self._queue.put_nowait(_Envelope(_Kind.UPSTREAM_EVENT, event))
        except Exception as e:
            await handle_error(
                e,
                ErrorContext.UPSTREAM,
                ErrorSeverity.HIGH,
                "receive",
                session_id=self.session_id,
            )

        self._queue.put_nowait(_Envelope(_Kind.UPSTREAM_CLOSED))

    # Device output

    async def _send_device(self, payload: Dict[str, Any]) -> bool:
        if self._is_device_closed():
            return False
        try:
            await self.device.send_text(json.dumps(payload))
        except Exception as e:
            logger.debug(f"[{self.session_id}] Device send failed: {e}")
            self._device_closed = True
            return False
        return True

    def _is_device_closed(self) -> bool:
        if self._device_closed:
            return True
        return getattr(self.device, "client_state", None) == WebSocketState.DISCONNECTED

    # Recording hooks

    async def _record_batch(self, batch: AudioBatch) -> None:
        if self.recording is None:
            return
        try:
            self.recording.write(batch)
        except RecordingSinkFailure as e:
            await handle_error(
                e,
                ErrorContext.RECORDING,
                ErrorSeverity.MEDIUM,
                "write_batch",
                session_id=self.session_id,
            )

    async def _record_segment_end(self, segment_index: int) -> None:
        if self.recording is None:
            return
        try:
            self.recording.end_segment()
        except RecordingSinkFailure as e:
            await handle_error(
                e,
                ErrorContext.RECORDING,
                ErrorSeverity.MEDIUM,
                "end_segment",
                session_id=self.session_id,
            )
