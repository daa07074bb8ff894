"""End-to-end tests for RelaySession with fake device and upstream sockets."""

import asyncio
import base64
import wave
from unittest.mock import AsyncMock

import pytest

from conftest import FakeUpstreamSocket, wait_for_state, wait_until
from edgerelay.config.models import RecordingConfig
from edgerelay.errors import UpstreamError, UpstreamErrorKind
from edgerelay.models.session_state import SessionState
from edgerelay.relay_session import RelaySession
from edgerelay.stats import RelayStats
from edgerelay.upstream.handshake import UpstreamHandshake

APPEND = "input_audio_buffer.append"
COMMIT = "input_audio_buffer.commit"
RESPONSE = "response.create"


@pytest.fixture
def stats():
    return RelayStats()


@pytest.fixture
def make_session(device, handshake, test_config, stats):
    def _make(**overrides):
        options = dict(
            config=test_config,
            handshake=handshake,
            session_id="test-session",
            stats=stats,
        )
        options.update(overrides)
        return RelaySession(device, **options)

    return _make


async def start_streaming(make_session, upstream, **overrides):
    session = make_session(**overrides)
    task = asyncio.create_task(session.run())
    await wait_for_state(session, SessionState.AWAITING_UPSTREAM_READY)
    upstream.feed({"type": "session.created", "session": {"id": "sess_1"}})
    await wait_for_state(session, SessionState.STREAMING)
    return session, task


class TestEstablishFailures:
    @pytest.mark.asyncio
    async def test_credential_failure_fails_without_opening_link(
        self, device, test_config, credential_provider, connector, make_session
    ):
        credential_provider.acquire.side_effect = UpstreamError(
            UpstreamErrorKind.CREDENTIAL_FAILURE, "HTTP 401"
        )
        session = make_session()

        final_state = await asyncio.wait_for(session.run(), timeout=2)

        assert final_state == SessionState.FAILED
        connector.assert_not_called()
        assert device.sent_types() == ["connection.ack", "error"]
        assert "credential_failure" in device.sent[-1]["error"]
        assert device.closed
        assert device.close_code == 1011

    @pytest.mark.asyncio
    async def test_connect_failure_fails_session(
        self, device, test_config, credential_provider, make_session
    ):
        handshake = UpstreamHandshake(
            test_config.openai,
            credential_provider=credential_provider,
            connector=AsyncMock(side_effect=OSError("connection refused")),
        )
        session = make_session(handshake=handshake)

        final_state = await asyncio.wait_for(session.run(), timeout=2)

        assert final_state == SessionState.FAILED
        assert "connect_failure" in device.sent[-1]["error"]
        assert session.failure_reason is not None


class TestStreaming:
    @pytest.mark.asyncio
    async def test_ack_sent_first(self, device, upstream, make_session):
        session, task = await start_streaming(make_session, upstream)
        assert device.sent[0] == {"type": "connection.ack", "session_id": "test-session"}

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_disconnect_while_streaming_flushes_before_close(
        self, device, upstream, make_session, test_config
    ):
        test_config.sequencer.settle_delay_ms = 1000
        session, task = await start_streaming(make_session, upstream)

        device.feed_text("STREAM_STARTED")
        device.feed_audio(b"\x01" * 100)
        device.feed_audio(b"\x02" * 100)
        device.disconnect()

        final_state = await asyncio.wait_for(task, timeout=2)

        assert final_state == SessionState.CLOSED
        assert upstream.events == [
            f"send:{APPEND}",
            f"send:{COMMIT}",
            f"send:{RESPONSE}",
            "close",
        ]
        audio = base64.b64decode(upstream.sent[0]["audio"])
        assert audio == b"\x01" * 100 + b"\x02" * 100

    @pytest.mark.asyncio
    async def test_stop_signal_commits_segment(self, device, upstream, make_session):
        session, task = await start_streaming(make_session, upstream)

        device.feed_text("stream started")
        for _ in range(5):
            device.feed_audio(b"\x00" * 1000)
        device.feed_text("STREAM_STOPPED")

        await wait_for_state(session, SessionState.RESPONSE_PENDING)
        assert upstream.sent_types() == [APPEND, COMMIT, RESPONSE]
        assert len(base64.b64decode(upstream.sent[0]["audio"])) == 5000

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_audio_before_ready_is_released_on_ready(
        self, device, upstream, make_session, stats
    ):
        session = make_session()
        task = asyncio.create_task(session.run())
        await wait_for_state(session, SessionState.AWAITING_UPSTREAM_READY)

        device.feed_audio(b"\x03" * 50)
        await wait_until(lambda: stats.get("audio_chunks_received") == 1)
        assert upstream.sent == []

        upstream.feed({"type": "session.created"})
        await wait_for_state(session, SessionState.STREAMING)
        device.feed_text("STOP")
        await wait_for_state(session, SessionState.RESPONSE_PENDING)

        assert base64.b64decode(upstream.sent[0]["audio"]) == b"\x03" * 50

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_unknown_device_text_is_ignored(self, device, upstream, make_session):
        session, task = await start_streaming(make_session, upstream)

        device.feed_text("hello relay")
        device.feed_text("STREAM_STOPPED")
        await asyncio.sleep(0.05)

        assert upstream.sent == []
        assert session.state == SessionState.STREAMING

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)


class TestUpstreamEvents:
    @pytest.mark.asyncio
    async def test_events_forwarded_and_transcript_delivered(
        self, device, upstream, make_session
    ):
        session, task = await start_streaming(make_session, upstream)
        device.feed_audio(b"\x00" * 10)
        device.feed_text("STREAM_STOPPED")
        await wait_for_state(session, SessionState.RESPONSE_PENDING)

        upstream.feed({"type": "response.text.delta", "delta": "hel"})
        upstream.feed({"type": "response.text.done", "text": "hello"})
        await wait_for_state(session, SessionState.STREAMING)

        assert device.sent_types() == [
            "connection.ack",
            "session.created",
            "response.text.delta",
            "response.text.done",
            "stt_result",
        ]
        assert device.sent[-1] == {"type": "stt_result", "text": "hello"}
        assert session.transcripts == ["hello"]

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_response_done_returns_to_streaming(
        self, device, upstream, make_session
    ):
        session, task = await start_streaming(make_session, upstream)
        device.feed_audio(b"\x00" * 10)
        device.feed_text("STREAM_STOPPED")
        await wait_for_state(session, SessionState.RESPONSE_PENDING)

        upstream.feed({"type": "response.done", "response": {"status": "completed"}})
        await wait_for_state(session, SessionState.STREAMING)

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_stop_during_response_commits_held_audio(
        self, device, upstream, make_session
    ):
        session, task = await start_streaming(make_session, upstream)
        device.feed_audio(b"\x01" * 10)
        device.feed_text("STREAM_STOPPED")
        await wait_for_state(session, SessionState.RESPONSE_PENDING)

        device.feed_audio(b"\x02" * 10)
        device.feed_text("STREAM_STOPPED")
        await asyncio.sleep(0.05)
        assert upstream.sent_types() == [APPEND, COMMIT, RESPONSE]

        upstream.feed({"type": "response.done", "response": {"status": "completed"}})
        await wait_until(lambda: upstream.sent_types().count(RESPONSE) == 2)

        assert upstream.sent_types() == [APPEND, COMMIT, RESPONSE, APPEND, COMMIT, RESPONSE]
        assert base64.b64decode(upstream.sent[3]["audio"]) == b"\x02" * 10
        assert session.state == SessionState.RESPONSE_PENDING

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_late_transcript_does_not_end_newer_response(
        self, device, upstream, make_session
    ):
        session, task = await start_streaming(make_session, upstream)
        device.feed_audio(b"\x01" * 10)
        device.feed_text("STREAM_STOPPED")
        device.feed_text("STREAM_STARTED")
        device.feed_audio(b"\x02" * 10)
        device.feed_text("STREAM_STOPPED")
        await wait_until(lambda: upstream.sent_types().count(RESPONSE) == 2)

        upstream.feed({"type": "response.text.done", "text": "first"})
        await wait_until(lambda: session.transcripts == ["first"])
        assert session.state == SessionState.RESPONSE_PENDING

        upstream.feed({"type": "response.done", "response": {"status": "completed"}})
        upstream.feed({"type": "response.text.done", "text": "second"})
        await wait_for_state(session, SessionState.STREAMING)
        assert session.transcripts == ["first", "second"]

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_malformed_upstream_json_is_dropped(
        self, device, upstream, make_session, stats
    ):
        session = make_session()
        task = asyncio.create_task(session.run())
        await wait_for_state(session, SessionState.AWAITING_UPSTREAM_READY)

        upstream.feed_raw("{not json")
        upstream.feed_raw('["no", "type"]')
        upstream.feed({"type": "session.created"})
        await wait_for_state(session, SessionState.STREAMING)

        assert stats.get("malformed_upstream_events") == 2
        assert device.sent_types() == ["connection.ack", "session.created"]

        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_upstream_error_event_is_not_fatal(
        self, device, upstream, make_session
    ):
        session, task = await start_streaming(make_session, upstream)

        upstream.feed({"type": "error", "error": {"message": "buffer too small"}})
        await wait_until(lambda: "error" in device.sent_types())

        assert session.state == SessionState.STREAMING
        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_upstream_close_fails_session(self, device, upstream, make_session):
        session, task = await start_streaming(make_session, upstream)

        upstream.server_close()
        final_state = await asyncio.wait_for(task, timeout=2)

        assert final_state == SessionState.FAILED
        assert device.sent[-1]["type"] == "error"
        assert device.closed
        assert device.close_code == 1011


class TestFatalSendErrors:
    @pytest.mark.asyncio
    async def test_send_timeout_fails_session(
        self, device, test_config, credential_provider, make_session
    ):
        slow_upstream = FakeUpstreamSocket(send_delay=1.0)
        test_config.openai.send_timeout = 0.05
        test_config.flush.max_chunks_per_batch = 1
        handshake = UpstreamHandshake(
            test_config.openai,
            credential_provider=credential_provider,
            connector=AsyncMock(return_value=slow_upstream),
        )
        session, task = await start_streaming(
            make_session, slow_upstream, handshake=handshake
        )

        device.feed_audio(b"\x00" * 10)
        final_state = await asyncio.wait_for(task, timeout=2)

        assert final_state == SessionState.FAILED
        assert device.sent[-1]["type"] == "error"
        assert slow_upstream.closed


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_request_close_finishes_segment(self, device, upstream, make_session):
        session, task = await start_streaming(make_session, upstream)
        device.feed_audio(b"\x00" * 10)
        await wait_until(lambda: session.sequencer.flush_controller.pending_chunks == 1)

        session.request_close()
        final_state = await asyncio.wait_for(task, timeout=2)

        assert final_state == SessionState.CLOSED
        assert upstream.sent_types() == [APPEND, COMMIT, RESPONSE]
        assert device.closed
        assert device.close_code == 1000

    @pytest.mark.asyncio
    async def test_stats_updated_on_close(self, device, upstream, make_session, stats):
        session, task = await start_streaming(make_session, upstream)
        device.feed_audio(b"\x00" * 10)
        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

        assert stats.get("audio_bytes_received") == 10
        assert stats.get("commits_sent") == 1
        assert stats.get("responses_requested") == 1

    @pytest.mark.asyncio
    async def test_recording_written_per_segment(
        self, device, upstream, make_session, test_config, tmp_path
    ):
        test_config.recording = RecordingConfig(enabled=True, output_dir=tmp_path)
        test_config.flush.max_chunks_per_batch = 1
        session, task = await start_streaming(make_session, upstream)

        device.feed_audio(b"\x01\x00" * 100)
        device.feed_audio(b"\x02\x00" * 100)
        device.feed_text("STREAM_STOPPED")
        await wait_for_state(session, SessionState.RESPONSE_PENDING)
        device.disconnect()
        await asyncio.wait_for(task, timeout=2)

        segment = tmp_path / "test-session" / "segment_0.wav"
        assert segment.exists()
        with wave.open(str(segment), "rb") as wav:
            assert wav.getframerate() == 24000
            assert wav.getnframes() == 200
        assert (tmp_path / "test-session" / "metadata.json").exists()
