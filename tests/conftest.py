"""
Pytest configuration for the relay test suite.

Provides fake device and upstream sockets plus a ready-made test
configuration. The fakes are plain asyncio queues so tests can decide
exactly when each side sends something.
"""

import os

# Must be set before any edgerelay module reads the environment
os.environ["ENV"] = "testing"
os.environ["LOG_FILE_OUTPUT"] = "false"

import asyncio
import json
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest
from starlette.websockets import WebSocketState

from edgerelay.config.models import (
    ApplicationConfig,
    Environment,
    FlushConfig,
    OpenAIConfig,
    SequencerConfig,
    ServerConfig,
)
from edgerelay.handlers.error_handler import get_error_handler
from edgerelay.models.session_state import SessionState
from edgerelay.upstream.credentials import UpstreamCredential
from edgerelay.upstream.handshake import UpstreamHandshake

TEST_MODEL = "gpt-4o-realtime-preview-2024-12-17"
TEST_TOKEN = "ek_test_token"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeDeviceSocket:
    """Stand-in for a starlette WebSocket accepted from a device."""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.client_state = WebSocketState.CONNECTED

    async def receive(self) -> Dict[str, Any]:
        return await self.incoming.get()

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise RuntimeError("Cannot send on a closed websocket")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED

    def feed_audio(self, data: bytes) -> None:
        self.incoming.put_nowait({"type": "websocket.receive", "bytes": data})

    def feed_text(self, text: str) -> None:
        self.incoming.put_nowait({"type": "websocket.receive", "text": text})

    def disconnect(self) -> None:
        self.incoming.put_nowait({"type": "websocket.disconnect", "code": 1000})

    def sent_types(self) -> List[str]:
        return [message.get("type") for message in self.sent]


class FakeUpstreamSocket:
    """Stand-in for a websockets client connection to the upstream."""

    def __init__(self, send_delay: float = 0.0):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: List[Dict[str, Any]] = []
        self.events: List[str] = []
        self.closed = False
        self.send_delay = send_delay

    async def send(self, message: str) -> None:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        frame = json.loads(message)
        self.sent.append(frame)
        self.events.append(f"send:{frame['type']}")

    async def close(self) -> None:
        self.closed = True
        self.events.append("close")
        self.incoming.put_nowait(None)

    def feed(self, event: Dict[str, Any]) -> None:
        self.incoming.put_nowait(json.dumps(event))

    def feed_raw(self, message: str) -> None:
        self.incoming.put_nowait(message)

    def server_close(self) -> None:
        self.incoming.put_nowait(None)

    def sent_types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        message = await self.incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


async def wait_for_state(session, state: SessionState, timeout: float = 2.0) -> None:
    """Poll until the session reaches ``state``."""
    async def _poll():
        while session.state != state:
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


@pytest.fixture(autouse=True)
def reset_error_stats():
    """Start every test with empty error counters."""
    get_error_handler().reset_stats()
    yield


@pytest.fixture
def test_config() -> ApplicationConfig:
    """Application config with small, test-friendly thresholds."""
    return ApplicationConfig(
        server=ServerConfig(environment=Environment.TESTING, max_sessions=5),
        openai=OpenAIConfig(api_key="sk-test", model=TEST_MODEL, send_timeout=1.0),
        flush=FlushConfig(max_chunks_per_batch=10, max_bytes_per_batch=4096, max_idle_ms=5000),
        sequencer=SequencerConfig(settle_delay_ms=0),
    )


@pytest.fixture
def device() -> FakeDeviceSocket:
    return FakeDeviceSocket()


@pytest.fixture
def upstream() -> FakeUpstreamSocket:
    return FakeUpstreamSocket()


@pytest.fixture
def credential_provider():
    """Credential provider that always succeeds."""
    provider = AsyncMock()
    provider.acquire.return_value = UpstreamCredential(
        token=TEST_TOKEN, model=TEST_MODEL, expires_at=1234567890
    )
    return provider


@pytest.fixture
def connector(upstream):
    """Replacement for websockets.connect that returns the fake upstream."""
    return AsyncMock(return_value=upstream)


@pytest.fixture
def handshake(test_config, credential_provider, connector) -> UpstreamHandshake:
    return UpstreamHandshake(
        test_config.openai,
        credential_provider=credential_provider,
        connector=connector,
        session_id="test-session",
    )
