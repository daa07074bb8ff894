"""Tests for UpstreamLink send and receive behaviour."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from websockets.exceptions import ConnectionClosed

from conftest import FakeUpstreamSocket
from edgerelay.errors import LinkClosed, SendTimeout
from edgerelay.upstream.link import UpstreamLink


class ClosingSocket:
    """Yields its messages, then fails the way a dropped connection does."""

    def __init__(self, messages):
        self.messages = list(messages)
        self.send = AsyncMock(side_effect=ConnectionClosed(None, None))
        self.close = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.messages:
            return self.messages.pop(0)
        raise ConnectionClosed(None, None)


@pytest.mark.asyncio
async def test_send_serializes_frame():
    socket = AsyncMock()
    link = UpstreamLink(socket, send_timeout=1.0)

    await link.send({"type": "input_audio_buffer.commit"})

    sent = json.loads(socket.send.call_args[0][0])
    assert sent == {"type": "input_audio_buffer.commit"}
    assert link.frames_sent == 1


@pytest.mark.asyncio
async def test_send_after_close_raises_link_closed():
    socket = AsyncMock()
    link = UpstreamLink(socket)
    await link.close()

    with pytest.raises(LinkClosed):
        await link.send({"type": "input_audio_buffer.commit"})
    socket.send.assert_not_called()


@pytest.mark.asyncio
async def test_send_on_dropped_connection_raises_link_closed():
    link = UpstreamLink(ClosingSocket([]))

    with pytest.raises(LinkClosed):
        await link.send({"type": "input_audio_buffer.commit"})
    assert link.is_closed


@pytest.mark.asyncio
async def test_slow_send_raises_send_timeout():
    link = UpstreamLink(FakeUpstreamSocket(send_delay=1.0), send_timeout=0.01)

    with pytest.raises(SendTimeout):
        await link.send({"type": "response.create"})


@pytest.mark.asyncio
async def test_iteration_yields_messages_until_closed():
    socket = FakeUpstreamSocket()
    socket.feed({"type": "session.created"})
    socket.feed_raw("raw text")
    socket.server_close()
    link = UpstreamLink(socket)

    received = [message async for message in link]

    assert json.loads(received[0]) == {"type": "session.created"}
    assert received[1] == "raw text"
    assert link.messages_received == 2
    assert link.is_closed


@pytest.mark.asyncio
async def test_iteration_stops_on_connection_closed():
    link = UpstreamLink(ClosingSocket(['{"type": "session.created"}']))

    received = [message async for message in link]

    assert len(received) == 1
    assert link.is_closed


@pytest.mark.asyncio
async def test_close_is_idempotent():
    socket = AsyncMock()
    link = UpstreamLink(socket)

    await link.close()
    await link.close()

    socket.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_close_tolerates_socket_errors():
    socket = AsyncMock()
    socket.close.side_effect = RuntimeError("already gone")
    link = UpstreamLink(socket)

    await link.close()

    assert link.is_closed
