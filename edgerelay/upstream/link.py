"""
Wrapper around the upstream WebSocket connection.

``UpstreamLink`` serializes outgoing frames to JSON, bounds every send with
a timeout and turns a closed socket into ``LinkClosed``. Iterating the link
yields raw incoming messages until the socket closes.
"""

import asyncio
import json
import time
from typing import Any, AsyncIterator, Dict, Optional, Union

from websockets.exceptions import ConnectionClosed

from edgerelay.config.constants import DEFAULT_SEND_TIMEOUT
from edgerelay.config.logging_config import configure_logging
from edgerelay.errors import LinkClosed, SendTimeout

logger = configure_logging("upstream_link")


class UpstreamLink:
    """A single upstream WebSocket connection owned by one relay session."""

    def __init__(
        self,
        websocket: Any,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
        session_id: str = "",
    ):
        self.websocket = websocket
        self.send_timeout = send_timeout
        self.session_id = session_id
        self.created_at = time.time()
        self.frames_sent = 0
        self.messages_received = 0
        self.close_code: Optional[int] = None
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def send(self, frame: Dict[str, Any]) -> None:
        """Send one JSON frame.

        Raises:
            LinkClosed: if the link is (or becomes) closed
            SendTimeout: if the send does not finish within send_timeout
        """
        if self._closed:
            raise LinkClosed(code=self.close_code)

        try:
            await asyncio.wait_for(
                self.websocket.send(json.dumps(frame)), timeout=self.send_timeout
            )
        except asyncio.TimeoutError as e:
            raise SendTimeout(
                f"Sending {frame.get('type')} took longer than {self.send_timeout}s"
            ) from e
        except ConnectionClosed as e:
            self._mark_closed(e)
            raise LinkClosed(f"Upstream link closed: {e}", code=self.close_code) from e

        self.frames_sent += 1
        logger.debug(f"[{self.session_id}] Sent {frame.get('type')}")

    async def __aiter__(self) -> AsyncIterator[Union[str, bytes]]:
        try:
            async for message in self.websocket:
                self.messages_received += 1
                yield message
        except ConnectionClosed as e:
            self._mark_closed(e)
            logger.info(f"[{self.session_id}] Upstream connection closed: {e}")
            return
        self._closed = True
        logger.info(f"[{self.session_id}] Upstream connection ended")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close()
        except Exception as e:
            logger.warning(f"[{self.session_id}] Error closing upstream link: {e}")
        logger.info(
            f"[{self.session_id}] Upstream link closed after {self.frames_sent} frames sent, "
            f"{self.messages_received} received"
        )

    def _mark_closed(self, exc: ConnectionClosed) -> None:
        self._closed = True
        received = getattr(exc, "rcvd", None)
        self.close_code = getattr(received, "code", None)
