"""
Upstream session establishment.

``UpstreamHandshake.establish()`` acquires a credential once and opens the
realtime WebSocket with it. Neither step is retried: a failure raises
``UpstreamError`` and the relay session fails.

An open socket is not a ready session. ``is_ready()`` only becomes true once
the relay session has seen ``session.created`` and called ``mark_ready()``.
"""

import asyncio
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import WebSocketException
from websockets.typing import Subprotocol

from edgerelay.config.logging_config import configure_logging
from edgerelay.config.models import OpenAIConfig
from edgerelay.errors import UpstreamError, UpstreamErrorKind
from edgerelay.upstream.credentials import CredentialProvider, UpstreamCredential
from edgerelay.upstream.link import UpstreamLink

logger = configure_logging("handshake")


class UpstreamHandshake:
    """Opens one upstream link for one relay session."""

    def __init__(
        self,
        config: OpenAIConfig,
        credential_provider: Optional[CredentialProvider] = None,
        connector: Optional[Callable[..., Any]] = None,
        session_id: str = "",
    ):
        """
        Args:
            config: Upstream endpoint, model and timeout settings
            credential_provider: Source of the ephemeral token
            connector: Replacement for ``websockets.connect`` (tests)
            session_id: Used as a log prefix
        """
        self.config = config
        self.credential_provider = credential_provider or CredentialProvider(config)
        self._connector = connector or websockets.connect
        self.session_id = session_id
        self.credential: Optional[UpstreamCredential] = None
        self.link: Optional[UpstreamLink] = None
        self._ready = asyncio.Event()

    async def establish(self) -> UpstreamLink:
        """Acquire a credential and connect.

        Raises:
            UpstreamError: CREDENTIAL_FAILURE or CONNECT_FAILURE
        """
        if self.link is not None:
            return self.link

        self.credential = await self.credential_provider.acquire()

        url = self.config.get_websocket_url(self.credential.model)
        headers = {
            "Authorization": f"Bearer {self.credential.token}",
            "OpenAI-Beta": "realtime=v1",
        }
        logger.info(f"[{self.session_id}] Connecting to upstream: {url}")

        try:
            websocket = await asyncio.wait_for(
                self._connector(
                    url,
                    subprotocols=[Subprotocol("realtime")],
                    additional_headers=headers,
                    ping_interval=self.config.ping_interval,
                    ping_timeout=self.config.ping_timeout,
                    close_timeout=self.config.close_timeout,
                ),
                timeout=self.config.connect_timeout,
            )
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                UpstreamErrorKind.CONNECT_FAILURE,
                f"Connecting to {url} timed out after {self.config.connect_timeout}s",
            ) from e
        except (OSError, WebSocketException) as e:
            raise UpstreamError(
                UpstreamErrorKind.CONNECT_FAILURE, f"Could not connect to {url}: {e}"
            ) from e

        self.link = UpstreamLink(
            websocket, send_timeout=self.config.send_timeout, session_id=self.session_id
        )
        logger.info(f"[{self.session_id}] Upstream link open, waiting for session.created")
        return self.link

    def is_ready(self) -> bool:
        return self._ready.is_set()

    def mark_ready(self) -> None:
        if not self._ready.is_set():
            logger.info(f"[{self.session_id}] Upstream session ready")
        self._ready.set()

    async def close(self) -> None:
        self._ready.clear()
        if self.link is not None:
            await self.link.close()
