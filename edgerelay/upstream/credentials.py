"""
Ephemeral credential acquisition for the upstream realtime service.

The relay never sends the long-lived API key over the realtime socket. It
first POSTs to the session endpoint and uses the short-lived client secret
from the response as the bearer token for the WebSocket upgrade.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

import aiohttp
from pydantic import ValidationError

from edgerelay.config.logging_config import configure_logging
from edgerelay.config.models import OpenAIConfig
from edgerelay.errors import UpstreamError, UpstreamErrorKind
from edgerelay.models.openai_api import RealtimeSessionRequest, RealtimeSessionResponse

logger = configure_logging("credentials")


@dataclass(frozen=True)
class UpstreamCredential:
    """Short-lived token for one upstream session."""

    token: str
    model: str
    expires_at: Optional[int] = None


class CredentialProvider:
    """Acquires an UpstreamCredential from the session endpoint.

    An ``aiohttp.ClientSession`` may be injected. When none is given a
    session is created for the single request and closed afterwards.
    """

    def __init__(
        self,
        config: OpenAIConfig,
        modalities: Optional[List[str]] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.modalities = modalities or ["text"]
        self._http_session = http_session

    def _request_body(self) -> dict:
        return RealtimeSessionRequest(
            model=self.config.model,
            voice=self.config.voice,
            modalities=self.modalities,
        ).model_dump(exclude_none=True)

    async def acquire(self) -> UpstreamCredential:
        """POST to the session endpoint and return the credential.

        Raises:
            UpstreamError: with kind CREDENTIAL_FAILURE on any failure
        """
        try:
            headers = self.config.get_headers()
        except ValueError as e:
            raise UpstreamError(UpstreamErrorKind.CREDENTIAL_FAILURE, str(e)) from e

        url = self.config.get_sessions_url()
        logger.info(f"Requesting realtime credential for model {self.config.model}")

        try:
            if self._http_session is not None:
                payload = await self._post(self._http_session, url, headers)
            else:
                timeout = aiohttp.ClientTimeout(total=self.config.credential_timeout)
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    payload = await self._post(session, url, headers)
        except asyncio.TimeoutError as e:
            raise UpstreamError(
                UpstreamErrorKind.CREDENTIAL_FAILURE,
                f"Credential request timed out after {self.config.credential_timeout}s",
            ) from e
        except aiohttp.ClientError as e:
            raise UpstreamError(
                UpstreamErrorKind.CREDENTIAL_FAILURE, f"Credential request failed: {e}"
            ) from e

        try:
            response = RealtimeSessionResponse.model_validate(payload)
        except ValidationError as e:
            raise UpstreamError(
                UpstreamErrorKind.CREDENTIAL_FAILURE,
                f"Unexpected credential response: {e}",
            ) from e

        token = response.secret_value()
        if not token:
            raise UpstreamError(
                UpstreamErrorKind.CREDENTIAL_FAILURE,
                "Credential response did not include a client secret",
            )

        credential = UpstreamCredential(
            token=token,
            model=response.model or self.config.model,
            expires_at=response.secret_expiry(),
        )
        logger.info(
            f"Acquired realtime credential (session={response.id}, "
            f"expires_at={credential.expires_at})"
        )
        return credential

    async def _post(
        self, session: aiohttp.ClientSession, url: str, headers: dict
    ) -> dict:
        async with session.post(
            url,
            json=self._request_body(),
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self.config.credential_timeout),
        ) as resp:
            if resp.status != 200:
                body = await resp.text()
                raise UpstreamError(
                    UpstreamErrorKind.CREDENTIAL_FAILURE,
                    f"Session endpoint returned HTTP {resp.status}: {body[:200]}",
                )
            try:
                return await resp.json()
            except (aiohttp.ContentTypeError, ValueError) as e:
                raise UpstreamError(
                    UpstreamErrorKind.CREDENTIAL_FAILURE,
                    f"Session endpoint returned invalid JSON: {e}",
                ) from e
