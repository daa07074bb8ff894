"""Tests for CredentialProvider against a mocked aiohttp session."""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from edgerelay.config.models import OpenAIConfig
from edgerelay.errors import UpstreamError, UpstreamErrorKind
from edgerelay.upstream.credentials import CredentialProvider, UpstreamCredential

TEST_MODEL = "gpt-4o-realtime-preview-2024-12-17"


def make_http_session(status=200, payload=None, text=""):
    """Mock aiohttp.ClientSession whose post() yields one response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)
    response.text = AsyncMock(return_value=text)

    session = MagicMock()
    session.post.return_value.__aenter__ = AsyncMock(return_value=response)
    session.post.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


@pytest.fixture
def openai_config():
    return OpenAIConfig(api_key="sk-test", model=TEST_MODEL, voice="verse")


@pytest.mark.asyncio
async def test_acquire_with_object_secret(openai_config):
    http = make_http_session(
        payload={
            "id": "sess_123",
            "model": TEST_MODEL,
            "client_secret": {"value": "ek_abc", "expires_at": 1700000000},
        }
    )
    provider = CredentialProvider(openai_config, http_session=http)

    credential = await provider.acquire()

    assert credential == UpstreamCredential(
        token="ek_abc", model=TEST_MODEL, expires_at=1700000000
    )


@pytest.mark.asyncio
async def test_acquire_with_string_secret(openai_config):
    http = make_http_session(payload={"client_secret": "ek_plain", "expires_at": 42})
    provider = CredentialProvider(openai_config, http_session=http)

    credential = await provider.acquire()

    assert credential.token == "ek_plain"
    assert credential.model == TEST_MODEL
    assert credential.expires_at == 42


@pytest.mark.asyncio
async def test_request_body_and_headers(openai_config):
    http = make_http_session(payload={"client_secret": {"value": "ek"}})
    provider = CredentialProvider(openai_config, modalities=["text"], http_session=http)

    await provider.acquire()

    args, kwargs = http.post.call_args
    assert args[0] == "https://api.openai.com/v1/realtime/sessions"
    assert kwargs["json"] == {"model": TEST_MODEL, "voice": "verse", "modalities": ["text"]}
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"


@pytest.mark.asyncio
async def test_http_error_status(openai_config):
    http = make_http_session(status=401, text="invalid api key")
    provider = CredentialProvider(openai_config, http_session=http)

    with pytest.raises(UpstreamError) as exc_info:
        await provider.acquire()

    assert exc_info.value.kind == UpstreamErrorKind.CREDENTIAL_FAILURE
    assert "401" in str(exc_info.value)


@pytest.mark.asyncio
async def test_missing_client_secret(openai_config):
    http = make_http_session(payload={"id": "sess_123"})
    provider = CredentialProvider(openai_config, http_session=http)

    with pytest.raises(UpstreamError) as exc_info:
        await provider.acquire()

    assert exc_info.value.kind == UpstreamErrorKind.CREDENTIAL_FAILURE


@pytest.mark.asyncio
async def test_client_error(openai_config):
    http = MagicMock()
    http.post.side_effect = aiohttp.ClientConnectionError("connection reset")
    provider = CredentialProvider(openai_config, http_session=http)

    with pytest.raises(UpstreamError) as exc_info:
        await provider.acquire()

    assert exc_info.value.kind == UpstreamErrorKind.CREDENTIAL_FAILURE
    assert "connection reset" in str(exc_info.value)


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_request():
    http = make_http_session(payload={})
    provider = CredentialProvider(OpenAIConfig(api_key=None), http_session=http)

    with pytest.raises(UpstreamError) as exc_info:
        await provider.acquire()

    assert exc_info.value.kind == UpstreamErrorKind.CREDENTIAL_FAILURE
    http.post.assert_not_called()
