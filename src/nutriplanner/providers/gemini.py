"""Gemini REST backend over httpx."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from nutriplanner.errors import TransportError
from nutriplanner.providers._errors import error_from_response, wrap_transport_error

if TYPE_CHECKING:
    from nutriplanner.config import Config
    from nutriplanner.request import RequestEnvelope

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}


class HttpxByteSource:
    """Byte source over an open streaming ``httpx.Response``."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response
        self._chunks = response.aiter_bytes()
        self._closed = False

    async def next_chunk(self) -> bytes | None:
        if self._closed:
            return None
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return None
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            raise wrap_transport_error(e, phase="stream") from e

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._response.aclose()


class GeminiBackend:
    """Google Gemini generative-language REST API.

    ``POST {base_url}/models/{model}:generateContent?key=...`` for whole
    replies and ``:streamGenerateContent`` for streams. The body is the
    envelope's canonical JSON, byte-identical across retries.
    """

    def __init__(
        self,
        config: Config,
        *,
        client: httpx.AsyncClient | None = None,
        logger: logging.Logger = logger,
    ) -> None:
        """Create a backend; an injected *client* is not closed by ``aclose``."""
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_s)
        self._logger = logger

    def _url(self, method: str) -> str:
        return f"{self._config.base_url}/models/{self._config.model}:{method}"

    def _build(self, method: str, envelope: RequestEnvelope) -> httpx.Request:
        return self._client.build_request(
            "POST",
            self._url(method),
            params={"key": self._config.api_key or ""},
            headers=_JSON_HEADERS,
            content=envelope.to_json().encode("utf-8"),
        )

    async def generate_content(self, envelope: RequestEnvelope) -> dict[str, Any]:
        request = self._build("generateContent", envelope)
        self._logger.debug(
            "POST %s (%d content blocks)", self._url("generateContent"), len(envelope.contents)
        )
        try:
            response = await self._client.send(request)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            raise wrap_transport_error(e, phase="generate") from e

        if not response.is_success:
            raise error_from_response(response, phase="generate")
        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(
                "Gemini generate returned a non-JSON body",
                retryable=True,
                status_code=response.status_code,
                phase="generate",
            ) from e
        if not isinstance(body, dict):
            raise TransportError(
                "Gemini generate returned an unexpected JSON shape",
                retryable=False,
                status_code=response.status_code,
                phase="generate",
            )
        return body

    async def open_stream(self, envelope: RequestEnvelope) -> HttpxByteSource:
        request = self._build("streamGenerateContent", envelope)
        self._logger.debug("POST %s (stream)", self._url("streamGenerateContent"))
        try:
            response = await self._client.send(request, stream=True)
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            raise wrap_transport_error(e, phase="stream") from e

        if not response.is_success:
            try:
                await response.aread()
            finally:
                await response.aclose()
            raise error_from_response(response, phase="stream")
        return HttpxByteSource(response)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
