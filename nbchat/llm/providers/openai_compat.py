"""
OpenAI-compatible chat-completion provider.

Works with any endpoint that speaks the OpenAI ``/v1/chat/completions`` wire
protocol -- OpenAI itself, Azure OpenAI, vLLM, LM Studio, LocalAI, etc.

Dependencies: ``httpx`` (async HTTP client).  No ``openai`` SDK needed.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
from typing import AsyncIterator

import httpx

from nbchat.cancellation import CancellationToken
from nbchat.errors import ConnectionReset, ProviderHTTPError
from nbchat.llm.providers.base import Provider
from nbchat.llm.types import CompletionRequest

logger = logging.getLogger(__name__)


class OpenAICompatProvider(Provider):
    """
    Stream-capable provider for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    url:
        Base URL of the API, e.g. ``"https://api.openai.com/v1"`` or
        ``"http://localhost:8080/v1"``.
    api_key:
        Bearer token.  Pass ``""`` for unauthenticated local endpoints.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Number of automatic retries on HTTP 429/5xx before any byte of the
        response body was consumed.  Mid-stream failures are never retried.
    transport:
        Optional httpx transport (tests inject ``httpx.MockTransport``).
    """

    def __init__(
        self,
        url: str = "https://api.openai.com/v1",
        api_key: str = "",
        timeout: float = 120.0,
        max_retries: int = 0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._max_retries = max_retries
        self._transport = transport

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "openai-compat"

    async def stream(
        self,
        request: CompletionRequest,
        cancel: CancellationToken,
    ) -> AsyncIterator[dict]:
        body = request.to_body()
        body["stream"] = True
        self._log_request(body)
        async for event in self._stream_request(body, self._build_headers(), cancel):
            yield event

    async def complete(self, request: CompletionRequest) -> str:
        body = request.to_body()
        body["stream"] = False
        self._log_request(body)
        data = await self._sync_request(body, self._build_headers())
        choices = data.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("message") or {}).get("content") or ""

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _log_request(self, body: dict) -> None:
        logger.info(
            "REQUEST: model=%s tools=%d messages=%d api_key=%s...",
            body.get("model"),
            len(body.get("tools") or []),
            len(body.get("messages") or []),
            self._api_key[:6] if self._api_key else "(none)",
        )
        logger.debug("Request body:\n%s", json.dumps(body, indent=2))

    @staticmethod
    async def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        raw = (await response.aread()).decode("utf-8", errors="replace")
        message = raw
        try:
            message = json.loads(raw)["error"]["message"]
        except (ValueError, KeyError, TypeError):
            pass
        raise ProviderHTTPError(response.status_code, message)

    @staticmethod
    def _retryable(status_code: int) -> bool:
        return status_code == 429 or status_code >= 500

    # ------------------------------------------------------------------
    # Streaming request
    # ------------------------------------------------------------------

    async def _stream_request(
        self,
        body: dict,
        headers: dict[str, str],
        cancel: CancellationToken,
    ) -> AsyncIterator[dict]:
        url = f"{self._url}/chat/completions"

        for attempt in range(1 + self._max_retries):
            async with self._client() as client:
                async with client.stream(
                    "POST", url, json=body, headers=headers
                ) as response:
                    if self._retryable(response.status_code) and attempt < self._max_retries:
                        # Read the body so the connection is released.
                        await response.aread()
                        logger.warning(
                            "HTTP %d, retrying (%d/%d)",
                            response.status_code,
                            attempt + 1,
                            self._max_retries,
                        )
                        continue

                    await self._raise_for_status(response)

                    unregister = cancel.on_cancel(
                        lambda: asyncio.ensure_future(response.aclose())
                    )
                    try:
                        async for event in self._parse_sse_stream(response, cancel):
                            yield event
                    except (httpx.ReadError, httpx.RemoteProtocolError) as exc:
                        if cancel.is_cancelled:
                            return
                        raise ConnectionReset(str(exc) or type(exc).__name__) from exc
                    except httpx.StreamClosed:
                        if not cancel.is_cancelled:
                            raise
                        return
                    finally:
                        unregister()
                    return

    async def _parse_sse_stream(
        self, response: httpx.Response, cancel: CancellationToken
    ) -> AsyncIterator[dict]:
        """
        Parse Server-Sent Events from the response byte stream.

        Each SSE event has the form::

            data: {json}\\n\\n

        The sentinel ``data: [DONE]`` terminates the stream.  Bytes are
        decoded incrementally so a multi-byte character split across network
        chunks is reassembled rather than replaced.
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        async for raw_bytes in response.aiter_bytes():
            buffer += decoder.decode(raw_bytes)

            while "\n" in buffer:
                line, buffer = buffer.split("\n", 1)
                line = line.rstrip("\r")

                if not line or not line.startswith("data:"):
                    # Event boundary, comment or unsupported field.
                    continue

                data_str = line[len("data:"):].strip()
                if data_str == "[DONE]":
                    return

                try:
                    data = json.loads(data_str)
                except json.JSONDecodeError:
                    logger.warning("Failed to parse SSE data: %s", data_str[:200])
                    continue

                yield data

            if cancel.is_cancelled:
                return

    # ------------------------------------------------------------------
    # Non-streaming request
    # ------------------------------------------------------------------

    async def _sync_request(self, body: dict, headers: dict[str, str]) -> dict:
        url = f"{self._url}/chat/completions"

        for attempt in range(1 + self._max_retries):
            async with self._client() as client:
                resp = await client.post(url, json=body, headers=headers)

                if self._retryable(resp.status_code) and attempt < self._max_retries:
                    continue

                await self._raise_for_status(resp)
                return resp.json()

        # Should never reach here.
        raise RuntimeError("unreachable")  # pragma: no cover
