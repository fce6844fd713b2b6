"""Backend streaming calls.

A backend takes an already converted payload and yields vendor-native
stream items; decoding them is the provider's job. Two implementations:

- :class:`HttpBackend` talks to the Gemini, OpenAI-compatible and Anthropic
  HTTP APIs directly with httpx server-sent events.
- :class:`PydanticAIBackend` wraps any ``pydantic_ai`` model and yields its
  stream events followed by the final ``ModelResponse``.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx
from pydantic_ai.messages import ModelMessage
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.tools import ToolDefinition

from parley.auth.helper import ProviderAuthHelper
from parley.cancellation import CancellationToken
from parley.errors import BackendError, UnauthorizedError
from parley.providers.capabilities import ProviderFormat

logger = logging.getLogger(__name__)

DEFAULT_BASE_URLS: Dict[ProviderFormat, str] = {
    ProviderFormat.GEMINI: "https://generativelanguage.googleapis.com/v1beta",
    ProviderFormat.OPENAI: "https://api.openai.com/v1",
    ProviderFormat.ANTHROPIC: "https://api.anthropic.com/v1",
}

ANTHROPIC_VERSION = "2023-06-01"


class Backend(Protocol):
    def send(
        self,
        payload: Any,
        tools: List[Any],
        model: str,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[Any]: ...


def _retry_after(headers: httpx.Headers) -> Optional[float]:
    value = headers.get("retry-after")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def error_from_response(status: int, body: str, headers: httpx.Headers) -> BackendError:
    message = f"API error {status}: {body}"
    if status == 401:
        return UnauthorizedError(message)
    return BackendError(message, status=status, retry_after=_retry_after(headers))


class HttpBackend:
    """Direct SSE streaming against a vendor HTTP API."""

    def __init__(
        self,
        fmt: ProviderFormat,
        *,
        base_url: Optional[str] = None,
        auth: Optional[ProviderAuthHelper] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_output_tokens: int = 8192,
        timeout: float = 180,
    ):
        if fmt is ProviderFormat.PYDANTIC_AI:
            raise ValueError("HttpBackend does not speak the pydantic_ai format")
        self.fmt = fmt
        self.base_url = (base_url or DEFAULT_BASE_URLS[fmt]).rstrip("/")
        self.auth = auth
        self.max_output_tokens = max_output_tokens
        self._timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def aclose(self) -> None:
        """Close HTTP client if we own it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def build_request(
        self, payload: Dict[str, Any], tools: List[Any], model: str, token: str
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        body: Dict[str, Any] = dict(payload)

        if self.fmt is ProviderFormat.GEMINI:
            url = f"{self.base_url}/models/{model}:streamGenerateContent?alt=sse"
            if token:
                headers["x-goog-api-key"] = token
            if tools:
                body["tools"] = tools
        elif self.fmt is ProviderFormat.OPENAI:
            url = f"{self.base_url}/chat/completions"
            if token:
                headers["Authorization"] = f"Bearer {token}"
            body.update({"model": model, "stream": True, "stream_options": {"include_usage": True}})
            if tools:
                body["tools"] = tools
        else:
            url = f"{self.base_url}/messages"
            if token:
                headers["x-api-key"] = token
            headers["anthropic-version"] = ANTHROPIC_VERSION
            body.update({"model": model, "stream": True, "max_tokens": self.max_output_tokens})
            if tools:
                body["tools"] = tools
        return url, headers, body

    async def send(
        self,
        payload: Dict[str, Any],
        tools: List[Any],
        model: str,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        token = await self.auth.get_token() if self.auth is not None else ""
        url, headers, body = self.build_request(payload, tools, model, token)
        client = await self._get_client()

        async with client.stream("POST", url, json=body, headers=headers) as response:
            if response.status_code != 200:
                text = (await response.aread()).decode("utf-8", errors="replace")
                raise error_from_response(response.status_code, text, response.headers)

            async for line in response.aiter_lines():
                if cancel is not None and cancel.cancelled:
                    logger.debug("Stream cancelled, closing %s", url)
                    return
                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[5:].strip()
                if not data:
                    continue
                if data == "[DONE]":
                    return
                try:
                    yield json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping undecodable SSE line: %s", data[:200])
                    continue


class PydanticAIBackend:
    """Streams through a ``pydantic_ai`` model."""

    def __init__(self, model: Model):
        self.model = model

    async def send(
        self,
        payload: List[ModelMessage],
        tools: List[ToolDefinition],
        model: str,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[Any]:
        if model and model != self.model.model_name:
            logger.debug("Ignoring model %s, pydantic-ai backend is bound to %s", model, self.model.model_name)
        params = ModelRequestParameters(function_tools=list(tools))
        async with self.model.request_stream(payload, None, params) as stream:
            async for event in stream:
                if cancel is not None and cancel.cancelled:
                    return
                yield event
            yield stream.get()
