"""A provider: one backend plus the rules for talking to it."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import List, Optional

from parley.auth.helper import ProviderAuthHelper
from parley.cancellation import CancellationToken
from parley.history.content import Entry
from parley.providers.backends import Backend
from parley.providers.capabilities import ProviderCapabilities, ProviderFormat, capabilities_for
from parley.providers.chunks import ModelChunk, decoder_for
from parley.providers.converters import to_wire
from parley.providers.payload import build_request_entries
from parley.tools import ToolDeclaration

logger = logging.getLogger(__name__)


class Provider:
    """Converts canonical requests for a backend and decodes its stream.

    The turn engine only ever sees :class:`ModelChunk` objects; which vendor
    is behind them is decided here by ``fmt``.
    """

    def __init__(
        self,
        name: str,
        fmt: ProviderFormat,
        backend: Backend,
        *,
        default_model: str,
        auth: Optional[ProviderAuthHelper] = None,
        capabilities: Optional[ProviderCapabilities] = None,
    ):
        self.name = name
        self.fmt = fmt
        self.backend = backend
        self.default_model = default_model
        self.auth = auth
        self.capabilities = capabilities or capabilities_for(fmt)

    async def stream(
        self,
        entries: List[Entry],
        tools: List[ToolDeclaration],
        model: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
        system_instruction: Optional[str] = None,
    ) -> AsyncIterator[ModelChunk]:
        shaped = build_request_entries(entries, self.capabilities)
        payload, wire_tools = to_wire(self.fmt, shaped, tools, system_instruction)
        decoder = decoder_for(self.fmt)
        items = self.backend.send(payload, wire_tools, model or self.default_model, cancel)
        try:
            async for item in items:
                for chunk in decoder.feed(item):
                    yield chunk
            for chunk in decoder.finish():
                yield chunk
        finally:
            aclose = getattr(items, "aclose", None)
            if aclose is not None:
                await aclose()

    async def generate_text(
        self,
        entries: List[Entry],
        model: Optional[str] = None,
        system_instruction: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> str:
        """Run a tool-less request and return the concatenated answer text."""
        parts = []
        async for chunk in self.stream(entries, [], model, cancel, system_instruction):
            parts.append(chunk.text)
        return "".join(parts)

    def __repr__(self) -> str:
        return f"Provider(name={self.name!r}, fmt={self.fmt.value!r}, default_model={self.default_model!r})"
