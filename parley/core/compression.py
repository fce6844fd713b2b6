"""
Compression Engine.

Once curated history grows past a fraction of the model's context window,
the oldest part of it is summarized by the backend into a
``<state_snapshot>``. The conversation is then reseeded with the summary, an
acknowledgement, and the untouched tail.

A compression that does not actually shrink the history is thrown away, and
the engine stops trying for the rest of the session unless forced.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Awaitable, Callable, List, Optional

from parley.core.events import ChatCompressionInfo, CompressionStatus
from parley.core.prompts import COMPRESSION_ACKNOWLEDGEMENT, COMPRESSION_INSTRUCTION, COMPRESSION_SYSTEM_PROMPT
from parley.core.token_limits import token_limit
from parley.history.content import Entry, Speaker, ai_text, human
from parley.history.service import HistoryService, transport_safe
from parley.observability import log_compression
from parley.providers.manager import ProviderManager
from parley.settings import CompressionSettings

logger = logging.getLogger(__name__)

Summarizer = Callable[[List[Entry], str], Awaitable[str]]


def _serialized_length(entry: Entry) -> int:
    return len(json.dumps(entry.to_dict()))


def find_compress_split_point(entries: List[Entry], preserve_fraction: float) -> int:
    """Index before which history may be summarized.

    Only a human turn that is not a tool result can start the preserved
    tail. Returns ``len(entries)`` when everything can go, and 0 when nothing
    can.
    """
    if preserve_fraction <= 0 or preserve_fraction >= 1:
        raise ValueError("preserve_fraction must be between 0 and 1")

    lengths = [_serialized_length(e) for e in transport_safe(entries)]
    target = sum(lengths) * (1 - preserve_fraction)

    last_split_point = 0
    cumulative = 0
    for i, entry in enumerate(entries):
        if entry.speaker == Speaker.HUMAN.value and not entry.tool_responses:
            if cumulative >= target:
                return i
            last_split_point = i
        cumulative += lengths[i]

    if entries:
        last = entries[-1]
        if last.speaker == Speaker.AI.value and not last.tool_calls:
            return len(entries)

    return last_split_point


def estimate_tokens(entries: List[Entry]) -> int:
    """About one token per four characters of serialized history."""
    return math.floor(sum(_serialized_length(e) for e in transport_safe(entries)) / 4)


class CompressionEngine:
    """Decides when to compress a conversation and performs the compression."""

    def __init__(
        self,
        history: HistoryService,
        providers: Optional[ProviderManager] = None,
        settings: Optional[CompressionSettings] = None,
        *,
        summarizer: Optional[Summarizer] = None,
        limit_for: Callable[[str], int] = token_limit,
    ):
        if providers is None and summarizer is None:
            raise ValueError("CompressionEngine needs a provider manager or a summarizer")
        self.history = history
        self.providers = providers
        self.settings = settings or CompressionSettings()
        self._summarizer = summarizer or self._summarize_with_provider
        self._limit_for = limit_for
        self.has_failed_attempt = False

    def reset(self) -> None:
        """Forget a previous failure, e.g. when a new conversation starts."""
        self.has_failed_attempt = False

    async def maybe_compress(self, model: str, force: bool = False) -> ChatCompressionInfo:
        """Compress if needed; never raises."""
        curated = self.history.curated()
        if not curated or (self.has_failed_attempt and not force):
            return ChatCompressionInfo(CompressionStatus.NOOP, 0, 0)

        original_tokens = self.history.total_tokens
        if not force:
            limit = self._limit_for(model)
            if original_tokens < self.settings.token_threshold * limit:
                return ChatCompressionInfo(CompressionStatus.NOOP, original_tokens, original_tokens)

        split_point = find_compress_split_point(curated, self.settings.preserve_fraction)
        if split_point == 0:
            logger.debug("No safe split point, nothing to compress")
            return ChatCompressionInfo(CompressionStatus.NOOP, original_tokens, original_tokens)

        to_compress = curated[:split_point]
        to_keep = curated[split_point:]

        self.history.start_compression()
        try:
            info = await self._compress(model, force, original_tokens, to_compress, to_keep)
        finally:
            self.history.end_compression()

        log_compression(model, info.status.value, info.before_tokens, info.after_tokens)
        return info

    async def _compress(
        self,
        model: str,
        force: bool,
        original_tokens: int,
        to_compress: List[Entry],
        to_keep: List[Entry],
    ) -> ChatCompressionInfo:
        logger.info("Compressing %d of %d entries", len(to_compress), len(to_compress) + len(to_keep))
        try:
            summary = await self._summarizer(transport_safe(to_compress) + [human(COMPRESSION_INSTRUCTION)], model)
        except Exception:
            logger.exception("Summarization request failed")
            if not force:
                self.has_failed_attempt = True
            return ChatCompressionInfo(CompressionStatus.FAILED_SUMMARIZATION_ERROR, original_tokens, original_tokens)

        new_history = [human(summary or ""), ai_text(COMPRESSION_ACKNOWLEDGEMENT)] + to_keep
        new_tokens = estimate_tokens(new_history)

        if new_tokens >= original_tokens:
            logger.warning("Compression would not shrink history (%d -> %d tokens)", original_tokens, new_tokens)
            if not force:
                self.has_failed_attempt = True
            return ChatCompressionInfo(CompressionStatus.FAILED_INFLATED_TOKEN_COUNT, original_tokens, new_tokens)

        self.history.replace_all(new_history, total_tokens=new_tokens)
        logger.info("Compressed history from %d to %d tokens", original_tokens, new_tokens)
        return ChatCompressionInfo(CompressionStatus.COMPRESSED, original_tokens, new_tokens)

    async def _summarize_with_provider(self, entries: List[Entry], model: str) -> str:
        provider = self.providers.active
        return await provider.generate_text(entries, model, system_instruction=COMPRESSION_SYSTEM_PROMPT)
