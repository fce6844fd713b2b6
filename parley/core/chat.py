"""
Streaming Turn Engine.

``ConversationChat.send_message_stream`` drives one request/response
exchange against the active provider:

1. build the payload from curated history plus the new input (the input is
   *not* written to history yet)
2. open the stream (backend errors are retried with backoff) and validate
   every chunk, holding thinking blocks aside
3. cut the stream after the first mutating tool call if a second one shows
   up
4. accept the turn if it requested a tool, or ended with a finish reason and
   some text; otherwise raise :class:`InvalidStreamError`
5. retry invalid streams with linear backoff, yielding a retry event first
6. on success, commit input and consolidated output to history in one go

Nothing from a failed, cancelled or retried attempt is ever committed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from parley.cancellation import CancellationToken
from parley.core.retry import FallbackHandler, RetryPolicy, retry_with_backoff
from parley.errors import InvalidStreamError, InvalidStreamKind, StructuredError, TurnCancelledError, is_schema_depth_error
from parley.history.content import (
    Block,
    Entry,
    EntryMetadata,
    Speaker,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    Usage,
    human,
)
from parley.history.service import HistoryService, transport_safe
from parley.observability import log_content_retry, log_content_retry_failure
from parley.providers.chunks import STOP, ModelChunk
from parley.providers.manager import ProviderManager
from parley.providers.payload import suppress_echoes
from parley.providers.provider import Provider
from parley.settings import RetrySettings
from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)

UserInput = Union[str, Entry, Sequence[Entry]]


class StreamEventType(str, Enum):
    CHUNK = "chunk"
    # Partial output from the previous attempt should be discarded.
    RETRY = "retry"


@dataclass
class StreamEvent:
    type: StreamEventType
    chunk: Optional[ModelChunk] = None
    attempt: int = 0


def to_entries(message: UserInput) -> List[Entry]:
    if isinstance(message, str):
        return [human(message)]
    if isinstance(message, Entry):
        return [message]
    return list(message)


def is_valid_chunk(chunk: ModelChunk) -> bool:
    """A chunk counts only if it has content and no empty text parts."""
    if not chunk.has_candidate:
        return False
    return not any(isinstance(b, TextBlock) and b.text == "" for b in chunk.blocks)


def consolidate_blocks(blocks: List[Block]) -> List[Block]:
    """Merge runs of adjacent text blocks."""
    merged: List[Block] = []
    for block in blocks:
        if isinstance(block, TextBlock) and merged and isinstance(merged[-1], TextBlock):
            merged[-1] = TextBlock(merged[-1].text + block.text)
        else:
            merged.append(block)
    return merged


class ConversationChat:
    """One conversation's request/response cycle against the active provider."""

    def __init__(
        self,
        providers: ProviderManager,
        history: Optional[HistoryService] = None,
        *,
        tools: Optional[ToolRegistry] = None,
        system_instruction: Optional[str] = None,
        retry_settings: Optional[RetrySettings] = None,
        on_persistent_429: Optional[FallbackHandler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.providers = providers
        self.history = history if history is not None else HistoryService()
        self.tools = tools if tools is not None else ToolRegistry()
        self.system_instruction = system_instruction
        self.retry_settings = retry_settings or RetrySettings()
        self._on_persistent_429 = on_persistent_429
        self._sleep = sleep
        # One exchange at a time per conversation.
        self._send_lock = asyncio.Lock()
        self.last_thoughts: List[ThinkingBlock] = []
        self.last_model: Optional[str] = None
        self.quota_error_occurred = False

    # =========================================================================
    # History access
    # =========================================================================

    def set_history(self, entries: Sequence[Entry]) -> None:
        self.history.replace_all(list(entries))

    def add_history(self, entry: Entry) -> None:
        self.history.append(entry, self.last_model)

    def strip_thoughts_from_history(self) -> None:
        self.history.strip_thinking()

    def set_tools(self, tools: ToolRegistry) -> None:
        self.tools = tools

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_message_stream(
        self,
        model: Optional[str],
        message: UserInput,
        cancel: Optional[CancellationToken] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one exchange; see the module docstring for the algorithm."""
        cancel = cancel or CancellationToken()
        user_entries = to_entries(message)

        async with self._send_lock:
            provider = self.providers.active
            model = model or provider.default_model
            request = self.history.curated_for_transport() + transport_safe(user_entries)
            max_attempts = self.retry_settings.content_max_attempts

            for attempt in range(max_attempts):
                if attempt > 0:
                    yield StreamEvent(StreamEventType.RETRY, attempt=attempt)
                try:
                    stream = await self._open_stream(provider, model, request, cancel)
                    async for chunk in self._process_stream(provider, stream, user_entries, cancel):
                        yield StreamEvent(StreamEventType.CHUNK, chunk=chunk)
                    return
                except InvalidStreamError as error:
                    if attempt + 1 >= max_attempts:
                        logger.warning("Giving up after %d invalid streams: %s", max_attempts, error)
                        log_content_retry_failure(model, max_attempts, error.kind.value)
                        raise
                    delay = self.retry_settings.content_initial_delay * (attempt + 1)
                    logger.info("Invalid stream (%s), retrying in %.1fs", error.kind.value, delay)
                    log_content_retry(model, attempt + 1, max_attempts, error.kind.value, delay)
                    await self._sleep(delay)

    async def _open_stream(
        self,
        provider: Provider,
        model: str,
        request: List[Entry],
        cancel: CancellationToken,
    ) -> AsyncIterator[ModelChunk]:
        """Open the provider stream, retrying failures that happen before the first chunk."""

        async def open_once(current_model: str) -> AsyncIterator[ModelChunk]:
            self.last_model = current_model
            stream = provider.stream(
                request, self.tools.declarations(), current_model, cancel, self.system_instruction
            )
            try:
                first = await stream.__anext__()
            except StopAsyncIteration:
                return _empty()
            return _prepend(first, stream)

        fallback = self._handle_persistent_429 if self._on_persistent_429 is not None else None
        return await retry_with_backoff(
            open_once,
            model,
            RetryPolicy.from_settings(self.retry_settings),
            on_persistent_429=fallback,
            sleep=self._sleep,
            cancel=cancel,
        )

    async def _handle_persistent_429(self, model: str, error: BaseException) -> Optional[str]:
        self.quota_error_occurred = True
        return await self._on_persistent_429(model, error)

    async def _process_stream(
        self,
        provider: Provider,
        stream: AsyncIterator[ModelChunk],
        user_entries: List[Entry],
        cancel: CancellationToken,
    ) -> AsyncIterator[ModelChunk]:
        output: List[Block] = []
        thoughts: List[ThinkingBlock] = []
        has_tool_call = False
        has_finish_reason = False
        usage: Optional[Usage] = None

        async for chunk in self._stop_before_second_mutator(stream):
            if cancel.cancelled:
                raise TurnCancelledError("Turn cancelled")
            if chunk.finish_reason:
                has_finish_reason = True
            if chunk.usage is not None:
                usage = chunk.usage
            if is_valid_chunk(chunk):
                for block in chunk.blocks:
                    if isinstance(block, ThinkingBlock):
                        thoughts.append(block)
                        continue
                    if isinstance(block, ToolCallBlock):
                        has_tool_call = True
                    output.append(block)
            yield chunk

        if cancel.cancelled:
            raise TurnCancelledError("Turn cancelled")

        self.last_thoughts = thoughts
        consolidated = consolidate_blocks(output)
        if not has_tool_call:
            text = "".join(b.text for b in consolidated if isinstance(b, TextBlock)).strip()
            if not has_finish_reason:
                raise InvalidStreamError(
                    "Model stream ended without a finish reason.", InvalidStreamKind.NO_FINISH_REASON
                )
            if not text:
                raise InvalidStreamError(
                    "Model stream ended with empty response text.", InvalidStreamKind.NO_RESPONSE_TEXT
                )

        self._record_history(provider, user_entries, consolidated, usage)

    async def _stop_before_second_mutator(self, stream: AsyncIterator[ModelChunk]) -> AsyncIterator[ModelChunk]:
        """Pass chunks through until a second mutating tool call appears.

        The chunk carrying the second mutator is cut just before it and given
        a synthetic stop; everything after it is discarded.
        """
        found_mutator = False
        try:
            async for chunk in stream:
                kept: List[Block] = []
                for block in chunk.blocks:
                    if isinstance(block, ToolCallBlock) and self.tools.is_mutator(block.name):
                        if found_mutator:
                            logger.debug("Second mutating call %s, truncating stream", block.name)
                            yield chunk.with_blocks(kept, finish_reason=STOP)
                            return
                        found_mutator = True
                    kept.append(block)
                yield chunk
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def _record_history(
        self,
        provider: Provider,
        user_entries: List[Entry],
        output: List[Block],
        usage: Optional[Usage],
    ) -> None:
        """Commit the finished turn: user input first, then the model entry."""
        to_record = user_entries
        if not provider.capabilities.requires_tool_echo:
            to_record = suppress_echoes(user_entries, self.history.tool_call_ids())

        ai_entry: Optional[Entry] = None
        if output:
            ai_entry = Entry(Speaker.AI.value, output, EntryMetadata(model=self.last_model, usage=usage))

        self.history.record_turn(to_record, ai_entry, model=self.last_model)

    # =========================================================================
    # Errors
    # =========================================================================

    def maybe_include_schema_depth_context(self, error: StructuredError) -> None:
        """Name tools with self-referential schemas when the backend balked at depth."""
        if not is_schema_depth_error(error.message):
            return
        cyclic = self.tools.cyclic_schema_tools()
        if cyclic:
            error.message += (
                "\n\nThis error was probably caused by cyclic schema references in one of the "
                "following tools, try disabling them:\n\n - " + "\n - ".join(cyclic) + "\n"
            )


async def _empty() -> AsyncIterator[ModelChunk]:
    return
    yield  # pragma: no cover


async def _prepend(first: ModelChunk, rest: AsyncIterator[ModelChunk]) -> AsyncIterator[ModelChunk]:
    try:
        yield first
        async for chunk in rest:
            yield chunk
    finally:
        aclose = getattr(rest, "aclose", None)
        if aclose is not None:
            await aclose()
