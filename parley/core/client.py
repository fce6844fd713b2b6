"""
Agent client: the supervising loop above single turns.

For each user message the client compresses history if needed, runs a
turn, and, when the model stopped without asking for a tool, may ask the
backend whether the model wants to continue. Continuations are bounded by a
per-message turn budget and a per-session turn ceiling.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Awaitable, Callable, List, Optional, Sequence

from parley.cancellation import CancellationToken
from parley.core.chat import ConversationChat, UserInput
from parley.core.compression import CompressionEngine
from parley.core.events import (
    ChatCompressedEvent,
    ChatCompressionInfo,
    CompressionStatus,
    LoopDetectedEvent,
    MaxSessionTurnsEvent,
    TurnEvent,
    TurnEventType,
)
from parley.core.loop_detection import LoopDetector, NoopLoopDetector
from parley.core.next_speaker import NextSpeakerChecker
from parley.core.prompts import CONTINUE_PROMPT
from parley.core.retry import FallbackHandler
from parley.core.turn import Turn
from parley.history.content import Entry
from parley.history.service import HistoryService
from parley.history.tokenizers import tokenizer_for
from parley.providers.manager import ProviderManager
from parley.settings import Settings
from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)


class AgentClient:
    """Drives multi-turn agent behaviour for one conversation."""

    def __init__(
        self,
        providers: ProviderManager,
        settings: Optional[Settings] = None,
        *,
        history: Optional[HistoryService] = None,
        tools: Optional[ToolRegistry] = None,
        system_instruction: Optional[str] = None,
        compression: Optional[CompressionEngine] = None,
        next_speaker: Optional[NextSpeakerChecker] = None,
        loop_detector: Optional[LoopDetector] = None,
        on_persistent_429: Optional[FallbackHandler] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or Settings()
        self.providers = providers
        if history is None:
            history = HistoryService(
                tokenizer=tokenizer_for(self.settings.session.tokenizer),
                default_model=self.settings.session.default_model,
            )
        self.history = history
        self.chat = ConversationChat(
            providers,
            self.history,
            tools=tools,
            system_instruction=system_instruction,
            retry_settings=self.settings.retry,
            on_persistent_429=on_persistent_429,
            sleep=sleep,
        )
        self.compression = compression or CompressionEngine(self.history, providers, self.settings.compression)
        self.next_speaker = next_speaker or NextSpeakerChecker(providers)
        self.loop_detector: LoopDetector = loop_detector or NoopLoopDetector()
        self.session_turn_count = 0
        self.last_turn: Optional[Turn] = None
        self._last_prompt_id: Optional[str] = None

    # =========================================================================
    # Conversation state
    # =========================================================================

    def get_history(self, curated: bool = False) -> List[Entry]:
        return self.history.curated() if curated else self.history.all()

    def set_history(self, entries: Sequence[Entry]) -> None:
        self.chat.set_history(entries)

    def add_history(self, entry: Entry) -> None:
        self.chat.add_history(entry)

    def strip_thoughts_from_history(self) -> None:
        self.chat.strip_thoughts_from_history()

    def set_tools(self, tools: ToolRegistry) -> None:
        self.chat.set_tools(tools)

    def reset_chat(self) -> None:
        self.history.clear()
        self.compression.reset()

    def current_model(self) -> str:
        if self.providers.has_active():
            return self.providers.active.default_model
        return self.settings.session.default_model

    async def try_compress(self, force: bool = False, model: Optional[str] = None) -> ChatCompressionInfo:
        return await self.compression.maybe_compress(model or self.current_model(), force=force)

    # =========================================================================
    # Supervising loop
    # =========================================================================

    async def send_message_stream(
        self,
        request: UserInput,
        cancel: Optional[CancellationToken] = None,
        prompt_id: Optional[str] = None,
        turns: Optional[int] = None,
        model: Optional[str] = None,
    ) -> AsyncIterator[TurnEvent]:
        """Run a user message to completion, including model continuations."""
        cancel = cancel or CancellationToken()
        if prompt_id != self._last_prompt_id:
            self.loop_detector.reset(prompt_id)
            self._last_prompt_id = prompt_id

        session = self.settings.session
        remaining = min(turns if turns is not None else session.max_turns, session.max_turns)
        model = model or self.current_model()

        while True:
            self.session_turn_count += 1
            if 0 < session.max_session_turns < self.session_turn_count:
                yield MaxSessionTurnsEvent(limit=session.max_session_turns)
                return
            if remaining <= 0:
                return

            info = await self.compression.maybe_compress(model)
            if info.status == CompressionStatus.COMPRESSED:
                yield ChatCompressedEvent(info)

            turn = Turn(self.chat, prompt_id)
            self.last_turn = turn
            # Lets the loop detector stop the turn without touching the caller's token.
            internal = CancellationToken()
            linked = CancellationToken(cancel, internal)

            if await self.loop_detector.turn_started(cancel):
                yield LoopDetectedEvent()
                return

            events = turn.run(model, request, linked)
            try:
                async for event in events:
                    if self.loop_detector.add_and_check(event):
                        internal.cancel("loop detected")
                        yield LoopDetectedEvent()
                        return
                    yield event
                    if event.type == TurnEventType.ERROR:
                        return
            finally:
                await events.aclose()

            if turn.pending_tool_calls or cancel.cancelled:
                return
            if self.chat.quota_error_occurred or session.skip_next_speaker_check:
                return

            check = await self.next_speaker.check(self.history, model)
            logger.debug(
                "Next speaker after %s: %s", turn.finish_reason, check.next_speaker if check else None
            )
            if check is None or check.next_speaker != "model":
                return

            request = CONTINUE_PROMPT
            remaining -= 1
