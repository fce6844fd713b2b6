"""One model turn, translated into caller-facing events."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import List, Optional

from parley.cancellation import CancellationToken
from parley.core.chat import ConversationChat, StreamEventType, UserInput
from parley.core.events import (
    ContentEvent,
    ErrorEvent,
    FinishedEvent,
    RetryEvent,
    ThoughtEvent,
    ToolCallRequest,
    ToolCallRequestEvent,
    TurnEvent,
    UserCancelledEvent,
    parse_thought,
)
from parley.errors import TurnCancelledError, UnauthorizedError, to_structured_error
from parley.history.content import TextBlock, ThinkingBlock, ToolCallBlock

logger = logging.getLogger(__name__)


class Turn:
    """Runs a single exchange and collects the tool calls it requested."""

    def __init__(self, chat: ConversationChat, prompt_id: Optional[str] = None):
        self.chat = chat
        self.prompt_id = prompt_id
        self.pending_tool_calls: List[ToolCallRequest] = []
        self.finish_reason: Optional[str] = None

    async def run(
        self,
        model: Optional[str],
        request: UserInput,
        cancel: CancellationToken,
    ) -> AsyncIterator[TurnEvent]:
        stream = self.chat.send_message_stream(model, request, cancel)
        try:
            async for event in stream:
                if cancel.cancelled:
                    yield UserCancelledEvent()
                    return

                if event.type == StreamEventType.RETRY:
                    # The consumer drops what it showed for the failed attempt.
                    self.pending_tool_calls.clear()
                    yield RetryEvent(attempt=event.attempt)
                    continue

                chunk = event.chunk
                for block in chunk.blocks:
                    if isinstance(block, ThinkingBlock):
                        yield ThoughtEvent(parse_thought(block.thought))
                    elif isinstance(block, TextBlock):
                        if block.text:
                            yield ContentEvent(block.text)
                    elif isinstance(block, ToolCallBlock):
                        request_info = ToolCallRequest(
                            call_id=block.id,
                            name=block.name,
                            args=block.parameters,
                            prompt_id=self.prompt_id,
                        )
                        self.pending_tool_calls.append(request_info)
                        yield ToolCallRequestEvent(request_info)

                if chunk.finish_reason:
                    self.finish_reason = chunk.finish_reason
                    yield FinishedEvent(reason=chunk.finish_reason, usage=chunk.usage)
        except TurnCancelledError:
            yield UserCancelledEvent()
        except UnauthorizedError:
            raise
        except Exception as e:
            if cancel.cancelled:
                yield UserCancelledEvent()
                return
            logger.warning("Turn failed: %s", e)
            error = to_structured_error(e)
            self.chat.maybe_include_schema_depth_context(error)
            yield ErrorEvent(error)
        finally:
            await stream.aclose()
