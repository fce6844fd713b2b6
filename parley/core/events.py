"""Events streamed to the caller while a turn runs."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from parley.errors import StructuredError
from parley.history.content import Usage


class TurnEventType(str, Enum):
    CONTENT = "content"
    THOUGHT = "thought"
    TOOL_CALL_REQUEST = "tool_call_request"
    RETRY = "retry"
    FINISHED = "finished"
    USER_CANCELLED = "user_cancelled"
    ERROR = "error"
    CHAT_COMPRESSED = "chat_compressed"
    MAX_SESSION_TURNS = "max_session_turns"
    LOOP_DETECTED = "loop_detected"


class CompressionStatus(str, Enum):
    NOOP = "noop"
    COMPRESSED = "compressed"
    FAILED_INFLATED_TOKEN_COUNT = "failed_inflated_token_count"
    FAILED_SUMMARIZATION_ERROR = "failed_summarization_error"

    @property
    def failed(self) -> bool:
        return self.value.startswith("failed")


@dataclass
class ChatCompressionInfo:
    status: CompressionStatus
    before_tokens: int
    after_tokens: int


@dataclass
class ThoughtSummary:
    subject: str
    description: str


@dataclass
class ToolCallRequest:
    call_id: str
    name: str
    args: Any
    prompt_id: Optional[str] = None


# =============================================================================
# Event classes
# =============================================================================


@dataclass
class ContentEvent:
    text: str
    type: TurnEventType = field(default=TurnEventType.CONTENT, init=False)


@dataclass
class ThoughtEvent:
    thought: ThoughtSummary
    type: TurnEventType = field(default=TurnEventType.THOUGHT, init=False)


@dataclass
class ToolCallRequestEvent:
    request: ToolCallRequest
    type: TurnEventType = field(default=TurnEventType.TOOL_CALL_REQUEST, init=False)


@dataclass
class RetryEvent:
    """Partial output of the previous attempt should be discarded."""

    attempt: int
    type: TurnEventType = field(default=TurnEventType.RETRY, init=False)


@dataclass
class FinishedEvent:
    reason: str
    usage: Optional[Usage] = None
    type: TurnEventType = field(default=TurnEventType.FINISHED, init=False)


@dataclass
class UserCancelledEvent:
    type: TurnEventType = field(default=TurnEventType.USER_CANCELLED, init=False)


@dataclass
class ErrorEvent:
    error: StructuredError
    type: TurnEventType = field(default=TurnEventType.ERROR, init=False)


@dataclass
class ChatCompressedEvent:
    info: ChatCompressionInfo
    type: TurnEventType = field(default=TurnEventType.CHAT_COMPRESSED, init=False)


@dataclass
class MaxSessionTurnsEvent:
    limit: int
    type: TurnEventType = field(default=TurnEventType.MAX_SESSION_TURNS, init=False)


@dataclass
class LoopDetectedEvent:
    type: TurnEventType = field(default=TurnEventType.LOOP_DETECTED, init=False)


TurnEvent = Union[
    ContentEvent,
    ThoughtEvent,
    ToolCallRequestEvent,
    RetryEvent,
    FinishedEvent,
    UserCancelledEvent,
    ErrorEvent,
    ChatCompressedEvent,
    MaxSessionTurnsEvent,
    LoopDetectedEvent,
]


_SUBJECT_RE = re.compile(r"\*\*(.*?)\*\*", re.DOTALL)


def parse_thought(raw: str) -> ThoughtSummary:
    """Split ``**Subject** rest`` into a subject and a description."""
    match = _SUBJECT_RE.search(raw)
    if not match:
        return ThoughtSummary(subject="", description=raw.strip())
    subject = match.group(1).strip()
    description = (raw[: match.start()] + raw[match.end():]).strip()
    return ThoughtSummary(subject=subject, description=description)
