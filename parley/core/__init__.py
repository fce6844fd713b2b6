"""Streaming Turn Engine, Compression Engine and the supervising agent client."""

from parley.core.chat import ConversationChat, StreamEvent, StreamEventType, consolidate_blocks
from parley.core.client import AgentClient
from parley.core.compression import CompressionEngine, estimate_tokens, find_compress_split_point
from parley.core.events import (
    ChatCompressedEvent,
    ChatCompressionInfo,
    CompressionStatus,
    ContentEvent,
    ErrorEvent,
    FinishedEvent,
    LoopDetectedEvent,
    MaxSessionTurnsEvent,
    RetryEvent,
    ThoughtEvent,
    ThoughtSummary,
    ToolCallRequest,
    ToolCallRequestEvent,
    TurnEvent,
    TurnEventType,
    UserCancelledEvent,
)
from parley.core.loop_detection import LoopDetector, NoopLoopDetector
from parley.core.next_speaker import NextSpeakerChecker, NextSpeakerResponse
from parley.core.retry import RetryPolicy, retry_with_backoff
from parley.core.token_limits import token_limit
from parley.core.turn import Turn

__all__ = [
    "AgentClient",
    "ChatCompressedEvent",
    "ChatCompressionInfo",
    "CompressionEngine",
    "CompressionStatus",
    "ContentEvent",
    "ConversationChat",
    "ErrorEvent",
    "FinishedEvent",
    "LoopDetectedEvent",
    "LoopDetector",
    "MaxSessionTurnsEvent",
    "NextSpeakerChecker",
    "NextSpeakerResponse",
    "NoopLoopDetector",
    "RetryEvent",
    "RetryPolicy",
    "StreamEvent",
    "StreamEventType",
    "ThoughtEvent",
    "ThoughtSummary",
    "ToolCallRequest",
    "ToolCallRequestEvent",
    "Turn",
    "TurnEvent",
    "TurnEventType",
    "UserCancelledEvent",
    "consolidate_blocks",
    "estimate_tokens",
    "find_compress_split_point",
    "retry_with_backoff",
    "token_limit",
]
