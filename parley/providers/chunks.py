"""Canonical stream chunks and per-vendor stream decoders.

Each backend streams its own chunk shape. A decoder turns those into
:class:`ModelChunk` objects the turn engine understands. Decoders are small
state machines: vendors that split tool-call arguments over several events
only get a ``ToolCallBlock`` once the call is complete.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from pydantic_ai.messages import (
    FinalResultEvent,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    TextPart,
    TextPartDelta,
    ThinkingPart,
    ThinkingPartDelta,
    ToolCallPart,
)

from parley.history.content import Block, TextBlock, ThinkingBlock, ToolCallBlock, Usage
from parley.providers.capabilities import ProviderFormat

logger = logging.getLogger(__name__)

# Canonical finish reasons.
STOP = "STOP"
MAX_TOKENS = "MAX_TOKENS"
TOOL_CALLS = "TOOL_CALLS"
SAFETY = "SAFETY"
OTHER = "OTHER"

_FINISH_REASON_MAP = {
    # gemini
    "STOP": STOP,
    "MAX_TOKENS": MAX_TOKENS,
    "SAFETY": SAFETY,
    "RECITATION": SAFETY,
    "MALFORMED_FUNCTION_CALL": OTHER,
    # openai
    "stop": STOP,
    "length": MAX_TOKENS,
    "tool_calls": TOOL_CALLS,
    "function_call": TOOL_CALLS,
    "content_filter": SAFETY,
    # anthropic
    "end_turn": STOP,
    "stop_sequence": STOP,
    "max_tokens": MAX_TOKENS,
    "tool_use": TOOL_CALLS,
    "refusal": SAFETY,
}


def normalize_finish_reason(reason: Optional[str]) -> Optional[str]:
    if not reason:
        return None
    return _FINISH_REASON_MAP.get(reason, OTHER)


def generate_tool_call_id() -> str:
    """Generate a unique tool call ID."""
    return f"call_{uuid.uuid4().hex[:24]}"


@dataclass
class ModelChunk:
    """One piece of streamed model output in canonical form."""

    blocks: List[Block] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Optional[Usage] = None

    @property
    def has_candidate(self) -> bool:
        return bool(self.blocks)

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def thoughts(self) -> List[ThinkingBlock]:
        return [b for b in self.blocks if isinstance(b, ThinkingBlock)]

    @property
    def tool_calls(self) -> List[ToolCallBlock]:
        return [b for b in self.blocks if isinstance(b, ToolCallBlock)]

    def with_blocks(self, blocks: List[Block], finish_reason: Optional[str] = None) -> "ModelChunk":
        return replace(self, blocks=list(blocks), finish_reason=finish_reason or self.finish_reason)


class StreamDecoder:
    """Turns vendor-native stream items into canonical chunks."""

    def feed(self, item: Any) -> List[ModelChunk]:
        raise NotImplementedError

    def finish(self) -> List[ModelChunk]:
        return []


# =============================================================================
# Gemini
# =============================================================================


class GeminiDecoder(StreamDecoder):
    def feed(self, item: Dict[str, Any]) -> List[ModelChunk]:
        chunk = ModelChunk()
        usage_meta = item.get("usageMetadata") or {}
        if usage_meta:
            chunk.usage = Usage(
                prompt_tokens=usage_meta.get("promptTokenCount", 0),
                completion_tokens=usage_meta.get("candidatesTokenCount", 0),
                total_tokens=usage_meta.get("totalTokenCount", 0),
            )

        candidates = item.get("candidates") or []
        if candidates:
            candidate = candidates[0]
            chunk.finish_reason = normalize_finish_reason(candidate.get("finishReason"))
            for part in (candidate.get("content") or {}).get("parts") or []:
                if part.get("thought") and part.get("text") is not None:
                    chunk.blocks.append(ThinkingBlock(part["text"], part.get("thoughtSignature")))
                elif part.get("text") is not None:
                    chunk.blocks.append(TextBlock(part["text"]))
                elif part.get("functionCall"):
                    fc = part["functionCall"]
                    chunk.blocks.append(
                        ToolCallBlock(fc.get("id") or generate_tool_call_id(), fc.get("name", ""), fc.get("args") or {})
                    )
                else:
                    logger.debug("Dropping unsupported Gemini part: %s", sorted(part))
        return [chunk]


# =============================================================================
# OpenAI chat completions
# =============================================================================


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class OpenAIDecoder(StreamDecoder):
    def __init__(self) -> None:
        self._calls: Dict[int, _PendingCall] = {}

    def feed(self, item: Dict[str, Any]) -> List[ModelChunk]:
        out: List[ModelChunk] = []
        usage = item.get("usage")
        for choice in item.get("choices") or []:
            delta = choice.get("delta") or {}
            chunk = ModelChunk()
            reasoning = delta.get("reasoning_content") or delta.get("reasoning")
            if reasoning:
                chunk.blocks.append(ThinkingBlock(reasoning))
            if delta.get("content"):
                chunk.blocks.append(TextBlock(delta["content"]))
            for tc in delta.get("tool_calls") or []:
                pending = self._calls.setdefault(tc.get("index", 0), _PendingCall())
                if tc.get("id"):
                    pending.id = tc["id"]
                fn = tc.get("function") or {}
                if fn.get("name"):
                    pending.name += fn["name"]
                if fn.get("arguments"):
                    pending.arguments += fn["arguments"]
            finish = choice.get("finish_reason")
            if finish:
                chunk.blocks.extend(self._flush_calls())
                chunk.finish_reason = normalize_finish_reason(finish)
            if chunk.blocks or chunk.finish_reason:
                out.append(chunk)
        if usage:
            out.append(
                ModelChunk(
                    usage=Usage(
                        prompt_tokens=usage.get("prompt_tokens", 0),
                        completion_tokens=usage.get("completion_tokens", 0),
                        total_tokens=usage.get("total_tokens", 0),
                    )
                )
            )
        return out

    def finish(self) -> List[ModelChunk]:
        calls = self._flush_calls()
        return [ModelChunk(blocks=calls)] if calls else []

    def _flush_calls(self) -> List[Block]:
        blocks: List[Block] = []
        for index in sorted(self._calls):
            pending = self._calls[index]
            blocks.append(
                ToolCallBlock(pending.id or generate_tool_call_id(), pending.name, _parse_arguments(pending.arguments))
            )
        self._calls.clear()
        return blocks


# =============================================================================
# Anthropic messages
# =============================================================================


class AnthropicDecoder(StreamDecoder):
    def __init__(self) -> None:
        self._blocks: Dict[int, Dict[str, Any]] = {}
        self._input_tokens = 0

    def feed(self, item: Dict[str, Any]) -> List[ModelChunk]:
        kind = item.get("type")
        if kind == "message_start":
            usage = (item.get("message") or {}).get("usage") or {}
            self._input_tokens = usage.get("input_tokens", 0)
            return []
        if kind == "content_block_start":
            block = dict(item.get("content_block") or {})
            block.setdefault("partial_json", "")
            self._blocks[item.get("index", 0)] = block
            if block.get("type") == "text" and block.get("text"):
                return [ModelChunk(blocks=[TextBlock(block["text"])])]
            return []
        if kind == "content_block_delta":
            delta = item.get("delta") or {}
            dtype = delta.get("type")
            if dtype == "text_delta" and delta.get("text"):
                return [ModelChunk(blocks=[TextBlock(delta["text"])])]
            if dtype == "thinking_delta" and delta.get("thinking"):
                return [ModelChunk(blocks=[ThinkingBlock(delta["thinking"])])]
            if dtype == "input_json_delta":
                block = self._blocks.setdefault(item.get("index", 0), {"partial_json": ""})
                block["partial_json"] += delta.get("partial_json", "")
            return []
        if kind == "content_block_stop":
            block = self._blocks.pop(item.get("index", 0), None)
            if block and block.get("type") == "tool_use":
                params = _parse_arguments(block["partial_json"]) if block["partial_json"] else block.get("input") or {}
                call = ToolCallBlock(block.get("id") or generate_tool_call_id(), block.get("name", ""), params)
                return [ModelChunk(blocks=[call])]
            return []
        if kind == "message_delta":
            delta = item.get("delta") or {}
            usage = item.get("usage") or {}
            output_tokens = usage.get("output_tokens", 0)
            return [
                ModelChunk(
                    finish_reason=normalize_finish_reason(delta.get("stop_reason")),
                    usage=Usage(
                        prompt_tokens=self._input_tokens,
                        completion_tokens=output_tokens,
                        total_tokens=self._input_tokens + output_tokens,
                    ),
                )
            ]
        if kind == "error":
            logger.debug("Anthropic stream error event: %s", item.get("error"))
        return []


# =============================================================================
# pydantic-ai
# =============================================================================


class PydanticAIDecoder(StreamDecoder):
    """Decodes pydantic-ai stream events.

    Text and thinking are forwarded as they stream. Tool calls are taken from
    the final ``ModelResponse`` where their arguments are complete, and that
    response also supplies the finish reason and usage.
    """

    def feed(self, item: Any) -> List[ModelChunk]:
        if isinstance(item, PartStartEvent):
            part = item.part
            if isinstance(part, TextPart) and part.content:
                return [ModelChunk(blocks=[TextBlock(part.content)])]
            if isinstance(part, ThinkingPart) and part.content:
                return [ModelChunk(blocks=[ThinkingBlock(part.content, part.signature)])]
            return []
        if isinstance(item, PartDeltaEvent):
            delta = item.delta
            if isinstance(delta, TextPartDelta) and delta.content_delta:
                return [ModelChunk(blocks=[TextBlock(delta.content_delta)])]
            if isinstance(delta, ThinkingPartDelta) and delta.content_delta:
                return [ModelChunk(blocks=[ThinkingBlock(delta.content_delta)])]
            return []
        if isinstance(item, FinalResultEvent):
            return []
        if isinstance(item, ModelResponse):
            calls: List[Block] = [
                ToolCallBlock(part.tool_call_id or generate_tool_call_id(), part.tool_name, part.args_as_dict())
                for part in item.parts
                if isinstance(part, ToolCallPart)
            ]
            usage = Usage(
                prompt_tokens=item.usage.input_tokens,
                completion_tokens=item.usage.output_tokens,
                total_tokens=item.usage.input_tokens + item.usage.output_tokens,
            )
            reason = TOOL_CALLS if calls else STOP
            return [ModelChunk(blocks=calls, finish_reason=reason, usage=usage)]
        return []


def decoder_for(fmt: ProviderFormat) -> StreamDecoder:
    if fmt is ProviderFormat.GEMINI:
        return GeminiDecoder()
    if fmt is ProviderFormat.OPENAI:
        return OpenAIDecoder()
    if fmt is ProviderFormat.ANTHROPIC:
        return AnthropicDecoder()
    return PydanticAIDecoder()


def _parse_arguments(raw: str) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Tool arguments are not valid JSON, passing raw string")
        return {"_raw": raw}
