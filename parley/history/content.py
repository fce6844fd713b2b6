"""Canonical, provider-agnostic conversation entries.

An :class:`Entry` is one turn of the conversation spoken by a human, the
model ("ai") or a tool. Its content is an ordered list of blocks, a small
closed union of dataclasses. Plain dataclasses are used instead of pydantic
models because tool parameters arrive straight from the model and may hold
self-referential structures that validation would choke on.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class Speaker(str, Enum):
    """Who produced an entry."""

    HUMAN = "human"
    AI = "ai"
    TOOL = "tool"


VALID_SPEAKERS = frozenset(s.value for s in Speaker)


# =============================================================================
# Blocks
# =============================================================================


@dataclass
class TextBlock:
    text: str
    type: str = field(default="text", init=False)


@dataclass
class ThinkingBlock:
    """Private model reasoning; kept out of curated history."""

    thought: str
    signature: Optional[str] = None
    type: str = field(default="thinking", init=False)


@dataclass
class ToolCallBlock:
    id: str
    name: str
    parameters: Any = field(default_factory=dict)
    type: str = field(default="tool_call", init=False)


@dataclass
class ToolResponseBlock:
    call_id: str
    tool_name: str
    result: Any = None
    error: Optional[str] = None
    type: str = field(default="tool_response", init=False)


@dataclass
class CodeBlock:
    code: str
    language: Optional[str] = None
    type: str = field(default="code", init=False)


@dataclass
class MediaBlock:
    mime_type: str
    data: str = ""
    caption: Optional[str] = None
    type: str = field(default="media", init=False)


Block = Union[TextBlock, ThinkingBlock, ToolCallBlock, ToolResponseBlock, CodeBlock, MediaBlock]


# =============================================================================
# Entry
# =============================================================================


@dataclass
class Usage:
    """Authoritative token counts reported by a backend."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class EntryMetadata:
    id: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[Usage] = None
    timestamp: Optional[float] = None


@dataclass
class Entry:
    """One conversation unit."""

    speaker: str
    blocks: List[Block] = field(default_factory=list)
    metadata: EntryMetadata = field(default_factory=EntryMetadata)

    @property
    def text(self) -> str:
        return "".join(b.text for b in self.blocks if isinstance(b, TextBlock))

    @property
    def tool_calls(self) -> List[ToolCallBlock]:
        return [b for b in self.blocks if isinstance(b, ToolCallBlock)]

    @property
    def tool_responses(self) -> List[ToolResponseBlock]:
        return [b for b in self.blocks if isinstance(b, ToolResponseBlock)]

    def ensure_id(self) -> str:
        if not self.metadata.id:
            self.metadata.id = uuid.uuid4().hex
        return self.metadata.id

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "speaker": self.speaker,
            "blocks": [block_to_dict(b) for b in self.blocks],
        }
        meta = {}
        if self.metadata.id:
            meta["id"] = self.metadata.id
        if self.metadata.model:
            meta["model"] = self.metadata.model
        if self.metadata.timestamp is not None:
            meta["timestamp"] = self.metadata.timestamp
        if self.metadata.usage is not None:
            meta["usage"] = {
                "promptTokens": self.metadata.usage.prompt_tokens,
                "completionTokens": self.metadata.usage.completion_tokens,
                "totalTokens": self.metadata.usage.total_tokens,
            }
        if meta:
            data["metadata"] = meta
        return data


# Convenience constructors used throughout the engine and the tests.


def human(text: str) -> Entry:
    return Entry(Speaker.HUMAN.value, [TextBlock(text)])


def ai(*blocks: Block, usage: Optional[Usage] = None, model: Optional[str] = None) -> Entry:
    return Entry(Speaker.AI.value, list(blocks), EntryMetadata(model=model, usage=usage))


def ai_text(text: str) -> Entry:
    return ai(TextBlock(text))


def tool_result(call_id: str, tool_name: str, result: Any = None, error: Optional[str] = None) -> Entry:
    return Entry(Speaker.TOOL.value, [ToolResponseBlock(call_id, tool_name, result, error)])


# =============================================================================
# Validation
# =============================================================================


def block_has_content(block: Block) -> bool:
    """Whether a block carries something worth sending back to a model."""
    if isinstance(block, TextBlock):
        return bool(block.text.strip())
    if isinstance(block, (ToolCallBlock, ToolResponseBlock)):
        return True
    if isinstance(block, CodeBlock):
        return bool(block.code.strip())
    if isinstance(block, MediaBlock):
        return bool(block.data or block.caption)
    return False


def has_content(entry: Entry) -> bool:
    """True if the entry has at least one meaningful block.

    Thinking blocks do not count: a model turn that only reasoned produced
    nothing the next request can use.
    """
    return any(block_has_content(b) for b in entry.blocks)


# =============================================================================
# Dict conversion
# =============================================================================


def block_to_dict(block: Block) -> Dict[str, Any]:
    if isinstance(block, TextBlock):
        return {"type": "text", "text": block.text}
    if isinstance(block, ThinkingBlock):
        data = {"type": "thinking", "thought": block.thought}
        if block.signature:
            data["signature"] = block.signature
        return data
    if isinstance(block, ToolCallBlock):
        return {"type": "tool_call", "id": block.id, "name": block.name, "parameters": block.parameters}
    if isinstance(block, ToolResponseBlock):
        data = {"type": "tool_response", "callId": block.call_id, "toolName": block.tool_name, "result": block.result}
        if block.error is not None:
            data["error"] = block.error
        return data
    if isinstance(block, CodeBlock):
        return {"type": "code", "code": block.code, "language": block.language}
    return {"type": "media", "mimeType": block.mime_type, "data": block.data, "caption": block.caption}


def block_from_dict(data: Dict[str, Any]) -> Optional[Block]:
    """Build a block from its dict form; unknown types yield ``None``."""
    kind = data.get("type")
    try:
        if kind == "text":
            return TextBlock(data.get("text", ""))
        if kind == "thinking":
            return ThinkingBlock(data.get("thought", ""), data.get("signature"))
        if kind == "tool_call":
            return ToolCallBlock(data["id"], data["name"], data.get("parameters", {}))
        if kind == "tool_response":
            return ToolResponseBlock(data["callId"], data.get("toolName", ""), data.get("result"), data.get("error"))
        if kind == "code":
            return CodeBlock(data.get("code", ""), data.get("language"))
        if kind == "media":
            return MediaBlock(data.get("mimeType", ""), data.get("data", ""), data.get("caption"))
    except KeyError as e:
        logger.debug("Dropping %s block missing field %s", kind, e)
        return None
    logger.debug("Dropping block with unknown type %r", kind)
    return None


def entry_from_dict(data: Dict[str, Any]) -> Entry:
    blocks = [b for b in (block_from_dict(d) for d in data.get("blocks", [])) if b is not None]
    meta = data.get("metadata") or {}
    usage = None
    if isinstance(meta.get("usage"), dict):
        u = meta["usage"]
        usage = Usage(
            prompt_tokens=u.get("promptTokens", 0),
            completion_tokens=u.get("completionTokens", 0),
            total_tokens=u.get("totalTokens", 0),
        )
    return Entry(
        speaker=data.get("speaker", ""),
        blocks=blocks,
        metadata=EntryMetadata(
            id=meta.get("id"),
            model=meta.get("model"),
            usage=usage,
            timestamp=meta.get("timestamp"),
        ),
    )
