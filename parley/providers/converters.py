"""Canonical entries and tool declarations to vendor request shapes."""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    SystemPromptPart,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.tools import ToolDefinition

from parley.history.content import (
    CodeBlock,
    Entry,
    MediaBlock,
    Speaker,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    ToolResponseBlock,
)
from parley.providers.capabilities import ProviderFormat
from parley.tools import ToolDeclaration

logger = logging.getLogger(__name__)

_GEMINI_UNSUPPORTED_SCHEMA_KEYS = ("$schema", "$id", "additionalProperties")


def _role(entry: Entry) -> str:
    return "assistant" if entry.speaker == Speaker.AI.value else "user"


def _code_text(block: CodeBlock) -> str:
    return f"```{block.language or ''}\n{block.code}\n```"


def _response_text(block: ToolResponseBlock) -> str:
    if block.error:
        return f"Error: {block.error}"
    if isinstance(block.result, str):
        return block.result
    return json.dumps(block.result)


# =============================================================================
# Gemini
# =============================================================================


def _sanitize_schema_for_gemini(schema: Any) -> Any:
    """Drop JSON schema keywords the Gemini API refuses."""
    if isinstance(schema, dict):
        return {
            k: _sanitize_schema_for_gemini(v)
            for k, v in schema.items()
            if k not in _GEMINI_UNSUPPORTED_SCHEMA_KEYS
        }
    if isinstance(schema, list):
        return [_sanitize_schema_for_gemini(v) for v in schema]
    return schema


def to_gemini(entries: List[Entry], system_instruction: Optional[str]) -> Dict[str, Any]:
    contents: List[Dict[str, Any]] = []
    for entry in entries:
        role = "model" if entry.speaker == Speaker.AI.value else "user"
        parts: List[Dict[str, Any]] = []
        for block in entry.blocks:
            if isinstance(block, TextBlock):
                parts.append({"text": block.text})
            elif isinstance(block, ThinkingBlock):
                continue
            elif isinstance(block, ToolCallBlock):
                parts.append({"functionCall": {"name": block.name, "args": block.parameters, "id": block.id}})
            elif isinstance(block, ToolResponseBlock):
                response = {"error": block.error} if block.error else {"output": block.result}
                parts.append({"functionResponse": {"name": block.tool_name, "id": block.call_id, "response": response}})
            elif isinstance(block, CodeBlock):
                parts.append({"text": _code_text(block)})
            elif isinstance(block, MediaBlock):
                if block.data:
                    parts.append({"inlineData": {"mimeType": block.mime_type, "data": block.data}})
                if block.caption:
                    parts.append({"text": block.caption})
        if not parts:
            continue
        # Merge with previous message of the same role
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].extend(parts)
        else:
            contents.append({"role": role, "parts": parts})

    body: Dict[str, Any] = {"contents": contents}
    if system_instruction:
        body["systemInstruction"] = {"role": "user", "parts": [{"text": system_instruction}]}
    return body


def gemini_tools(tools: List[ToolDeclaration]) -> List[Dict[str, Any]]:
    if not tools:
        return []
    declarations = [
        {
            "name": t.name,
            "description": t.description,
            "parameters": _sanitize_schema_for_gemini(t.parameters),
        }
        for t in tools
    ]
    return [{"functionDeclarations": declarations}]


# =============================================================================
# OpenAI
# =============================================================================


def to_openai(entries: List[Entry], system_instruction: Optional[str]) -> Dict[str, Any]:
    messages: List[Dict[str, Any]] = []
    if system_instruction:
        messages.append({"role": "system", "content": system_instruction})

    for entry in entries:
        if entry.speaker == Speaker.AI.value:
            text = "".join(
                b.text if isinstance(b, TextBlock) else _code_text(b)
                for b in entry.blocks
                if isinstance(b, (TextBlock, CodeBlock))
            )
            message: Dict[str, Any] = {"role": "assistant", "content": text or None}
            calls = [
                {
                    "id": b.id,
                    "type": "function",
                    "function": {"name": b.name, "arguments": json.dumps(b.parameters)},
                }
                for b in entry.tool_calls
            ]
            if calls:
                message["tool_calls"] = calls
            if text or calls:
                messages.append(message)
            continue

        texts: List[str] = []
        for block in entry.blocks:
            if isinstance(block, ToolResponseBlock):
                messages.append({"role": "tool", "tool_call_id": block.call_id, "content": _response_text(block)})
            elif isinstance(block, TextBlock):
                texts.append(block.text)
            elif isinstance(block, CodeBlock):
                texts.append(_code_text(block))
            elif isinstance(block, MediaBlock) and block.caption:
                texts.append(block.caption)
        if texts:
            messages.append({"role": "user", "content": "\n".join(texts)})

    return {"messages": messages}


def openai_tools(tools: List[ToolDeclaration]) -> List[Dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
        }
        for t in tools
    ]


# =============================================================================
# Anthropic
# =============================================================================


def to_anthropic(entries: List[Entry], system_instruction: Optional[str]) -> Dict[str, Any]:
    messages: List[Dict[str, Any]] = []
    for entry in entries:
        role = _role(entry)
        content: List[Dict[str, Any]] = []
        for block in entry.blocks:
            if isinstance(block, TextBlock):
                if block.text:
                    content.append({"type": "text", "text": block.text})
            elif isinstance(block, ToolCallBlock):
                content.append({"type": "tool_use", "id": block.id, "name": block.name, "input": block.parameters})
            elif isinstance(block, ToolResponseBlock):
                content.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": block.call_id,
                        "content": _response_text(block),
                        "is_error": bool(block.error),
                    }
                )
            elif isinstance(block, CodeBlock):
                content.append({"type": "text", "text": _code_text(block)})
            elif isinstance(block, MediaBlock) and block.data:
                content.append(
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": block.mime_type, "data": block.data},
                    }
                )
        if not content:
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"].extend(content)
        else:
            messages.append({"role": role, "content": content})

    body: Dict[str, Any] = {"messages": messages}
    if system_instruction:
        body["system"] = system_instruction
    return body


def anthropic_tools(tools: List[ToolDeclaration]) -> List[Dict[str, Any]]:
    return [{"name": t.name, "description": t.description, "input_schema": t.parameters} for t in tools]


# =============================================================================
# pydantic-ai
# =============================================================================


def to_pydantic_ai(entries: List[Entry], system_instruction: Optional[str]) -> List[ModelMessage]:
    messages: List[ModelMessage] = []
    if system_instruction:
        messages.append(ModelRequest(parts=[SystemPromptPart(content=system_instruction)]))

    for entry in entries:
        if entry.speaker == Speaker.AI.value:
            parts = []
            for block in entry.blocks:
                if isinstance(block, TextBlock):
                    parts.append(TextPart(content=block.text))
                elif isinstance(block, CodeBlock):
                    parts.append(TextPart(content=_code_text(block)))
                elif isinstance(block, ToolCallBlock):
                    parts.append(
                        ToolCallPart(tool_name=block.name, args=copy.deepcopy(block.parameters), tool_call_id=block.id)
                    )
            if parts:
                messages.append(ModelResponse(parts=parts, model_name=entry.metadata.model))
            continue

        request_parts = []
        for block in entry.blocks:
            if isinstance(block, ToolResponseBlock):
                request_parts.append(
                    ToolReturnPart(
                        tool_name=block.tool_name,
                        content=block.result if block.error is None else {"error": block.error},
                        tool_call_id=block.call_id,
                    )
                )
            elif isinstance(block, TextBlock):
                request_parts.append(UserPromptPart(content=block.text))
            elif isinstance(block, CodeBlock):
                request_parts.append(UserPromptPart(content=_code_text(block)))
            elif isinstance(block, MediaBlock) and block.caption:
                request_parts.append(UserPromptPart(content=block.caption))
        if request_parts:
            messages.append(ModelRequest(parts=request_parts))
    return messages


def pydantic_ai_tools(tools: List[ToolDeclaration]) -> List[ToolDefinition]:
    return [
        ToolDefinition(name=t.name, description=t.description, parameters_json_schema=t.parameters)
        for t in tools
    ]


# =============================================================================
# Dispatch
# =============================================================================


def to_wire(
    fmt: ProviderFormat,
    entries: List[Entry],
    tools: List[ToolDeclaration],
    system_instruction: Optional[str] = None,
) -> Tuple[Any, List[Any]]:
    """Convert a payload and its tools for ``fmt``."""
    if fmt is ProviderFormat.GEMINI:
        return to_gemini(entries, system_instruction), gemini_tools(tools)
    if fmt is ProviderFormat.OPENAI:
        return to_openai(entries, system_instruction), openai_tools(tools)
    if fmt is ProviderFormat.ANTHROPIC:
        return to_anthropic(entries, system_instruction), anthropic_tools(tools)
    return to_pydantic_ai(entries, system_instruction), pydantic_ai_tools(tools)
