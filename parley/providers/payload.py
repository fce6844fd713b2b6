"""Request-only reshaping of curated history.

Two rules run here, both driven by :class:`ProviderCapabilities` and both
touching the outgoing payload only; the canonical store is never changed.

Echo suppression:
    a model entry holding exactly one tool call, immediately followed by an
    entry holding exactly one matching tool response, is an *echo* when the
    same call id was already sent earlier in the payload. Backends that keep
    tool calls server side reject the duplicate, so it is dropped for them.

Response fan-out:
    an entry with several tool responses is split into one entry per
    response for backends that accept a single result per message.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Set

from parley.history.content import Block, Entry, Speaker, ToolResponseBlock
from parley.providers.capabilities import ProviderCapabilities

logger = logging.getLogger(__name__)


def is_echo_pair(entries: List[Entry], index: int) -> bool:
    """True if ``entries[index]`` is a single tool call answered by ``entries[index + 1]``."""
    if index + 1 >= len(entries):
        return False
    call_entry, response_entry = entries[index], entries[index + 1]
    if call_entry.speaker != Speaker.AI.value or response_entry.speaker == Speaker.AI.value:
        return False
    calls = call_entry.tool_calls
    responses = response_entry.tool_responses
    if len(calls) != 1 or len(responses) != 1:
        return False
    return calls[0].id == responses[0].call_id


def suppress_echoes(entries: List[Entry], known_call_ids: Iterable[str] = ()) -> List[Entry]:
    """Drop echo entries whose call id was already seen."""
    seen: Set[str] = set(known_call_ids)
    result: List[Entry] = []
    for i, entry in enumerate(entries):
        if is_echo_pair(entries, i) and entry.tool_calls[0].id in seen:
            logger.debug("Suppressing echoed tool call %s", entry.tool_calls[0].id)
            continue
        seen.update(call.id for call in entry.tool_calls)
        result.append(entry)
    return result


def fan_out_responses(entries: List[Entry]) -> List[Entry]:
    result: List[Entry] = []
    for entry in entries:
        responses = entry.tool_responses
        if len(responses) <= 1:
            result.append(entry)
            continue
        others: List[Block] = []
        for block in entry.blocks:
            if not isinstance(block, ToolResponseBlock):
                others.append(block)
                continue
            if others:
                result.append(Entry(entry.speaker, others, entry.metadata))
                others = []
            result.append(Entry(entry.speaker, [block], entry.metadata))
        if others:
            result.append(Entry(entry.speaker, others, entry.metadata))
    return result


def build_request_entries(entries: List[Entry], capabilities: ProviderCapabilities) -> List[Entry]:
    """Shape curated history plus pending input for one backend call."""
    shaped = list(entries)
    if not capabilities.requires_tool_echo:
        shaped = suppress_echoes(shaped)
    if capabilities.single_response_per_message:
        shaped = fan_out_responses(shaped)
    return shaped
