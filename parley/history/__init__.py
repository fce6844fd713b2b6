"""Conversation Store: canonical entries, curated views and the token ledger."""

from parley.history.content import (
    Block,
    CodeBlock,
    Entry,
    EntryMetadata,
    MediaBlock,
    Speaker,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    ToolResponseBlock,
    Usage,
    ai,
    ai_text,
    entry_from_dict,
    has_content,
    human,
    tool_result,
)
from parley.history.sanitize import CIRCULAR_MARKER, DEPTH_MARKER, sanitize
from parley.history.service import HistoryService, HistoryStatistics, TokensUpdated, transport_safe
from parley.history.tokenizers import HeuristicTokenizer, TiktokenTokenizer, Tokenizer, tokenizer_for

__all__ = [
    "Block",
    "CIRCULAR_MARKER",
    "CodeBlock",
    "DEPTH_MARKER",
    "Entry",
    "EntryMetadata",
    "HeuristicTokenizer",
    "HistoryService",
    "HistoryStatistics",
    "MediaBlock",
    "Speaker",
    "TextBlock",
    "ThinkingBlock",
    "TiktokenTokenizer",
    "TokensUpdated",
    "Tokenizer",
    "ToolCallBlock",
    "ToolResponseBlock",
    "Usage",
    "ai",
    "ai_text",
    "entry_from_dict",
    "has_content",
    "human",
    "sanitize",
    "tokenizer_for",
    "tool_result",
    "transport_safe",
]
