"""
Conversation Store.

``HistoryService`` owns the canonical record of one conversation:

- an append-only comprehensive log of :class:`~parley.history.content.Entry`
- a derived "curated" view that hides empty model turns
- a token ledger that is updated per append and can be rebuilt on demand

While a compression is running, ``append`` and ``clear`` are parked in a
queue and replayed in submission order when it finishes, so no caller ever
sees a half-summarized history.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Iterable, List, Optional, Set

from parley.history.content import (
    VALID_SPEAKERS,
    CodeBlock,
    Entry,
    MediaBlock,
    Speaker,
    TextBlock,
    ThinkingBlock,
    ToolCallBlock,
    ToolResponseBlock,
    entry_from_dict,
    has_content,
)
from parley.history.sanitize import sanitize
from parley.history.tokenizers import DEFAULT_TOKENIZER_MODEL, HeuristicTokenizer, Tokenizer

logger = logging.getLogger(__name__)


@dataclass
class TokensUpdated:
    """Payload passed to token listeners after every ledger change."""

    total_tokens: int
    added_tokens: int
    entry_id: Optional[str] = None


@dataclass
class HistoryStatistics:
    total_messages: int
    user_messages: int
    ai_messages: int
    tool_calls: int
    tool_responses: int
    total_tokens: Optional[int] = None


TokenListener = Callable[[TokensUpdated], None]


class HistoryService:
    """Canonical conversation record with incremental token accounting."""

    def __init__(self, tokenizer: Optional[Tokenizer] = None, default_model: str = DEFAULT_TOKENIZER_MODEL):
        self._history: List[Entry] = []
        self._total_tokens = 0
        self._tokenizer: Tokenizer = tokenizer or HeuristicTokenizer()
        self._default_model = default_model
        # Single writer for the ledger.
        self._ledger_lock = threading.Lock()
        self._listeners: List[TokenListener] = []
        self._compressing = False
        self._pending: Deque[Callable[[], None]] = deque()

    # =========================================================================
    # Writes
    # =========================================================================

    def append(self, entry: Entry, model: Optional[str] = None) -> None:
        """Add an entry, or queue it while compression is in progress."""
        entry = _copy_entry(entry)
        if self._compressing:
            logger.debug("Compression in progress, queueing append (%s)", entry.speaker)
            self._pending.append(lambda: self._append_now(entry, model))
            return
        self._append_now(entry, model)

    def extend(self, entries: Iterable[Entry], model: Optional[str] = None) -> None:
        for entry in entries:
            self.append(entry, model)

    def record_turn(
        self,
        user_entries: Iterable[Entry],
        ai_entry: Optional[Entry],
        tool_entries: Iterable[Entry] = (),
        model: Optional[str] = None,
    ) -> None:
        """Append a whole turn in order: user input, model output, tool results."""
        for entry in user_entries:
            self.append(entry, model)
        if ai_entry is not None:
            self.append(ai_entry, model)
        for entry in tool_entries:
            self.append(entry, model)

    def _append_now(self, entry: Entry, model: Optional[str]) -> None:
        if entry.speaker not in VALID_SPEAKERS:
            logger.debug("Rejecting entry with invalid speaker %r", entry.speaker)
            return
        entry.ensure_id()
        if entry.metadata.timestamp is None:
            entry.metadata.timestamp = time.time()
        self._history.append(entry)
        self._update_ledger(entry, model or entry.metadata.model or self._default_model)

    def clear(self) -> None:
        if self._compressing:
            logger.debug("Compression in progress, queueing clear")
            self._pending.append(self._clear_now)
            return
        self._clear_now()

    def _clear_now(self) -> None:
        self._history = []
        with self._ledger_lock:
            self._total_tokens = 0
        self._emit(TokensUpdated(total_tokens=0, added_tokens=0))

    def pop(self) -> Optional[Entry]:
        """Remove and return the newest entry, rebuilding the ledger."""
        if not self._history:
            return None
        removed = self._history.pop()
        self.recalculate()
        return removed

    def replace_all(self, entries: Iterable[Entry], total_tokens: Optional[int] = None) -> None:
        """Swap the whole conversation for ``entries``.

        Bypasses the compression queue: this is how a compression installs
        its result. With ``total_tokens`` the ledger is reset to that value,
        otherwise it is recomputed.
        """
        new_history = []
        for entry in entries:
            if entry.speaker not in VALID_SPEAKERS:
                logger.debug("Rejecting entry with invalid speaker %r", entry.speaker)
                continue
            entry = _copy_entry(entry)
            entry.ensure_id()
            new_history.append(entry)
        self._history = new_history
        if total_tokens is None:
            self.recalculate()
            return
        with self._ledger_lock:
            self._total_tokens = total_tokens
        self._emit(TokensUpdated(total_tokens=total_tokens, added_tokens=0))

    def strip_thinking(self) -> None:
        """Drop thinking blocks from every entry (used on loaded histories)."""
        stripped = []
        for entry in self._history:
            blocks = [b for b in entry.blocks if not isinstance(b, ThinkingBlock)]
            stripped.append(Entry(entry.speaker, blocks, copy.copy(entry.metadata)))
        self.replace_all(stripped)

    # =========================================================================
    # Compression queue
    # =========================================================================

    @property
    def is_compressing(self) -> bool:
        return self._compressing

    def start_compression(self) -> None:
        logger.debug("Starting compression, holding writes")
        self._compressing = True

    def end_compression(self) -> None:
        self._compressing = False
        operations = list(self._pending)
        self._pending.clear()
        for operation in operations:
            operation()
        logger.debug("Compression finished, flushed %d queued operations", len(operations))

    # =========================================================================
    # Reads
    # =========================================================================

    def all(self) -> List[Entry]:
        """Snapshot of the comprehensive history."""
        return _copy_entries(self._history)

    def curated(self, include_thinking: bool = False) -> List[Entry]:
        """Snapshot of the history that is valid to send to a model."""
        curated = []
        for entry in self._history:
            if entry.speaker == Speaker.AI.value and not has_content(entry):
                continue
            curated.append(entry)
        snapshot = _copy_entries(curated)
        if not include_thinking:
            for entry in snapshot:
                entry.blocks = [b for b in entry.blocks if not isinstance(b, ThinkingBlock)]
        return snapshot

    def curated_for_transport(self) -> List[Entry]:
        """Curated history whose tool payloads are guaranteed serializable."""
        return transport_safe(self.curated())

    def recent(self, count: int) -> List[Entry]:
        if count <= 0:
            return []
        return _copy_entries(self._history[-count:])

    def last_human(self) -> Optional[Entry]:
        return self._last_by(Speaker.HUMAN.value)

    def last_ai(self) -> Optional[Entry]:
        return self._last_by(Speaker.AI.value)

    def _last_by(self, speaker: str) -> Optional[Entry]:
        for entry in reversed(self._history):
            if entry.speaker == speaker:
                return _copy_entry(entry)
        return None

    def within_token_limit(self, max_tokens: int) -> List[Entry]:
        """Newest run of entries whose estimated size fits ``max_tokens``."""
        result: List[Entry] = []
        used = 0
        for entry in reversed(self._history):
            tokens = self._estimate_entry(entry, self._default_model)
            if used + tokens > max_tokens:
                break
            result.insert(0, entry)
            used += tokens
        return _copy_entries(result)

    def tool_call_ids(self) -> Set[str]:
        return {call.id for entry in self._history for call in entry.tool_calls}

    def __len__(self) -> int:
        return len(self._history)

    def is_empty(self) -> bool:
        return not self._history

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    def statistics(self) -> HistoryStatistics:
        stats = HistoryStatistics(len(self._history), 0, 0, 0, 0)
        usage_total = 0
        has_usage = False
        for entry in self._history:
            if entry.speaker == Speaker.HUMAN.value:
                stats.user_messages += 1
            elif entry.speaker == Speaker.AI.value:
                stats.ai_messages += 1
            stats.tool_calls += len(entry.tool_calls)
            stats.tool_responses += len(entry.tool_responses)
            if entry.metadata.usage is not None:
                usage_total += entry.metadata.usage.total_tokens
                has_usage = True
        stats.total_tokens = usage_total if has_usage else None
        return stats

    # =========================================================================
    # Token ledger
    # =========================================================================

    def on_tokens_updated(self, listener: TokenListener) -> Callable[[], None]:
        """Register a ledger listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def recalculate(self, default_model: Optional[str] = None) -> int:
        """Rebuild the ledger from scratch and return the new total."""
        model = default_model or self._default_model
        with self._ledger_lock:
            total = 0
            for entry in self._history:
                total += self._estimate_entry(entry, entry.metadata.model or model)
            self._total_tokens = total
        self._emit(TokensUpdated(total_tokens=total, added_tokens=0))
        return total

    def _update_ledger(self, entry: Entry, model: str) -> None:
        with self._ledger_lock:
            added = self._estimate_entry(entry, model)
            self._total_tokens += added
            total = self._total_tokens
        self._emit(TokensUpdated(total_tokens=total, added_tokens=added, entry_id=entry.metadata.id))

    def _emit(self, event: TokensUpdated) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Token listener failed")

    def _estimate_entry(self, entry: Entry, model: str) -> int:
        usage = entry.metadata.usage
        if usage is not None:
            # The entry's own share of a reported exchange.
            own = usage.completion_tokens or usage.total_tokens
            if own:
                return own
        total = 0
        for block in entry.blocks:
            text = _block_token_text(block)
            if not text:
                continue
            try:
                total += self._tokenizer.count_tokens(text, model)
            except Exception as e:
                logger.debug("Tokenizer failed for %s, using heuristic: %s", model, e)
                total += HeuristicTokenizer().count_tokens(text, model)
        return total

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_json(self) -> str:
        return json.dumps([e.to_dict() for e in transport_safe(self.all())], indent=2)

    @classmethod
    def from_json(cls, data: str, tokenizer: Optional[Tokenizer] = None) -> "HistoryService":
        service = cls(tokenizer=tokenizer)
        for item in json.loads(data):
            if isinstance(item, dict):
                service.append(entry_from_dict(item))
        return service


def _block_token_text(block) -> str:
    """Text used to estimate a block's token cost."""
    if isinstance(block, TextBlock):
        return block.text
    if isinstance(block, ToolCallBlock):
        try:
            return json.dumps({"name": block.name, "parameters": block.parameters})
        except (TypeError, ValueError, RecursionError):
            return f"tool_call: {block.name}"
    if isinstance(block, ToolResponseBlock):
        if isinstance(block.result, str):
            return block.result
        if block.error:
            return block.error
        try:
            return json.dumps(block.result)
        except (TypeError, ValueError, RecursionError):
            return f"tool_response: {block.tool_name}"
    if isinstance(block, ThinkingBlock):
        return block.thought
    if isinstance(block, CodeBlock):
        return block.code
    if isinstance(block, MediaBlock):
        return block.caption or ""
    return ""


def transport_safe(entries: List[Entry]) -> List[Entry]:
    """Copies of ``entries`` with tool payloads made JSON-safe."""
    result = []
    for entry in entries:
        blocks = []
        for block in entry.blocks:
            if isinstance(block, ToolCallBlock):
                block = ToolCallBlock(block.id, block.name, sanitize(block.parameters))
            elif isinstance(block, ToolResponseBlock):
                block = ToolResponseBlock(block.call_id, block.tool_name, sanitize(block.result), block.error)
            blocks.append(block)
        result.append(Entry(entry.speaker, blocks, entry.metadata))
    return result


def _copy_entry(entry: Entry) -> Entry:
    try:
        return copy.deepcopy(entry)
    except RecursionError:
        logger.debug("Entry %s nests too deeply to copy, sanitizing tool payloads", entry.metadata.id)
        return copy.deepcopy(transport_safe([entry])[0])


def _copy_entries(entries: Iterable[Entry]) -> List[Entry]:
    return [_copy_entry(entry) for entry in entries]
