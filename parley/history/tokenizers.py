"""Pluggable token estimators used by the conversation store's ledger."""

from __future__ import annotations

import logging
import math
from typing import Optional, Protocol

import tiktoken

logger = logging.getLogger(__name__)

DEFAULT_TOKENIZER_MODEL = "gpt-4.1"


class Tokenizer(Protocol):
    def count_tokens(self, text: str, model: str) -> int: ...


class HeuristicTokenizer:
    """Word/character based estimate, no encoder needed.

    Takes the larger of ``words * 1.3`` and ``chars / 4`` so that both prose
    and dense code land in a sensible range.
    """

    def count_tokens(self, text: str, model: str = DEFAULT_TOKENIZER_MODEL) -> int:
        if not text:
            return 0
        words = len(text.split())
        return math.ceil(max(words * 1.3, len(text) / 4))


class TiktokenTokenizer:
    """Exact counts for OpenAI-style encodings.

    The encoder is created on first use to keep import time low; models
    tiktoken does not know fall back to ``cl100k_base``.
    """

    def __init__(self, fallback_encoding: str = "cl100k_base"):
        self._fallback_encoding = fallback_encoding
        self._encoders: dict[str, tiktoken.Encoding] = {}

    def _get_encoder(self, model: str) -> tiktoken.Encoding:
        encoder: Optional[tiktoken.Encoding] = self._encoders.get(model)
        if encoder is None:
            try:
                encoder = tiktoken.encoding_for_model(model)
            except KeyError:
                logger.debug("No tiktoken mapping for %s, using %s", model, self._fallback_encoding)
                encoder = tiktoken.get_encoding(self._fallback_encoding)
            self._encoders[model] = encoder
        return encoder

    def count_tokens(self, text: str, model: str = DEFAULT_TOKENIZER_MODEL) -> int:
        if not text:
            return 0
        return len(self._get_encoder(model).encode(text, disallowed_special=()))


def tokenizer_for(name: str) -> Tokenizer:
    """Build the tokenizer named by ``SessionSettings.tokenizer``."""
    if name == "tiktoken":
        return TiktokenTokenizer()
    if name == "heuristic":
        return HeuristicTokenizer()
    raise ValueError(f"Unknown tokenizer: {name}")
