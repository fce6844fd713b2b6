"""Decide whether the model should keep talking after a turn without tool calls."""

from __future__ import annotations

import logging
import re
from typing import Awaitable, Callable, List, Literal, Optional

from pydantic import BaseModel, ValidationError

from parley.core.prompts import NEXT_SPEAKER_PROMPT
from parley.history.content import Entry, Speaker, has_content, human
from parley.history.service import HistoryService
from parley.providers.manager import ProviderManager

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class NextSpeakerResponse(BaseModel):
    reasoning: str = ""
    next_speaker: Literal["user", "model"]


Generate = Callable[[List[Entry], str], Awaitable[str]]


def parse_next_speaker(text: str) -> Optional[NextSpeakerResponse]:
    """Validate the backend's JSON answer, tolerating a markdown fence."""
    cleaned = text.strip()
    match = _FENCE_RE.match(cleaned)
    if match:
        cleaned = match.group(1)
    try:
        return NextSpeakerResponse.model_validate_json(cleaned)
    except ValidationError as e:
        logger.debug("Unusable next speaker answer: %s", e)
        return None


class NextSpeakerChecker:
    def __init__(self, providers: Optional[ProviderManager] = None, *, generate: Optional[Generate] = None):
        if providers is None and generate is None:
            raise ValueError("NextSpeakerChecker needs a provider manager or a generate function")
        self.providers = providers
        self._generate = generate or self._generate_with_provider

    async def check(self, history: HistoryService, model: str) -> Optional[NextSpeakerResponse]:
        curated = history.curated()
        if not curated:
            return None

        last = history.all()[-1]
        if last.tool_responses:
            return NextSpeakerResponse(
                reasoning="The last message was a tool result, so the model should take the next turn.",
                next_speaker="model",
            )
        if last.speaker == Speaker.AI.value and not has_content(last):
            return NextSpeakerResponse(
                reasoning="The last message was an empty model turn, so the model should continue.",
                next_speaker="model",
            )
        if curated[-1].speaker != Speaker.AI.value:
            # Nothing of the model's to judge.
            return None

        try:
            text = await self._generate(curated + [human(NEXT_SPEAKER_PROMPT)], model)
        except Exception as e:
            logger.warning("Next speaker check failed: %s", e)
            return None
        return parse_next_speaker(text)

    async def _generate_with_provider(self, entries: List[Entry], model: str) -> str:
        return await self.providers.active.generate_text(entries, model)
