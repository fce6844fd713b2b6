"""Closed set of wire formats and the framing rules each one needs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class ProviderFormat(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    PYDANTIC_AI = "pydantic_ai"


@dataclass(frozen=True)
class ProviderCapabilities:
    """Tool-call framing flags.

    Attributes:
        requires_tool_echo: the backend needs the model's tool call resent
            right before its result, even when it already appears earlier
            in the request.
        single_response_per_message: each tool result must travel in its
            own message.
    """

    requires_tool_echo: bool = False
    single_response_per_message: bool = False


CAPABILITIES: Dict[ProviderFormat, ProviderCapabilities] = {
    ProviderFormat.GEMINI: ProviderCapabilities(requires_tool_echo=True, single_response_per_message=False),
    ProviderFormat.OPENAI: ProviderCapabilities(requires_tool_echo=False, single_response_per_message=True),
    ProviderFormat.ANTHROPIC: ProviderCapabilities(requires_tool_echo=False, single_response_per_message=False),
    ProviderFormat.PYDANTIC_AI: ProviderCapabilities(requires_tool_echo=False, single_response_per_message=False),
}


def capabilities_for(fmt: ProviderFormat) -> ProviderCapabilities:
    return CAPABILITIES[fmt]
