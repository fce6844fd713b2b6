"""Loop detection hook consulted by the agent client."""

from __future__ import annotations

from typing import Optional, Protocol

from parley.cancellation import CancellationToken
from parley.core.events import TurnEvent


class LoopDetector(Protocol):
    """Both checks return True when a loop was found."""

    def reset(self, prompt_id: Optional[str]) -> None: ...

    async def turn_started(self, cancel: CancellationToken) -> bool: ...

    def add_and_check(self, event: TurnEvent) -> bool: ...


class NoopLoopDetector:
    """Never detects anything."""

    def reset(self, prompt_id: Optional[str]) -> None:
        pass

    async def turn_started(self, cancel: CancellationToken) -> bool:
        return False

    def add_and_check(self, event: TurnEvent) -> bool:
        return False
