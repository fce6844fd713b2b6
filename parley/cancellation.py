"""Cooperative cancellation for streaming turns."""

from __future__ import annotations

import asyncio
from typing import Optional


class CancellationToken:
    """A flag that streaming code polls between chunks.

    A token can be linked to parents: it reports cancelled as soon as it or
    any parent is cancelled. The engine uses this to add its own abort
    source (loop detection) on top of the caller's token without firing the
    caller's token.
    """

    def __init__(self, *parents: "CancellationToken"):
        self._event = asyncio.Event()
        self._parents = tuple(p for p in parents if p is not None)
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or any(p.cancelled for p in self._parents)

    def linked(self) -> "CancellationToken":
        """A child token that also fires when this one does."""
        return CancellationToken(self)

    async def wait(self, poll_interval: float = 0.05) -> None:
        while not self.cancelled:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=poll_interval)
            except asyncio.TimeoutError:
                continue


def never_cancelled() -> CancellationToken:
    return CancellationToken()
