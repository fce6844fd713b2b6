"""Backoff for transient backend failures.

Rate limits (429), server errors (5xx) and dropped connections are retried
with exponential backoff plus jitter, honouring ``Retry-After`` when the
backend sends one. Other 4xx errors are raised straight away. When 429s keep
coming, an optional fallback handler may hand back a different model to
continue with.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from parley.cancellation import CancellationToken
from parley.errors import BackendError, TurnCancelledError
from parley.observability import log_api_retry, log_model_fallback
from parley.settings import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

FallbackHandler = Callable[[str, BaseException], Awaitable[Optional[str]]]

_CONNECTION_ERRORS = (httpx.ConnectError, httpx.ReadTimeout, httpx.PoolTimeout)


@dataclass
class RetryPolicy:
    max_attempts: int = 5
    initial_delay: float = 5.0
    max_delay: float = 30.0
    persistent_429_threshold: int = 2

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.api_max_attempts,
            initial_delay=settings.api_initial_delay,
            max_delay=settings.api_max_delay,
            persistent_429_threshold=settings.persistent_429_threshold,
        )


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, BackendError):
        return error.is_retryable
    return isinstance(error, _CONNECTION_ERRORS)


async def retry_with_backoff(
    fn: Callable[[str], Awaitable[T]],
    model: str,
    policy: Optional[RetryPolicy] = None,
    on_persistent_429: Optional[FallbackHandler] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    cancel: Optional[CancellationToken] = None,
) -> T:
    """Call ``fn(model)`` until it succeeds or the policy gives up.

    The fallback handler is consulted at most once per call; if it returns a
    new model name, the attempt budget restarts for that model. A fired
    ``cancel`` token cuts a backoff wait short and raises
    ``TurnCancelledError`` instead of retrying.
    """
    policy = policy or RetryPolicy()
    current_model = model
    attempt = 0
    delay = policy.initial_delay
    consecutive_429 = 0
    fallback_used = False

    while True:
        attempt += 1
        try:
            return await fn(current_model)
        except Exception as error:
            if not is_retryable(error) or attempt >= policy.max_attempts:
                raise

            status = getattr(error, "status", None)
            if status == 429:
                consecutive_429 += 1
                if (
                    on_persistent_429 is not None
                    and not fallback_used
                    and consecutive_429 >= policy.persistent_429_threshold
                ):
                    fallback_used = True
                    fallback = await on_persistent_429(current_model, error)
                    log_model_fallback(current_model, fallback, consecutive_429s=consecutive_429)
                    if fallback and fallback != current_model:
                        logger.info("Falling back from %s to %s after repeated 429s", current_model, fallback)
                        current_model = fallback
                        attempt = 0
                        consecutive_429 = 0
                        delay = policy.initial_delay
                        continue
            else:
                consecutive_429 = 0

            retry_after = getattr(error, "retry_after", None)
            wait_time = retry_after if retry_after is not None else delay
            # Add jitter (up to +25%) to avoid thundering herd
            wait_time = min(policy.max_delay, wait_time * (1.0 + random.uniform(0.0, 0.25)))
            logger.warning(
                "Backend call failed (%s), attempt %d/%d, retrying in %.1fs",
                status or type(error).__name__,
                attempt,
                policy.max_attempts,
                wait_time,
            )
            log_api_retry(current_model, attempt, status, wait_time)
            await _wait(sleep, wait_time, cancel)
            if cancel is not None and cancel.cancelled:
                raise TurnCancelledError("Turn cancelled during backoff") from error
            delay = min(policy.max_delay, delay * 2)


async def _wait(sleep: Callable[[float], Awaitable[None]], seconds: float, cancel: Optional[CancellationToken]) -> None:
    if cancel is None:
        await sleep(seconds)
        return
    if cancel.cancelled:
        return
    sleeper = asyncio.ensure_future(sleep(seconds))
    watcher = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({sleeper, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (sleeper, watcher):
            task.cancel()
