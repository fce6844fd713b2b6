"""Exception types shared across the conversation core."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

SCHEMA_DEPTH_MARKERS = (
    "maximum schema depth exceeded",
    "Request contains an invalid argument",
)


class ParleyError(Exception):
    """Base class for all errors raised by parley."""


class InvalidStreamKind(str, Enum):
    """Why a model stream was rejected."""

    NO_FINISH_REASON = "NO_FINISH_REASON"
    NO_RESPONSE_TEXT = "NO_RESPONSE_TEXT"


class InvalidStreamError(ParleyError):
    """The model stream ended without a usable answer.

    Raised per attempt by the turn engine; retried until the content retry
    budget is spent.
    """

    def __init__(self, message: str, kind: InvalidStreamKind):
        super().__init__(message)
        self.kind = kind


class BackendError(ParleyError):
    """A backend call failed with an HTTP-like status."""

    def __init__(self, message: str, status: Optional[int] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.status = status
        self.retry_after = retry_after

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429

    @property
    def is_retryable(self) -> bool:
        return self.status is not None and (self.status == 429 or 500 <= self.status < 600)


class UnauthorizedError(BackendError):
    """The backend rejected the credential (HTTP 401)."""

    def __init__(self, message: str):
        super().__init__(message, status=401)


class TurnCancelledError(ParleyError):
    """The cancellation token fired while a turn was in flight."""


class NoActiveProviderError(ParleyError):
    """No provider has been activated on the provider manager."""


class ProviderNotFoundError(ParleyError):
    """A provider name was not registered."""


@dataclass
class StructuredError:
    """Error payload carried by error events."""

    message: str
    status: Optional[int] = None
    kind: Optional[str] = None


def is_schema_depth_error(message: str) -> bool:
    """True when a backend error message points at an over-deep tool schema."""
    return any(marker in message for marker in SCHEMA_DEPTH_MARKERS)


def to_structured_error(error: BaseException) -> StructuredError:
    """Flatten any exception into the error-event payload."""
    status = getattr(error, "status", None)
    kind = getattr(error, "kind", None)
    if isinstance(kind, Enum):
        kind = kind.value
    message = str(error) or type(error).__name__
    return StructuredError(message=message, status=status, kind=kind)
