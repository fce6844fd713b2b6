"""Observability utilities for consistent Logfire logging.

Structured telemetry for the events worth graphing: invalid-content
retries, backend retries, fallback negotiation and compression outcomes.
Logfire only ships data once the application calls ``logfire.configure``;
until then these calls are local no-ops. A telemetry failure never reaches
the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import logfire

logger = logging.getLogger(__name__)


def log_content_retry(model: str, attempt: int, max_attempts: int, kind: str, delay: float) -> None:
    try:
        logfire.info(
            "Invalid stream from {model}, retrying ({attempt}/{max_attempts})",
            model=model,
            attempt=attempt,
            max_attempts=max_attempts,
            kind=kind,
            delay_seconds=delay,
        )
    except Exception as e:
        logger.debug(f"Failed to log content retry: {e}")


def log_content_retry_failure(model: str, attempts: int, kind: str) -> None:
    try:
        logfire.warn(
            "Invalid stream from {model} after {attempts} attempts",
            model=model,
            attempts=attempts,
            kind=kind,
        )
    except Exception as e:
        logger.debug(f"Failed to log content retry failure: {e}")


def log_api_retry(model: str, attempt: int, status: Optional[int], delay: float) -> None:
    try:
        logfire.warn(
            "Backend error {status} from {model}, retry {attempt} in {delay}s",
            model=model,
            attempt=attempt,
            status=status,
            delay=delay,
        )
    except Exception as e:
        logger.debug(f"Failed to log api retry: {e}")


def log_model_fallback(from_model: str, to_model: Optional[str], **extra_fields: Any) -> None:
    try:
        logfire.warn(
            "Persistent rate limit on {from_model}, fallback: {to_model}",
            from_model=from_model,
            to_model=to_model or "none",
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log model fallback: {e}")


def log_compression(model: str, status: str, before_tokens: int, after_tokens: int) -> None:
    try:
        logfire.info(
            "History compression {status}: {before_tokens} -> {after_tokens} tokens",
            model=model,
            status=status,
            before_tokens=before_tokens,
            after_tokens=after_tokens,
        )
    except Exception as e:
        logger.debug(f"Failed to log compression: {e}")
