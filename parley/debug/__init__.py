"""Persisted JSONL debug logging."""

from __future__ import annotations

import logging
from typing import Optional

from parley.debug.file_output import JsonlFileHandler, NamespaceFilter, Redactor
from parley.debug.logger import DebugLogger
from parley.settings import DebugSettings

_installed: Optional[JsonlFileHandler] = None


def configure_debug_logging(settings: Optional[DebugSettings] = None) -> Optional[JsonlFileHandler]:
    """Install (or replace) the JSONL handler on the root logger.

    Returns None and removes any previous handler when debug logging is off.
    """
    global _installed
    settings = settings or DebugSettings()
    root = logging.getLogger()
    if _installed is not None:
        root.removeHandler(_installed)
        _installed.close()
        _installed = None
    if not settings.enabled:
        return None

    level = logging.getLevelName(settings.level)
    if not isinstance(level, int):
        level = logging.DEBUG
    handler = JsonlFileHandler(
        settings.directory,
        max_bytes=settings.max_file_bytes,
        redactor=Redactor(settings.redact_patterns),
        level=level,
    )
    handler.addFilter(NamespaceFilter(settings.namespaces))
    root.addHandler(handler)
    parley_logger = logging.getLogger("parley")
    if parley_logger.getEffectiveLevel() > level:
        parley_logger.setLevel(level)
    _installed = handler
    return handler


__all__ = [
    "DebugLogger",
    "JsonlFileHandler",
    "NamespaceFilter",
    "Redactor",
    "configure_debug_logging",
]
