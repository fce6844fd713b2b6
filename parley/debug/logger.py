"""Namespaced debug logger with lazily built messages."""

from __future__ import annotations

import logging
from typing import Any, Callable, Union

Message = Union[str, Callable[[], str]]


class DebugLogger:
    """Thin wrapper over a stdlib logger.

    Messages may be callables; they are only evaluated when the level is
    enabled. Extra positional args are recorded as structured ``args`` in the
    JSONL log rather than %-formatted into the message.
    """

    def __init__(self, namespace: str):
        self.namespace = namespace.replace(":", ".")
        self._logger = logging.getLogger(self.namespace)

    @property
    def enabled(self) -> bool:
        return self._logger.isEnabledFor(logging.DEBUG)

    def _emit(self, level: int, message: Message, args: tuple) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if callable(message):
            try:
                message = message()
            except Exception:
                message = "[Error evaluating log function]"
        self._logger.log(level, "%s", message, extra={"debug_args": list(args)} if args else None)

    def debug(self, message: Message, *args: Any) -> None:
        self._emit(logging.DEBUG, message, args)

    def log(self, message: Message, *args: Any) -> None:
        self._emit(logging.INFO, message, args)

    def warn(self, message: Message, *args: Any) -> None:
        self._emit(logging.WARNING, message, args)

    def error(self, message: Message, *args: Any) -> None:
        self._emit(logging.ERROR, message, args)
