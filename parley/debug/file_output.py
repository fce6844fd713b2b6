"""JSONL debug log handler.

Each record becomes one JSON object per line::

    {"timestamp": "...", "namespace": "parley.core.chat", "level": "debug",
     "message": "...", "args": [...]}

Files live in a directory only the owner can read and are rotated once they
pass the size limit or the day changes.
"""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Pattern, Tuple

REDACTED = "[REDACTED]"
FILE_PREFIX = "parley-debug"


def _compile_namespace(pattern: str) -> Pattern[str]:
    # "parley:*" and "parley.*" mean the same thing.
    normalized = pattern.replace(":", ".")
    return re.compile("^" + ".*".join(re.escape(part) for part in normalized.split("*")) + "$")


class NamespaceFilter(logging.Filter):
    """Pass records whose logger name matches the wildcard patterns.

    Patterns starting with ``-`` exclude, and exclusions win. A pattern
    ``parley.core`` also matches its children.
    """

    def __init__(self, patterns: Iterable[str]):
        super().__init__()
        self._include: List[Tuple[str, Pattern[str]]] = []
        self._exclude: List[Tuple[str, Pattern[str]]] = []
        for raw in patterns:
            raw = raw.strip()
            if not raw:
                continue
            target = self._exclude if raw.startswith("-") else self._include
            pattern = raw.lstrip("-").replace(":", ".")
            target.append((pattern, _compile_namespace(pattern)))

    @staticmethod
    def _matches(name: str, rules: List[Tuple[str, Pattern[str]]]) -> bool:
        for prefix, regex in rules:
            if regex.match(name) or name.startswith(prefix + "."):
                return True
        return False

    def matches(self, name: str) -> bool:
        if self._matches(name, self._exclude):
            return False
        return self._matches(name, self._include)

    def filter(self, record: logging.LogRecord) -> bool:
        return self.matches(record.name)


class Redactor:
    """Masks anything that looks like a credential."""

    def __init__(self, patterns: Iterable[str]):
        self._patterns = [re.compile(p) for p in patterns]

    def __call__(self, text: str) -> str:
        for pattern in self._patterns:
            if pattern.groups:
                text = pattern.sub(lambda m: f"{m.group(1)}: {REDACTED}", text)
            else:
                text = pattern.sub(REDACTED, text)
        return text


class JsonlFileHandler(logging.Handler):
    def __init__(
        self,
        directory: Path,
        *,
        max_bytes: int = 10 * 1024 * 1024,
        redactor: Optional[Redactor] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        level: int = logging.DEBUG,
    ):
        super().__init__(level)
        self.directory = Path(directory)
        self.max_bytes = max_bytes
        self.redactor = redactor or Redactor(())
        self._clock = clock
        self._path: Optional[Path] = None
        self._opened_on = None

    @property
    def current_file(self) -> Optional[Path]:
        return self._path

    def to_entry(self, record: logging.LogRecord) -> dict:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "namespace": record.name,
            "level": record.levelname.lower(),
            "message": self.redactor(record.getMessage()),
        }
        args = getattr(record, "debug_args", None)
        if args:
            entry["args"] = [self.redactor(a) if isinstance(a, str) else a for a in args]
        if record.exc_info:
            entry["exception"] = self.redactor(logging.Formatter().formatException(record.exc_info))
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.to_entry(record), default=str) + "\n"
            self.acquire()
            try:
                path = self._target_file()
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
                with os.fdopen(fd, "a", encoding="utf-8") as fh:
                    fh.write(line)
            finally:
                self.release()
        except Exception:
            self.handleError(record)

    def _target_file(self) -> Path:
        if not self.directory.exists():
            self.directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        now = self._clock()
        if self._path is None or self._needs_rotation(now):
            self._path = self._new_file_name(now)
            self._opened_on = now.date()
        return self._path

    def _needs_rotation(self, now: datetime) -> bool:
        if self._opened_on != now.date():
            return True
        try:
            return self._path.stat().st_size >= self.max_bytes
        except FileNotFoundError:
            return False

    def _new_file_name(self, now: datetime) -> Path:
        stem = f"{FILE_PREFIX}-{now.strftime('%Y-%m-%d-%H-%M-%S')}"
        path = self.directory / f"{stem}.jsonl"
        counter = 1
        while path.exists():
            path = self.directory / f"{stem}-{counter}.jsonl"
            counter += 1
        return path
