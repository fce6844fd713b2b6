"""Cycle-safe deep copies of model-supplied values.

Models occasionally emit tool parameters that refer back to themselves, or
that nest far deeper than any real payload. ``sanitize`` walks a value once,
keeping a set of containers already visited; any container reached a second
time is replaced by ``CIRCULAR_MARKER`` and anything below ``MAX_DEPTH`` by
``DEPTH_MARKER``. The input is never mutated and the output only holds
JSON-compatible types.
"""

from __future__ import annotations

from typing import Any, Optional, Set

CIRCULAR_MARKER = {"_circular": True}
DEPTH_MARKER = {"_note": "value nested too deeply, omitted"}
MAX_DEPTH = 100


def sanitize(value: Any, _seen: Optional[Set[int]] = None, _depth: int = 0) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value

    seen = _seen if _seen is not None else set()

    if isinstance(value, (dict, list, tuple, set, frozenset)):
        if id(value) in seen:
            return dict(CIRCULAR_MARKER)
        if _depth >= MAX_DEPTH:
            return dict(DEPTH_MARKER)
        seen.add(id(value))
        if isinstance(value, dict):
            return {str(k): sanitize(v, seen, _depth + 1) for k, v in value.items()}
        return [sanitize(v, seen, _depth + 1) for v in value]

    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")

    # Arbitrary objects become their string form.
    return str(value)
