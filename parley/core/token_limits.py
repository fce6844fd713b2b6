"""Context window sizes by model name."""

DEFAULT_TOKEN_LIMIT = 1_048_576

# Checked in order; the first matching prefix wins.
_LIMITS = (
    ("gemini-1.5-pro", 2_097_152),
    ("gemini", 1_048_576),
    ("claude", 200_000),
    ("gpt-4.1", 1_047_576),
    ("gpt-4o", 128_000),
)


def token_limit(model: str) -> int:
    name = (model or "").lower()
    # Provider-qualified names like "openai/gpt-4o".
    name = name.rsplit("/", 1)[-1]
    for prefix, limit in _LIMITS:
        if name.startswith(prefix):
            return limit
    return DEFAULT_TOKEN_LIMIT
