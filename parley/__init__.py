import importlib.metadata

try:
    _detected_version = importlib.metadata.version("parley-core")
    __version__ = _detected_version if _detected_version else "0.0.0-dev"
except Exception:
    # Not installed (running from a checkout)
    __version__ = "0.0.0-dev"

from parley.settings import (
    AuthSettings,
    CompressionSettings,
    DebugSettings,
    RetrySettings,
    SessionSettings,
    Settings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "__version__",
    "AuthSettings",
    "CompressionSettings",
    "DebugSettings",
    "RetrySettings",
    "SessionSettings",
    "Settings",
    "clear_settings_cache",
    "get_settings",
]
