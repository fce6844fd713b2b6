"""
Typed settings management using pydantic-settings.

Every tunable of the conversation core lives here as a validated,
environment-aware settings section. Components never look these up on their
own: they receive the section they need through their constructor, so two
engines with different settings can live side by side in one process.

Usage:
    from parley.settings import get_settings

    settings = get_settings()
    engine = CompressionEngine(history, providers, settings.compression)
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Compression
# =============================================================================


class CompressionSettings(BaseSettings):
    """History compression configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_COMPRESSION_",
        extra="ignore",
    )

    token_threshold: float = Field(
        default=0.7,
        gt=0.0,
        le=1.0,
        description="Fraction of the model context limit that triggers compression",
    )

    preserve_fraction: float = Field(
        default=0.3,
        gt=0.0,
        lt=1.0,
        description="Fraction of history (by characters) kept verbatim after compression",
    )


# =============================================================================
# Retry
# =============================================================================


class RetrySettings(BaseSettings):
    """Retry budgets for invalid streams and backend failures."""

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_RETRY_",
        extra="ignore",
    )

    content_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Attempts for a turn whose stream came back invalid",
    )

    content_initial_delay: float = Field(
        default=0.5,
        ge=0.0,
        description="Seconds before the first invalid-content retry (linear backoff)",
    )

    api_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts for 429/5xx backend failures",
    )

    api_initial_delay: float = Field(
        default=5.0,
        ge=0.0,
        description="Seconds before the first backend retry (exponential backoff)",
    )

    api_max_delay: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound for a single backend retry delay",
    )

    persistent_429_threshold: int = Field(
        default=2,
        ge=1,
        description="Consecutive 429 responses before fallback negotiation kicks in",
    )


# =============================================================================
# Session
# =============================================================================


class SessionSettings(BaseSettings):
    """Supervising loop configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_",
        extra="ignore",
    )

    default_model: str = Field(
        default="gemini-2.5-pro",
        description="Model used when the active provider does not name one",
    )

    max_session_turns: int = Field(
        default=-1,
        description="Turns per session before aborting (-1 = unlimited)",
    )

    max_turns: int = Field(
        default=100,
        ge=1,
        description="Continuation budget for a single user message",
    )

    skip_next_speaker_check: bool = Field(
        default=False,
        description="Never ask the backend whether the model should keep talking",
    )

    tokenizer: Literal["heuristic", "tiktoken"] = Field(
        default="heuristic",
        description="Token estimator for the history ledger",
    )


# =============================================================================
# Auth
# =============================================================================


DEFAULT_PROVIDER_ENV_KEYS: Dict[str, Tuple[str, ...]] = {
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    "openai": ("OPENAI_API_KEY",),
    "anthropic": ("ANTHROPIC_API_KEY",),
    "openrouter": ("OPENROUTER_API_KEY",),
    "cerebras": ("CEREBRAS_API_KEY",),
}


class AuthSettings(BaseSettings):
    """Credential resolution configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_AUTH_",
        extra="ignore",
    )

    cache_seconds: float = Field(
        default=60.0,
        ge=0.0,
        description="How long a resolved credential is reused",
    )

    provider_env_keys: Dict[str, Tuple[str, ...]] = Field(
        default_factory=lambda: dict(DEFAULT_PROVIDER_ENV_KEYS),
        description="Environment variable names tried, in order, per provider",
    )

    oauth_providers: List[str] = Field(
        default_factory=list,
        description="Providers allowed to fall back to OAuth",
    )

    session_keys: Dict[str, SecretStr] = Field(
        default_factory=dict,
        description="Explicit per-session keys, keyed by provider",
    )

    def env_keys_for(self, provider: str) -> Tuple[str, ...]:
        return tuple(self.provider_env_keys.get(provider.lower(), ()))

    def session_key_for(self, provider: str) -> Optional[str]:
        value = self.session_keys.get(provider.lower())
        return value.get_secret_value() if value is not None else None


# =============================================================================
# Debug log
# =============================================================================


def _default_debug_dir() -> Path:
    """XDG_STATE_HOME/parley/debug or ~/.parley/debug"""
    xdg_base = os.getenv("XDG_STATE_HOME")
    if xdg_base:
        return Path(xdg_base) / "parley" / "debug"
    return Path.home() / ".parley" / "debug"


class DebugSettings(BaseSettings):
    """Persisted JSONL debug log configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_DEBUG_",
        extra="ignore",
    )

    enabled: bool = Field(default=False, description="Write debug log files")

    namespaces: List[str] = Field(
        default_factory=lambda: ["parley*"],
        description="Wildcard logger namespaces to record; '-' prefix excludes",
    )

    level: str = Field(default="DEBUG", description="Minimum level written to file")

    directory: Path = Field(default_factory=_default_debug_dir)

    max_file_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Rotate the log file once it grows past this size",
    )

    redact_patterns: List[str] = Field(
        default_factory=lambda: [
            r"sk-[A-Za-z0-9_\-]{8,}",
            r"AIza[0-9A-Za-z_\-]{20,}",
            r"(?i)bearer\s+[A-Za-z0-9._\-]+",
            r"(?i)(api[_-]?key|token|secret|password)[\"']?\s*[:=]\s*[\"']?[^\s\"',}]+",
        ],
        description="Regular expressions whose matches are replaced before writing",
    )

    @field_validator("level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


# =============================================================================
# Master Settings
# =============================================================================


class Settings(BaseSettings):
    """Master settings combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PARLEY_",
        extra="ignore",
        case_sensitive=False,
    )

    compression: CompressionSettings = Field(default_factory=CompressionSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    session: SessionSettings = Field(default_factory=SessionSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    debug: DebugSettings = Field(default_factory=DebugSettings)


# =============================================================================
# Cached Singleton Accessors
# =============================================================================


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the cached settings singleton.

    Only entry points (factories, scripts) should call this; library
    components take their section as a constructor argument.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the cached settings instance so the environment is re-read."""
    get_settings.cache_clear()
