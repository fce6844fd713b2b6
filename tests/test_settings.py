"""Tests for the pydantic-settings based configuration system."""

from pathlib import Path

import pytest
from pydantic import ValidationError

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


class TestDefaults:
    """Tests for default values."""

    def test_compression_defaults(self):
        settings = CompressionSettings()
        assert settings.token_threshold == 0.7
        assert settings.preserve_fraction == 0.3

    def test_retry_defaults(self):
        settings = RetrySettings()
        assert settings.content_max_attempts == 2
        assert settings.content_initial_delay == 0.5
        assert settings.api_max_attempts == 5
        assert settings.persistent_429_threshold == 2

    def test_session_defaults(self):
        settings = SessionSettings()
        assert settings.max_session_turns == -1
        assert settings.max_turns == 100
        assert not settings.skip_next_speaker_check
        assert settings.tokenizer == "heuristic"

    def test_debug_directory_follows_xdg_state_home(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path))
        assert DebugSettings().directory == tmp_path / "parley" / "debug"

    def test_debug_directory_defaults_to_home(self, monkeypatch):
        monkeypatch.delenv("XDG_STATE_HOME", raising=False)
        assert DebugSettings().directory == Path.home() / ".parley" / "debug"


class TestEnvironmentOverrides:
    """Tests for PARLEY_* environment variables."""

    def test_section_prefixes(self, monkeypatch):
        monkeypatch.setenv("PARLEY_COMPRESSION_TOKEN_THRESHOLD", "0.5")
        monkeypatch.setenv("PARLEY_RETRY_CONTENT_MAX_ATTEMPTS", "4")
        monkeypatch.setenv("PARLEY_MAX_SESSION_TURNS", "10")

        assert CompressionSettings().token_threshold == 0.5
        assert RetrySettings().content_max_attempts == 4
        assert SessionSettings().max_session_turns == 10

    def test_master_settings_builds_sections_from_env(self, monkeypatch):
        monkeypatch.setenv("PARLEY_SKIP_NEXT_SPEAKER_CHECK", "true")

        assert Settings().session.skip_next_speaker_check


class TestValidation:
    @pytest.mark.parametrize("value", [0.0, 1.5])
    def test_token_threshold_bounds(self, value):
        with pytest.raises(ValidationError):
            CompressionSettings(token_threshold=value)

    @pytest.mark.parametrize("value", [0.0, 1.0])
    def test_preserve_fraction_is_open_interval(self, value):
        with pytest.raises(ValidationError):
            CompressionSettings(preserve_fraction=value)

    def test_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            RetrySettings(content_max_attempts=0)

    def test_unknown_tokenizer_is_rejected(self):
        with pytest.raises(ValidationError):
            SessionSettings(tokenizer="bpe")

    def test_debug_level_is_upper_cased(self):
        assert DebugSettings(level="warning").level == "WARNING"


class TestAuthSettings:
    def test_env_keys_per_provider(self):
        settings = AuthSettings()
        assert "GEMINI_API_KEY" in settings.env_keys_for("gemini")
        assert settings.env_keys_for("unknown") == ()

    def test_session_keys_are_secret(self):
        settings = AuthSettings(session_keys={"openai": "sk-session"})
        assert settings.session_key_for("openai") == "sk-session"
        assert "sk-session" not in repr(settings)
        assert settings.session_key_for("gemini") is None


class TestCache:
    def test_get_settings_is_cached_until_cleared(self, monkeypatch):
        first = get_settings()
        assert get_settings() is first

        monkeypatch.setenv("PARLEY_MAX_TURNS", "7")
        assert get_settings().session.max_turns == 100

        clear_settings_cache()
        assert get_settings().session.max_turns == 7
