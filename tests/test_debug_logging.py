"""Tests for the JSONL debug log."""

import json
import logging
import stat
import sys
from datetime import datetime, timedelta, timezone

import pytest

from parley.debug import DebugLogger, JsonlFileHandler, NamespaceFilter, Redactor, configure_debug_logging
from parley.settings import DebugSettings


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def read_lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


def make_record(name="parley.core.chat", msg="hello", level=logging.DEBUG, **extra):
    record = logging.LogRecord(name, level, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def parley_logger_level():
    parley_logger = logging.getLogger("parley")
    previous = parley_logger.level
    yield
    configure_debug_logging(DebugSettings(enabled=False))
    parley_logger.setLevel(previous)


class TestNamespaceFilter:
    """Tests for wildcard namespace matching."""

    def test_wildcards_and_children(self):
        f = NamespaceFilter(["parley.core*", "parley.auth"])
        assert f.matches("parley.core.chat")
        assert f.matches("parley.auth.helper")
        assert f.matches("parley.auth")
        assert not f.matches("parley.providers.backends")

    def test_colon_separated_patterns(self):
        assert NamespaceFilter(["parley:core:*"]).matches("parley.core.turn")

    def test_exclusions_win(self):
        f = NamespaceFilter(["parley*", "-parley.history*"])
        assert f.matches("parley.core.chat")
        assert not f.matches("parley.history.service")

    def test_no_patterns_match_nothing(self):
        assert not NamespaceFilter([]).matches("parley.core")


class TestRedactor:
    def test_default_patterns(self):
        redact = Redactor(DebugSettings().redact_patterns)

        assert "sk-abcdefgh12345" not in redact("using sk-abcdefgh12345 now")
        assert redact("Authorization: Bearer abc.def") == "Authorization: [REDACTED]"
        assert redact("api_key=hunter2") == "api_key: [REDACTED]"

    def test_plain_text_untouched(self):
        assert Redactor(DebugSettings().redact_patterns)("nothing secret here") == "nothing secret here"


class TestJsonlFileHandler:
    """Tests for writing and rotating log files."""

    def test_writes_one_json_object_per_record(self, tmp_path):
        clock = Clock(datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        handler = JsonlFileHandler(tmp_path / "logs", clock=clock, redactor=Redactor([r"sk-\w+"]))

        handler.emit(make_record(msg="key sk-secret", debug_args=["sk-other", {"n": 1}]))
        handler.emit(make_record(name="parley.auth", msg="second", level=logging.WARNING))

        path = handler.current_file
        assert path.name == "parley-debug-2025-01-02-03-04-05.jsonl"
        first, second = read_lines(path)
        assert first["namespace"] == "parley.core.chat"
        assert first["level"] == "debug"
        assert first["message"] == "key [REDACTED]"
        assert first["args"] == ["[REDACTED]", {"n": 1}]
        assert second["level"] == "warning"
        assert "args" not in second

    def test_permissions(self, tmp_path):
        directory = tmp_path / "logs"
        handler = JsonlFileHandler(directory)

        handler.emit(make_record())

        assert stat.S_IMODE(directory.stat().st_mode) == 0o700
        assert stat.S_IMODE(handler.current_file.stat().st_mode) == 0o600

    def test_rotates_on_size(self, tmp_path):
        clock = Clock(datetime(2025, 1, 2, tzinfo=timezone.utc))
        handler = JsonlFileHandler(tmp_path, max_bytes=10, clock=clock)

        handler.emit(make_record(msg="a long enough message"))
        first = handler.current_file
        handler.emit(make_record(msg="next"))

        assert handler.current_file != first
        assert handler.current_file.name.endswith("-1.jsonl")

    def test_rotates_on_new_day(self, tmp_path):
        clock = Clock(datetime(2025, 1, 2, 23, 59, tzinfo=timezone.utc))
        handler = JsonlFileHandler(tmp_path, clock=clock)

        handler.emit(make_record())
        first = handler.current_file
        clock.now += timedelta(minutes=2)
        handler.emit(make_record())

        assert handler.current_file != first
        assert "2025-01-03" in handler.current_file.name

    def test_exception_is_recorded(self, tmp_path):
        handler = JsonlFileHandler(tmp_path)
        try:
            raise ValueError("boom")
        except ValueError:
            record = make_record(exc_info=sys.exc_info())

        handler.emit(record)

        assert "ValueError: boom" in read_lines(handler.current_file)[0]["exception"]


class TestConfigureDebugLogging:
    def test_disabled_installs_nothing(self):
        assert configure_debug_logging(DebugSettings(enabled=False)) is None

    def test_enabled_writes_filtered_records(self, tmp_path, parley_logger_level):
        settings = DebugSettings(enabled=True, directory=tmp_path, namespaces=["parley.core*"])
        handler = configure_debug_logging(settings)

        logging.getLogger("parley.core.chat").debug("kept")
        logging.getLogger("parley.auth.helper").debug("dropped")

        lines = read_lines(handler.current_file)
        assert [line["message"] for line in lines] == ["kept"]

    def test_reconfigure_replaces_handler(self, tmp_path, parley_logger_level):
        first = configure_debug_logging(DebugSettings(enabled=True, directory=tmp_path / "a"))
        second = configure_debug_logging(DebugSettings(enabled=True, directory=tmp_path / "b"))

        handlers = logging.getLogger().handlers
        assert second in handlers
        assert first not in handlers

    def test_settings_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PARLEY_DEBUG_ENABLED", "true")
        monkeypatch.setenv("PARLEY_DEBUG_LEVEL", "info")
        monkeypatch.setenv("PARLEY_DEBUG_DIRECTORY", str(tmp_path))

        settings = DebugSettings()

        assert settings.enabled
        assert settings.level == "INFO"
        assert settings.directory == tmp_path


class TestDebugLogger:
    """Tests for DebugLogger."""

    def test_structured_args_and_lazy_messages(self, tmp_path, parley_logger_level):
        handler = configure_debug_logging(DebugSettings(enabled=True, directory=tmp_path))
        log = DebugLogger("parley:core:test")
        calls = []

        def build():
            calls.append(1)
            return "built"

        log.debug(build, {"tokens": 3})
        log.error(lambda: 1 / 0)

        lines = read_lines(handler.current_file)
        assert calls == [1]
        assert lines[0]["namespace"] == "parley.core.test"
        assert lines[0]["message"] == "built"
        assert lines[0]["args"] == [{"tokens": 3}]
        assert lines[1]["message"] == "[Error evaluating log function]"
        assert lines[1]["level"] == "error"

    def test_disabled_level_skips_evaluation(self):
        log = DebugLogger("parley.quiet")
        logging.getLogger("parley.quiet").setLevel(logging.ERROR)
        calls = []

        log.debug(lambda: calls.append(1) or "x")

        assert calls == []
        assert not log.enabled
