"""Pytest configuration and fixtures for parley tests.

This file intentionally keeps the test environment lean (no extra deps).
To support `async def` tests without pytest-asyncio, we provide a minimal
hook that runs coroutine test functions using the stdlib's asyncio.

Backends are faked with ``ScriptedBackend``, which replays Gemini-shaped
stream items: one script per ``send`` call.
"""

import asyncio
import inspect
from typing import Any, Dict, List, Optional

import pytest

from parley.core.chat import ConversationChat
from parley.providers.capabilities import ProviderCapabilities, ProviderFormat
from parley.providers.manager import ProviderManager
from parley.providers.provider import Provider
from parley.settings import DEFAULT_PROVIDER_ENV_KEYS, RetrySettings, clear_settings_cache
from parley.tools import ToolDeclaration, ToolKind, ToolRegistry


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch):
    """Start every test from a clean environment and settings cache."""
    for keys in DEFAULT_PROVIDER_ENV_KEYS.values():
        for key in keys:
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Scripted backend
# =============================================================================


def gemini_text(text: str, finish: Optional[str] = "STOP", usage: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    candidate: Dict[str, Any] = {"content": {"role": "model", "parts": [{"text": text}]}}
    if finish:
        candidate["finishReason"] = finish
    item: Dict[str, Any] = {"candidates": [candidate]}
    if usage:
        item["usageMetadata"] = usage
    return item


def gemini_thought(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text, "thought": True}]}}]}


def gemini_call(name: str, args: Dict[str, Any], call_id: str, finish: Optional[str] = None) -> Dict[str, Any]:
    candidate: Dict[str, Any] = {
        "content": {"role": "model", "parts": [{"functionCall": {"id": call_id, "name": name, "args": args}}]}
    }
    if finish:
        candidate["finishReason"] = finish
    return {"candidates": [candidate]}


class ScriptedBackend:
    """Replays one canned script per call; a script may also be an exception."""

    def __init__(self, scripts: List[Any]):
        self.scripts = list(scripts)
        self.calls: List[Dict[str, Any]] = []

    async def send(self, payload, tools, model, cancel=None):
        self.calls.append({"payload": payload, "tools": tools, "model": model})
        script = self.scripts.pop(0) if self.scripts else []
        if isinstance(script, BaseException):
            raise script
        for item in script:
            yield item


ECHO = ProviderCapabilities(requires_tool_echo=True, single_response_per_message=False)
NO_ECHO = ProviderCapabilities(requires_tool_echo=False, single_response_per_message=False)


def make_manager(backend: ScriptedBackend, capabilities: ProviderCapabilities = ECHO) -> ProviderManager:
    manager = ProviderManager()
    provider = Provider(
        "scripted",
        ProviderFormat.GEMINI,
        backend,
        default_model="gemini-2.5-pro",
        capabilities=capabilities,
    )
    manager.register(provider, default=True)
    return manager


def make_tools() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(ToolDeclaration("read_file", "Read a file", {"type": "object"}, ToolKind.READ))
    registry.register(ToolDeclaration("write_file", "Write a file", {"type": "object"}, ToolKind.EDIT))
    registry.register(ToolDeclaration("run_shell", "Run a command", {"type": "object"}, ToolKind.EXECUTE))
    return registry


async def no_sleep(delay: float) -> None:
    return None


def deeply_nested(depth: int) -> Dict[str, Any]:
    """A non-cyclic dict ``depth`` levels deep."""
    value: Dict[str, Any] = {"leaf": True}
    for _ in range(depth):
        value = {"child": value}
    return value


@pytest.fixture
def make_chat():
    """Factory for a ConversationChat wired to a ScriptedBackend."""

    def _make(scripts, capabilities=ECHO, retry_settings=None, **kwargs):
        backend = ScriptedBackend(scripts)
        chat = ConversationChat(
            make_manager(backend, capabilities),
            tools=kwargs.pop("tools", make_tools()),
            retry_settings=retry_settings or RetrySettings(content_initial_delay=0, api_initial_delay=0),
            sleep=no_sleep,
            **kwargs,
        )
        return chat, backend

    return _make


async def collect(stream) -> List[Any]:
    return [item async for item in stream]


def pytest_pyfunc_call(pyfuncitem: pytest.Item) -> bool | None:
    """Enable running `async def` tests without external plugins.

    If the test function is a coroutine function, execute it via asyncio.run.
    Return True to signal that the call was handled, allowing pytest to
    proceed without complaining about missing async plugins.
    """
    test_func = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_func):
        # Build the kwargs that pytest would normally inject (fixtures)
        kwargs = {
            name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames
        }
        asyncio.run(test_func(**kwargs))
        return True
    return None
