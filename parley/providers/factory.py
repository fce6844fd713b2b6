"""Assemble providers from settings.

This is the one place that falls back to the cached settings singleton;
everything it builds receives its configuration explicitly.
"""

from __future__ import annotations

from typing import Iterable, Optional

import httpx
from pydantic_ai.models import Model

from parley.auth.helper import ProviderAuthHelper
from parley.auth.precedence import AuthPrecedenceResolver, OAuthManager
from parley.providers.backends import HttpBackend, PydanticAIBackend
from parley.providers.capabilities import ProviderFormat
from parley.providers.manager import ProviderManager
from parley.providers.provider import Provider
from parley.settings import AuthSettings, get_settings

# Provider name -> wire format
PROVIDER_FORMATS = {
    "gemini": ProviderFormat.GEMINI,
    "openai": ProviderFormat.OPENAI,
    "openrouter": ProviderFormat.OPENAI,
    "cerebras": ProviderFormat.OPENAI,
    "anthropic": ProviderFormat.ANTHROPIC,
}

PROVIDER_BASE_URLS = {
    "openrouter": "https://openrouter.ai/api/v1",
    "cerebras": "https://api.cerebras.ai/v1",
}

DEFAULT_MODELS = {
    "gemini": "gemini-2.5-pro",
    "openai": "gpt-4.1",
    "openrouter": "openai/gpt-4.1",
    "cerebras": "llama-3.3-70b",
    "anthropic": "claude-sonnet-4-5",
}


def build_auth_helper(
    name: str,
    auth_settings: Optional[AuthSettings] = None,
    oauth_manager: Optional[OAuthManager] = None,
) -> ProviderAuthHelper:
    auth_settings = auth_settings or get_settings().auth
    resolver = AuthPrecedenceResolver(
        name,
        session_key=auth_settings.session_key_for(name),
        env_keys=auth_settings.env_keys_for(name),
        oauth_manager=oauth_manager,
        oauth_enabled=name in auth_settings.oauth_providers,
    )
    return ProviderAuthHelper(resolver, cache_seconds=auth_settings.cache_seconds)


def create_http_provider(
    name: str,
    *,
    auth_settings: Optional[AuthSettings] = None,
    oauth_manager: Optional[OAuthManager] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    base_url: Optional[str] = None,
    default_model: Optional[str] = None,
) -> Provider:
    """Build an HTTP provider for one of the known provider names."""
    try:
        fmt = PROVIDER_FORMATS[name]
    except KeyError:
        raise ValueError(f"Unknown provider '{name}'") from None
    auth = build_auth_helper(name, auth_settings, oauth_manager)
    backend = HttpBackend(
        fmt,
        base_url=base_url or PROVIDER_BASE_URLS.get(name),
        auth=auth,
        http_client=http_client,
    )
    return Provider(name, fmt, backend, default_model=default_model or DEFAULT_MODELS[name], auth=auth)


def create_pydantic_ai_provider(name: str, model: Model) -> Provider:
    """Wrap a ``pydantic_ai`` model as a provider."""
    return Provider(name, ProviderFormat.PYDANTIC_AI, PydanticAIBackend(model), default_model=model.model_name)


def create_provider_manager(
    names: Iterable[str] = ("gemini", "openai", "anthropic"),
    *,
    active: Optional[str] = None,
    auth_settings: Optional[AuthSettings] = None,
    oauth_manager: Optional[OAuthManager] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> ProviderManager:
    manager = ProviderManager()
    for name in names:
        manager.register(
            create_http_provider(
                name,
                auth_settings=auth_settings,
                oauth_manager=oauth_manager,
                http_client=http_client,
            )
        )
    if active:
        manager.set_active(active)
    return manager
