"""Short-lived credential cache in front of the precedence resolver."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from parley.auth.precedence import AuthPrecedenceResolver, OAuthManager

logger = logging.getLogger(__name__)


class ProviderAuthHelper:
    """Caches the resolved credential for ``cache_seconds``.

    A burst of requests resolves the chain once. Lookups are serialized by an
    ``asyncio.Lock`` so concurrent callers never race into the OAuth manager.
    Any credential change clears the cache.
    """

    def __init__(
        self,
        resolver: AuthPrecedenceResolver,
        cache_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.resolver = resolver
        self.cache_seconds = cache_seconds
        self._clock = clock
        self._cached_token: Optional[str] = None
        self._cached_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def provider(self) -> str:
        return self.resolver.provider

    async def get_token(self) -> str:
        """Resolved credential, or ``""`` when the provider needs no auth."""
        async with self._lock:
            if self._cached_token and self._cached_at is not None:
                if self._clock() - self._cached_at < self.cache_seconds:
                    return self._cached_token
            self.clear_cache()

            token = await self.resolver.resolve()
            if not token:
                return ""

            self._cached_token = token
            self._cached_at = self._clock()
            logger.debug(
                "[%s] Authentication resolved using: %s",
                self.provider,
                await self.resolver.auth_method_name(),
            )
            return token

    async def auth_method_name(self) -> str:
        return await self.resolver.auth_method_name()

    async def is_authenticated(self) -> bool:
        return await self.resolver.is_authenticated()

    def has_non_oauth_authentication(self) -> bool:
        return self.resolver.has_non_oauth_authentication()

    async def is_oauth_only_available(self) -> bool:
        return await self.resolver.is_oauth_only_available()

    def set_api_key(self, api_key: Optional[str]) -> None:
        """Set the session key; a blank key removes it from the chain."""
        self.resolver.session_key = api_key.strip() if api_key and api_key.strip() else None
        self.clear_cache()

    def clear_auth(self) -> None:
        self.resolver.session_key = None
        self.clear_cache()

    def update_oauth_config(self, enabled: bool, manager: Optional[OAuthManager] = None) -> None:
        self.resolver.oauth_enabled = enabled
        if manager is not None:
            self.resolver.oauth_manager = manager
        self.clear_cache()

    def clear_cache(self) -> None:
        self._cached_token = None
        self._cached_at = None
