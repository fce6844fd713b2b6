"""Authentication precedence chain for one provider.

Credentials are tried in a fixed order and the first non-empty value wins:

1. an explicit per-session key
2. each configured environment variable, in order
3. the OAuth manager, only if OAuth is enabled for the provider

Asking the OAuth manager may start an interactive device/browser flow, so it
is only reached when nothing cheaper produced a credential. The resolver
never raises: a failing OAuth manager is logged and treated as "no auth".
"""

from __future__ import annotations

import logging
import os
from typing import Mapping, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class OAuthManager(Protocol):
    async def get_token(self, provider: str) -> Optional[str]: ...

    async def is_authenticated(self, provider: str) -> bool: ...


class AuthMethod:
    """Names reported by ``auth_method_name``."""

    SESSION_KEY = "session-key"
    ENV_VAR = "env-var"
    OAUTH = "oauth"
    NONE = "none"


class AuthPrecedenceResolver:
    """Resolve a credential for ``provider`` through the precedence chain."""

    def __init__(
        self,
        provider: str,
        *,
        session_key: Optional[str] = None,
        env_keys: Sequence[str] = (),
        oauth_manager: Optional[OAuthManager] = None,
        oauth_enabled: bool = False,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.provider = provider
        self.session_key = session_key
        self.env_keys = tuple(env_keys)
        self.oauth_manager = oauth_manager
        self.oauth_enabled = oauth_enabled
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else os.environ

    def _env_value(self) -> Optional[str]:
        for name in self.env_keys:
            value = self.environ.get(name)
            if value and value.strip():
                return value.strip()
        return None

    def _oauth_available(self) -> bool:
        return self.oauth_enabled and self.oauth_manager is not None

    def has_non_oauth_authentication(self) -> bool:
        return bool(self.session_key) or self._env_value() is not None

    async def resolve(self) -> Optional[str]:
        """Return the first credential found, or ``None`` for no-auth."""
        if self.session_key:
            logger.debug("Using session key for %s", self.provider)
            return self.session_key

        env_value = self._env_value()
        if env_value:
            logger.debug("Using environment credential for %s", self.provider)
            return env_value

        if self._oauth_available():
            try:
                token = await self.oauth_manager.get_token(self.provider)
            except Exception as e:
                logger.warning("OAuth token lookup failed for %s: %s", self.provider, e)
                return None
            if token:
                logger.debug("Using OAuth token for %s", self.provider)
                return token

        logger.debug("No credential available for %s", self.provider)
        return None

    async def is_oauth_only_available(self) -> bool:
        """True when OAuth is the only way this provider could authenticate."""
        if self.has_non_oauth_authentication() or not self._oauth_available():
            return False
        return True

    async def auth_method_name(self) -> str:
        """Which link of the chain would answer, without triggering OAuth."""
        if self.session_key:
            return AuthMethod.SESSION_KEY
        if self._env_value():
            return AuthMethod.ENV_VAR
        if self._oauth_available():
            try:
                if await self.oauth_manager.is_authenticated(self.provider):
                    return AuthMethod.OAUTH
            except Exception as e:
                logger.debug("OAuth status check failed for %s: %s", self.provider, e)
        return AuthMethod.NONE

    async def is_authenticated(self) -> bool:
        return await self.auth_method_name() != AuthMethod.NONE
