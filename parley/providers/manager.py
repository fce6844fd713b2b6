"""Registry of providers and the one that is currently active."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from parley.errors import NoActiveProviderError, ProviderNotFoundError
from parley.providers.provider import Provider

logger = logging.getLogger(__name__)


class ProviderManager:
    """Holds providers by name; the active provider is per instance."""

    def __init__(self) -> None:
        self._providers: Dict[str, Provider] = {}
        self._active: Optional[str] = None

    def register(self, provider: Provider, *, default: bool = False) -> None:
        self._providers[provider.name] = provider
        if default and self._active is None:
            self._active = provider.name
        logger.debug("Registered provider %s", provider.name)

    def set_active(self, name: str) -> Provider:
        if name not in self._providers:
            raise ProviderNotFoundError(f"Provider '{name}' not found")
        if self._active != name:
            logger.info("Switching active provider %s -> %s", self._active, name)
        self._active = name
        return self._providers[name]

    def clear_active(self) -> None:
        self._active = None

    @property
    def active(self) -> Provider:
        if not self._active:
            raise NoActiveProviderError("No active provider set")
        provider = self._providers.get(self._active)
        if provider is None:
            raise NoActiveProviderError(f"Active provider '{self._active}' not found")
        return provider

    @property
    def active_name(self) -> Optional[str]:
        return self._active

    def has_active(self) -> bool:
        return self._active is not None and self._active in self._providers

    def get(self, name: str) -> Optional[Provider]:
        return self._providers.get(name)

    def list_providers(self) -> List[str]:
        return list(self._providers)
