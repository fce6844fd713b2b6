"""Credential resolution for providers."""

from parley.auth.helper import ProviderAuthHelper
from parley.auth.precedence import AuthMethod, AuthPrecedenceResolver, OAuthManager

__all__ = ["AuthMethod", "AuthPrecedenceResolver", "OAuthManager", "ProviderAuthHelper"]
