"""Provider Adapter Layer: wire formats, backends and provider selection."""

from parley.providers.backends import Backend, HttpBackend, PydanticAIBackend
from parley.providers.capabilities import CAPABILITIES, ProviderCapabilities, ProviderFormat
from parley.providers.chunks import ModelChunk
from parley.providers.manager import ProviderManager
from parley.providers.payload import build_request_entries
from parley.providers.provider import Provider

__all__ = [
    "Backend",
    "CAPABILITIES",
    "HttpBackend",
    "ModelChunk",
    "Provider",
    "ProviderCapabilities",
    "ProviderFormat",
    "ProviderManager",
    "PydanticAIBackend",
    "build_request_entries",
]
