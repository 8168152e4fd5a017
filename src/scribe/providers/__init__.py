"""
Language-model providers and the gateway that fronts them.
"""

from .base import Provider, ProviderOptions, ProviderResult
from .factory import create_provider, get_provider_ids, register_provider
from .gateway import CircuitBreaker, ProviderGateway, ProviderRequest, ProviderResponse

__all__ = [
    "Provider",
    "ProviderOptions",
    "ProviderResult",
    "create_provider",
    "get_provider_ids",
    "register_provider",
    "CircuitBreaker",
    "ProviderGateway",
    "ProviderRequest",
    "ProviderResponse",
]
