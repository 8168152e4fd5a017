"""
Provider factory.

The set of backends is closed: each one registers itself by PROVIDER_ID and
jobs pick one through configuration.
"""

from typing import Dict, List, Type

from .base import Provider


# Registry of provider classes (populated by register_provider)
_provider_registry: Dict[str, Type[Provider]] = {}


def register_provider(provider_class: Type[Provider]) -> Type[Provider]:
    """
    Register a provider class in the registry.

    Use as a decorator:
        @register_provider
        class MyProvider(Provider):
            PROVIDER_ID = "my_provider"
    """
    _provider_registry[provider_class.PROVIDER_ID] = provider_class
    return provider_class


def get_provider_ids() -> List[str]:
    """Get the ids of all registered providers."""
    return sorted(_provider_registry)


def create_provider(provider_id: str, **kwargs) -> Provider:
    """
    Create an instance of the specified provider.

    Args:
        provider_id: The provider ID to instantiate
        **kwargs: Constructor arguments (api_key, model, timeout, ...)

    Returns:
        An instance of the requested provider

    Raises:
        ValueError: If the provider ID is unknown
    """
    if provider_id not in _provider_registry:
        raise ValueError(f"Unknown provider '{provider_id}'. Available: {get_provider_ids()}")
    return _provider_registry[provider_id](**kwargs)


def _register_providers():
    """Import provider modules to register them."""
    from . import anthropic_provider, gemini_provider, ollama_provider  # noqa: F401


# Register providers on module load
_register_providers()
