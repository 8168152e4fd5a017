"""
Base classes for language-model providers.

Every backend (local model server or remote API) implements the same
completion contract so the gateway can treat them uniformly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class ProviderOptions:
    """Per-call generation options."""
    max_tokens: int = 2048
    model: Optional[str] = None     # None means the provider's configured model
    temperature: float = 0.0        # Deterministic for consistency


@dataclass
class ProviderResult:
    """Raw completion returned by a backend."""
    text: str
    tokens_used: int = 0


class Provider(ABC):
    """
    Abstract base class for completion backends.

    Implementations raise ProviderUnavailable when the backend cannot be
    reached and RateLimited when it throttles the caller.
    """

    PROVIDER_ID: str = "base"
    PROVIDER_NAME: str = "Base Provider"

    @property
    def name(self) -> str:
        return self.PROVIDER_ID

    @abstractmethod
    def complete(self, prompt: str, options: ProviderOptions) -> ProviderResult:
        """
        Generate a completion for the prompt.

        Args:
            prompt: Full prompt text
            options: Generation options

        Returns:
            ProviderResult with the generated text and tokens used
        """
        pass

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Whitespace token estimate for backends that report no usage."""
        return len(text.split())
