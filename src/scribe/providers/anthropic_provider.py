"""
Anthropic Claude provider.
"""

import os
from typing import Optional

from ..exceptions import ProviderError, ProviderTimeout, ProviderUnavailable, RateLimited
from .base import Provider, ProviderOptions, ProviderResult
from .factory import register_provider


@register_provider
class AnthropicProvider(Provider):
    """Completion backend using Anthropic's Messages API."""

    PROVIDER_ID = "anthropic"
    PROVIDER_NAME = "Anthropic Claude"
    MODEL = "claude-sonnet-4-5-20250929"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None):
        """
        Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            model: Model id (defaults to MODEL)
            timeout: HTTP timeout passed to the SDK
        """
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY not found in environment or provided")
        self.model = model or self.MODEL

        # Lazy import anthropic so other providers work without it
        try:
            import anthropic
        except ImportError as e:
            raise ImportError(
                "anthropic package not installed. "
                "Install with: pip install anthropic>=0.40.0"
            ) from e
        self.anthropic = anthropic
        client_kwargs = {"api_key": self.api_key, "max_retries": 0}
        if timeout:
            client_kwargs["timeout"] = timeout
        self.client = anthropic.Anthropic(**client_kwargs)

    def complete(self, prompt: str, options: ProviderOptions) -> ProviderResult:
        try:
            response = self.client.messages.create(
                model=options.model or self.model,
                max_tokens=options.max_tokens,
                temperature=options.temperature,
                messages=[{"role": "user", "content": prompt}]
            )
        except self.anthropic.RateLimitError as e:
            raise RateLimited(self.PROVIDER_ID, f"Rate limit exceeded: {e}") from e
        except self.anthropic.APITimeoutError as e:
            raise ProviderTimeout(self.PROVIDER_ID, f"Request timed out: {e}") from e
        except self.anthropic.APIConnectionError as e:
            raise ProviderUnavailable(self.PROVIDER_ID, f"Network error: {e}") from e
        except self.anthropic.APIStatusError as e:
            if e.status_code >= 500:
                raise ProviderUnavailable(self.PROVIDER_ID, f"API error ({e.status_code}): {e.message}") from e
            raise ProviderError(self.PROVIDER_ID, f"API error ({e.status_code}): {e.message}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "text") == "text"
        )
        usage = getattr(response, "usage", None)
        tokens = (usage.input_tokens + usage.output_tokens) if usage else self.estimate_tokens(text)
        return ProviderResult(text=text, tokens_used=tokens)
