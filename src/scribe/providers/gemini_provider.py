"""Google Gemini provider."""

import os
from typing import Optional

from ..exceptions import ProviderError, ProviderUnavailable, RateLimited
from .base import Provider, ProviderOptions, ProviderResult
from .factory import register_provider


@register_provider
class GeminiProvider(Provider):
    """Completion backend using the Google GenAI SDK."""

    PROVIDER_ID = "gemini"
    PROVIDER_NAME = "Google Gemini"
    MODEL = "gemini-2.5-flash"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, client=None):
        self.model = model or self.MODEL
        if client is not None:
            self._client = client
            return

        api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ValueError("GEMINI_API_KEY not found in environment or provided")
        try:
            from google import genai
        except ImportError as e:
            raise ImportError(
                "google-genai package not installed. Install with: pip install google-genai"
            ) from e
        http_options = {"timeout": int(timeout * 1000)} if timeout else None
        self._client = genai.Client(api_key=api_key, http_options=http_options)

    def complete(self, prompt: str, options: ProviderOptions) -> ProviderResult:
        from google.genai import errors

        try:
            response = self._client.models.generate_content(
                model=options.model or self.model,
                contents=prompt,
                config={
                    "max_output_tokens": options.max_tokens,
                    "temperature": options.temperature,
                },
            )
        except errors.APIError as e:
            if e.code == 429:
                raise RateLimited(self.PROVIDER_ID, f"Rate limit exceeded: {e}") from e
            if e.code and e.code >= 500:
                raise ProviderUnavailable(self.PROVIDER_ID, f"API error ({e.code}): {e}") from e
            raise ProviderError(self.PROVIDER_ID, f"API error ({e.code}): {e}") from e

        text = response.text or ""
        if not text:
            raise ProviderError(self.PROVIDER_ID, "Gemini returned empty response")
        usage = getattr(response, "usage_metadata", None)
        tokens = getattr(usage, "total_token_count", None) if usage else None
        return ProviderResult(text=text, tokens_used=tokens or self.estimate_tokens(text))
