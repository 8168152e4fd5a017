"""
Local model server provider (Ollama HTTP API).

Set OLLAMA_URL to reach a server on another machine:
    export OLLAMA_URL=http://100.x.x.x:11434
"""

import os
from typing import Optional

import requests

from ..exceptions import ProviderError, ProviderTimeout, ProviderUnavailable, RateLimited
from .base import Provider, ProviderOptions, ProviderResult
from .factory import register_provider

DEFAULT_OLLAMA_URL = "http://localhost:11434"


@register_provider
class OllamaProvider(Provider):
    """Completion backend served by a local Ollama instance."""

    PROVIDER_ID = "ollama"
    PROVIDER_NAME = "Ollama (local)"
    MODEL = "llama3.1"

    def __init__(self, server_url: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = 120.0, session: Optional[requests.Session] = None):
        self.server_url = (server_url or os.environ.get("OLLAMA_URL", DEFAULT_OLLAMA_URL)).rstrip("/")
        self.model = model or self.MODEL
        self.timeout = timeout
        self.connect_timeout = 5.0
        self._session = session or requests.Session()

    def complete(self, prompt: str, options: ProviderOptions) -> ProviderResult:
        payload = {
            "model": options.model or self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "num_predict": options.max_tokens,
                "temperature": options.temperature,
            },
        }
        try:
            response = self._session.post(
                f"{self.server_url}/api/generate",
                json=payload,
                timeout=(self.connect_timeout, self.timeout)
            )
        except requests.Timeout as e:
            raise ProviderTimeout(self.PROVIDER_ID, f"Request timed out: {e}") from e
        except requests.RequestException as e:
            raise ProviderUnavailable(self.PROVIDER_ID, f"Connection error: {e}") from e

        if response.status_code == 429:
            raise RateLimited(self.PROVIDER_ID, "Server is busy")
        if response.status_code >= 500:
            raise ProviderUnavailable(self.PROVIDER_ID, f"Server error: {response.status_code}")
        if response.status_code != 200:
            raise ProviderError(self.PROVIDER_ID, f"Request rejected: {response.status_code}")

        data = response.json()
        text = data.get("response", "")
        tokens = data.get("prompt_eval_count", 0) + data.get("eval_count", 0)
        return ProviderResult(text=text, tokens_used=tokens or self.estimate_tokens(text))
