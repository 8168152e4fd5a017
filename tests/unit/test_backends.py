"""
Tests for the HTTP transcription engine and the completion backends.

Network calls go to hand-written fake sessions and clients.
"""

import pytest
import requests
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))
from scribe.engines.base import EngineRequest
from scribe.engines.http_engine import HttpTranscriptionEngine
from scribe.exceptions import (
    EngineError, EngineTimeout, EngineUnavailable, ProviderError, ProviderUnavailable,
    RateLimited, TransientIOError
)
from scribe.providers.anthropic_provider import AnthropicProvider
from scribe.providers.base import ProviderOptions
from scribe.providers.gemini_provider import GeminiProvider
from scribe.providers.ollama_provider import OllamaProvider


class FakeResponse:
    def __init__(self, status_code=200, data=None):
        self.status_code = status_code
        self._data = data or {}

    def json(self):
        return self._data


class FakeSession:
    """Records posts and answers with a fixed response or raises an error."""

    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.posts = []
        self.closed = False

    def post(self, url, json=None, timeout=None, headers=None):
        self.posts.append({"url": url, "json": json, "timeout": timeout, "headers": headers})
        if self.error:
            raise self.error
        return self.response

    def get(self, url, timeout=None, headers=None):
        if self.error:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def make_request(seq=1):
    # 0.5s of 16kHz int16 audio
    return EngineRequest(pcm_bytes=b"\x00\x00" * 8000, sample_rate=16000, session_id="standup", seq=seq)


class TestHttpTranscriptionEngine:
    """Tests for the ASR server client."""

    def test_transcribe_success(self):
        session = FakeSession(FakeResponse(200, {"text": "hello team", "end_ts": 0.5, "confidence": 0.8}))
        engine = HttpTranscriptionEngine("http://asr:9876/", session=session)

        result = engine.transcribe(make_request(seq=7))

        assert result.text == "hello team"
        assert result.end_ts == 0.5
        assert result.confidence == 0.8
        post = session.posts[0]
        assert post["url"] == "http://asr:9876/transcribe"
        assert post["json"]["seq"] == 7
        assert post["json"]["session_id"] == "standup"

    def test_api_token_header(self):
        session = FakeSession(FakeResponse(200, {"text": "ok"}))
        engine = HttpTranscriptionEngine("http://asr:9876", api_token="secret", session=session)
        engine.transcribe(make_request())
        assert session.posts[0]["headers"] == {"X-API-Token": "secret"}

    def test_server_not_ready_is_transient(self):
        engine = HttpTranscriptionEngine("http://asr:9876", session=FakeSession(FakeResponse(503)))
        with pytest.raises(EngineUnavailable) as exc_info:
            engine.transcribe(make_request())
        assert isinstance(exc_info.value, TransientIOError)

    def test_rejected_token_is_permanent(self):
        engine = HttpTranscriptionEngine("http://asr:9876", session=FakeSession(FakeResponse(401)))
        with pytest.raises(EngineError) as exc_info:
            engine.transcribe(make_request())
        assert not isinstance(exc_info.value, TransientIOError)

    def test_malformed_body_is_permanent(self):
        class BadJsonResponse(FakeResponse):
            def json(self):
                raise ValueError("Expecting value: line 1 column 1")

        engine = HttpTranscriptionEngine("http://asr:9876", session=FakeSession(BadJsonResponse(200)))
        with pytest.raises(EngineError) as exc_info:
            engine.transcribe(make_request())
        assert not isinstance(exc_info.value, TransientIOError)

    def test_timeout(self):
        session = FakeSession(error=requests.Timeout("slow"))
        engine = HttpTranscriptionEngine("http://asr:9876", session=session)
        with pytest.raises(EngineTimeout):
            engine.transcribe(make_request())

    def test_connection_error(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        engine = HttpTranscriptionEngine("http://asr:9876", session=session)
        with pytest.raises(EngineUnavailable):
            engine.transcribe(make_request())
        assert engine.is_available() is False

    def test_invalid_url(self):
        with pytest.raises(ValueError):
            HttpTranscriptionEngine("ftp://asr:9876", session=FakeSession())

    def test_close_closes_session(self):
        session = FakeSession()
        HttpTranscriptionEngine("http://asr:9876", session=session).close()
        assert session.closed


class TestOllamaProvider:
    """Tests for the local model server backend."""

    def test_complete(self):
        session = FakeSession(FakeResponse(200, {
            "response": "- Ship the release",
            "prompt_eval_count": 40,
            "eval_count": 5,
        }))
        provider = OllamaProvider("http://ollama:11434", model="llama3.1", session=session)

        result = provider.complete("Summarize", ProviderOptions(max_tokens=64))

        assert result.text == "- Ship the release"
        assert result.tokens_used == 45
        payload = session.posts[0]["json"]
        assert payload["model"] == "llama3.1"
        assert payload["stream"] is False
        assert payload["options"]["num_predict"] == 64

    def test_busy_server_is_rate_limited(self):
        provider = OllamaProvider("http://ollama:11434", session=FakeSession(FakeResponse(429)))
        with pytest.raises(RateLimited):
            provider.complete("Summarize", ProviderOptions())

    def test_unreachable_server(self):
        session = FakeSession(error=requests.ConnectionError("refused"))
        provider = OllamaProvider("http://ollama:11434", session=session)
        with pytest.raises(ProviderUnavailable):
            provider.complete("Summarize", ProviderOptions())

    def test_bad_request_is_not_unavailable(self):
        provider = OllamaProvider("http://ollama:11434", session=FakeSession(FakeResponse(400)))
        with pytest.raises(ProviderError) as exc_info:
            provider.complete("Summarize", ProviderOptions())
        assert not isinstance(exc_info.value, ProviderUnavailable)


class FakeGeminiResponse:
    def __init__(self, text):
        self.text = text
        self.usage_metadata = None


class FakeGeminiModels:
    def __init__(self, text):
        self.text = text
        self.calls = []

    def generate_content(self, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        return FakeGeminiResponse(self.text)


class FakeGeminiClient:
    def __init__(self, text):
        self.models = FakeGeminiModels(text)


class TestGeminiProvider:
    """Tests for the Gemini backend with an injected client."""

    def test_complete(self):
        client = FakeGeminiClient("one two three")
        provider = GeminiProvider(model="gemini-test", client=client)

        result = provider.complete("Summarize", ProviderOptions(max_tokens=100))

        assert result.text == "one two three"
        assert result.tokens_used == 3
        call = client.models.calls[0]
        assert call["model"] == "gemini-test"
        assert call["config"]["max_output_tokens"] == 100

    def test_empty_response(self):
        provider = GeminiProvider(client=FakeGeminiClient(""))
        with pytest.raises(ProviderError):
            provider.complete("Summarize", ProviderOptions())

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            GeminiProvider()


class TestAnthropicProvider:
    """Tests for the Anthropic backend setup."""

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with pytest.raises(ValueError):
            AnthropicProvider()
