"""
Pytest fixtures for Scribe tests.
"""

import os
import sys
import tempfile
import threading
import time
from pathlib import Path
import pytest

# Keep test logs out of the project tree
os.environ.setdefault("SCRIBE_LOG_DIR", tempfile.mkdtemp(prefix="scribe-logs-"))

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import numpy as np

from scribe.engines.base import EngineResult, TranscriptionEngine
from scribe.exceptions import ProviderUnavailable
from scribe.meeting.models import AudioChunk
from scribe.meeting.summarizer import WINDOW_CLOSE, WINDOW_OPEN
from scribe.providers.base import Provider, ProviderResult


def extract_window(prompt: str) -> str:
    """Text between the transcript markers of a summarizer prompt."""
    start = prompt.index(WINDOW_OPEN) + len(WINDOW_OPEN)
    end = prompt.index(WINDOW_CLOSE, start)
    return prompt[start:end].strip()


def make_chunk(seq: int, session_id: str = "standup", samples: int = 1600,
               sample_rate: int = 16000, channels: int = 1) -> AudioChunk:
    """A short silent chunk."""
    return AudioChunk(
        session_id=session_id,
        sequence_no=seq,
        samples=np.zeros(samples * channels, dtype=np.int16),
        sample_rate=sample_rate,
        channels=channels
    )


class FakeEngine(TranscriptionEngine):
    """
    Scripted engine.

    `texts` maps seq -> recognized text (default "segment <seq>"),
    `failures` maps seq -> exceptions raised on successive calls,
    `delays` maps seq -> seconds to sleep before answering.
    """

    ENGINE_ID = "fake"

    def __init__(self, texts=None, failures=None, delays=None):
        self.texts = texts or {}
        self.failures = {seq: list(errors) for seq, errors in (failures or {}).items()}
        self.delays = delays or {}
        self.calls = []
        self._lock = threading.Lock()
        self.closed = False

    def transcribe(self, request):
        with self._lock:
            self.calls.append((request.session_id, request.seq))
            pending = self.failures.get(request.seq)
            error = pending.pop(0) if pending else None
        if request.seq in self.delays:
            time.sleep(self.delays[request.seq])
        if error is not None:
            raise error
        text = self.texts.get(request.seq, f"segment {request.seq}")
        return EngineResult(text=text, start_ts=0.0, end_ts=request.duration_seconds, confidence=0.9)

    def calls_for(self, seq):
        with self._lock:
            return sum(1 for _, s in self.calls if s == seq)

    def close(self):
        self.closed = True


class EchoProvider(Provider):
    """Returns the transcript window of each prompt unchanged."""

    PROVIDER_ID = "echo"

    def __init__(self, name="echo"):
        self.PROVIDER_ID = name
        self.calls = 0
        self.prompts = []
        self._lock = threading.Lock()

    def complete(self, prompt, options):
        with self._lock:
            self.calls += 1
            self.prompts.append(prompt)
        text = extract_window(prompt)
        return ProviderResult(text=text, tokens_used=self.estimate_tokens(text))


class FailingProvider(Provider):
    """Always unavailable; counts how often it was actually reached."""

    PROVIDER_ID = "failing"

    def __init__(self, name="failing", error=None):
        self.PROVIDER_ID = name
        self.calls = 0
        self.error = error
        self._lock = threading.Lock()

    def complete(self, prompt, options):
        with self._lock:
            self.calls += 1
        raise self.error or ProviderUnavailable(self.PROVIDER_ID, "backend down")


class ScriptedProvider(Provider):
    """Delegates each call to `handler(prompt)`, which returns text or raises."""

    PROVIDER_ID = "scripted"

    def __init__(self, handler, name="scripted"):
        self.PROVIDER_ID = name
        self.handler = handler
        self.calls = 0
        self._lock = threading.Lock()

    def complete(self, prompt, options):
        with self._lock:
            self.calls += 1
        return ProviderResult(text=self.handler(prompt))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def echo_provider():
    return EchoProvider()


@pytest.fixture
def failing_provider():
    return FailingProvider()


@pytest.fixture
def clean_config():
    """Isolate tests that touch the ConfigManager singleton."""
    from scribe.utils import ConfigManager
    original = ConfigManager._instance
    ConfigManager.reset()
    yield ConfigManager
    ConfigManager._instance = original
