"""
Base classes for transcription engines.

The pipeline never runs speech recognition itself; it talks to an engine
through this narrow interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class EngineRequest:
    """One chunk of canonical (16kHz mono int16) audio to transcribe."""
    pcm_bytes: bytes
    sample_rate: int
    session_id: str
    seq: int

    @property
    def duration_seconds(self) -> float:
        # 2 bytes per int16 sample
        return len(self.pcm_bytes) / 2 / self.sample_rate if self.sample_rate else 0.0


@dataclass
class EngineResult:
    """Recognized text with timing relative to the chunk start."""
    text: str
    start_ts: float = 0.0
    end_ts: float = 0.0
    confidence: float = 0.0


class TranscriptionEngine(ABC):
    """
    Abstract base class for transcription engines.

    Implementations raise EngineUnavailable when the backend cannot be reached
    and EngineTimeout when it does not answer in time.
    """

    ENGINE_ID: str = "base"
    ENGINE_NAME: str = "Base Engine"

    @abstractmethod
    def transcribe(self, request: EngineRequest) -> EngineResult:
        """
        Transcribe a chunk of audio.

        Args:
            request: Audio and identifiers of the chunk

        Returns:
            EngineResult with text, timing and confidence
        """
        pass

    def is_available(self) -> bool:
        """Check whether the engine is ready to accept requests."""
        return True

    def close(self) -> None:
        """Release resources held by the engine."""
        pass
