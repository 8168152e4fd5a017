"""
Transcription engines consumed by the worker pool.
"""

from .base import EngineRequest, EngineResult, TranscriptionEngine
from .http_engine import HttpTranscriptionEngine

__all__ = [
    "EngineRequest",
    "EngineResult",
    "TranscriptionEngine",
    "HttpTranscriptionEngine",
]
