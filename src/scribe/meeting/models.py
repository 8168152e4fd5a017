"""
Data model shared by every pipeline stage.

Chunks flow queue -> worker -> aggregator; segments are frozen into a
SessionTranscript, which the summarizer splits into TranscriptChunk windows.
"""

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Tuple, Dict, Any

import numpy as np


@dataclass
class AudioChunk:
    """A chunk of captured audio waiting for transcription."""
    session_id: str
    sequence_no: int               # Monotonic per session
    samples: np.ndarray            # int16 PCM, interleaved if channels > 1
    sample_rate: int = 16000
    channels: int = 1
    captured_at: float = field(default_factory=time.time)
    duration_ms: Optional[int] = None

    def __post_init__(self):
        if self.duration_ms is None:
            frames = len(self.samples) // max(1, self.channels)
            self.duration_ms = int(frames * 1000 / self.sample_rate) if self.sample_rate else 0


@dataclass(frozen=True)
class ChunkDropWarning:
    """Emitted when the queue evicts a chunk to make room for a new one."""
    session_id: str
    dropped_seq: int
    queue_depth: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SegmentKind(str, Enum):
    SPEECH = "speech"
    UNRESOLVED = "unresolved"      # Engine failed after all retries
    PLACEHOLDER = "placeholder"    # Chunk dropped or never arrived


UNRESOLVED_TEXT = "[unresolved audio]"
DROPPED_TEXT = "[inaudible: audio dropped]"
GAP_TEXT = "[missing segment]"


@dataclass(frozen=True)
class TranscriptSegment:
    """A transcribed piece of a session, keyed by the chunk's sequence number."""
    session_id: str
    sequence_no: int
    text: str
    start_ts: float = 0.0
    end_ts: float = 0.0
    confidence: float = 0.0
    kind: SegmentKind = SegmentKind.SPEECH

    @property
    def is_speech(self) -> bool:
        return self.kind == SegmentKind.SPEECH

    @classmethod
    def unresolved(cls, session_id: str, sequence_no: int,
                   start_ts: float = 0.0, end_ts: float = 0.0) -> "TranscriptSegment":
        """Marker for a chunk the engine could not transcribe."""
        return cls(session_id, sequence_no, UNRESOLVED_TEXT, start_ts, end_ts,
                   0.0, SegmentKind.UNRESOLVED)

    @classmethod
    def placeholder(cls, session_id: str, sequence_no: int,
                    text: str = GAP_TEXT) -> "TranscriptSegment":
        """Stand-in for a chunk that was dropped or never arrived."""
        return cls(session_id, sequence_no, text, 0.0, 0.0, 0.0, SegmentKind.PLACEHOLDER)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


class WarningKind(str, Enum):
    CHUNK_DROPPED = "chunk_dropped"
    SEGMENT_UNRESOLVED = "segment_unresolved"
    SEQUENCE_GAP = "sequence_gap"
    WINDOW_FAILED = "window_failed"
    AGGREGATION_FAILED = "aggregation_failed"
    LATE_RESULT_DISCARDED = "late_result_discarded"
    PERSISTENCE_FAILED = "persistence_failed"


@dataclass(frozen=True)
class PipelineWarning:
    """Structured warning surfaced with job status so callers can judge completeness."""
    kind: WarningKind
    message: str
    session_id: Optional[str] = None
    sequence_no: Optional[int] = None
    window_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


@dataclass(frozen=True)
class SessionTranscript:
    """Finalized, immutable transcript of one session."""
    session_id: str
    segments: Tuple[TranscriptSegment, ...]
    complete: bool = True
    warnings: Tuple[PipelineWarning, ...] = ()
    finalized_at: float = field(default_factory=time.time)

    @property
    def text(self) -> str:
        """Segment texts joined in sequence order."""
        return " ".join(s.text for s in self.segments if s.text)

    @property
    def token_count(self) -> int:
        return len(self.text.split())

    @property
    def unresolved_sequence_nos(self) -> List[int]:
        return [s.sequence_no for s in self.segments if s.kind == SegmentKind.UNRESOLVED]

    @property
    def placeholder_sequence_nos(self) -> List[int]:
        return [s.sequence_no for s in self.segments if s.kind == SegmentKind.PLACEHOLDER]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "complete": self.complete,
            "finalized_at": self.finalized_at,
            "segments": [s.to_dict() for s in self.segments],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass(frozen=True)
class TranscriptChunk:
    """A token window of a finalized transcript sent to a provider."""
    chunk_index: int
    text: str
    overlap: int            # Tokens shared with the previous window
    start_token: int = 0

    @property
    def token_count(self) -> int:
        return len(self.text.split())


@dataclass(frozen=True)
class StructuredSummary:
    """Final output of a summarization job."""
    text: str
    topics: Tuple[str, ...] = ()
    decisions: Tuple[str, ...] = ()
    action_items: Tuple[str, ...] = ()
    open_questions: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "topics": list(self.topics),
            "decisions": list(self.decisions),
            "action_items": list(self.action_items),
            "open_questions": list(self.open_questions),
        }
