"""
Per-session reordering of transcript segments.

Workers complete chunks in any order. The aggregator buffers segments in a
sparse map keyed by sequence number and emits the longest contiguous prefix
as soon as gaps close, so the output is always strictly increasing.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from ..exceptions import DataIntegrityError
from ..logger import get_logger
from .models import (
    DROPPED_TEXT,
    GAP_TEXT,
    PipelineWarning,
    SegmentKind,
    SessionTranscript,
    TranscriptSegment,
    WarningKind,
)

logger = get_logger(__name__)

SegmentListener = Callable[[str, List[TranscriptSegment]], None]


@dataclass
class _SessionState:
    next_seq: int
    cond: threading.Condition = field(default_factory=threading.Condition)
    pending: Dict[int, TranscriptSegment] = field(default_factory=dict)
    emitted: List[TranscriptSegment] = field(default_factory=list)
    warnings: List[PipelineWarning] = field(default_factory=list)
    highest_seen: Optional[int] = None
    closed: bool = False
    transcript: Optional[SessionTranscript] = None


class SessionTranscriptAggregator:
    """Orders segments per session and finalizes immutable transcripts."""

    DEFAULT_FINALIZE_TIMEOUT = 5.0
    DEFAULT_MAX_FINALIZED = 1000

    def __init__(self, first_sequence_no: int = 1,
                 finalize_timeout: float = DEFAULT_FINALIZE_TIMEOUT,
                 max_finalized: int = DEFAULT_MAX_FINALIZED):
        self.first_sequence_no = first_sequence_no
        self.finalize_timeout = finalize_timeout
        self.max_finalized = max_finalized
        self._sessions: Dict[str, _SessionState] = {}
        # Ids of discarded finalized sessions, oldest first
        self._finalized: "OrderedDict[str, None]" = OrderedDict()
        self._registry_lock = threading.Lock()
        self._listeners: List[SegmentListener] = []

    def add_listener(self, listener: SegmentListener):
        """Register a callback receiving (session_id, newly ordered segments)."""
        self._listeners.append(listener)

    def _state(self, session_id: str, create: bool = True) -> Optional[_SessionState]:
        """Live state for the session; None once discarded, or when absent and not creating."""
        with self._registry_lock:
            state = self._sessions.get(session_id)
            if state is None and create and session_id not in self._finalized:
                state = _SessionState(next_seq=self.first_sequence_no)
                self._sessions[session_id] = state
            return state

    def add_segment(self, segment: TranscriptSegment) -> List[TranscriptSegment]:
        """
        Buffer a segment and flush whatever became contiguous.

        Args:
            segment: Segment produced by a worker (any completion order)

        Returns:
            Newly emitted segments in sequence order (possibly empty)
        """
        warning = None
        if segment.kind == SegmentKind.UNRESOLVED:
            warning = PipelineWarning(
                kind=WarningKind.SEGMENT_UNRESOLVED,
                message=f"Chunk {segment.sequence_no} could not be transcribed",
                session_id=segment.session_id,
                sequence_no=segment.sequence_no
            )
        return self._accept(segment, warning)

    def mark_dropped(self, session_id: str, sequence_no: int) -> List[TranscriptSegment]:
        """Fill the slot of a chunk the queue evicted so ordering can move on."""
        segment = TranscriptSegment.placeholder(session_id, sequence_no, DROPPED_TEXT)
        warning = PipelineWarning(
            kind=WarningKind.CHUNK_DROPPED,
            message=f"Chunk {sequence_no} was dropped because the audio queue was full",
            session_id=session_id,
            sequence_no=sequence_no
        )
        return self._accept(segment, warning)

    def _accept(self, segment: TranscriptSegment,
                warning: Optional[PipelineWarning]) -> List[TranscriptSegment]:
        state = self._state(segment.session_id)
        seq = segment.sequence_no
        if state is None:
            logger.warning(f"Discarding segment {seq} for finalized session '{segment.session_id}'")
            return []
        with state.cond:
            if state.transcript is not None:
                logger.warning(f"Discarding segment {seq} for finalized session '{segment.session_id}'")
                return []
            if seq < state.next_seq or seq in state.pending:
                logger.debug(f"Duplicate segment {seq} for session '{segment.session_id}' ignored")
                return []

            state.pending[seq] = segment
            if state.highest_seen is None or seq > state.highest_seen:
                state.highest_seen = seq
            if warning is not None:
                state.warnings.append(warning)

            emitted = self._drain(state)
            state.cond.notify_all()

        self._notify(segment.session_id, emitted)
        return emitted

    @staticmethod
    def _drain(state: _SessionState) -> List[TranscriptSegment]:
        """Pop the contiguous prefix out of the sparse map."""
        emitted = []
        while state.next_seq in state.pending:
            emitted.append(state.pending.pop(state.next_seq))
            state.next_seq += 1
        state.emitted.extend(emitted)
        return emitted

    def _notify(self, session_id: str, emitted: List[TranscriptSegment]):
        if not emitted:
            return
        for listener in list(self._listeners):
            try:
                listener(session_id, emitted)
            except Exception as e:
                logger.error(f"Segment listener failed: {e}", exc_info=True)

    def mark_session_closed(self, session_id: str, last_sequence_no: Optional[int] = None,
                            timeout: Optional[float] = None) -> SessionTranscript:
        """
        Finalize a session.

        Waits up to the finalize timeout for missing segments, then fills any
        remaining gap with a placeholder so the session always finalizes.

        Args:
            session_id: Session to finalize
            last_sequence_no: Last sequence number captured, if known
            timeout: Override for the finalize timeout (seconds)

        Returns:
            Immutable SessionTranscript, strictly increasing by sequence_no
        """
        state = self._state(session_id)
        if state is None:
            raise DataIntegrityError(
                f"Session '{session_id}' was already finalized and handed off", session_id=session_id
            )
        wait = self.finalize_timeout if timeout is None else timeout

        with state.cond:
            if state.transcript is not None:
                return state.transcript
            state.closed = True

            def target() -> Optional[int]:
                candidates = [s for s in (last_sequence_no, state.highest_seen) if s is not None]
                return max(candidates) if candidates else None

            if target() is not None:
                state.cond.wait_for(lambda: state.next_seq > target(), timeout=wait)

            end = target()
            if end is not None:
                for seq in range(state.next_seq, end + 1):
                    if seq not in state.pending:
                        state.pending[seq] = TranscriptSegment.placeholder(session_id, seq, GAP_TEXT)
                        state.warnings.append(PipelineWarning(
                            kind=WarningKind.SEQUENCE_GAP,
                            message=f"Segment {seq} missing after {wait:.1f}s; filled with placeholder",
                            session_id=session_id,
                            sequence_no=seq
                        ))
            emitted = self._drain(state)

            state.transcript = SessionTranscript(
                session_id=session_id,
                segments=tuple(state.emitted),
                complete=True,
                warnings=tuple(state.warnings)
            )
            transcript = state.transcript

        self._notify(session_id, emitted)
        logger.info(
            f"Session '{session_id}' finalized: {len(transcript.segments)} segments, "
            f"{len(transcript.warnings)} warnings"
        )
        return transcript

    def pending_count(self, session_id: str) -> int:
        """Segments buffered behind a gap for the session."""
        state = self._state(session_id, create=False)
        if state is None:
            return 0
        with state.cond:
            return len(state.pending)

    def emitted(self, session_id: str) -> List[TranscriptSegment]:
        """Ordered segments flushed so far for the session."""
        state = self._state(session_id, create=False)
        if state is None:
            return []
        with state.cond:
            return list(state.emitted)

    def sessions(self) -> List[str]:
        with self._registry_lock:
            return list(self._sessions)

    def is_finalized(self, session_id: str) -> bool:
        with self._registry_lock:
            if session_id in self._finalized:
                return True
            state = self._sessions.get(session_id)
        return state is not None and state.transcript is not None

    def discard(self, session_id: str):
        """
        Forget a session once its transcript has been handed off.

        A finalized session leaves only its id behind (the most recent
        max_finalized of them), so late segments are still recognized and dropped.
        """
        with self._registry_lock:
            state = self._sessions.pop(session_id, None)
            if state is None or state.transcript is None:
                return
            self._finalized[session_id] = None
            self._finalized.move_to_end(session_id)
            while len(self._finalized) > self.max_finalized:
                self._finalized.popitem(last=False)
