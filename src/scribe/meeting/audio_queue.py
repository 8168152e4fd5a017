"""
Bounded, lossy buffer between audio capture and the transcription workers.

When full, the oldest unprocessed chunk is evicted so the producer never blocks.
"""

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

from ..exceptions import ConfigurationError, DataIntegrityError, EmptyQueue, QueueClosed
from ..logger import get_logger
from .models import AudioChunk, ChunkDropWarning

logger = get_logger(__name__)

DropListener = Callable[[ChunkDropWarning], None]


class AudioChunkQueue:
    """Thread-safe FIFO of AudioChunks with drop-oldest backpressure."""

    DEFAULT_CAPACITY = 10

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ConfigurationError(f"Queue capacity must be at least 1 (got {capacity})")
        self._capacity = capacity
        self._chunks: Deque[AudioChunk] = deque()
        self._cond = threading.Condition()
        self._last_seq: Dict[str, int] = {}
        self._dropped_count = 0
        self._closed = False
        self._drop_listeners: List[DropListener] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def depth(self) -> int:
        with self._cond:
            return len(self._chunks)

    @property
    def dropped_count(self) -> int:
        with self._cond:
            return self._dropped_count

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return self.depth

    def add_drop_listener(self, listener: DropListener):
        """Register a callback invoked (outside the lock) for every evicted chunk."""
        self._drop_listeners.append(listener)

    def enqueue(self, chunk: AudioChunk) -> Optional[ChunkDropWarning]:
        """
        Append a chunk, evicting the oldest one if the queue is full.

        Args:
            chunk: Captured audio chunk

        Returns:
            ChunkDropWarning describing the evicted chunk, or None

        Raises:
            QueueClosed: If close() was called
            DataIntegrityError: If sequence_no does not increase for the session
        """
        warning = None
        with self._cond:
            if self._closed:
                raise QueueClosed("Audio queue is closed")

            last = self._last_seq.get(chunk.session_id)
            if last is not None and chunk.sequence_no <= last:
                raise DataIntegrityError(
                    f"Sequence {chunk.sequence_no} is not after {last} for session '{chunk.session_id}'",
                    session_id=chunk.session_id,
                    sequence_no=chunk.sequence_no
                )
            self._last_seq[chunk.session_id] = chunk.sequence_no

            if len(self._chunks) >= self._capacity:
                dropped = self._chunks.popleft()
                self._dropped_count += 1
                warning = ChunkDropWarning(
                    session_id=dropped.session_id,
                    dropped_seq=dropped.sequence_no,
                    queue_depth=len(self._chunks)
                )

            self._chunks.append(chunk)
            self._cond.notify()

        if warning is not None:
            logger.warning(
                f"Queue full: dropped chunk {warning.dropped_seq} of session "
                f"'{warning.session_id}' (depth={warning.queue_depth})"
            )
            for listener in list(self._drop_listeners):
                try:
                    listener(warning)
                except Exception as e:
                    logger.error(f"Drop listener failed: {e}", exc_info=True)
        return warning

    def dequeue(self, timeout: Optional[float] = None) -> AudioChunk:
        """
        Remove and return the oldest chunk.

        Args:
            timeout: Seconds to wait for a chunk; None returns immediately

        Returns:
            The oldest queued AudioChunk

        Raises:
            EmptyQueue: If no chunk became available (or the queue is closed and drained)
        """
        with self._cond:
            if not self._chunks and timeout and not self._closed:
                deadline = time.monotonic() + timeout
                while not self._chunks and not self._closed:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        break
                    self._cond.wait(remaining)
            if not self._chunks:
                raise EmptyQueue("No audio chunk available")
            return self._chunks.popleft()

    def snapshot(self) -> List[AudioChunk]:
        """Current queue contents, oldest first."""
        with self._cond:
            return list(self._chunks)

    def forget_session(self, session_id: str):
        """Stop tracking sequence numbers for a finished session."""
        with self._cond:
            self._last_seq.pop(session_id, None)

    def close(self):
        """Reject further enqueues and wake any waiting consumers."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()
