"""
Fixed-size pool of transcription workers.

Each worker pulls chunks from the AudioChunkQueue, converts them to the
canonical rate/channel layout, calls the engine and forwards the segment to
the aggregator. Workers finish out of submission order; the aggregator restores it.
"""

import threading
import time
from math import gcd
from typing import Dict, List, Optional

import numpy as np
from scipy.signal import resample_poly

from ..engines.base import EngineRequest, TranscriptionEngine
from ..exceptions import EmptyQueue, EngineError, TransientIOError
from ..logger import get_logger, log_exception
from ..utils import TextProcessor
from .aggregator import SessionTranscriptAggregator
from .audio_queue import AudioChunkQueue
from .models import AudioChunk, TranscriptSegment

logger = get_logger(__name__)

CANONICAL_SAMPLE_RATE = 16000


def preprocess_audio(
    audio: np.ndarray,
    channels: int = 1,
    source_rate: int = CANONICAL_SAMPLE_RATE,
    target_rate: int = CANONICAL_SAMPLE_RATE
) -> np.ndarray:
    """
    Convert captured audio to mono int16 at the target rate.

    1. Multi-channel to mono with gain compensation
    2. Resampling with anti-aliasing (polyphase filter)

    Args:
        audio: Raw audio as int16 (interleaved if multi-channel)
        channels: Number of audio channels
        source_rate: Source sample rate (e.g., 48000)
        target_rate: Target sample rate (16000 for Whisper-style engines)

    Returns:
        Mono int16 audio at target_rate
    """
    if channels <= 1 and source_rate == target_rate:
        return audio.astype(np.int16, copy=False)

    audio_float = audio.astype(np.float32)

    # Sum channels (not mean) to preserve energy, then normalize
    if channels > 1:
        usable = len(audio_float) - (len(audio_float) % channels)
        audio_float = audio_float[:usable].reshape(-1, channels)
        audio_float = audio_float.sum(axis=1) / np.sqrt(channels)

    if source_rate != target_rate and len(audio_float) > 0:
        # Find GCD for efficient polyphase resampling
        g = gcd(target_rate, source_rate)
        audio_float = resample_poly(audio_float, target_rate // g, source_rate // g)

    audio_float = np.clip(audio_float, -32768, 32767)
    return audio_float.astype(np.int16)


class TranscriptionWorkerPool:
    """Runs N worker threads that drain the audio queue into the aggregator."""

    def __init__(
        self,
        queue: AudioChunkQueue,
        engine: TranscriptionEngine,
        aggregator: SessionTranscriptAggregator,
        num_workers: int = 3,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        poll_interval: float = 0.05,
        max_poll_interval: float = 0.5,
        target_rate: int = CANONICAL_SAMPLE_RATE,
        remove_fillers: bool = True,
        name_replacements: Optional[Dict[str, str]] = None
    ):
        if num_workers < 1:
            raise ValueError(f"Worker pool needs at least one worker (got {num_workers})")
        self.queue = queue
        self.engine = engine
        self.aggregator = aggregator
        self.num_workers = num_workers
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.poll_interval = poll_interval
        self.max_poll_interval = max_poll_interval
        self.target_rate = target_rate
        self.remove_fillers = remove_fillers
        self.name_replacements = name_replacements or {}

        self._running = False
        self._threads: List[threading.Thread] = []
        self._stats_lock = threading.Lock()
        self._processed = 0
        self._unresolved = 0

    @property
    def processed_count(self) -> int:
        with self._stats_lock:
            return self._processed

    @property
    def unresolved_count(self) -> int:
        with self._stats_lock:
            return self._unresolved

    def is_running(self) -> bool:
        """Check if the workers are running."""
        return self._running

    def start(self):
        """Start the worker threads."""
        if self._running:
            return
        self._running = True
        self._threads = [
            threading.Thread(target=self._worker_loop, name=f"transcriber-{i}", daemon=True)
            for i in range(self.num_workers)
        ]
        for thread in self._threads:
            thread.start()
        logger.info(f"Started {self.num_workers} transcription workers")

    def stop(self, timeout: float = 5.0):
        """Signal the workers to exit and wait for them."""
        if not self._running:
            return
        self._running = False
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Transcription workers stopped")

    def _worker_loop(self):
        """Dequeue and process chunks until stopped, backing off while idle."""
        idle_sleep = self.poll_interval
        while self._running:
            try:
                chunk = self.queue.dequeue(timeout=idle_sleep)
            except EmptyQueue:
                if self.queue.closed:
                    break
                idle_sleep = min(idle_sleep * 2, self.max_poll_interval)
                continue

            idle_sleep = self.poll_interval
            try:
                self.process_chunk(chunk)
            except Exception as e:
                # Never let one chunk take a worker down
                log_exception(e, f"processing chunk {chunk.sequence_no} of '{chunk.session_id}'")

    def process_chunk(self, chunk: AudioChunk) -> TranscriptSegment:
        """
        Transcribe one chunk and hand the segment to the aggregator.

        Args:
            chunk: Audio chunk taken off the queue

        Returns:
            The segment forwarded to the aggregator (Unresolved on terminal failure)
        """
        segment = self._transcribe_with_retry(chunk)
        with self._stats_lock:
            self._processed += 1
            if not segment.is_speech:
                self._unresolved += 1
        self.aggregator.add_segment(segment)
        return segment

    def _build_request(self, chunk: AudioChunk) -> EngineRequest:
        audio = preprocess_audio(
            chunk.samples,
            channels=chunk.channels,
            source_rate=chunk.sample_rate,
            target_rate=self.target_rate
        )
        return EngineRequest(
            pcm_bytes=audio.tobytes(),
            sample_rate=self.target_rate,
            session_id=chunk.session_id,
            seq=chunk.sequence_no
        )

    def _transcribe_with_retry(self, chunk: AudioChunk) -> TranscriptSegment:
        try:
            request = self._build_request(chunk)
        except Exception as e:
            log_exception(e, f"preparing audio of chunk {chunk.sequence_no} of '{chunk.session_id}'")
            return self._unresolved_segment(chunk, e)
        last_error = None

        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = self.retry_delay * (2 ** (attempt - 1))
                logger.debug(f"Retry {attempt}/{self.max_retries} for chunk {chunk.sequence_no} after {delay}s")
                time.sleep(delay)
            try:
                result = self.engine.transcribe(request)
            except TransientIOError as e:
                last_error = e
                logger.warning(
                    f"Engine failed on chunk {chunk.sequence_no} of '{chunk.session_id}' "
                    f"(attempt {attempt + 1}/{self.max_retries + 1}): {e}"
                )
                continue
            except EngineError as e:
                # Not retryable
                last_error = e
                break
            except Exception as e:
                log_exception(e, f"engine call for chunk {chunk.sequence_no} of '{chunk.session_id}'")
                last_error = e
                break

            text = TextProcessor.process(
                result.text,
                remove_fillers=self.remove_fillers,
                replacements=self.name_replacements
            )
            return TranscriptSegment(
                session_id=chunk.session_id,
                sequence_no=chunk.sequence_no,
                text=text,
                start_ts=result.start_ts,
                end_ts=result.end_ts,
                confidence=result.confidence
            )

        return self._unresolved_segment(chunk, last_error)

    @staticmethod
    def _unresolved_segment(chunk: AudioChunk, error: Optional[BaseException]) -> TranscriptSegment:
        logger.error(f"Chunk {chunk.sequence_no} of '{chunk.session_id}' unresolved: {error}")
        return TranscriptSegment.unresolved(
            chunk.session_id,
            chunk.sequence_no,
            end_ts=(chunk.duration_ms or 0) / 1000.0
        )
