"""
Meeting pipeline: capture queue -> transcription workers -> ordered
transcript -> chunked summarization -> persistence.

Every piece of background work is a Future held by the pipeline, so callers
can wait on a job and shutdown can account for everything still running.
"""

import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

from ..engines.base import TranscriptionEngine
from ..engines.http_engine import HttpTranscriptionEngine
from ..exceptions import ConfigurationError, JobNotFound, QueueClosed
from ..logger import get_logger, log_error, log_exception
from ..providers.factory import create_provider, get_provider_ids
from ..providers.gateway import ProviderGateway
from ..utils import ConfigManager
from .aggregator import SessionTranscriptAggregator
from .audio_queue import AudioChunkQueue
from .models import AudioChunk, ChunkDropWarning, PipelineWarning, SessionTranscript, WarningKind
from .store import FileTranscriptStore, TranscriptStore
from .summarizer import ChunkedSummarizer, SummarizerConfig
from .summary_status import JobState, JobStatus, JobStatusTracker
from .worker_pool import TranscriptionWorkerPool

logger = get_logger(__name__)

EVENT_CHUNK_DROP = "chunk-drop-warning"
EVENT_JOB_TRANSITION = "job-transition"


class MeetingPipeline:
    """Owns and wires every stage of the meeting pipeline."""

    def __init__(
        self,
        engine: TranscriptionEngine,
        gateway: ProviderGateway,
        store: Optional[TranscriptStore] = None,
        queue_capacity: int = AudioChunkQueue.DEFAULT_CAPACITY,
        num_workers: int = 3,
        max_retries: int = 2,
        retry_delay: float = 1.0,
        poll_interval: float = 0.05,
        max_poll_interval: float = 0.5,
        sample_rate: int = 16000,
        first_sequence_no: int = 1,
        finalize_timeout: float = SessionTranscriptAggregator.DEFAULT_FINALIZE_TIMEOUT,
        summarizer_config: Optional[SummarizerConfig] = None,
        status_dir: Optional[Path] = None,
        max_events: int = 500,
        max_concurrent_jobs: int = 2,
        remove_fillers: bool = True,
        name_replacements: Optional[Dict[str, str]] = None
    ):
        self.engine = engine
        self.gateway = gateway
        self.store = store

        self.queue = AudioChunkQueue(queue_capacity)
        self.aggregator = SessionTranscriptAggregator(first_sequence_no, finalize_timeout)
        self.worker_pool = TranscriptionWorkerPool(
            self.queue,
            engine,
            self.aggregator,
            num_workers=num_workers,
            max_retries=max_retries,
            retry_delay=retry_delay,
            poll_interval=poll_interval,
            max_poll_interval=max_poll_interval,
            target_rate=sample_rate,
            remove_fillers=remove_fillers,
            name_replacements=name_replacements
        )
        self.tracker = JobStatusTracker(status_dir)
        self.summarizer = ChunkedSummarizer(gateway, self.tracker, summarizer_config)

        self._jobs_executor = ThreadPoolExecutor(
            max_workers=max_concurrent_jobs, thread_name_prefix="summary-job"
        )
        self._futures: Dict[str, Future] = {}
        self._futures_lock = threading.Lock()
        self._stopped = False

        self._events: Deque[Dict[str, Any]] = deque(maxlen=max_events)
        self._event_lock = threading.Lock()
        self._next_event_id = 1

        self.queue.add_drop_listener(self._on_chunk_dropped)
        self.tracker.subscribe(self._on_job_transition)

    @classmethod
    def from_config(cls, store: Optional[TranscriptStore] = None,
                    engine: Optional[TranscriptionEngine] = None,
                    gateway: Optional[ProviderGateway] = None) -> "MeetingPipeline":
        """
        Build a pipeline from ConfigManager settings.

        Providers that cannot be constructed (missing API key or SDK) are
        skipped; the configured default provider must be available.

        Raises:
            ConfigurationError: Invalid window settings or no usable default provider
        """
        cfg = ConfigManager.get_config_section
        transcription = cfg('transcription')
        aggregator = cfg('aggregator')
        summarization = cfg('summarization')
        providers = cfg('providers')
        post = cfg('post_processing')

        if engine is None:
            engine = HttpTranscriptionEngine(
                server_url=transcription.get('server_url'),
                timeout=transcription.get('timeout', 60.0),
                language=transcription.get('language')
            )

        default_provider = providers.get('default', 'anthropic')
        if gateway is None:
            gateway = ProviderGateway(
                default_provider=default_provider,
                failure_threshold=providers.get('failure_threshold', 3),
                cooldown_seconds=providers.get('cooldown_seconds', 30.0),
                timeout=providers.get('timeout', 120.0)
            )
            for provider_id in get_provider_ids():
                try:
                    gateway.register(create_provider(
                        provider_id,
                        model=providers.get(f'{provider_id}_model'),
                        timeout=providers.get('timeout')
                    ))
                except (ValueError, ImportError) as e:
                    logger.info(f"Provider '{provider_id}' not available: {e}")
            if default_provider not in gateway.providers():
                raise ConfigurationError(
                    f"Default provider '{default_provider}' could not be initialized"
                )

        if store is None:
            output_dir = ConfigManager.get_config_value('storage', 'output_dir')
            store = FileTranscriptStore(Path(output_dir) if output_dir else None)

        summarizer_config = SummarizerConfig(
            window_size_tokens=summarization.get('window_size_tokens', 1500),
            overlap_tokens=summarization.get('overlap_tokens', 150),
            provider=default_provider,
            max_concurrency=summarization.get('max_concurrency', 4),
            window_retries=summarization.get('window_retries', 2),
            retry_delay=summarization.get('retry_delay', 2.0),
            min_match_tokens=summarization.get('min_match_tokens', 3),
            max_tokens=summarization.get('max_tokens', 2048)
        )

        return cls(
            engine,
            gateway,
            store=store,
            queue_capacity=ConfigManager.get_config_value('queue', 'capacity') or AudioChunkQueue.DEFAULT_CAPACITY,
            num_workers=transcription.get('workers', 3),
            max_retries=transcription.get('max_retries', 2),
            retry_delay=transcription.get('retry_delay', 1.0),
            poll_interval=transcription.get('poll_interval', 0.05),
            max_poll_interval=transcription.get('max_poll_interval', 0.5),
            sample_rate=transcription.get('sample_rate', 16000),
            first_sequence_no=aggregator.get('first_sequence_no', 1),
            finalize_timeout=aggregator.get('finalize_timeout', 5.0),
            summarizer_config=summarizer_config,
            max_events=ConfigManager.get_config_value('server', 'max_events') or 500,
            remove_fillers=post.get('remove_fillers', True),
            name_replacements=post.get('name_replacements') or {}
        )

    # Lifecycle

    def start(self):
        if self._stopped:
            raise QueueClosed("Pipeline was stopped; create a new one")
        self.worker_pool.start()
        ConfigManager.console_print("Pipeline started")

    def stop(self, timeout: float = 10.0):
        """
        Drain and shut down.

        Closes the queue (workers finish what is queued), waits for running
        jobs, then releases the gateway and engine. A stopped pipeline cannot
        be restarted.
        """
        self._stopped = True
        self.queue.close()
        self.worker_pool.stop(timeout=timeout)
        self._jobs_executor.shutdown(wait=True)
        self.gateway.shutdown()
        self.engine.close()
        ConfigManager.console_print("Pipeline stopped")

    def is_running(self) -> bool:
        return self.worker_pool.is_running()

    # Ingest

    def submit_chunk(self, chunk: AudioChunk) -> Optional[ChunkDropWarning]:
        """Queue a captured chunk; returns a drop warning if an older chunk was evicted."""
        return self.queue.enqueue(chunk)

    def _on_chunk_dropped(self, warning: ChunkDropWarning):
        self._record_event(EVENT_CHUNK_DROP, warning.to_dict())
        self.aggregator.mark_dropped(warning.session_id, warning.dropped_seq)

    # Sessions and jobs

    def close_session(self, session_id: str, last_sequence_no: Optional[int] = None) -> str:
        """
        Close a session and start its summarization job in the background.

        Args:
            session_id: Session to close
            last_sequence_no: Last sequence number captured, if known

        Returns:
            Id of the Pending job; poll get_status() or call wait()
        """
        job_id = self.tracker.create_job(session_id)
        future = self._jobs_executor.submit(self._run_job, session_id, last_sequence_no, job_id)
        with self._futures_lock:
            self._futures[job_id] = future
        logger.info(f"Session '{session_id}' closed; summarization job {job_id} queued")
        return job_id

    def _run_job(self, session_id: str, last_sequence_no: Optional[int], job_id: str) -> JobStatus:
        try:
            transcript = self.aggregator.mark_session_closed(session_id, last_sequence_no)
        except Exception as e:
            log_exception(e, f"finalizing session '{session_id}'")
            return self.tracker.fail(job_id, f"Could not finalize transcript: {e}")

        self.queue.forget_session(session_id)
        self._persist_transcript(job_id, transcript)
        # The frozen transcript is all the job needs from here on
        self.aggregator.discard(session_id)

        status = self.summarizer.summarize(transcript, job_id)
        if status.summary is not None and status.status in (JobState.COMPLETED, JobState.PARTIALLY_COMPLETED):
            self._persist_summary(job_id, session_id, status)
        return self.tracker.get_status(job_id)

    def _persist_transcript(self, job_id: str, transcript: SessionTranscript):
        if self.store is None:
            return
        try:
            self.store.save_transcript(transcript.session_id, transcript)
        except Exception as e:
            log_error(f"Failed to save transcript for '{transcript.session_id}'", e)
            self.tracker.add_warnings(job_id, [PipelineWarning(
                kind=WarningKind.PERSISTENCE_FAILED,
                message=f"Transcript not saved: {e}",
                session_id=transcript.session_id
            )])

    def _persist_summary(self, job_id: str, session_id: str, status: JobStatus):
        if self.store is None:
            return
        try:
            self.store.save_summary(job_id, status.summary, session_id=session_id)
        except Exception as e:
            log_error(f"Failed to save summary for job {job_id}", e)
            self.tracker.add_warnings(job_id, [PipelineWarning(
                kind=WarningKind.PERSISTENCE_FAILED,
                message=f"Summary not saved: {e}",
                session_id=session_id
            )])

    def wait(self, job_id: str, timeout: Optional[float] = None) -> JobStatus:
        """Block until the job's background task finishes and return its final status."""
        with self._futures_lock:
            future = self._futures.get(job_id)
        if future is None:
            raise JobNotFound(job_id)
        future.result(timeout=timeout)
        return self.tracker.get_status(job_id)

    def get_status(self, job_id: str) -> JobStatus:
        return self.tracker.get_status(job_id)

    def cancel_job(self, job_id: str) -> JobStatus:
        """Cancel a Pending or Processing job (raises InvalidJobTransition otherwise)."""
        return self.tracker.cancel(job_id)

    # Observability

    def _on_job_transition(self, status: JobStatus):
        self._record_event(EVENT_JOB_TRANSITION, {
            "job_id": status.job_id,
            "session_id": status.session_id,
            "status": status.status.value,
            "warnings": len(status.warnings),
        })

    def _record_event(self, event_type: str, data: Dict[str, Any]):
        with self._event_lock:
            self._events.append({
                "id": self._next_event_id,
                "type": event_type,
                "at": time.time(),
                "data": data,
            })
            self._next_event_id += 1

    def events(self, since: int = 0) -> List[Dict[str, Any]]:
        """Recent events with id greater than `since`, oldest first."""
        with self._event_lock:
            return [event for event in self._events if event["id"] > since]

    def status(self) -> Dict[str, Any]:
        """Snapshot of queue, worker, job and provider state."""
        job_counts: Dict[str, int] = {}
        for job_id in self.tracker.jobs():
            state = self.tracker.get_status(job_id).status.value
            job_counts[state] = job_counts.get(state, 0) + 1

        depth = self.queue.depth
        return {
            "is_processing": depth > 0 or job_counts.get(JobState.PROCESSING.value, 0) > 0,
            "chunks_in_queue": depth,
            "queue_capacity": self.queue.capacity,
            "dropped_chunks": self.queue.dropped_count,
            "workers_running": self.worker_pool.is_running(),
            "num_workers": self.worker_pool.num_workers,
            "processed_chunks": self.worker_pool.processed_count,
            "unresolved_chunks": self.worker_pool.unresolved_count,
            "sessions": len(self.aggregator.sessions()),
            "jobs": job_counts,
            "providers": self.gateway.health(),
        }
