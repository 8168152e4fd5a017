"""
Job status tracking for summarization.

Jobs move Pending -> Processing -> {Completed, PartiallyCompleted, Failed,
Cancelled}. Transitions are monotonic and timestamped; callers read
immutable snapshots and may subscribe to transition events. Status can also
be mirrored to JSON files so other processes can poll progress.
"""

import json
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Any

from ..exceptions import InvalidJobTransition, JobNotFound
from ..logger import get_logger
from .models import PipelineWarning, StructuredSummary, WarningKind

logger = get_logger(__name__)


class JobState(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    JobState.COMPLETED,
    JobState.PARTIALLY_COMPLETED,
    JobState.FAILED,
    JobState.CANCELLED,
})

_ALLOWED_TRANSITIONS = {
    JobState.PENDING: {JobState.PROCESSING, JobState.FAILED, JobState.CANCELLED},
    JobState.PROCESSING: set(TERMINAL_STATES),
}


@dataclass(frozen=True)
class StatusTransition:
    state: JobState
    at: float


@dataclass(frozen=True)
class JobStatus:
    """Immutable snapshot of a job, as exposed to external callers."""
    job_id: str
    session_id: str
    status: JobState
    stage: str
    progress_percent: int
    created_at: float
    updated_at: float
    window_count: int
    completed_windows: int
    failed_windows: Tuple[int, ...]
    warnings: Tuple[PipelineWarning, ...]
    transitions: Tuple[StatusTransition, ...]
    summary: Optional[StructuredSummary] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "job_id": self.job_id,
            "session_id": self.session_id,
            "status": self.status.value,
            "stage": self.stage,
            "progress_percent": self.progress_percent,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "window_count": self.window_count,
            "completed_windows": self.completed_windows,
            "failed_windows": list(self.failed_windows),
            "warnings": [w.to_dict() for w in self.warnings],
            "transitions": [{"state": t.state.value, "at": t.at} for t in self.transitions],
            "summary": self.summary.to_dict() if self.summary else None,
            "error": self.error,
        }


@dataclass
class SummarizationJob:
    """Mutable job record owned by the tracker."""
    job_id: str
    session_id: str
    status: JobState = JobState.PENDING
    created_at: float = field(default_factory=time.time)
    updated_at: float = 0.0
    stage: str = "Queued"
    progress_percent: int = 0
    window_count: int = 0
    window_results: Dict[int, str] = field(default_factory=dict)
    failed_windows: List[int] = field(default_factory=list)
    warnings: List[PipelineWarning] = field(default_factory=list)
    transitions: List[StatusTransition] = field(default_factory=list)
    summary: Optional[StructuredSummary] = None
    error: Optional[str] = None

    def snapshot(self) -> JobStatus:
        return JobStatus(
            job_id=self.job_id,
            session_id=self.session_id,
            status=self.status,
            stage=self.stage,
            progress_percent=self.progress_percent,
            created_at=self.created_at,
            updated_at=self.updated_at,
            window_count=self.window_count,
            completed_windows=len(self.window_results),
            failed_windows=tuple(sorted(self.failed_windows)),
            warnings=tuple(self.warnings),
            transitions=tuple(self.transitions),
            summary=self.summary,
            error=self.error,
        )


class StatusFileWriter:
    """Writes job status snapshots to JSON files atomically."""

    def __init__(self, status_dir: Path):
        self.status_dir = Path(status_dir)
        self.status_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, job_id: str) -> Path:
        return self.status_dir / f"{job_id}.json"

    def write(self, status: JobStatus):
        """Write status to a temp file, then rename (atomic on most filesystems)."""
        status_file = self.path_for(status.job_id)
        temp_file = status_file.with_suffix('.tmp')
        with open(temp_file, 'w', encoding='utf-8') as f:
            json.dump(status.to_dict(), f, indent=2)
        temp_file.replace(status_file)

    def read(self, job_id: str) -> Optional[Dict[str, Any]]:
        """
        Read a mirrored status.

        Returns:
            Status dict, or None if the file doesn't exist or is corrupt
        """
        status_file = self.path_for(job_id)
        if not status_file.exists():
            return None
        try:
            with open(status_file, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError):
            return None


TransitionListener = Callable[[JobStatus], None]


class JobStatusTracker:
    """Owns all summarization jobs and enforces their state machine."""

    def __init__(self, status_dir: Optional[Path] = None):
        self._jobs: Dict[str, SummarizationJob] = {}
        self._lock = threading.RLock()
        self._listeners: List[TransitionListener] = []
        self._file_writer = StatusFileWriter(status_dir) if status_dir else None

    def subscribe(self, listener: TransitionListener):
        """Receive a JobStatus snapshot after every state transition."""
        self._listeners.append(listener)

    def create_job(self, session_id: str, job_id: Optional[str] = None) -> str:
        """Register a new Pending job and return its id."""
        job_id = job_id or uuid.uuid4().hex
        with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"Job '{job_id}' already exists")
            job = SummarizationJob(job_id=job_id, session_id=session_id)
            job.updated_at = job.created_at
            job.transitions.append(StatusTransition(JobState.PENDING, job.created_at))
            self._jobs[job_id] = job
            snapshot = job.snapshot()
        self._publish(snapshot)
        return job_id

    def _job(self, job_id: str) -> SummarizationJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def transition(self, job_id: str, state: JobState, stage: Optional[str] = None,
                   error: Optional[str] = None) -> JobStatus:
        """
        Move a job to a new state.

        Raises:
            JobNotFound: Unknown job id
            InvalidJobTransition: The move is backwards or leaves a terminal state
        """
        with self._lock:
            job = self._job(job_id)
            if state not in _ALLOWED_TRANSITIONS.get(job.status, set()):
                raise InvalidJobTransition(job_id, job.status.value, state.value)
            now = time.time()
            job.status = state
            job.updated_at = now
            job.transitions.append(StatusTransition(state, now))
            if stage is not None:
                job.stage = stage
            if error is not None:
                job.error = error
            if state.is_terminal and state != JobState.CANCELLED:
                job.progress_percent = 100
            snapshot = job.snapshot()

        logger.info(f"Job {job_id} -> {state.value}")
        self._publish(snapshot)
        return snapshot

    def start(self, job_id: str, window_count: int = 0) -> JobStatus:
        with self._lock:
            self._job(job_id).window_count = window_count
        return self.transition(job_id, JobState.PROCESSING, stage="Summarizing windows...")

    def complete(self, job_id: str, summary: StructuredSummary) -> JobStatus:
        """Finish a job: PartiallyCompleted if any window failed, Completed otherwise."""
        with self._lock:
            job = self._job(job_id)
            job.summary = summary
            partial = bool(job.failed_windows) or any(
                w.kind == WarningKind.AGGREGATION_FAILED for w in job.warnings
            )
        state = JobState.PARTIALLY_COMPLETED if partial else JobState.COMPLETED
        return self.transition(job_id, state, stage="Complete")

    def fail(self, job_id: str, error: str) -> JobStatus:
        return self.transition(job_id, JobState.FAILED, stage="Failed", error=error)

    def cancel(self, job_id: str) -> JobStatus:
        """
        Cancel a Pending or Processing job.

        In-flight provider calls are not aborted; their results are discarded.
        """
        return self.transition(job_id, JobState.CANCELLED, stage="Cancelled")

    def is_cancelled(self, job_id: str) -> bool:
        with self._lock:
            return self._job(job_id).status == JobState.CANCELLED

    def update_progress(self, job_id: str, stage: str, progress_percent: int):
        with self._lock:
            job = self._job(job_id)
            if job.status.is_terminal:
                return
            job.stage = stage
            job.progress_percent = max(job.progress_percent, min(100, progress_percent))
            job.updated_at = time.time()

    def record_window_result(self, job_id: str, window_index: int, text: str) -> bool:
        """
        Store a window summary.

        Returns:
            False if the job was cancelled and the result was discarded
        """
        with self._lock:
            job = self._job(job_id)
            if job.status == JobState.CANCELLED:
                job.warnings.append(PipelineWarning(
                    kind=WarningKind.LATE_RESULT_DISCARDED,
                    message=f"Result for window {window_index} arrived after cancellation",
                    session_id=job.session_id,
                    window_index=window_index
                ))
                return False
            if job.status.is_terminal:
                return False
            job.window_results[window_index] = text
            if job.window_count:
                done = len(job.window_results) + len(job.failed_windows)
                job.progress_percent = max(job.progress_percent, int(80 * done / job.window_count))
            job.updated_at = time.time()
            return True

    def record_window_failure(self, job_id: str, window_index: int, error: str):
        with self._lock:
            job = self._job(job_id)
            if job.status.is_terminal or window_index in job.failed_windows:
                return
            job.failed_windows.append(window_index)
            job.warnings.append(PipelineWarning(
                kind=WarningKind.WINDOW_FAILED,
                message=f"Window {window_index} failed: {error}",
                session_id=job.session_id,
                window_index=window_index
            ))
            job.updated_at = time.time()

    def add_warnings(self, job_id: str, warnings):
        with self._lock:
            job = self._job(job_id)
            job.warnings.extend(warnings)

    def window_results(self, job_id: str) -> Dict[int, str]:
        with self._lock:
            return dict(self._job(job_id).window_results)

    def get_status(self, job_id: str) -> JobStatus:
        """Read-only snapshot; repeated calls without changes return equal values."""
        with self._lock:
            return self._job(job_id).snapshot()

    def jobs(self) -> List[str]:
        with self._lock:
            return list(self._jobs)

    def _publish(self, snapshot: JobStatus):
        if self._file_writer is not None:
            try:
                self._file_writer.write(snapshot)
            except OSError as e:
                logger.error(f"Failed to write status file for job {snapshot.job_id}: {e}")
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Job listener failed: {e}", exc_info=True)
