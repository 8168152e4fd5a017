"""
Error taxonomy for the Scribe pipeline.

Per-chunk and per-window failures are isolated by the stages that raise them;
only the summarizer decides when a whole job has failed.
"""

from typing import Optional


class ScribeError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(ScribeError, ValueError):
    """Raised at setup time when a stage is configured with invalid values."""


class TransientIOError(ScribeError):
    """An I/O failure that is worth retrying locally."""


class DataIntegrityError(ScribeError):
    """A sequence invariant was violated (non-monotonic seq, unfilled gap)."""

    def __init__(self, message: str, session_id: Optional[str] = None,
                 sequence_no: Optional[int] = None):
        self.session_id = session_id
        self.sequence_no = sequence_no
        super().__init__(message)


class CancellationError(ScribeError):
    """The job was cancelled while work was in flight."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job '{job_id}' was cancelled")


# Queue

class EmptyQueue(ScribeError):
    """No chunk was available to dequeue."""


class QueueClosed(ScribeError):
    """The queue was closed and no longer accepts chunks."""


# Transcription engine

class EngineError(ScribeError):
    """Base class for transcription engine failures."""


class EngineUnavailable(EngineError, TransientIOError):
    """The transcription engine could not be reached or is not ready."""


class EngineTimeout(EngineError, TransientIOError):
    """The transcription engine did not answer in time."""


# Language-model providers

class ProviderError(ScribeError):
    """Base class for language-model provider failures."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderUnavailable(ProviderError):
    """The provider is down, or its circuit breaker is open."""


class RateLimited(ProviderError):
    """The provider rejected the request because of rate limiting."""


class ProviderTimeout(ProviderError, TransientIOError):
    """The provider call exceeded the configured timeout."""


# Jobs

class JobNotFound(ScribeError, KeyError):
    """No job is registered under the given id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown job '{job_id}'")

    def __str__(self):
        return self.args[0]


class InvalidJobTransition(ScribeError):
    """A state change would move a job backwards or out of a terminal state."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job '{job_id}' cannot move from {current} to {requested}")
