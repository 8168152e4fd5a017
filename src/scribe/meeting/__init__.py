"""
Meeting Pipeline

Captured audio chunks are transcribed by a worker pool, reordered into a
session transcript and summarized in overlapping windows.
"""

# Lazy imports to keep `import scribe.meeting` light
def __getattr__(name):
    if name == "MeetingPipeline":
        from .pipeline import MeetingPipeline
        return MeetingPipeline
    elif name == "AudioChunkQueue":
        from .audio_queue import AudioChunkQueue
        return AudioChunkQueue
    elif name == "TranscriptionWorkerPool":
        from .worker_pool import TranscriptionWorkerPool
        return TranscriptionWorkerPool
    elif name == "SessionTranscriptAggregator":
        from .aggregator import SessionTranscriptAggregator
        return SessionTranscriptAggregator
    elif name == "ChunkedSummarizer":
        from .summarizer import ChunkedSummarizer
        return ChunkedSummarizer
    elif name == "JobStatusTracker":
        from .summary_status import JobStatusTracker
        return JobStatusTracker
    elif name == "FileTranscriptStore":
        from .store import FileTranscriptStore
        return FileTranscriptStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "MeetingPipeline",
    "AudioChunkQueue",
    "TranscriptionWorkerPool",
    "SessionTranscriptAggregator",
    "ChunkedSummarizer",
    "JobStatusTracker",
    "FileTranscriptStore",
]
