"""
Transcript and summary persistence.

Markdown for people, a JSON record alongside for machines. Writes go to a
temp file first and are renamed into place.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ..logger import get_logger
from .models import SegmentKind, SessionTranscript, StructuredSummary

logger = get_logger(__name__)

DEFAULT_OUTPUT_DIR = Path.cwd() / "Meetings"


class TranscriptStore(ABC):
    """Persistence collaborator used fire-and-forget by the pipeline."""

    @abstractmethod
    def save_transcript(self, session_id: str, transcript: SessionTranscript) -> Path:
        pass

    @abstractmethod
    def save_summary(self, job_id: str, summary: StructuredSummary,
                     session_id: Optional[str] = None) -> Path:
        pass


def _atomic_write(path: Path, content: str):
    temp_path = path.with_suffix(path.suffix + '.tmp')
    temp_path.write_text(content, encoding='utf-8')
    temp_path.replace(path)  # Atomic rename


def _safe_name(value: str) -> str:
    return "".join(c if c.isalnum() or c in "-_" else "_" for c in value)[:80]


def format_timestamp(seconds: float) -> str:
    """Format seconds as HH:MM:SS or MM:SS."""
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = int(seconds % 60)

    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


class FileTranscriptStore(TranscriptStore):
    """Writes transcripts to <output_dir>/Transcripts and summaries to <output_dir>/Summaries."""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir else DEFAULT_OUTPUT_DIR
        self.transcripts_dir = self.output_dir / "Transcripts"
        self.summaries_dir = self.output_dir / "Summaries"

    def generate_markdown(self, transcript: SessionTranscript) -> str:
        """Render the transcript as markdown, one line per segment."""
        finalized = datetime.fromtimestamp(transcript.finalized_at)
        lines = [
            f"# Meeting Transcript: {transcript.session_id}",
            "",
            f"**Date**: {finalized.strftime('%Y-%m-%d %H:%M')}",
            f"**Segments**: {len(transcript.segments)}",
            f"**Words**: {transcript.token_count}",
            "",
            "---",
            "",
        ]

        if transcript.warnings:
            lines.append("## Warnings")
            lines.append("")
            for warning in transcript.warnings:
                lines.append(f"- {warning.message}")
            lines.append("")
            lines.append("---")
            lines.append("")

        if transcript.segments:
            lines.append("## Full Transcript")
            lines.append("")
            # Segments are already strictly ordered by sequence number
            elapsed = 0.0
            for segment in transcript.segments:
                marker = "" if segment.kind == SegmentKind.SPEECH else f" _({segment.kind.value})_"
                lines.append(f"**[{format_timestamp(elapsed)}] #{segment.sequence_no}**{marker}: {segment.text}")
                lines.append("")
                elapsed += max(0.0, segment.end_ts)

        return "\n".join(lines)

    def save_transcript(self, session_id: str, transcript: SessionTranscript) -> Path:
        """Save markdown + JSON record; returns the markdown path."""
        self.transcripts_dir.mkdir(parents=True, exist_ok=True)
        stem = _safe_name(session_id)
        md_path = self.transcripts_dir / f"{stem}.md"
        _atomic_write(md_path, self.generate_markdown(transcript))

        record = {
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "transcript": transcript.to_dict(),
            "metadata": {
                "segment_count": len(transcript.segments),
                "token_count": transcript.token_count,
                "unresolved": transcript.unresolved_sequence_nos,
                "placeholders": transcript.placeholder_sequence_nos,
            },
        }
        _atomic_write(md_path.with_suffix(".json"), json.dumps(record, indent=2))
        logger.info(f"Transcript for session '{session_id}' saved to {md_path}")
        return md_path

    def save_summary(self, job_id: str, summary: StructuredSummary,
                     session_id: Optional[str] = None) -> Path:
        """Save the summary markdown + JSON record; returns the markdown path."""
        self.summaries_dir.mkdir(parents=True, exist_ok=True)
        stem = _safe_name(f"{session_id}_{job_id}" if session_id else job_id)
        md_path = self.summaries_dir / f"{stem}.summary.md"
        _atomic_write(md_path, summary.text + "\n")

        record = {
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "job_id": job_id,
            "session_id": session_id,
            "summary": summary.to_dict(),
        }
        _atomic_write(md_path.with_suffix(".json"), json.dumps(record, indent=2))
        logger.info(f"Summary for job {job_id} saved to {md_path}")
        return md_path
