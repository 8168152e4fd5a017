"""
Chunked AI summarization of finalized meeting transcripts.

Splits a transcript into overlapping token windows, summarizes the windows in
parallel through the ProviderGateway, merges the partial summaries with
overlap de-duplication, then runs one final pass that produces the
structured summary (topics, decisions, action items).
"""

import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..exceptions import CancellationError, InvalidJobTransition, ProviderError
from ..logger import get_logger, log_exception
from ..providers.base import ProviderOptions
from ..providers.gateway import ProviderGateway
from .chunking import merge_windows, split_windows, tokenize, validate_window_config
from .models import (
    PipelineWarning,
    SessionTranscript,
    StructuredSummary,
    TranscriptChunk,
    WarningKind,
)
from .summary_status import JobStatus, JobStatusTracker

logger = get_logger(__name__)


@dataclass
class SummarizerConfig:
    """Window and dispatch settings for a summarization job."""
    window_size_tokens: int = 1500
    overlap_tokens: int = 150
    provider: Optional[str] = None      # None means the gateway default
    max_concurrency: int = 4
    window_retries: int = 2
    retry_delay: float = 2.0            # seconds, doubled per attempt
    min_match_tokens: int = 3
    max_tokens: int = 2048
    model: Optional[str] = None

    def __post_init__(self):
        validate_window_config(self.window_size_tokens, self.overlap_tokens)
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1 (got {self.max_concurrency})")
        if self.window_retries < 0:
            raise ValueError(f"window_retries must not be negative (got {self.window_retries})")


WINDOW_OPEN = "<transcript>"
WINDOW_CLOSE = "</transcript>"

_SECTION_ALIASES = {
    "topics": ("topics discussed", "topics"),
    "decisions": ("key decisions", "decisions"),
    "action_items": ("action items", "action items & follow-ups", "action items and follow-ups"),
    "open_questions": ("open questions",),
}
_BULLET_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+(.*\S)\s*$")
_HEADING_RE = re.compile(r"^\s*#{1,6}\s+(.*?)\s*$")


def parse_summary(text: str) -> StructuredSummary:
    """
    Parse the final-pass markdown into a StructuredSummary.

    Bullet items under the Topics / Key Decisions / Action Items / Open
    Questions headings are collected; everything else stays in `text`.
    """
    sections: Dict[str, List[str]] = {key: [] for key in _SECTION_ALIASES}
    current = None
    for line in text.splitlines():
        heading = _HEADING_RE.match(line)
        if heading:
            title = heading.group(1).strip().lower()
            current = next(
                (key for key, names in _SECTION_ALIASES.items() if title in names),
                None
            )
            continue
        if current is None:
            continue
        bullet = _BULLET_RE.match(line)
        if bullet:
            item = bullet.group(1).strip()
            # Strip checkbox markers like "[ ] Task"
            item = re.sub(r"^\[[ xX]\]\s*", "", item)
            if item:
                sections[current].append(item)

    return StructuredSummary(
        text=text.strip(),
        topics=tuple(sections["topics"]),
        decisions=tuple(sections["decisions"]),
        action_items=tuple(sections["action_items"]),
        open_questions=tuple(sections["open_questions"]),
    )


class ChunkedSummarizer:
    """Drives windowed summarization of a SessionTranscript for one job."""

    def __init__(self, gateway: ProviderGateway, tracker: JobStatusTracker,
                 config: Optional[SummarizerConfig] = None):
        self.gateway = gateway
        self.tracker = tracker
        self.config = config or SummarizerConfig()

    def _options(self) -> ProviderOptions:
        return ProviderOptions(max_tokens=self.config.max_tokens, model=self.config.model)

    def summarize(self, transcript: SessionTranscript, job_id: str) -> JobStatus:
        """
        Run a summarization job to a terminal state.

        Args:
            transcript: Finalized session transcript
            job_id: Pending job registered with the tracker

        Returns:
            Final JobStatus snapshot
        """
        tracker = self.tracker
        tracker.add_warnings(job_id, transcript.warnings)
        windows = split_windows(
            tokenize(transcript.text),
            self.config.window_size_tokens,
            self.config.overlap_tokens
        )

        try:
            tracker.start(job_id, window_count=len(windows))
        except InvalidJobTransition:
            # Cancelled before it started
            return tracker.get_status(job_id)

        try:
            if not windows:
                logger.info(f"Job {job_id}: transcript is empty, nothing to summarize")
                return tracker.complete(job_id, StructuredSummary(text=""))

            results = self._dispatch_windows(job_id, windows)
            if tracker.is_cancelled(job_id):
                return tracker.get_status(job_id)
            if not results:
                return tracker.fail(job_id, f"All {len(windows)} summarization windows failed")

            merged = merge_windows(
                sorted(results.items()),
                min_match=self.config.min_match_tokens,
                max_match=self.config.overlap_tokens
            )
            tracker.update_progress(job_id, "Generating final summary...", 85)
            summary = self._aggregate(job_id, merged, len(windows))

            if tracker.is_cancelled(job_id):
                return tracker.get_status(job_id)
            return tracker.complete(job_id, summary)
        except (CancellationError, InvalidJobTransition):
            # Cancelled while finishing; cancellation wins
            return tracker.get_status(job_id)
        except Exception as e:
            log_exception(e, f"in summarization job {job_id}")
            try:
                return tracker.fail(job_id, f"Unexpected error: {e}")
            except InvalidJobTransition:
                return tracker.get_status(job_id)

    def _dispatch_windows(self, job_id: str, windows: List[TranscriptChunk]) -> Dict[int, str]:
        """Summarize windows in parallel with bounded concurrency."""
        concurrency = min(self.config.max_concurrency, len(windows))
        with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=f"window-{job_id[:8]}") as executor:
            futures = {
                executor.submit(self._run_window, job_id, window, len(windows)): window.chunk_index
                for window in windows
            }
            for future in as_completed(futures):
                index = futures[future]
                try:
                    text = future.result()
                except CancellationError:
                    continue
                except ProviderError as e:
                    logger.warning(f"Job {job_id}: window {index} failed after retries: {e}")
                    self.tracker.record_window_failure(job_id, index, str(e))
                    continue
                except Exception as e:
                    log_exception(e, f"in window {index} of job {job_id}")
                    self.tracker.record_window_failure(job_id, index, f"Unexpected error: {e}")
                    continue
                self.tracker.record_window_result(job_id, index, text)

        return self.tracker.window_results(job_id)

    def _run_window(self, job_id: str, window: TranscriptChunk, total: int) -> str:
        """Summarize one window, retrying with exponential backoff."""
        prompt = self._build_window_prompt(window, total)
        last_error: Optional[ProviderError] = None

        for attempt in range(self.config.window_retries + 1):
            # Cancelled jobs accept no new dispatches
            if self.tracker.is_cancelled(job_id):
                raise CancellationError(job_id)
            if attempt > 0:
                time.sleep(self.config.retry_delay * (2 ** (attempt - 1)))
            try:
                response = self.gateway.complete(prompt, self._options(), self.config.provider)
                return response.text
            except ProviderError as e:
                last_error = e
                logger.debug(f"Job {job_id}: window {window.chunk_index} attempt {attempt + 1} failed: {e}")

        raise last_error

    def _aggregate(self, job_id: str, merged: str, window_count: int) -> StructuredSummary:
        """Final pass over the merged window summaries."""
        prompt = self._build_final_prompt(merged, single_window=window_count == 1)
        last_error = None
        for attempt in range(self.config.window_retries + 1):
            if self.tracker.is_cancelled(job_id):
                raise CancellationError(job_id)
            if attempt > 0:
                time.sleep(self.config.retry_delay * (2 ** (attempt - 1)))
            try:
                response = self.gateway.complete(prompt, self._options(), self.config.provider)
                return parse_summary(response.text)
            except ProviderError as e:
                last_error = e

        logger.warning(f"Job {job_id}: final aggregation failed, keeping merged window summaries: {last_error}")
        self.tracker.add_warnings(job_id, [PipelineWarning(
            kind=WarningKind.AGGREGATION_FAILED,
            message=f"Final summary pass failed: {last_error}"
        )])
        return StructuredSummary(text=merged)

    @staticmethod
    def _build_window_prompt(window: TranscriptChunk, total: int) -> str:
        """Prompt for one window of the transcript."""
        overlap_note = ""
        if window.overlap:
            overlap_note = (
                f"The first {window.overlap} words repeat the end of the previous part; "
                "do not restate points that are only in that overlap.\n"
            )
        return f"""You are a meeting summarization assistant. Below is part {window.chunk_index + 1} of {total} of a meeting transcript.

**RULES:**
1. Only use information from this part of the transcript - never add external knowledge
2. Preserve exact technical terms, names, and numbers
3. Keep speaker labels as-is
4. Note decisions, action items (with owner if stated) and unresolved questions explicitly
5. Text such as [missing segment] or [unresolved audio] marks audio that could not be transcribed - do not guess its content
{overlap_note}
Write concise notes for this part only, in plain sentences.

{WINDOW_OPEN}
{window.text}
{WINDOW_CLOSE}"""

    @staticmethod
    def _build_final_prompt(notes: str, single_window: bool) -> str:
        """Prompt for the final structured summary."""
        source = "meeting notes" if not single_window else "meeting notes covering the whole meeting"
        return f"""You are a meeting summarization assistant. The following are {source}, produced part by part from the transcript in order.

**CRITICAL RULES (Anti-Hallucination):**
1. **Only use information from the notes** - never add external knowledge or assumptions
2. **Preserve exact technical terms, names, and numbers**
3. **Don't infer unspoken intent** - if something wasn't explicitly said, don't add it
4. **Preserve uncertainty** - if speakers were uncertain or debating, reflect that

**OUTPUT FORMAT:**

## Summary
[2-4 paragraphs capturing the meeting's purpose, key outcomes, and overall context]

## Topics Discussed
[Bullet list, one topic per bullet with a 1-2 sentence summary]

## Key Decisions
[Bullet list of concrete decisions made. If none, write "No formal decisions recorded."]

## Action Items
[Bullet list: action - owner - deadline (if mentioned). If none, write "No action items assigned."]

## Open Questions
[Bullet list of unresolved questions. If none, write "No open questions."]

---

**MEETING NOTES:**

{WINDOW_OPEN}
{notes}
{WINDOW_CLOSE}

---

**Generate the summary now, following the format above:**"""
