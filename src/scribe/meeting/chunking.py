"""
Token windows over a transcript and overlap-aware merging of window outputs.

Windows start at i * (window_size - overlap). When adjacent window outputs
are merged, the longest run of tokens that ends the previous text and starts
the next one is removed from the next one, provided the run is at least
`min_match` tokens long. Tokens are compared after lowercasing and stripping
surrounding punctuation; the kept text is never rewritten.
"""

import string
from typing import List, Optional, Sequence, Tuple

from ..exceptions import ConfigurationError
from .models import TranscriptChunk

_STRIP_CHARS = string.punctuation + "“”‘’…"


def tokenize(text: str) -> List[str]:
    """Whitespace tokenization used for window sizing and token counts."""
    return text.split()


def _normalize(token: str) -> str:
    return token.strip(_STRIP_CHARS).lower()


def validate_window_config(window_size: int, overlap: int):
    """Reject window settings that could not make progress."""
    if window_size < 1:
        raise ConfigurationError(f"window_size_tokens must be positive (got {window_size})")
    if overlap < 0:
        raise ConfigurationError(f"overlap_tokens must not be negative (got {overlap})")
    if overlap >= window_size:
        raise ConfigurationError(
            f"overlap_tokens ({overlap}) must be smaller than window_size_tokens ({window_size})"
        )


def split_windows(tokens: Sequence[str], window_size: int, overlap: int) -> List[TranscriptChunk]:
    """
    Split tokens into overlapping windows.

    Args:
        tokens: Transcript tokens
        window_size: Tokens per window
        overlap: Tokens shared with the previous window (< window_size)

    Returns:
        Windows in order; empty for an empty transcript
    """
    validate_window_config(window_size, overlap)
    step = window_size - overlap
    windows = []
    start = 0
    index = 0
    while start < len(tokens):
        end = min(start + window_size, len(tokens))
        windows.append(TranscriptChunk(
            chunk_index=index,
            text=" ".join(tokens[start:end]),
            overlap=0 if index == 0 else overlap,
            start_token=start
        ))
        if end == len(tokens):
            break
        start += step
        index += 1
    return windows


def find_boundary_overlap(previous: Sequence[str], following: Sequence[str],
                          min_match: int = 3, max_match: Optional[int] = None) -> int:
    """
    Length of the longest suffix of `previous` equal to a prefix of `following`.

    Returns 0 when the longest match is shorter than min_match.
    """
    prev_norm = [_normalize(t) for t in previous]
    next_norm = [_normalize(t) for t in following]
    limit = min(len(prev_norm), len(next_norm))
    if max_match is not None:
        limit = min(limit, max_match)
    for length in range(limit, max(min_match, 1) - 1, -1):
        if prev_norm[-length:] == next_norm[:length]:
            return length
    return 0


def merge_windows(parts: Sequence[Tuple[int, str]], min_match: int = 3,
                  max_match: Optional[int] = None) -> str:
    """
    Join window outputs, de-duplicating overlap between adjacent windows.

    Args:
        parts: (window_index, text) pairs; non-consecutive indices are
            concatenated without de-duplication
        min_match: Shortest boundary match that counts as duplicated content
        max_match: Optional cap on the boundary match length

    Returns:
        Merged text
    """
    merged: List[str] = []
    previous_index = None
    previous_tokens: List[str] = []
    for index, text in sorted(parts, key=lambda p: p[0]):
        tokens = tokenize(text)
        if previous_index is not None and index == previous_index + 1:
            cut = find_boundary_overlap(previous_tokens, tokens, min_match, max_match)
            tokens = tokens[cut:]
        merged.extend(tokens)
        previous_index = index
        previous_tokens = tokenize(text)
    return " ".join(merged)
