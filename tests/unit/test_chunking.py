"""
Tests for token windows and overlap-aware merging.
"""

import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))
from scribe.exceptions import ConfigurationError
from scribe.meeting.chunking import (
    find_boundary_overlap,
    merge_windows,
    split_windows,
    tokenize,
    validate_window_config,
)


def words(n, prefix="w"):
    return [f"{prefix}{i}" for i in range(n)]


class TestSplitWindows:
    """Tests for split_windows."""

    def test_thousand_tokens(self):
        """1000 tokens, window 300, overlap 50 gives 4 windows starting every 250."""
        windows = split_windows(words(1000), 300, 50)

        assert len(windows) == 4
        assert [w.start_token for w in windows] == [0, 250, 500, 750]
        assert [w.token_count for w in windows] == [300, 300, 300, 250]
        assert windows[0].overlap == 0
        assert all(w.overlap == 50 for w in windows[1:])

    def test_adjacent_windows_share_overlap(self):
        windows = split_windows(words(600), 300, 50)
        first, second = tokenize(windows[0].text), tokenize(windows[1].text)
        assert first[-50:] == second[:50]

    def test_short_transcript_single_window(self):
        windows = split_windows(words(10), 300, 50)
        assert len(windows) == 1
        assert windows[0].text == " ".join(words(10))

    def test_empty_transcript(self):
        assert split_windows([], 300, 50) == []

    def test_exact_fit_has_no_trailing_window(self):
        """A transcript that ends on a window boundary gets no extra window."""
        assert len(split_windows(words(550), 300, 50)) == 2

    def test_overlap_equal_to_window_rejected(self):
        with pytest.raises(ConfigurationError):
            split_windows(words(10), 50, 50)

    def test_overlap_larger_than_window_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_window_config(100, 150)

    def test_negative_overlap_rejected(self):
        with pytest.raises(ConfigurationError):
            validate_window_config(100, -1)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_window_config(0, 0)


class TestBoundaryOverlap:
    """Tests for find_boundary_overlap."""

    def test_exact_match(self):
        assert find_boundary_overlap("a b c d e".split(), "c d e f g".split()) == 3

    def test_normalizes_case_and_punctuation(self):
        previous = "We agreed to ship on Friday.".split()
        following = "ship, on friday and then review".split()
        assert find_boundary_overlap(previous, following) == 3

    def test_below_threshold_ignored(self):
        """A two-token coincidence is not treated as duplication."""
        assert find_boundary_overlap("x y the end".split(), "the end of it".split(), min_match=3) == 0

    def test_prefers_longest_match(self):
        previous = "a b a b".split()
        following = "a b a b c".split()
        assert find_boundary_overlap(previous, following, min_match=2) == 4

    def test_max_match_caps_search(self):
        previous = "a b c d e".split()
        following = "a b c d e f".split()
        assert find_boundary_overlap(previous, following, min_match=2, max_match=3) == 0

    def test_no_match(self):
        assert find_boundary_overlap("a b c".split(), "d e f".split()) == 0


class TestMergeWindows:
    """Tests for merge_windows."""

    def test_round_trip_token_count(self):
        """Merging the raw windows reproduces the transcript exactly."""
        tokens = words(1000)
        windows = split_windows(tokens, 300, 50)

        merged = merge_windows([(w.chunk_index, w.text) for w in windows])

        assert tokenize(merged) == tokens

    def test_round_trip_with_repeated_vocabulary(self):
        """Common words shared by both windows do not confuse the boundary match."""
        tokens = [("the" if i % 2 else f"w{i}") for i in range(600)]
        windows = split_windows(tokens, 120, 30)

        merged = merge_windows([(w.chunk_index, w.text) for w in windows])

        assert len(tokenize(merged)) == len(tokens)

    def test_unsorted_input(self):
        merged = merge_windows([(1, "c d e f"), (0, "a b c d e")], min_match=3)
        assert merged == "a b c d e f"

    def test_non_adjacent_windows_concatenated(self):
        """A failed middle window means no de-duplication across the hole."""
        merged = merge_windows([(0, "a b c d e"), (2, "c d e f")], min_match=3)
        assert merged == "a b c d e c d e f"

    def test_kept_text_is_not_rewritten(self):
        merged = merge_windows([(0, "Ship on Friday."), (1, "ship on friday. Then review")], min_match=3)
        assert merged == "Ship on Friday. Then review"

    def test_empty(self):
        assert merge_windows([]) == ""
