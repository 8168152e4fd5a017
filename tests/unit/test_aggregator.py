"""
Tests for per-session segment ordering and finalization.
"""

import itertools
import random
import threading
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))
from scribe.exceptions import DataIntegrityError
from scribe.meeting.aggregator import SessionTranscriptAggregator
from scribe.meeting.models import (
    DROPPED_TEXT,
    GAP_TEXT,
    SegmentKind,
    TranscriptSegment,
    WarningKind,
)


def seg(seq, session_id="standup", text=None):
    return TranscriptSegment(session_id, seq, text or f"word{seq}")


class TestOrdering:
    """Tests for contiguous-prefix emission."""

    def test_out_of_order_completion(self):
        """Completion order [2, 1, 3] flushes [1, 2, 3]."""
        aggregator = SessionTranscriptAggregator()

        assert aggregator.add_segment(seg(2)) == []
        assert aggregator.pending_count("standup") == 1
        assert [s.sequence_no for s in aggregator.add_segment(seg(1))] == [1, 2]
        assert [s.sequence_no for s in aggregator.add_segment(seg(3))] == [3]
        assert [s.sequence_no for s in aggregator.emitted("standup")] == [1, 2, 3]

    def test_every_permutation_is_strictly_increasing(self):
        """Any completion order produces a strictly increasing flush."""
        for order in itertools.permutations(range(1, 6)):
            aggregator = SessionTranscriptAggregator()
            for seq in order:
                aggregator.add_segment(seg(seq))
            assert [s.sequence_no for s in aggregator.emitted("standup")] == [1, 2, 3, 4, 5]

    def test_concurrent_producers(self):
        """Segments added from many threads still flush in order."""
        aggregator = SessionTranscriptAggregator()
        seqs = list(range(1, 201))
        random.Random(7).shuffle(seqs)
        batches = [seqs[i::4] for i in range(4)]

        threads = [
            threading.Thread(target=lambda b=b: [aggregator.add_segment(seg(s)) for s in b])
            for b in batches
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        emitted = [s.sequence_no for s in aggregator.emitted("standup")]
        assert emitted == list(range(1, 201))

    def test_duplicate_segment_ignored(self):
        """A second segment for the same slot is dropped."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(1, text="first"))
        aggregator.add_segment(seg(1, text="second"))
        assert [s.text for s in aggregator.emitted("standup")] == ["first"]

    def test_custom_first_sequence(self):
        """Sessions may start numbering at zero."""
        aggregator = SessionTranscriptAggregator(first_sequence_no=0)
        assert [s.sequence_no for s in aggregator.add_segment(seg(0))] == [0]

    def test_listener_receives_flushes(self):
        """Listeners see each batch of newly ordered segments."""
        aggregator = SessionTranscriptAggregator()
        batches = []
        aggregator.add_listener(lambda sid, segs: batches.append((sid, [s.sequence_no for s in segs])))

        aggregator.add_segment(seg(2))
        aggregator.add_segment(seg(1))

        assert batches == [("standup", [1, 2])]

    def test_unresolved_segment_warns(self):
        """Unresolved chunks keep their slot and add a warning."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(TranscriptSegment.unresolved("standup", 1))
        transcript = aggregator.mark_session_closed("standup", timeout=0)

        assert transcript.unresolved_sequence_nos == [1]
        assert transcript.warnings[0].kind == WarningKind.SEGMENT_UNRESOLVED


class TestDroppedChunks:
    """Tests for placeholders of evicted chunks."""

    def test_dropped_chunk_unblocks_ordering(self):
        """A placeholder fills the slot so later segments flush."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(2))
        flushed = aggregator.mark_dropped("standup", 1)

        assert [s.sequence_no for s in flushed] == [1, 2]
        assert flushed[0].kind == SegmentKind.PLACEHOLDER
        assert flushed[0].text == DROPPED_TEXT

    def test_dropped_chunk_warning(self):
        aggregator = SessionTranscriptAggregator()
        aggregator.mark_dropped("standup", 1)
        transcript = aggregator.mark_session_closed("standup", timeout=0)
        assert [w.kind for w in transcript.warnings] == [WarningKind.CHUNK_DROPPED]


class TestFinalization:
    """Tests for mark_session_closed."""

    def test_gap_filled_after_timeout(self):
        """A missing segment becomes a placeholder with a warning."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(1))
        aggregator.add_segment(seg(3))

        transcript = aggregator.mark_session_closed("standup", timeout=0.05)

        assert [s.sequence_no for s in transcript.segments] == [1, 2, 3]
        assert transcript.segments[1].text == GAP_TEXT
        assert transcript.placeholder_sequence_nos == [2]
        gap_warnings = [w for w in transcript.warnings if w.kind == WarningKind.SEQUENCE_GAP]
        assert [w.sequence_no for w in gap_warnings] == [2]

    def test_trailing_gap_up_to_last_sequence(self):
        """Segments after the highest one seen are filled up to last_sequence_no."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(1))

        transcript = aggregator.mark_session_closed("standup", last_sequence_no=3, timeout=0)

        assert [s.sequence_no for s in transcript.segments] == [1, 2, 3]
        assert transcript.placeholder_sequence_nos == [2, 3]

    def test_waits_for_in_flight_segment(self):
        """A segment arriving within the timeout is used instead of a placeholder."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(1))
        timer = threading.Timer(0.05, lambda: aggregator.add_segment(seg(2, text="late but fine")))
        timer.start()
        try:
            transcript = aggregator.mark_session_closed("standup", last_sequence_no=2, timeout=2.0)
        finally:
            timer.cancel()

        assert transcript.segments[1].text == "late but fine"
        assert transcript.warnings == ()

    def test_finalized_transcript_is_cached(self):
        """Closing twice returns the same transcript."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(1))
        first = aggregator.mark_session_closed("standup", timeout=0)
        assert aggregator.mark_session_closed("standup", timeout=0) is first

    def test_late_segment_discarded(self):
        """Segments after finalization do not change the transcript."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(1))
        transcript = aggregator.mark_session_closed("standup", timeout=0)

        assert aggregator.add_segment(seg(2)) == []
        assert aggregator.mark_session_closed("standup").segments == transcript.segments

    def test_empty_session(self):
        """A session with no segments finalizes empty."""
        transcript = SessionTranscriptAggregator().mark_session_closed("quiet", timeout=0)
        assert transcript.segments == ()
        assert transcript.text == ""
        assert transcript.token_count == 0

    def test_transcript_text_joins_in_order(self):
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(2, text="world."))
        aggregator.add_segment(seg(1, text="Hello"))
        transcript = aggregator.mark_session_closed("standup", timeout=0)
        assert transcript.text == "Hello world."


class TestSessionLifecycle:
    """Tests for releasing finalized sessions."""

    def test_discard_releases_state_but_remembers_session(self):
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(1))
        aggregator.mark_session_closed("standup", timeout=0)

        aggregator.discard("standup")

        assert aggregator.sessions() == []
        assert aggregator.is_finalized("standup")
        assert aggregator.add_segment(seg(2)) == []
        assert aggregator.sessions() == []

    def test_closing_a_discarded_session_fails(self):
        aggregator = SessionTranscriptAggregator()
        aggregator.mark_session_closed("standup", timeout=0)
        aggregator.discard("standup")

        with pytest.raises(DataIntegrityError):
            aggregator.mark_session_closed("standup", timeout=0)

    def test_open_session_is_not_remembered(self):
        """Discarding a session that never finalized leaves no trace."""
        aggregator = SessionTranscriptAggregator()
        aggregator.add_segment(seg(1))
        aggregator.discard("standup")

        assert not aggregator.is_finalized("standup")
        assert aggregator.add_segment(seg(1)) == [seg(1)]

    def test_remembered_sessions_are_bounded(self):
        aggregator = SessionTranscriptAggregator(max_finalized=2)
        for session_id in ("a", "b", "c"):
            aggregator.mark_session_closed(session_id, timeout=0)
            aggregator.discard(session_id)

        assert not aggregator.is_finalized("a")
        assert aggregator.is_finalized("b")
        assert aggregator.is_finalized("c")

    def test_queries_do_not_create_sessions(self):
        aggregator = SessionTranscriptAggregator()

        assert aggregator.pending_count("unknown") == 0
        assert aggregator.emitted("unknown") == []
        assert aggregator.sessions() == []
