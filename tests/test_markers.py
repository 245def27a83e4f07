"""Tests for the strict promise marker parser."""

import logging

from ralph_loop.driver.constants import ABORT_MARKER, COMPLETE_MARKER
from ralph_loop.fsm.markers import MarkerResult, detect_promise_marker, scan_markers


class TestDetectPromiseMarker:
    """Test marker classification of agent output."""

    def test_complete_on_own_line(self):
        text = f"All items are done.\n{COMPLETE_MARKER}\n"
        assert detect_promise_marker(text) == MarkerResult.COMPLETE

    def test_abort_on_own_line(self):
        assert detect_promise_marker(ABORT_MARKER) == MarkerResult.ABORT

    def test_surrounding_whitespace_is_trimmed(self):
        assert detect_promise_marker(f"   {COMPLETE_MARKER}\t") == MarkerResult.COMPLETE

    def test_crlf_line_endings(self):
        text = f"Done.\r\n{COMPLETE_MARKER}\r\n"
        assert detect_promise_marker(text) == MarkerResult.COMPLETE

    def test_marker_with_prose_on_same_line_is_ignored(self):
        text = f"I will output {COMPLETE_MARKER} once finished."
        assert detect_promise_marker(text) == MarkerResult.NONE

    def test_marker_inside_backtick_fence_is_ignored(self):
        text = f"Example:\n```\n{COMPLETE_MARKER}\n```\nStill working."
        assert detect_promise_marker(text) == MarkerResult.NONE

    def test_marker_inside_tilde_fence_with_language_is_ignored(self):
        text = f"~~~text\n{ABORT_MARKER}\n~~~"
        assert detect_promise_marker(text) == MarkerResult.NONE

    def test_marker_after_closed_fence_counts(self):
        text = f"```python\nprint('hi')\n```\n{COMPLETE_MARKER}"
        assert detect_promise_marker(text) == MarkerResult.COMPLETE

    def test_both_markers_yield_none(self):
        text = f"{COMPLETE_MARKER}\n{ABORT_MARKER}"
        assert detect_promise_marker(text) == MarkerResult.NONE

    def test_conflict_is_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="ralph_loop.fsm.markers"):
            detect_promise_marker(f"{ABORT_MARKER}\n{COMPLETE_MARKER}")
        assert "both COMPLETE and ABORT" in caplog.text

    def test_empty_output(self):
        assert detect_promise_marker("") == MarkerResult.NONE

    def test_fenced_complete_with_unfenced_abort_is_abort(self):
        text = f"```\n{COMPLETE_MARKER}\n```\n{ABORT_MARKER}"
        assert detect_promise_marker(text) == MarkerResult.ABORT


class TestScanMarkers:
    """Test the raw scan before conflict resolution."""

    def test_scan_reports_both(self):
        scan = scan_markers(f"{COMPLETE_MARKER}\n{ABORT_MARKER}")
        assert scan.has_complete
        assert scan.has_abort
        assert scan.conflict
        assert scan.result == MarkerResult.NONE

    def test_scan_nothing(self):
        scan = scan_markers("just prose")
        assert not scan.has_complete
        assert not scan.has_abort
        assert not scan.conflict
