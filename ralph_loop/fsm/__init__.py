"""Finite state machine package for ralph_loop.

This package provides the loop status vocabulary, checklist measurement and
the marker protocol parser used by the LoopDriver.
"""

from ralph_loop.fsm.loop_state import LoopMode, LoopStatus, TurnKind
from ralph_loop.fsm.checklist import ChecklistProgress, count_checklist
from ralph_loop.fsm.markers import MarkerResult, detect_promise_marker, scan_markers

__all__ = [
    "LoopMode",
    "LoopStatus",
    "TurnKind",
    "ChecklistProgress",
    "count_checklist",
    "MarkerResult",
    "detect_promise_marker",
    "scan_markers",
]
