"""Struggle detection for loops that stop making checklist progress."""

from ralph_loop.driver.contracts import LoopState
from ralph_loop.fsm.loop_state import LoopStatus

DEFAULT_STRUGGLE_THRESHOLD = 3


class StruggleDetector:
    """Flags a running loop whose no-progress streak reached the threshold.

    Only evaluates the accumulated streak; the LoopDriver decides what counts
    as progress and updates ``no_progress_streak``.
    """

    def __init__(self, threshold: int = DEFAULT_STRUGGLE_THRESHOLD):
        if threshold < 1:
            raise ValueError(f"threshold must be >= 1, got {threshold}")
        self.threshold = threshold

    def is_struggling(self, state: LoopState) -> bool:
        return state.status == LoopStatus.RUNNING and state.no_progress_streak >= self.threshold
