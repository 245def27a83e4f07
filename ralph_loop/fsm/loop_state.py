"""Loop status enumerations for the build/plan loop state machine.

This module provides LoopStatus, LoopMode and TurnKind enums used by the
LoopDriver and persisted in loop state records.
"""

from enum import Enum


class LoopStatus(Enum):
    """Lifecycle states of a named loop.

    States:
    - RUNNING: Loop dispatches turns normally
    - PAUSED: Loop was paused externally; only an explicit resume continues it
    - STUCK: No measured progress for several turns; degraded but not terminal
    - COMPLETED: Agent declared the task complete (terminal)
    - ABORTED: Agent aborted, budget exhausted, or user stopped (terminal)

    Enum values are lowercase strings as written to state files.
    """

    RUNNING = "running"
    PAUSED = "paused"
    STUCK = "stuck"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (LoopStatus.COMPLETED, LoopStatus.ABORTED)


class LoopMode(Enum):
    """Execution mode selecting the iteration template."""

    BUILDING = "build"
    PLANNING = "plan"


class TurnKind(Enum):
    """Kind of prompt dispatched for one turn."""

    BUILD = "build"
    PLAN = "plan"
    CHECKPOINT = "checkpoint"
    ROTATION = "rotation"
