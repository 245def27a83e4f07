"""Pydantic contracts for loop state, configuration and turn results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

import pydantic as pd
from pydantic.alias_generators import to_camel

from ralph_loop.driver.constants import SCHEMA_VERSION
from ralph_loop.fsm.checklist import ChecklistProgress
from ralph_loop.fsm.loop_state import LoopMode, LoopStatus, TurnKind
from ralph_loop.fsm.markers import MarkerResult

# Fields that only existed in v1 state files.
_LEGACY_ONLY_FIELDS = ("active", "reflectEveryItems", "lastReflectionAtItems", "lastReflectionAt")

# Status vocabulary of older records mapped onto LoopStatus values.
_LEGACY_STATUS = {"active": "running"}


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class LoopState(pd.BaseModel):
    """Persisted state of one named loop.

    Stored as ``.ralph/<name>.state.json`` with camelCase keys. Records
    written by older versions (no ``schemaVersion``) are migrated on
    validation.

    Attributes:
        name: Loop identifier, unique per project
        task_file: Path to the task document the agent reads and updates
        mode: Building or planning
        status: Lifecycle status
        status_reason: Why the loop last left RUNNING, if it did
        iteration: Current iteration number, starting at 1
        max_iterations: Iteration budget; 0 means unbounded
        reflect_every: Checkpoint period in iterations; 0 disables
        items_per_iteration: Suggested items per turn; 0 means no suggestion
        prompt_template: Optional custom iteration template path
        pending_hints: One-shot hints for the next prompt
        sticky_hints: Hints injected into every prompt
        compaction_count: Context compactions observed (informational)
        session_rotations: Session rotations observed (informational)
        rotation_pending: Next turn must reorient a rotated session
        no_progress_streak: Consecutive turns without checklist progress
        last_checklist_done: Checklist done count at last measurement
        last_task_file_hash: SHA-256 of the task file at last snapshot
        last_task_file_size: Length of the task file at last snapshot
    """

    schema_version: int = SCHEMA_VERSION
    name: str = pd.Field(min_length=1)
    task_file: str
    mode: LoopMode = LoopMode.BUILDING
    status: LoopStatus = LoopStatus.RUNNING
    status_reason: Optional[str] = None

    iteration: int = pd.Field(default=1, ge=1)
    max_iterations: int = pd.Field(default=50, ge=0)
    reflect_every: int = pd.Field(default=0, ge=0)
    items_per_iteration: int = pd.Field(default=0, ge=0)
    prompt_template: Optional[str] = None

    pending_hints: List[str] = pd.Field(default_factory=list)
    sticky_hints: List[str] = pd.Field(default_factory=list)

    compaction_count: int = 0
    session_rotations: int = 0
    rotation_pending: bool = False

    no_progress_streak: int = 0
    last_checklist_done: int = 0

    last_task_file_hash: Optional[str] = None
    last_task_file_size: Optional[int] = None

    started_at: str = pd.Field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None

    model_config = pd.ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    @pd.model_validator(mode="before")
    @classmethod
    def _migrate_legacy(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        name = data.get("name")
        if not isinstance(name, str) or not name:
            raise ValueError("missing or empty 'name' field")

        migrated = dict(data)
        version = migrated.get("schemaVersion", migrated.get("schema_version"))
        if not isinstance(version, int):
            # v1 files carry no version but always have legacy-only fields
            legacy = any(field in migrated for field in _LEGACY_ONLY_FIELDS)
            version = 1 if legacy else SCHEMA_VERSION

        if version < SCHEMA_VERSION:
            if "status" not in migrated:
                migrated["status"] = "running" if migrated.get("active") else "paused"
            if migrated.get("reflectEvery") is None:
                migrated["reflectEvery"] = migrated.get("reflectEveryItems") or 0
            for field in _LEGACY_ONLY_FIELDS:
                migrated.pop(field, None)
            migrated.pop("schema_version", None)
            migrated["schemaVersion"] = SCHEMA_VERSION

        status = migrated.get("status")
        if isinstance(status, str):
            migrated["status"] = _LEGACY_STATUS.get(status, status)

        if "lastChecklistCount" in migrated and "lastChecklistDone" not in migrated:
            migrated["lastChecklistDone"] = migrated.pop("lastChecklistCount")

        return migrated

    @property
    def max_str(self) -> str:
        """Iteration budget suffix, e.g. ``/50``; empty when unbounded."""
        return f"/{self.max_iterations}" if self.max_iterations > 0 else ""

    @property
    def budget_exhausted(self) -> bool:
        return self.max_iterations > 0 and self.iteration > self.max_iterations

    @property
    def hint_count(self) -> int:
        return len(self.pending_hints) + len(self.sticky_hints)

    def __repr__(self) -> str:
        return (
            f"LoopState(name={self.name!r}, status={self.status.value}, "
            f"mode={self.mode.value}, iteration={self.iteration}{self.max_str})"
        )


class LoopConfig(pd.BaseModel):
    """Policy constants for the loop driver.

    Loaded from ``[tool.ralph]`` in pyproject.toml or ``.ralph/config.toml``.

    Attributes:
        struggle_threshold: Consecutive no-progress turns before STUCK
        inactivity_timeout_seconds: Silence allowed within a turn; 0 disables
        stuck_policy: "continue" keeps dispatching stuck loops, "pause" refuses
        waiting_tools: Tool names that wait for the user and suspend the watchdog
        task_content_inline_limit: Task text above this size is sliced
        hint_max_length: Longer hints are truncated
        hint_max_count: Maximum pending + sticky hints
        default_max_iterations: Budget for loops started without one
        history_max_entries: Iteration records kept in history
        log_max_bytes: Log size that triggers front truncation
    """

    struggle_threshold: int = pd.Field(default=3, ge=1)
    inactivity_timeout_seconds: float = pd.Field(default=600.0, ge=0)
    stuck_policy: Literal["continue", "pause"] = "continue"
    waiting_tools: List[str] = pd.Field(
        default_factory=lambda: ["ask_me", "ask_me_batch", "ask_user"]
    )
    task_content_inline_limit: int = pd.Field(default=8192, ge=1)
    hint_max_length: int = pd.Field(default=300, ge=1)
    hint_max_count: int = pd.Field(default=20, ge=1)
    default_max_iterations: int = pd.Field(default=50, ge=0)
    history_max_entries: int = pd.Field(default=500, ge=1)
    log_max_bytes: int = pd.Field(default=1_048_576, ge=1024)

    model_config = pd.ConfigDict(extra="ignore")


class CheckpointValidation(pd.BaseModel):
    """Result of checking a checkpoint write in the task file."""

    valid: bool
    reasons: List[str] = pd.Field(default_factory=list)

    model_config = pd.ConfigDict(extra="ignore")


class IterationRecord(pd.BaseModel):
    """One completed iteration, as written to the history file."""

    iteration: int
    started_at: str
    ended_at: str
    duration_ms: int
    tool_calls: int = 0
    files_touched: List[str] = pd.Field(default_factory=list)
    checklist_delta: int = 0
    turn_kind: TurnKind
    marker: MarkerResult = MarkerResult.NONE
    was_reflection: bool = False
    checkpoint_valid: Optional[bool] = None

    model_config = pd.ConfigDict(extra="ignore")


class TurnResult(pd.BaseModel):
    """What the agent runtime returns for one turn."""

    output: str = ""
    ok: bool = True
    error: Optional[str] = None

    model_config = pd.ConfigDict(extra="ignore")


class TurnPlan(pd.BaseModel):
    """A turn that has been started but not finished.

    Nothing in a plan is persisted; discarding it leaves loop state untouched.
    """

    name: str
    iteration: int
    kind: TurnKind
    prompt: str
    system: Optional[str] = None
    done_before: int = 0
    started_at: str = pd.Field(default_factory=utc_now_iso)
    tool_calls: int = 0
    files_touched: List[str] = pd.Field(default_factory=list)
    waiting_on_user: bool = False
    consumed_hints: List[str] = pd.Field(default_factory=list)

    model_config = pd.ConfigDict(extra="ignore")


class TurnOutcome(pd.BaseModel):
    """State of the loop after a finished turn."""

    name: str
    iteration: int
    kind: TurnKind
    marker: MarkerResult = MarkerResult.NONE
    status: LoopStatus
    reason: Optional[str] = None
    progress: Optional[ChecklistProgress] = None
    checklist_delta: int = 0
    no_progress_streak: int = 0
    next_iteration: int
    checkpoint: Optional[CheckpointValidation] = None

    model_config = pd.ConfigDict(extra="ignore")

    @property
    def stopped(self) -> bool:
        """True when the loop will not dispatch further turns by itself."""
        return self.status.is_terminal or self.status == LoopStatus.PAUSED

