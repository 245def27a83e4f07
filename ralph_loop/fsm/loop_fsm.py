"""LoopDriver: state machine driving named build/plan loops turn by turn.

The driver owns the per-turn protocol: pick the turn kind, render the
prompt, hand it to the agent runtime, then interpret the output (markers,
checklist progress, checkpoint validation) and persist the next state.
Every call takes the loop name explicitly; there is no current loop.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from ralph_loop.driver.agent_runtime import AgentRuntime
from ralph_loop.driver.constants import (
    AGENT_ABORTED_REASON,
    AGENT_COMPLETED_REASON,
    BUDGET_EXHAUSTED_REASON,
    INACTIVITY_REASON,
    NO_PROGRESS_REASON,
    USER_STOPPED_REASON,
)
from ralph_loop.driver.contracts import (
    CheckpointValidation,
    IterationRecord,
    LoopConfig,
    LoopState,
    TurnOutcome,
    TurnPlan,
    TurnResult,
    utc_now_iso,
)
from ralph_loop.driver.prompts.renderer import build_turn_prompt, render_system_instructions
from ralph_loop.driver.transition_logger import TransitionLogger
from ralph_loop.driver.utils.checkpoint import snapshot_task_file, validate_checkpoint
from ralph_loop.driver.utils.history import IterationHistory
from ralph_loop.driver.utils.inactivity import InactivityWatchdog
from ralph_loop.driver.utils.state_store import StatePersistenceError, StateStore, StateStoreError
from ralph_loop.fsm.checklist import ChecklistProgress, count_checklist
from ralph_loop.fsm.loop_state import LoopMode, LoopStatus, TurnKind
from ralph_loop.fsm.markers import MarkerResult, detect_promise_marker
from ralph_loop.fsm.struggle import StruggleDetector

logger = logging.getLogger(__name__)

# Valid status transitions for a loop
LOOP_TRANSITIONS: Dict[LoopStatus, set[LoopStatus]] = {
    LoopStatus.RUNNING: {
        LoopStatus.PAUSED,
        LoopStatus.STUCK,
        LoopStatus.COMPLETED,
        LoopStatus.ABORTED,
        LoopStatus.RUNNING,
    },
    LoopStatus.STUCK: {
        LoopStatus.RUNNING,
        LoopStatus.PAUSED,
        LoopStatus.COMPLETED,
        LoopStatus.ABORTED,
        LoopStatus.STUCK,
    },
    # A turn in flight when the loop was paused may still end it by marker
    LoopStatus.PAUSED: {LoopStatus.RUNNING, LoopStatus.COMPLETED, LoopStatus.ABORTED},
    LoopStatus.COMPLETED: set(),  # Terminal state
    LoopStatus.ABORTED: set(),  # Terminal state
}

# Tools whose ``path`` or ``filePath`` argument counts as a touched file
FILE_TOOL_RE = re.compile(r"^(edit|write|create_file|update_file)$", re.IGNORECASE)


class LoopDriverError(Exception):
    """Base exception for loop driver refusals."""


class InvalidTransitionError(LoopDriverError):
    """Raised when a status change is not allowed by the transition map."""

    def __init__(self, from_status: LoopStatus, to_status: LoopStatus):
        valid = sorted(s.value for s in LOOP_TRANSITIONS.get(from_status, set()))
        super().__init__(
            f"Invalid transition: {from_status.value} -> {to_status.value}. "
            f"Valid transitions from {from_status.value}: {valid}"
        )
        self.from_status = from_status
        self.to_status = to_status


class TerminalLoopError(LoopDriverError):
    """Raised when an operation targets a completed or aborted loop."""


class LoopNotRunnableError(LoopDriverError):
    """Raised when a turn is requested for a paused (or policy-paused stuck) loop."""


class TurnInProgressError(LoopDriverError):
    """Raised when a turn is started while another is in flight for the loop."""


class NoActiveTurnError(LoopDriverError):
    """Raised when a turn is finished that was never started (or was cancelled)."""


class HintLimitError(LoopDriverError):
    """Raised when a loop already holds the maximum number of hints."""


def _duration_ms(started_at: str, ended_at: str) -> int:
    delta = datetime.fromisoformat(ended_at) - datetime.fromisoformat(started_at)
    return max(0, int(delta.total_seconds() * 1000))


class LoopDriver:
    """Drives named loops through the turn protocol.

    Locking Strategy:
        - Every load-modify-save runs under the store's per-name RLock
        - At most one turn is in flight per loop name
        - Turn bookkeeping (TurnPlan) lives in memory until finish_turn, so
          a cancelled turn leaves persisted state exactly as it was

    Attributes:
        store: StateStore holding loop records
        config: LoopConfig policy values
        runtime: AgentRuntime executing turns (needed for run_turn/run only)
        history: IterationHistory receiving one record per finished turn

    Example:
        >>> driver = LoopDriver(StateStore(root), runtime=my_runtime)
        >>> driver.create_loop("auth", ".ralph/auth.md")
        >>> outcome = await driver.run_turn("auth")
        >>> outcome.next_iteration
        2
    """

    def __init__(
        self,
        store: StateStore,
        runtime: Optional[AgentRuntime] = None,
        config: Optional[LoopConfig] = None,
        history: Optional[IterationHistory] = None,
        transition_logger: Optional[TransitionLogger] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        """Initialize the loop driver.

        Args:
            store: StateStore for the project
            runtime: Agent runtime used by run_turn() and run()
            config: Policy values; defaults to LoopConfig()
            history: Iteration history; defaults to one rooted at the store's project
            transition_logger: Logger for status transitions
            timer_factory: Timer constructor for the inactivity watchdog
        """
        self.store = store
        self.runtime = runtime
        self.config = config or LoopConfig()
        self.history = history or IterationHistory(
            store.root,
            max_entries=self.config.history_max_entries,
            log_max_bytes=self.config.log_max_bytes,
        )
        self.detector = StruggleDetector(self.config.struggle_threshold)
        self._transition_logger = transition_logger or TransitionLogger(enable_color=False)
        self._timer_factory = timer_factory
        self._active_turns: Dict[str, TurnPlan] = {}
        self._watchdogs: Dict[str, InactivityWatchdog] = {}

    def load(self, name: str) -> LoopState:
        return self.store.load(name)

    def active_turn(self, name: str) -> Optional[TurnPlan]:
        """The in-flight turn for a loop, if any."""
        return self._active_turns.get(name)

    def is_turn_active(self, name: str) -> bool:
        return name in self._active_turns

    def read_task(self, state: LoopState) -> str:
        """Read the loop's task file; a missing file reads as empty."""
        content = self.store.try_read_text(state.task_file)
        if content is None:
            logger.warning(f"Task file not readable for loop '{state.name}': {state.task_file}")
            return ""
        return content

    def measure_progress(self, state: LoopState) -> ChecklistProgress:
        return count_checklist(self.read_task(state))

    def select_turn_kind(self, state: LoopState) -> TurnKind:
        """Decide which prompt the next turn gets.

        Checkpoints fall on exact multiples of ``reflect_every``; a pending
        session rotation is served by the next non-checkpoint turn.
        """
        if state.reflect_every > 0 and state.iteration % state.reflect_every == 0:
            return TurnKind.CHECKPOINT
        if state.rotation_pending:
            return TurnKind.ROTATION
        return TurnKind.PLAN if state.mode == LoopMode.PLANNING else TurnKind.BUILD

    def system_instructions(self, name: str) -> str:
        return render_system_instructions(self.store.load(name))

    def can_transition(self, from_status: LoopStatus, to_status: LoopStatus) -> bool:
        return to_status in LOOP_TRANSITIONS.get(from_status, set())

    def _transition(
        self, state: LoopState, to_status: LoopStatus, reason: Optional[str] = None
    ) -> None:
        """Apply a validated status change to ``state`` (not persisted).

        Raises:
            InvalidTransitionError: If the transition map forbids the change
        """
        from_status = state.status
        if not self.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

        state.status = to_status
        state.status_reason = reason
        if to_status.is_terminal:
            state.completed_at = utc_now_iso()
        if from_status != to_status:
            self._transition_logger.log_transition(state.name, from_status, to_status, reason)

    def _record_event(self, name: str, event: str) -> None:
        try:
            self.history.append_event(name, event)
        except OSError as e:
            logger.warning(f"Failed to write log event for '{name}' (non-fatal): {e}")

    def _record_iteration(self, name: str, record: IterationRecord) -> None:
        try:
            self.history.append(name, record)
        except OSError as e:
            logger.warning(f"Failed to write iteration history for '{name}' (non-fatal): {e}")

    def create_loop(
        self,
        name: str,
        task_file: str,
        mode: LoopMode = LoopMode.BUILDING,
        max_iterations: Optional[int] = None,
        reflect_every: int = 0,
        items_per_iteration: int = 0,
        prompt_template: Optional[str] = None,
    ) -> LoopState:
        """Create (or replace) a loop record in RUNNING at iteration 1.

        The task file is read once to set the checklist baseline and the
        checkpoint snapshot.
        """
        with self.store.lock(name):
            state = LoopState(
                name=name,
                task_file=task_file,
                mode=mode,
                max_iterations=(
                    self.config.default_max_iterations if max_iterations is None else max_iterations
                ),
                reflect_every=reflect_every,
                items_per_iteration=items_per_iteration,
                prompt_template=prompt_template,
            )
            content = self.read_task(state)
            state.last_checklist_done = count_checklist(content).done
            if content:
                snapshot_task_file(state, content)
            self.store.save(state)

        logger.info(f"Created loop '{name}' for {task_file} ({state.mode.value}, max={state.max_str or 'unlimited'})")
        self._record_event(name, f"START iter=1 mode={state.mode.value}")
        return state

    def pause(self, name: str) -> LoopState:
        with self.store.lock(name):
            state = self.store.load(name)
            self._transition(state, LoopStatus.PAUSED, "paused by user")
            self.store.save(state)
        self._record_event(name, f"PAUSE iter={state.iteration}")
        return state

    def resume(self, name: str) -> LoopState:
        """Return a paused or stuck loop to RUNNING.

        Resuming a stuck loop resets the no-progress streak.
        """
        with self.store.lock(name):
            state = self.store.load(name)
            if state.status.is_terminal:
                raise TerminalLoopError(f"Loop '{name}' is {state.status.value}")
            if state.status == LoopStatus.STUCK:
                state.no_progress_streak = 0
            self._transition(state, LoopStatus.RUNNING)
            self.store.save(state)
        self._record_event(name, f"RESUME iter={state.iteration}")
        return state

    def stop(self, name: str) -> LoopState:
        with self.store.lock(name):
            state = self.store.load(name)
            if state.status.is_terminal:
                raise TerminalLoopError(f"Loop '{name}' is already {state.status.value}")
            self._transition(state, LoopStatus.ABORTED, USER_STOPPED_REASON)
            self.store.save(state)
        self._record_event(name, f"STOP iter={state.iteration}")
        return state

    def set_mode(self, name: str, mode: LoopMode) -> LoopState:
        with self.store.lock(name):
            state = self.store.load(name)
            if state.status.is_terminal:
                raise TerminalLoopError(f"Loop '{name}' is {state.status.value}")
            state.mode = mode
            self.store.save(state)
        self._record_event(name, f"MODE {mode.value} iter={state.iteration}")
        return state

    def add_hint(self, name: str, text: str, sticky: bool = False) -> LoopState:
        """Queue a hint for the next prompt (or every prompt when sticky).

        Hints longer than ``hint_max_length`` are truncated.

        Raises:
            ValueError: If the hint is empty
            HintLimitError: If the loop already holds ``hint_max_count`` hints
            TerminalLoopError: If the loop is completed or aborted
        """
        hint = text.strip()
        if not hint:
            raise ValueError("Hint text must not be empty")
        if len(hint) > self.config.hint_max_length:
            logger.warning(f"Hint truncated to {self.config.hint_max_length} chars")
            hint = hint[: self.config.hint_max_length]

        with self.store.lock(name):
            state = self.store.load(name)
            if state.status.is_terminal:
                raise TerminalLoopError(f"Loop '{name}' is {state.status.value}")
            if state.hint_count >= self.config.hint_max_count:
                raise HintLimitError(
                    f"Max hints reached ({self.config.hint_max_count}); clear hints first"
                )
            if sticky:
                state.sticky_hints.append(hint)
            else:
                state.pending_hints.append(hint)
            self.store.save(state)
        return state

    def remove_hint(self, name: str, index: int) -> str:
        """Remove one hint by its 1-based position (pending first, then sticky).

        Raises:
            IndexError: If no hint has that position
            TerminalLoopError: If the loop is completed or aborted
        """
        with self.store.lock(name):
            state = self.store.load(name)
            if state.status.is_terminal:
                raise TerminalLoopError(f"Loop '{name}' is {state.status.value}")
            if index < 1 or index > state.hint_count:
                raise IndexError(f"No hint #{index} (loop has {state.hint_count})")
            if index <= len(state.pending_hints):
                removed = state.pending_hints.pop(index - 1)
            else:
                removed = state.sticky_hints.pop(index - 1 - len(state.pending_hints))
            self.store.save(state)
        return removed

    def clear_hints(self, name: str) -> int:
        """Drop all pending and sticky hints. Returns how many were removed.

        Raises:
            TerminalLoopError: If the loop is completed or aborted
        """
        with self.store.lock(name):
            state = self.store.load(name)
            if state.status.is_terminal:
                raise TerminalLoopError(f"Loop '{name}' is {state.status.value}")
            removed = state.hint_count
            state.pending_hints = []
            state.sticky_hints = []
            self.store.save(state)
        return removed

    def on_session_rotated(self, name: str) -> LoopState:
        """Record a session rotation; the next normal turn re-orients the agent."""
        with self.store.lock(name):
            state = self.store.load(name)
            if state.status.is_terminal:
                return state
            content = self.store.try_read_text(state.task_file)
            if content:
                if state.last_task_file_hash is not None:
                    validation = validate_checkpoint(state, content)
                    if not validation.valid:
                        logger.warning(
                            f"Rotating '{name}' with incomplete checkpoint: "
                            f"{'; '.join(validation.reasons)}"
                        )
                snapshot_task_file(state, content)
            state.session_rotations += 1
            state.rotation_pending = True
            self.store.save(state)
        self._record_event(name, f"ROTATE #{state.session_rotations} iter={state.iteration}")
        return state

    def on_compaction(self, name: str) -> LoopState:
        with self.store.lock(name):
            state = self.store.load(name)
            state.compaction_count += 1
            self.store.save(state)
        logger.debug(f"Context compaction #{state.compaction_count} for '{name}'")
        return state

    def on_tool_start(self, name: str, tool_name: str) -> None:
        """Activity signal: a tool call began in the loop's current turn."""
        plan = self._active_turns.get(name)
        watchdog = self._watchdogs.get(name)
        if plan is None or watchdog is None:
            return
        if tool_name in self.config.waiting_tools:
            plan.waiting_on_user = True
            watchdog.suspend()
        else:
            watchdog.touch()

    def on_tool_end(
        self, name: str, tool_name: str, args: Optional[Dict[str, Any]] = None
    ) -> None:
        """Activity signal: a tool call finished; tracks calls and touched files."""
        plan = self._active_turns.get(name)
        watchdog = self._watchdogs.get(name)
        if plan is None or watchdog is None:
            return
        plan.tool_calls += 1
        if FILE_TOOL_RE.match(tool_name) and args:
            path = args.get("path") or args.get("filePath")
            if isinstance(path, str) and path and path not in plan.files_touched:
                plan.files_touched.append(path)
        if tool_name in self.config.waiting_tools:
            plan.waiting_on_user = False
            watchdog.resume()
        else:
            watchdog.touch()

    def _on_inactivity(self, name: str) -> None:
        """Watchdog callback (timer thread): flag a silent running turn as stuck."""
        with self.store.lock(name):
            if name not in self._active_turns:
                return
            try:
                state = self.store.load(name)
            except StateStoreError as e:
                logger.error(f"Inactivity check failed for '{name}': {e}")
                return
            if state.status != LoopStatus.RUNNING:
                return
            self._transition(state, LoopStatus.STUCK, INACTIVITY_REASON)
            try:
                self.store.save(state)
            except StatePersistenceError as e:
                logger.error(f"Failed to persist inactivity for '{name}': {e}")
                return
        logger.warning(
            f"Loop '{name}' inactive for {self.config.inactivity_timeout_seconds}s; marked stuck"
        )
        self._record_event(name, f"STUCK iter={state.iteration} (inactivity)")

    def _watchdog_for(self, name: str) -> InactivityWatchdog:
        watchdog = self._watchdogs.get(name)
        if watchdog is None:
            watchdog = InactivityWatchdog(
                self.config.inactivity_timeout_seconds,
                partial(self._on_inactivity, name),
                timer_factory=self._timer_factory,
            )
            self._watchdogs[name] = watchdog
        return watchdog

    def _end_watch(self, name: str) -> None:
        watchdog = self._watchdogs.pop(name, None)
        if watchdog is not None:
            watchdog.cancel()

    def start_turn(self, name: str) -> Optional[TurnPlan]:
        """Prepare the next turn for a loop.

        Nothing is persisted unless the iteration budget is already spent,
        in which case the loop is aborted and None is returned.

        Args:
            name: Loop name

        Returns:
            TurnPlan with the rendered prompt, or None if the budget is exhausted

        Raises:
            LoopNotFoundError: If the loop does not exist
            TerminalLoopError: If the loop is completed or aborted
            LoopNotRunnableError: If the loop is paused, or stuck under the "pause" policy
            TurnInProgressError: If a turn is already in flight for the loop
        """
        with self.store.lock(name):
            if name in self._active_turns:
                raise TurnInProgressError(f"Loop '{name}' already has a turn in progress")

            state = self.store.load(name)
            if state.status.is_terminal:
                raise TerminalLoopError(f"Loop '{name}' is {state.status.value}")
            if state.status == LoopStatus.PAUSED:
                raise LoopNotRunnableError(f"Loop '{name}' is paused; resume it first")
            if state.status == LoopStatus.STUCK and self.config.stuck_policy == "pause":
                raise LoopNotRunnableError(
                    f"Loop '{name}' is stuck ({state.status_reason}); resume it first"
                )

            if state.budget_exhausted:
                self._transition(state, LoopStatus.ABORTED, BUDGET_EXHAUSTED_REASON)
                self.store.save(state)
                self._record_event(name, f"ABORT iter={state.iteration} (budget)")
                return None

            kind = self.select_turn_kind(state)
            custom_template = None
            if state.prompt_template:
                custom_template = self.store.try_read_text(state.prompt_template)
                if custom_template is None:
                    logger.warning(
                        f"Custom template not readable, using built-in: {state.prompt_template}"
                    )

            prompt = build_turn_prompt(
                state,
                kind,
                self.read_task(state),
                custom_template=custom_template,
                inline_limit=self.config.task_content_inline_limit,
            )
            plan = TurnPlan(
                name=name,
                iteration=state.iteration,
                kind=kind,
                prompt=prompt,
                system=render_system_instructions(state),
                done_before=state.last_checklist_done,
                consumed_hints=list(state.pending_hints),
            )
            self._active_turns[name] = plan
            self._watchdog_for(name).arm()

        self._transition_logger.log_turn(name, state.iteration, state.max_str, kind)
        return plan

    def cancel_turn(self, name: str) -> bool:
        """Discard the in-flight turn; persisted state is left untouched.

        Returns:
            True if a turn was in flight
        """
        with self.store.lock(name):
            plan = self._active_turns.pop(name, None)
            self._end_watch(name)
        if plan is not None:
            logger.info(f"Cancelled turn {plan.iteration} of loop '{name}'")
        return plan is not None

    def finish_turn(self, name: str, result: TurnResult) -> TurnOutcome:
        """Interpret a turn's output and persist the resulting state.

        A failed dispatch or empty output counts as a turn without markers
        and without measured progress.

        Args:
            name: Loop name
            result: What the agent runtime returned

        Returns:
            TurnOutcome describing the loop after this turn

        Raises:
            NoActiveTurnError: If no turn is in flight for the loop
            StatePersistenceError: If the new state cannot be saved
        """
        with self.store.lock(name):
            plan = self._active_turns.pop(name, None)
            self._end_watch(name)
            if plan is None:
                raise NoActiveTurnError(f"Loop '{name}' has no turn in progress")

            state = self.store.load(name)
            if state.status.is_terminal:
                logger.info(f"Loop '{name}' became {state.status.value} during the turn; output ignored")
                return self._outcome(state, plan)

            if not result.ok:
                logger.warning(f"Turn {plan.iteration} of '{name}' failed: {result.error}")
            output = result.output if result.ok else ""
            measured = bool(output.strip())
            marker = detect_promise_marker(output) if measured else MarkerResult.NONE

            content = self.read_task(state)
            progress = count_checklist(content)
            delta = progress.done - state.last_checklist_done
            checkpoint: Optional[CheckpointValidation] = None

            self._consume_hints(state, plan)

            if not self._apply_marker(state, marker):
                if plan.kind == TurnKind.CHECKPOINT:
                    checkpoint = self._check_checkpoint(state, content)
                else:
                    self._apply_progress(state, progress, measured)
                if plan.kind == TurnKind.ROTATION:
                    state.rotation_pending = False
                state.iteration += 1
                if state.budget_exhausted:
                    self._transition(state, LoopStatus.ABORTED, BUDGET_EXHAUSTED_REASON)

            self.store.save(state)

        ended_at = utc_now_iso()
        self._record_iteration(
            name,
            IterationRecord(
                iteration=plan.iteration,
                started_at=plan.started_at,
                ended_at=ended_at,
                duration_ms=_duration_ms(plan.started_at, ended_at),
                tool_calls=plan.tool_calls,
                files_touched=plan.files_touched,
                checklist_delta=delta,
                turn_kind=plan.kind,
                marker=marker,
                was_reflection=plan.kind == TurnKind.CHECKPOINT,
                checkpoint_valid=checkpoint.valid if checkpoint else None,
            ),
        )
        return self._outcome(state, plan, marker, progress, delta, checkpoint)

    def _consume_hints(self, state: LoopState, plan: TurnPlan) -> None:
        """Drop the one-shot hints that went out with this turn's prompt."""
        remaining = list(state.pending_hints)
        for hint in plan.consumed_hints:
            if hint in remaining:
                remaining.remove(hint)
        state.pending_hints = remaining

    def _apply_marker(self, state: LoopState, marker: MarkerResult) -> bool:
        """Apply a completion or abort marker. Returns True if the loop ended."""
        if marker == MarkerResult.NONE:
            return False
        if marker == MarkerResult.COMPLETE:
            target, reason = LoopStatus.COMPLETED, AGENT_COMPLETED_REASON
        else:
            target, reason = LoopStatus.ABORTED, AGENT_ABORTED_REASON

        self._transition(state, target, reason)
        logger.info(f"Loop '{state.name}' {target.value} at iteration {state.iteration}")
        return True

    def _apply_progress(self, state: LoopState, progress: ChecklistProgress, measured: bool) -> None:
        """Update the no-progress streak and derive RUNNING/STUCK from it."""
        if measured and progress.done > state.last_checklist_done:
            state.no_progress_streak = 0
        else:
            state.no_progress_streak += 1
        if measured:
            state.last_checklist_done = progress.done

        if state.status not in (LoopStatus.RUNNING, LoopStatus.STUCK):
            return
        probe = state.model_copy(update={"status": LoopStatus.RUNNING})
        if self.detector.is_struggling(probe):
            if state.status != LoopStatus.STUCK:
                logger.warning(
                    f"Loop '{state.name}' made no checklist progress for "
                    f"{state.no_progress_streak} turns"
                )
            self._transition(state, LoopStatus.STUCK, NO_PROGRESS_REASON)
        else:
            self._transition(state, LoopStatus.RUNNING)

    def _check_checkpoint(self, state: LoopState, content: str) -> CheckpointValidation:
        validation = validate_checkpoint(state, content)
        if validation.valid:
            snapshot_task_file(state, content)
        else:
            logger.warning(
                f"Checkpoint for '{state.name}' at iteration {state.iteration} is incomplete: "
                f"{'; '.join(validation.reasons)}"
            )
        return validation

    def _outcome(
        self,
        state: LoopState,
        plan: TurnPlan,
        marker: MarkerResult = MarkerResult.NONE,
        progress: Optional[ChecklistProgress] = None,
        delta: int = 0,
        checkpoint: Optional[CheckpointValidation] = None,
    ) -> TurnOutcome:
        return TurnOutcome(
            name=state.name,
            iteration=plan.iteration,
            kind=plan.kind,
            marker=marker,
            status=state.status,
            reason=state.status_reason,
            progress=progress,
            checklist_delta=delta,
            no_progress_streak=state.no_progress_streak,
            next_iteration=state.iteration,
            checkpoint=checkpoint,
        )

    async def run_turn(self, name: str) -> Optional[TurnOutcome]:
        """Start a turn, await the agent runtime, and finish the turn.

        Runtime exceptions become a failed TurnResult. Cancellation discards
        the turn without touching persisted state and is re-raised.

        Returns:
            TurnOutcome, or None when the budget was already exhausted
        """
        if self.runtime is None:
            raise LoopDriverError("No agent runtime configured")

        plan = self.start_turn(name)
        if plan is None:
            return None

        try:
            result = await self.runtime.run_turn(plan.prompt, system=plan.system)
        except asyncio.CancelledError:
            self.cancel_turn(name)
            raise
        except Exception as e:
            logger.error(f"Agent runtime failed on '{name}' iteration {plan.iteration}: {e}")
            result = TurnResult(ok=False, error=str(e))

        return self.finish_turn(name, result)

    async def run(self, name: str, max_turns: Optional[int] = None) -> List[TurnOutcome]:
        """Run turns until the loop stops by itself.

        Stops on COMPLETED, ABORTED or PAUSED, and on STUCK under the
        "pause" stuck policy.

        Args:
            name: Loop name
            max_turns: Optional cap on turns run by this call

        Returns:
            Outcomes of the turns run, in order
        """
        outcomes: List[TurnOutcome] = []
        while max_turns is None or len(outcomes) < max_turns:
            outcome = await self.run_turn(name)
            if outcome is None:
                break
            outcomes.append(outcome)
            if outcome.stopped:
                break
            if outcome.status == LoopStatus.STUCK and self.config.stuck_policy == "pause":
                break
        return outcomes
