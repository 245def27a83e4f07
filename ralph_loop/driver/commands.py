"""User-facing loop commands: start, stop, pause, resume, hints and housekeeping.

Commands manage persisted loop state only. Running turns is the host's job
(see LoopDriver.run_turn); commands never dispatch to an agent.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from ralph_loop.driver.constants import RALPH_DIR, TASK_SUFFIX
from ralph_loop.driver.contracts import LoopState
from ralph_loop.driver.prompts.templates import DEFAULT_TASK_TEMPLATE
from ralph_loop.driver.utils.state_store import LoopNotFoundError, sanitize
from ralph_loop.fsm.checklist import count_checklist
from ralph_loop.fsm.loop_fsm import LoopDriver
from ralph_loop.fsm.loop_state import LoopMode, LoopStatus

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    LoopStatus.RUNNING: "▶",
    LoopStatus.PAUSED: "⏸",
    LoopStatus.STUCK: "⚠",
    LoopStatus.COMPLETED: "✓",
    LoopStatus.ABORTED: "✗",
}

PROGRESS_BAR_WIDTH = 15


class CommandError(Exception):
    """Raised when a command is refused for the loop's current state."""


def format_loop(state: LoopState) -> str:
    """One-line summary: ``name: ▶ running (iteration 3/50)``."""
    status = f"{STATUS_ICONS[state.status]} {state.status.value}"
    iteration = (
        f"{state.iteration}/{state.max_iterations}" if state.max_iterations > 0 else f"{state.iteration}"
    )
    return f"{state.name}: {status} (iteration {iteration})"


def render_progress_bar(done: int, total: int, width: int = PROGRESS_BAR_WIDTH) -> str:
    """Render a text progress bar such as ``8/15 ████████░░░░░░░``.

    Returns an empty string when there are no checklist items.
    """
    if total <= 0:
        return ""
    ratio = min(done / total, 1.0)
    filled = round(ratio * width)
    return f"{done}/{total} {'█' * filled}{'░' * (width - filled)}"


def resolve_loop_target(name_or_path: str) -> Tuple[str, str]:
    """Map a ``start`` argument to (loop name, task file).

    A path (anything with a separator) names the loop after the file stem;
    a bare name uses ``.ralph/<name>.md``.
    """
    if "/" in name_or_path or "\\" in name_or_path:
        stem = Path(name_or_path.replace("\\", "/")).stem
        return sanitize(stem), name_or_path
    name = sanitize(name_or_path)
    return name, f"{RALPH_DIR}/{name}{TASK_SUFFIX}"


class LoopCommands:
    """Loop management commands over a LoopDriver.

    Example:
        >>> commands = LoopCommands(driver)
        >>> state = commands.start("refactor-auth", max_iterations=20)
        >>> commands.status("refactor-auth")
        'refactor-auth: ▶ running (iteration 1/20) | 0/3 ░░░░░░░░░░░░░░░'
    """

    def __init__(self, driver: LoopDriver):
        self.driver = driver
        self.store = driver.store

    def start(
        self,
        name_or_path: str,
        mode: LoopMode = LoopMode.BUILDING,
        max_iterations: Optional[int] = None,
        reflect_every: int = 0,
        items_per_iteration: int = 0,
        prompt_template: Optional[str] = None,
    ) -> LoopState:
        """Create or restart a loop, scaffolding its task file when missing.

        Raises:
            CommandError: If a loop with that name is already running
        """
        name, task_file = resolve_loop_target(name_or_path)

        if prompt_template and not self.store.resolve(prompt_template).is_file():
            logger.warning(f"Template not found: {prompt_template}; using built-in")
            prompt_template = None

        try:
            existing: Optional[LoopState] = self.store.load(name)
        except LoopNotFoundError:
            existing = None
        if existing is not None and existing.status in (LoopStatus.RUNNING, LoopStatus.STUCK):
            raise CommandError(
                f"Loop '{name}' is already {existing.status.value}. Use resume or stop it first."
            )

        task_path = self.store.resolve(task_file)
        if not task_path.exists():
            task_path.parent.mkdir(parents=True, exist_ok=True)
            task_path.write_text(DEFAULT_TASK_TEMPLATE, encoding="utf-8")
            logger.info(f"Created task file: {task_file}")

        return self.driver.create_loop(
            name,
            task_file,
            mode=mode,
            max_iterations=max_iterations,
            reflect_every=reflect_every,
            items_per_iteration=items_per_iteration,
            prompt_template=prompt_template,
        )

    def stop(self, name: str) -> LoopState:
        return self.driver.stop(name)

    def pause(self, name: str) -> LoopState:
        return self.driver.pause(name)

    def resume(self, name: str) -> LoopState:
        return self.driver.resume(name)

    def hint(self, name: str, text: str, sticky: bool = False) -> LoopState:
        return self.driver.add_hint(name, text, sticky=sticky)

    def hints(self, name: str) -> List[str]:
        """List hints as display lines, pending first, numbered from 1."""
        state = self.store.load(name)
        labelled = [(hint, "one-shot") for hint in state.pending_hints]
        labelled += [(hint, "sticky") for hint in state.sticky_hints]
        return [f"{i}. {hint} ({label})" for i, (hint, label) in enumerate(labelled, 1)]

    def clear_hints(self, name: str) -> int:
        return self.driver.clear_hints(name)

    def remove_hint(self, name: str, index: int) -> str:
        return self.driver.remove_hint(name, index)

    def mode(self, name: str, mode: LoopMode) -> LoopState:
        return self.driver.set_mode(name, mode)

    def rotate(self, name: str) -> LoopState:
        """Record a session rotation so the next turn re-orients the agent.

        Raises:
            CommandError: If the loop is not running or stuck
        """
        state = self.store.load(name)
        if state.status not in (LoopStatus.RUNNING, LoopStatus.STUCK):
            raise CommandError(f"Loop '{name}' is {state.status.value}; nothing to rotate")
        return self.driver.on_session_rotated(name)

    def status(self, name: str) -> str:
        """One-line summary with checklist progress and struggle warnings."""
        state = self.store.load(name)
        progress = count_checklist(self.store.try_read_text(state.task_file) or "")
        parts = [format_loop(state)]
        bar = render_progress_bar(progress.done, progress.total)
        if bar:
            parts.append(bar)
        if state.status == LoopStatus.STUCK or state.no_progress_streak > 0:
            parts.append(f"no progress ×{state.no_progress_streak}")
        if state.status_reason:
            parts.append(state.status_reason)
        if state.hint_count:
            parts.append(f"{state.hint_count} hint(s)")
        return " | ".join(parts)

    def list_loops(self, archived: bool = False) -> List[str]:
        return [format_loop(state) for state in self.store.list_loops(archived)]

    def archive(self, name: str) -> Path:
        """Move a stopped loop into .ralph/archive/.

        Raises:
            CommandError: If the loop is still running or stuck
        """
        state = self.store.load(name)
        if state.status in (LoopStatus.RUNNING, LoopStatus.STUCK):
            raise CommandError(f"Cannot archive {state.status.value} loop '{name}'. Stop it first.")
        return self.store.archive(name)

    def clean(self, all_files: bool = False) -> List[str]:
        """Delete state of completed and aborted loops.

        Args:
            all_files: Also delete their task files when they live in .ralph/

        Returns:
            Names of the cleaned loops
        """
        cleaned = []
        for state in self.store.list_loops():
            if not state.status.is_terminal:
                continue
            with self.store.lock(state.name):
                self.store.delete(state.name)
                if all_files:
                    task_path = self.store.task_path(state.name)
                    if task_path.exists():
                        task_path.unlink()
            cleaned.append(state.name)
        if cleaned:
            logger.info(f"Cleaned {len(cleaned)} loop(s): {', '.join(cleaned)}")
        return cleaned

    def cancel(self, name: str) -> bool:
        """Delete a loop's state record (its task file is kept)."""
        self.driver.cancel_turn(name)
        with self.store.lock(name):
            return self.store.delete(name)

    def nuke(self) -> bool:
        """Delete the whole .ralph/ directory: state, task, log and archive files.

        Task files outside .ralph/ are left alone. In-flight turns are
        cancelled first.

        Returns:
            True if a .ralph/ directory was removed
        """
        ralph_dir = self.store.ralph_dir
        if not ralph_dir.is_dir():
            return False
        for state in self.store.list_loops():
            self.driver.cancel_turn(state.name)
        shutil.rmtree(ralph_dir)
        logger.info(f"Removed {ralph_dir}")
        return True
