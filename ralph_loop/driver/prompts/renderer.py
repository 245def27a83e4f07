"""Template rendering and prompt building.

Resolves ``{{key}}`` placeholders and assembles turn prompts from loop
state, task content and hints. Everything here is pure: the same inputs
always produce the same prompt text.
"""

from __future__ import annotations

import re
from typing import Dict, List, Optional

from ralph_loop.driver.constants import ABORT_MARKER, COMPLETE_MARKER
from ralph_loop.driver.contracts import LoopState
from ralph_loop.driver.utils.checkpoint import extract_latest_checkpoint
from ralph_loop.driver.prompts.templates import (
    BUILDING_TEMPLATE,
    CHECKPOINT_TEMPLATE,
    PLANNING_TEMPLATE,
    ROTATION_BOOTSTRAP_TEMPLATE,
)
from ralph_loop.fsm.checklist import DONE_ITEM_RE, OPEN_ITEM_RE
from ralph_loop.fsm.loop_state import LoopMode, TurnKind

PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_INLINE_LIMIT = 8192
RECENT_CHECKED_ITEMS = 5


def render_template(template: str, variables: Dict[str, str]) -> str:
    """Replace ``{{key}}`` placeholders with values from ``variables``.

    Unknown keys are left in place untouched.
    """

    def _substitute(match: re.Match) -> str:
        key = match.group(1)
        if key in variables:
            return variables[key] or ""
        return match.group(0)

    return PLACEHOLDER_RE.sub(_substitute, template)


def format_hints(pending: List[str], sticky: List[str]) -> str:
    """Format pending and sticky hints as a markdown section ("" when none)."""
    if not pending and not sticky:
        return ""
    lines = ["## User Hints"]
    lines.extend(f"- {hint} (one-shot)" for hint in pending)
    lines.extend(f"- {hint} (sticky)" for hint in sticky)
    return "\n".join(lines)


def _extract_section(content: str, heading: str) -> Optional[str]:
    """Extract a ``## <heading>`` section up to the next ``## `` or EOF."""
    pattern = re.compile(
        rf"^## {re.escape(heading)}[^\n]*(?:\n(?!## )[^\n]*)*", re.MULTILINE
    )
    match = pattern.search(content)
    return match.group(0).rstrip() if match else None


def _extract_checklist(content: str) -> Optional[str]:
    """All unchecked items plus the most recent checked ones."""
    section = _extract_section(content, "Checklist")
    if section is None:
        return None

    header, *body = section.split("\n")
    unchecked = [line for line in body if OPEN_ITEM_RE.match(line)]
    checked = [line for line in body if DONE_ITEM_RE.match(line)]

    recent = checked[-RECENT_CHECKED_ITEMS:]
    parts = [header]
    if recent:
        omitted = len(checked) - len(recent)
        if omitted > 0:
            parts.append(f"  ({omitted} earlier completed items omitted)")
        parts.extend(recent)
    parts.extend(unchecked)
    return "\n".join(parts) if len(parts) > 1 else None


def slice_task_content(full_content: str, limit: int, task_file: str) -> str:
    """Shrink oversized task content to its key sections.

    Content within ``limit`` characters is returned unchanged. Larger content
    is reduced to the Goals section, a condensed Checklist, the latest
    Checkpoint, and a notice pointing at the full file.
    """
    if len(full_content) <= limit:
        return full_content

    sections = [
        section
        for section in (
            _extract_section(full_content, "Goals"),
            _extract_checklist(full_content),
            extract_latest_checkpoint(full_content),
        )
        if section
    ]
    sections.append(f"\n(Task file truncated. Use read tool to see full content: {task_file})")
    return "\n\n".join(sections)


def build_template_vars(state: LoopState, task_content: str, hints: str) -> Dict[str, str]:
    """Build the placeholder map shared by every template."""
    return {
        "loopName": state.name,
        "iteration": str(state.iteration),
        "maxStr": state.max_str,
        "maxIterations": str(state.max_iterations) if state.max_iterations > 0 else "unlimited",
        "taskFile": state.task_file,
        "taskContent": task_content,
        "hints": hints,
        "mode": state.mode.value,
        "sessionRotations": str(state.session_rotations),
        "completeMarker": COMPLETE_MARKER,
        "abortMarker": ABORT_MARKER,
    }


def select_template(kind: TurnKind, custom_template: Optional[str] = None) -> str:
    """Pick the template text for a turn kind.

    A custom template only replaces the build/plan iteration templates.
    """
    if kind == TurnKind.CHECKPOINT:
        return CHECKPOINT_TEMPLATE
    if kind == TurnKind.ROTATION:
        return ROTATION_BOOTSTRAP_TEMPLATE
    if custom_template is not None:
        return custom_template
    return PLANNING_TEMPLATE if kind == TurnKind.PLAN else BUILDING_TEMPLATE


def build_turn_prompt(
    state: LoopState,
    kind: TurnKind,
    task_content: str,
    custom_template: Optional[str] = None,
    inline_limit: int = DEFAULT_INLINE_LIMIT,
) -> str:
    """Render the full prompt for one turn.

    Args:
        state: Current loop state (read only)
        kind: Turn kind chosen by the driver
        task_content: Current task file text ("" when unreadable)
        custom_template: Contents of the loop's custom template, if any
        inline_limit: Task content size above which it is sliced

    Returns:
        Rendered prompt text
    """
    hints = format_hints(state.pending_hints, state.sticky_hints)
    sliced = slice_task_content(task_content, inline_limit, state.task_file)
    variables = build_template_vars(state, sliced, hints)
    return render_template(select_template(kind, custom_template), variables)


def render_system_instructions(state: LoopState) -> str:
    """Short system prompt addendum describing the loop contract."""
    lines = [
        f"[RALPH LOOP - {state.name} [{state.mode.value}] - Iteration {state.iteration}{state.max_str}]",
        "",
        f"You are in a Ralph loop working on: {state.task_file}",
        f"Mode: {state.mode.value}",
    ]
    if state.items_per_iteration > 0:
        lines.append(f"- Work on ~{state.items_per_iteration} items this iteration")
    lines.extend(
        [
            "- Update the task file as you progress",
            f"- When FULLY COMPLETE: {COMPLETE_MARKER}",
            f"- If IMPOSSIBLE: {ABORT_MARKER}",
            "- Otherwise, end your turn to proceed to the next iteration",
        ]
    )
    if state.mode == LoopMode.PLANNING:
        lines.extend(
            [
                "",
                "IMPORTANT: You are in PLANNING mode. Do NOT implement code. "
                "Do NOT create new source files. Updating the task file is expected and required.",
            ]
        )
    return "\n".join(lines)
