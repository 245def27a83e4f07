"""Checkpoint validation for reflection turns.

Verifies that the agent actually rewrote the task file with a structured
``## Checkpoint`` section during a checkpoint turn.
"""

import hashlib
import re
from typing import List, Optional

from ralph_loop.driver.contracts import CheckpointValidation, LoopState

REQUIRED_SUBSECTIONS = (
    "### Completed",
    "### Failed Approaches",
    "### Key Decisions",
    "### Current State",
    "### Next Steps",
)

# A "## Checkpoint..." heading through to the next level-2 heading or EOF.
CHECKPOINT_BLOCK_RE = re.compile(r"^## Checkpoint[^\n]*(?:\n(?!## )[^\n]*)*", re.MULTILINE)


def compute_file_hash(content: str) -> str:
    """SHA-256 hex digest of task file content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def extract_latest_checkpoint(content: str) -> Optional[str]:
    """Return the last ``## Checkpoint`` block in the document, if any."""
    blocks = CHECKPOINT_BLOCK_RE.findall(content)
    return blocks[-1] if blocks else None


def validate_checkpoint(state: LoopState, task_content: str) -> CheckpointValidation:
    """Validate that the task file was meaningfully updated with a checkpoint.

    Checks:
    1. Content changed since the last snapshot (skipped when no snapshot exists)
    2. A ``## Checkpoint`` heading exists (the latest one is inspected)
    3. Every required subsection is present inside that block

    Args:
        state: Loop state holding the previous snapshot
        task_content: Current task file text

    Returns:
        CheckpointValidation with the reasons for any failure
    """
    reasons: List[str] = []

    if state.last_task_file_hash is not None:
        same_hash = compute_file_hash(task_content) == state.last_task_file_hash
        same_size = len(task_content) == state.last_task_file_size
        if same_hash and same_size:
            reasons.append("Task file content unchanged since last snapshot (same hash + size).")

    block = extract_latest_checkpoint(task_content)
    if block is None:
        reasons.append("Missing `## Checkpoint` heading in task file.")
    else:
        for subsection in REQUIRED_SUBSECTIONS:
            if subsection not in block:
                reasons.append(f"Missing subsection: {subsection}")

    return CheckpointValidation(valid=not reasons, reasons=reasons)


def snapshot_task_file(state: LoopState, content: str) -> None:
    """Record the task file hash and size on the state."""
    state.last_task_file_hash = compute_file_hash(content)
    state.last_task_file_size = len(content)
