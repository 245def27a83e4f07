"""Constants for the .ralph directory structure and the marker protocol."""

from pathlib import Path

RALPH_DIR = ".ralph"
ARCHIVE_DIR = "archive"
CONFIG_FILE = "config.toml"

STATE_SUFFIX = ".state.json"
TASK_SUFFIX = ".md"
HISTORY_SUFFIX = ".history.json"
LOG_SUFFIX = ".log"

# Part of the wire contract with agent output; every template renders these.
COMPLETE_MARKER = "<promise>COMPLETE</promise>"
ABORT_MARKER = "<promise>ABORT</promise>"

SCHEMA_VERSION = 3

BUDGET_EXHAUSTED_REASON = "iteration budget exhausted"
AGENT_ABORTED_REASON = "agent aborted"
AGENT_COMPLETED_REASON = "agent declared completion"
USER_STOPPED_REASON = "stopped by user"
INACTIVITY_REASON = "inactivity timeout"
NO_PROGRESS_REASON = "no checklist progress"


def get_ralph_dir(root: Path) -> Path:
    """Get the .ralph directory path."""
    return root / RALPH_DIR


def get_archive_dir(root: Path) -> Path:
    """Get the .ralph/archive directory path."""
    return get_ralph_dir(root) / ARCHIVE_DIR
