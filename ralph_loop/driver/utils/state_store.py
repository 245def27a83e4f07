"""State store for loop persistence with atomic writes."""

from __future__ import annotations

import json
import logging
import re
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pydantic as pd

from ralph_loop.driver.constants import (
    STATE_SUFFIX,
    TASK_SUFFIX,
    get_archive_dir,
    get_ralph_dir,
)
from ralph_loop.driver.contracts import LoopState

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9_-]")
_UNDERSCORE_RUN_RE = re.compile(r"_+")


class StateStoreError(Exception):
    """Base exception for state store errors."""


class LoopNotFoundError(StateStoreError):
    """Raised when no state record exists for a loop name."""

    def __init__(self, name: str):
        super().__init__(f"Loop '{name}' not found")
        self.name = name


class StatePersistenceError(StateStoreError):
    """Raised when a state record cannot be written."""


def sanitize(name: str) -> str:
    """Sanitize a loop name for safe filesystem usage."""
    return _UNDERSCORE_RUN_RE.sub("_", _UNSAFE_CHARS_RE.sub("_", name))


def try_read_text(path: Path) -> Optional[str]:
    """Read a UTF-8 file, returning None when it is missing or unreadable.

    A missing task file is a normal condition for callers, so this never
    raises.
    """
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Could not read {path}: {e}")
        return None


class StateStore:
    """Loads and saves loop state records under ``.ralph/``.

    Every load reads from disk; nothing is cached, so independent callers
    always observe the latest persisted record. Saves write a temp file in
    the target directory and rename it over the record, so an interrupted
    write never leaves a partial record behind.

    Read-modify-write sequences must hold ``lock(name)``.
    """

    def __init__(self, root: Path):
        """Initialize state store.

        Args:
            root: Project root directory containing (or receiving) .ralph/
        """
        self.root = Path(root)
        self.ralph_dir = get_ralph_dir(self.root)
        self.archive_dir = get_archive_dir(self.root)
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def lock(self, name: str) -> threading.RLock:
        """Get the per-loop lock serializing state mutation for ``name``."""
        key = sanitize(name)
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.RLock()
            return self._locks[key]

    def state_path(self, name: str, archived: bool = False) -> Path:
        directory = self.archive_dir if archived else self.ralph_dir
        return directory / f"{sanitize(name)}{STATE_SUFFIX}"

    def task_path(self, name: str, archived: bool = False) -> Path:
        """Default task file location for a loop started by name."""
        directory = self.archive_dir if archived else self.ralph_dir
        return directory / f"{sanitize(name)}{TASK_SUFFIX}"

    def resolve(self, path: str) -> Path:
        """Resolve a task file path against the project root."""
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.root / candidate

    def try_read_text(self, path: str) -> Optional[str]:
        return try_read_text(self.resolve(path))

    def exists(self, name: str, archived: bool = False) -> bool:
        return self.state_path(name, archived).exists()

    def _parse(self, path: Path) -> Optional[LoopState]:
        content = try_read_text(path)
        if content is None:
            return None
        try:
            return LoopState.model_validate(json.loads(content))
        except (json.JSONDecodeError, pd.ValidationError) as e:
            logger.warning(f"Failed to parse state file {path}: {e}")
            return None

    def load(self, name: str, archived: bool = False) -> LoopState:
        """Load a loop state record, migrating legacy records.

        Args:
            name: Loop name
            archived: Look in .ralph/archive/ instead of .ralph/

        Returns:
            The persisted LoopState

        Raises:
            LoopNotFoundError: If the record is missing or corrupt
        """
        state = self._parse(self.state_path(name, archived))
        if state is None:
            raise LoopNotFoundError(name)
        return state

    def save(self, state: LoopState, archived: bool = False) -> Path:
        """Persist a loop state record atomically.

        Args:
            state: LoopState to write

        Returns:
            Path to the saved state file

        Raises:
            StatePersistenceError: If the record could not be written
        """
        path = self.state_path(state.name, archived)
        temp_path: Optional[Path] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Temp file lives beside the target so the rename stays on one filesystem
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            ) as f:
                temp_path = Path(f.name)
                f.write(state.model_dump_json(by_alias=True, indent=2))
            temp_path.replace(path)
        except OSError as e:
            if temp_path is not None and temp_path.exists():
                temp_path.unlink(missing_ok=True)
            raise StatePersistenceError(f"Failed to save state for '{state.name}': {e}") from e
        return path

    def list_loops(self, archived: bool = False) -> List[LoopState]:
        """List all parseable loop states; corrupt files are skipped with a warning."""
        directory = self.archive_dir if archived else self.ralph_dir
        if not directory.is_dir():
            return []
        loops = []
        for path in sorted(directory.glob(f"*{STATE_SUFFIX}")):
            state = self._parse(path)
            if state is not None:
                loops.append(state)
        return loops

    def delete(self, name: str) -> bool:
        """Delete a loop's state record. Returns True if a file was removed."""
        path = self.state_path(name)
        if not path.exists():
            return False
        path.unlink()
        return True

    def archive(self, name: str) -> Path:
        """Move a loop's state, and its task file when inside .ralph/, to the archive.

        Raises:
            LoopNotFoundError: If the loop does not exist
        """
        state = self.load(name)
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        destination = self.state_path(name, archived=True)
        self.state_path(name).replace(destination)

        task_path = self.resolve(state.task_file).resolve()
        ralph_dir = self.ralph_dir.resolve()
        archive_dir = self.archive_dir.resolve()
        if (
            task_path.is_relative_to(ralph_dir)
            and not task_path.is_relative_to(archive_dir)
            and task_path.exists()
        ):
            shutil.move(str(task_path), str(self.task_path(name, archived=True)))
        return destination
