"""Iteration history and human-readable loop log.

Persists lightweight iteration records to:
- ``.ralph/<name>.history.json``: JSON array, newest entries kept
- ``.ralph/<name>.log``: append-only text log, front-truncated when large
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List

import pydantic as pd

from ralph_loop.driver.constants import HISTORY_SUFFIX, LOG_SUFFIX, get_ralph_dir
from ralph_loop.driver.contracts import IterationRecord
from ralph_loop.driver.utils.state_store import sanitize

logger = logging.getLogger(__name__)

TRUNCATION_LINE = "[…truncated…]\n"


def format_duration(ms: int) -> str:
    """Format milliseconds as ``XmYs`` or ``Ys``."""
    total_sec = round(ms / 1000)
    minutes, seconds = divmod(total_sec, 60)
    return f"{minutes}m{seconds}s" if minutes > 0 else f"{seconds}s"


def format_timestamp(iso: str) -> str:
    """Format an ISO timestamp as ``YYYY-MM-DD HH:MM``."""
    try:
        return datetime.fromisoformat(iso).strftime("%Y-%m-%d %H:%M")
    except ValueError:
        return iso[:16]


def format_delta(delta: int) -> str:
    if delta > 0:
        return f"✓ +{delta} items"
    if delta == 0:
        return "→ no change"
    return f"✗ {delta} items"


class IterationHistory:
    """Appends iteration records and log lines for one project's loops.

    Example:
        >>> history = IterationHistory(Path("/repo"))
        >>> history.append(record)
        >>> history.read("my-loop")[-1].iteration
        3
    """

    def __init__(self, root: Path, max_entries: int = 500, log_max_bytes: int = 1_048_576):
        self.ralph_dir = get_ralph_dir(Path(root))
        self.max_entries = max_entries
        self.log_max_bytes = log_max_bytes

    def history_path(self, name: str) -> Path:
        return self.ralph_dir / f"{sanitize(name)}{HISTORY_SUFFIX}"

    def log_path(self, name: str) -> Path:
        return self.ralph_dir / f"{sanitize(name)}{LOG_SUFFIX}"

    def read(self, name: str) -> List[IterationRecord]:
        """Read the history for a loop; unreadable history yields an empty list."""
        path = self.history_path(name)
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read history {path}: {e}")
            return []
        if not isinstance(raw, list):
            return []
        records = []
        for item in raw:
            try:
                records.append(IterationRecord.model_validate(item))
            except pd.ValidationError:
                logger.debug(f"Skipping malformed history entry in {path}")
        return records

    def append(self, name: str, record: IterationRecord) -> None:
        """Append a record to history and a line to the log.

        Raises:
            OSError: If either file cannot be written
        """
        self.ralph_dir.mkdir(parents=True, exist_ok=True)

        records = self.read(name)
        records.append(record)
        records = records[-self.max_entries :]
        payload = [r.model_dump(mode="json") for r in records]
        self.history_path(name).write_text(json.dumps(payload, indent=2), encoding="utf-8")

        reflect = " [reflection]" if record.was_reflection else ""
        line = (
            f"[{format_timestamp(record.ended_at)}] Iter {record.iteration:>3}  | "
            f"{format_duration(record.duration_ms):>6} | {format_delta(record.checklist_delta):<14} | "
            f"tools: {record.tool_calls} calls{reflect}\n"
        )
        self._append_line(name, line)

    def append_event(self, name: str, event: str) -> None:
        """Append a special event line, e.g. ``--- PAUSE iter=3 ---``."""
        self.ralph_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M")
        self._append_line(name, f"[{timestamp}] --- {event} ---\n")

    def _append_line(self, name: str, line: str) -> None:
        path = self.log_path(name)
        with open(path, "a", encoding="utf-8") as f:
            f.write(line)
        self._trim_log(path)

    def _trim_log(self, path: Path) -> None:
        """Drop the front half of the log once it exceeds log_max_bytes."""
        if path.stat().st_size <= self.log_max_bytes:
            return
        content = path.read_text(encoding="utf-8")
        cut = content.find("\n", len(content) // 2)
        if cut > 0:
            path.write_text(TRUNCATION_LINE + content[cut + 1 :], encoding="utf-8")
