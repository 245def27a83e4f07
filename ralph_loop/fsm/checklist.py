"""Checklist progress measurement for task documents."""

import re

import pydantic as pd

OPEN_ITEM_RE = re.compile(r"^\s*-\s*\[ \]")
DONE_ITEM_RE = re.compile(r"^\s*-\s*\[[xX]\]")


class ChecklistProgress(pd.BaseModel):
    """Completed/total checklist counts for one task document.

    Attributes:
        done: Number of checked items (``- [x]`` or ``- [X]``)
        total: Number of checklist items, checked or not
    """

    done: int = 0
    total: int = 0

    model_config = pd.ConfigDict(frozen=True)

    @property
    def remaining(self) -> int:
        return self.total - self.done

    def __repr__(self) -> str:
        return f"ChecklistProgress(done={self.done}, total={self.total})"


def count_checklist(content: str) -> ChecklistProgress:
    """Count checked and unchecked items in a markdown checklist.

    Nested list items count the same as top-level ones. A document with no
    checklist yields ``total == 0``.

    Args:
        content: Raw task document text

    Returns:
        ChecklistProgress with done/total counts
    """
    done = 0
    open_items = 0
    for line in content.splitlines():
        if DONE_ITEM_RE.match(line):
            done += 1
        elif OPEN_ITEM_RE.match(line):
            open_items += 1
    return ChecklistProgress(done=done, total=done + open_items)
