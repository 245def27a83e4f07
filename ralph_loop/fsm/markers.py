"""Strict completion marker protocol parser.

A marker counts only when it is the sole content of a line (after trimming
whitespace) and the line sits outside any fenced code block. When both the
COMPLETE and ABORT markers appear, the output is treated as carrying no
marker at all.
"""

from __future__ import annotations

import logging
import re
from enum import Enum

import pydantic as pd

from ralph_loop.driver.constants import ABORT_MARKER, COMPLETE_MARKER

logger = logging.getLogger(__name__)

FENCE_RE = re.compile(r"^(`{3,}|~{3,})")
LINE_SPLIT_RE = re.compile(r"\r?\n")


class MarkerResult(Enum):
    """Classification of one block of agent output."""

    COMPLETE = "complete"
    ABORT = "abort"
    NONE = "none"


class MarkerScan(pd.BaseModel):
    """Raw findings of a marker scan before conflict resolution."""

    has_complete: bool = False
    has_abort: bool = False

    model_config = pd.ConfigDict(frozen=True)

    @property
    def conflict(self) -> bool:
        return self.has_complete and self.has_abort

    @property
    def result(self) -> MarkerResult:
        if self.conflict:
            return MarkerResult.NONE
        if self.has_complete:
            return MarkerResult.COMPLETE
        if self.has_abort:
            return MarkerResult.ABORT
        return MarkerResult.NONE


def scan_markers(text: str) -> MarkerScan:
    """Scan agent output line by line for promise markers.

    Lines opening or closing a ``` or ~~~ fence (language tag allowed) toggle
    the fence state and are never scanned themselves.

    Args:
        text: Agent output text

    Returns:
        MarkerScan recording which markers were seen outside fences
    """
    in_fence = False
    has_complete = False
    has_abort = False

    for raw in LINE_SPLIT_RE.split(text):
        trimmed = raw.strip()

        if FENCE_RE.match(trimmed):
            in_fence = not in_fence
            continue

        if in_fence:
            continue

        if trimmed == COMPLETE_MARKER:
            has_complete = True
        elif trimmed == ABORT_MARKER:
            has_abort = True

    return MarkerScan(has_complete=has_complete, has_abort=has_abort)


def detect_promise_marker(text: str) -> MarkerResult:
    """Classify agent output as COMPLETE, ABORT or NONE.

    Args:
        text: Agent output text

    Returns:
        MarkerResult; conflicting markers yield MarkerResult.NONE
    """
    scan = scan_markers(text)
    if scan.conflict:
        logger.warning("Agent output contains both COMPLETE and ABORT markers; ignoring both")
    return scan.result
