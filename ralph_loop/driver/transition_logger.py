"""Colored logging of loop status transitions and turn events."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from rich.console import Console
from rich.text import Text

from ralph_loop.fsm.loop_state import LoopStatus, TurnKind


class TransitionLogger:
    """Logs loop status transitions with status-specific colors.

    With color disabled, output goes through the ``ralph_loop.transition``
    logger instead of the rich console.
    """

    STATUS_COLORS: dict[str, str] = {
        "RUNNING": "bold green",
        "PAUSED": "bold yellow",
        "STUCK": "bold orange3",
        "COMPLETED": "bold cyan",
        "ABORTED": "bold red",
        "TURN": "bold blue",
        "TRANSITION": "bold gray",
    }

    def __init__(self, enable_color: bool = True, console: Optional[Console] = None) -> None:
        self._enable_color = enable_color
        self._console = console or Console(force_terminal=enable_color, stderr=True)
        self._logger = logging.getLogger("ralph_loop.transition")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False

        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setLevel(logging.INFO)
            handler.setFormatter(
                logging.Formatter(fmt="%(asctime)s %(levelname)s %(message)s", datefmt="%H:%M:%S")
            )
            self._logger.addHandler(handler)

    @property
    def console(self) -> Console:
        return self._console

    def log_transition(
        self,
        name: str,
        from_status: LoopStatus,
        to_status: LoopStatus,
        reason: Optional[str] = None,
    ) -> None:
        suffix = f" ({reason})" if reason else ""
        if self._enable_color:
            color = self.STATUS_COLORS.get(to_status.name, "white")
            label = Text("[TRANSITION] ", style=self.STATUS_COLORS["TRANSITION"])
            loop_text = Text(f"{name}: ", style="bold")
            from_text = Text(from_status.value, style="dim")
            arrow = Text(" → ", style="bold dim")
            to_text = Text(to_status.value, style=color)
            reason_text = Text(suffix, style="dim")
            self._console.print(label + loop_text + from_text + arrow + to_text + reason_text)
        else:
            self._logger.info("[TRANSITION] %s: %s → %s%s", name, from_status.value, to_status.value, suffix)

    def log_turn(self, name: str, iteration: int, max_str: str, kind: TurnKind) -> None:
        if self._enable_color:
            label = Text("[TURN] ", style=self.STATUS_COLORS["TURN"])
            body = Text(f"{name} iteration {iteration}{max_str} ({kind.value})")
            self._console.print(label + body)
        else:
            self._logger.info("[TURN] %s iteration %s%s (%s)", name, iteration, max_str, kind.value)
