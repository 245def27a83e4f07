"""Boundary between the loop driver and the agent host."""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ralph_loop.driver.contracts import TurnResult


@runtime_checkable
class AgentRuntime(Protocol):
    """Executes one agent turn and returns its final output.

    Hosts implement this to plug an LLM agent into the LoopDriver. Tool
    activity during the turn is reported back through the driver's
    ``on_tool_start`` / ``on_tool_end`` methods.
    """

    async def run_turn(self, prompt: str, *, system: Optional[str] = None) -> TurnResult:
        """Run one turn.

        Args:
            prompt: Rendered iteration prompt
            system: System prompt addendum describing the loop contract

        Returns:
            TurnResult with the agent's final text output
        """
        ...
