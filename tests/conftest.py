"""Shared pytest fixtures for ralph_loop tests."""

from pathlib import Path
from typing import Callable, List, Optional, Union

import pytest

from ralph_loop.driver.contracts import LoopConfig, TurnResult
from ralph_loop.driver.transition_logger import TransitionLogger
from ralph_loop.driver.utils.state_store import StateStore
from ralph_loop.fsm.loop_fsm import LoopDriver


TASK_CONTENT = """# Task

## Goals
- Ship the feature

## Checklist
- [ ] First item
- [ ] Second item
- [ ] Third item

## Notes
(Update this as you work)
"""

CHECKPOINT_SECTION = """
## Checkpoint (Iteration {iteration})

### Completed
- [x] Wrote the parser

### Failed Approaches
- Regex-only parsing: too brittle

### Key Decisions
- Keep state in JSON

### Current State
- Parser works, CLI pending

### Next Steps
1. Wire the CLI
"""


class FakeRuntime:
    """Agent runtime double returning scripted outputs.

    Each scripted entry may be a string (successful output), a TurnResult,
    or an exception instance to raise. ``on_turn`` runs before the output is
    returned, with the 1-based turn number, so tests can edit the task file
    the way an agent would.
    """

    def __init__(
        self,
        outputs: Optional[List[Union[str, TurnResult, Exception]]] = None,
        on_turn: Optional[Callable[[int], None]] = None,
        default_output: str = "Worked on the task.",
    ):
        self.outputs = list(outputs or [])
        self.on_turn = on_turn
        self.default_output = default_output
        self.prompts: List[str] = []
        self.systems: List[Optional[str]] = []

    async def run_turn(self, prompt: str, *, system: Optional[str] = None) -> TurnResult:
        self.prompts.append(prompt)
        self.systems.append(system)
        if self.on_turn is not None:
            self.on_turn(len(self.prompts))
        output = self.outputs.pop(0) if self.outputs else self.default_output
        if isinstance(output, Exception):
            raise output
        if isinstance(output, TurnResult):
            return output
        return TurnResult(output=output)


class FakeTimer:
    """threading.Timer stand-in that only fires when told to."""

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args, **self.kwargs)


class FakeTimers:
    """Factory recording every FakeTimer it creates."""

    def __init__(self):
        self.created: List[FakeTimer] = []

    def __call__(self, interval, function, args=None, kwargs=None) -> FakeTimer:
        timer = FakeTimer(interval, function, args=args, kwargs=kwargs)
        self.created.append(timer)
        return timer

    @property
    def last(self) -> FakeTimer:
        return self.created[-1]


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """Empty project root."""
    return tmp_path


@pytest.fixture
def task_file(project: Path) -> str:
    """A task document at .ralph/demo.md, returned as a project-relative path."""
    path = project / ".ralph" / "demo.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(TASK_CONTENT, encoding="utf-8")
    return ".ralph/demo.md"


@pytest.fixture
def store(project: Path) -> StateStore:
    return StateStore(project)


@pytest.fixture
def fake_timers() -> FakeTimers:
    return FakeTimers()


@pytest.fixture
def task_content() -> str:
    return TASK_CONTENT


@pytest.fixture
def checkpoint_section() -> str:
    """Complete checkpoint section with an ``{iteration}`` slot."""
    return CHECKPOINT_SECTION


@pytest.fixture
def make_runtime() -> Callable[..., FakeRuntime]:
    """Factory for runtimes with scripted outputs."""
    return FakeRuntime


@pytest.fixture
def runtime(make_runtime) -> FakeRuntime:
    return make_runtime()


@pytest.fixture
def config() -> LoopConfig:
    return LoopConfig()


@pytest.fixture
def driver(store: StateStore, runtime: FakeRuntime, config: LoopConfig, fake_timers: FakeTimers) -> LoopDriver:
    return LoopDriver(
        store,
        runtime=runtime,
        config=config,
        transition_logger=TransitionLogger(enable_color=False),
        timer_factory=fake_timers,
    )


@pytest.fixture
def check_items(project: Path, task_file: str) -> Callable[[int], None]:
    """Check off the first ``count`` open items in the task file, as an agent would."""

    def _check(count: int) -> None:
        path = project / task_file
        content = path.read_text(encoding="utf-8")
        for _ in range(count):
            content = content.replace("- [ ]", "- [x]", 1)
        path.write_text(content, encoding="utf-8")

    return _check


@pytest.fixture
def append_checkpoint(project: Path, task_file: str) -> Callable[[int], None]:
    """Append a complete checkpoint section for an iteration to the task file."""

    def _append(iteration: int) -> None:
        with open(project / task_file, "a", encoding="utf-8") as f:
            f.write(CHECKPOINT_SECTION.format(iteration=iteration))

    return _append
