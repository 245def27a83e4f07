"""Tests for template rendering and prompt building."""

from ralph_loop.driver.constants import ABORT_MARKER, COMPLETE_MARKER
from ralph_loop.driver.contracts import LoopState
from ralph_loop.driver.prompts.renderer import (
    build_template_vars,
    build_turn_prompt,
    format_hints,
    render_system_instructions,
    render_template,
    select_template,
    slice_task_content,
)
from ralph_loop.driver.prompts.templates import (
    BUILDING_TEMPLATE,
    CHECKPOINT_TEMPLATE,
    PLANNING_TEMPLATE,
    ROTATION_BOOTSTRAP_TEMPLATE,
)
from ralph_loop.fsm.loop_state import LoopMode, TurnKind


def make_state(**overrides) -> LoopState:
    fields = {"name": "demo", "task_file": ".ralph/demo.md", "max_iterations": 10, "iteration": 3}
    fields.update(overrides)
    return LoopState(**fields)


class TestRenderTemplate:
    def test_replaces_known_keys(self):
        assert render_template("Hi {{name}}!", {"name": "Ralph"}) == "Hi Ralph!"

    def test_preserves_unknown_keys(self):
        assert render_template("{{known}} {{unknown}}", {"known": "x"}) == "x {{unknown}}"

    def test_repeated_keys(self):
        assert render_template("{{a}}-{{a}}", {"a": "1"}) == "1-1"

    def test_templates_advertise_marker_constants(self):
        variables = build_template_vars(make_state(), "", "")
        for template in (BUILDING_TEMPLATE, PLANNING_TEMPLATE, ROTATION_BOOTSTRAP_TEMPLATE):
            rendered = render_template(template, variables)
            assert COMPLETE_MARKER in rendered
            assert ABORT_MARKER in rendered


class TestFormatHints:
    def test_empty(self):
        assert format_hints([], []) == ""

    def test_pending_and_sticky(self):
        block = format_hints(["check the tests"], ["prefer small commits"])
        assert block.splitlines() == [
            "## User Hints",
            "- check the tests (one-shot)",
            "- prefer small commits (sticky)",
        ]


class TestBuildTemplateVars:
    def test_bounded_budget(self):
        variables = build_template_vars(make_state(), "content", "hints")
        assert variables["maxStr"] == "/10"
        assert variables["maxIterations"] == "10"
        assert variables["iteration"] == "3"
        assert variables["taskContent"] == "content"
        assert variables["mode"] == "build"

    def test_unbounded_budget(self):
        variables = build_template_vars(make_state(max_iterations=0), "", "")
        assert variables["maxStr"] == ""
        assert variables["maxIterations"] == "unlimited"


class TestSliceTaskContent:
    def test_small_content_unchanged(self):
        content = "## Goals\n- a\n"
        assert slice_task_content(content, 8192, "task.md") == content

    def test_large_content_is_sliced(self):
        checked = "\n".join(f"- [x] done {i}" for i in range(8))
        unchecked = "\n".join(f"- [ ] todo {i}" for i in range(3))
        filler = "\n".join("noise line" for _ in range(500))
        content = (
            "# Task\n\n## Goals\n- Build it\n\n"
            f"## Checklist\n{checked}\n{unchecked}\n\n"
            f"## Notes\n{filler}\n\n"
            "## Checkpoint (Iteration 2)\n### Completed\n- old\n\n"
            "## Checkpoint (Iteration 4)\n### Completed\n- new\n"
        )
        sliced = slice_task_content(content, 200, ".ralph/demo.md")

        assert "## Goals\n- Build it" in sliced
        assert "(3 earlier completed items omitted)" in sliced
        assert "- [x] done 2" not in sliced
        assert "- [x] done 3" in sliced
        assert "- [x] done 7" in sliced
        assert "- [ ] todo 0" in sliced
        assert "- [ ] todo 2" in sliced
        assert "## Checkpoint (Iteration 4)" in sliced
        assert "## Checkpoint (Iteration 2)" not in sliced
        assert "noise line" not in sliced
        assert "Use read tool to see full content: .ralph/demo.md" in sliced


class TestBuildTurnPrompt:
    def test_select_template_by_kind(self):
        assert select_template(TurnKind.BUILD) is BUILDING_TEMPLATE
        assert select_template(TurnKind.PLAN) is PLANNING_TEMPLATE
        assert select_template(TurnKind.CHECKPOINT) is CHECKPOINT_TEMPLATE
        assert select_template(TurnKind.ROTATION) is ROTATION_BOOTSTRAP_TEMPLATE

    def test_custom_template_replaces_iteration_templates_only(self):
        custom = "Custom {{loopName}}"
        assert select_template(TurnKind.BUILD, custom) == custom
        assert select_template(TurnKind.PLAN, custom) == custom
        assert select_template(TurnKind.CHECKPOINT, custom) is CHECKPOINT_TEMPLATE

    def test_build_prompt_contents(self):
        state = make_state(pending_hints=["look at auth.py"])
        prompt = build_turn_prompt(state, TurnKind.BUILD, "- [ ] item")
        assert "RALPH LOOP: demo | BUILD | Iteration 3/10" in prompt
        assert "- [ ] item" in prompt
        assert "- look at auth.py (one-shot)" in prompt
        assert "{{" not in prompt

    def test_checkpoint_prompt_names_iteration(self):
        prompt = build_turn_prompt(make_state(iteration=4), TurnKind.CHECKPOINT, "")
        assert "## Checkpoint (Iteration 4)" in prompt
        assert "### Failed Approaches" in prompt

    def test_rotation_prompt_mentions_rotation_count(self):
        prompt = build_turn_prompt(make_state(session_rotations=2), TurnKind.ROTATION, "")
        assert "Rotation #2" in prompt

    def test_rendering_is_idempotent(self):
        state = make_state(pending_hints=["one"], sticky_hints=["two"])
        first = build_turn_prompt(state, TurnKind.BUILD, "- [ ] a")
        second = build_turn_prompt(state, TurnKind.BUILD, "- [ ] a")
        assert first == second
        assert state.pending_hints == ["one"]

    def test_custom_template_unknown_keys_survive(self):
        prompt = build_turn_prompt(make_state(), TurnKind.BUILD, "", custom_template="{{loopName}} {{other}}")
        assert prompt == "demo {{other}}"


class TestSystemInstructions:
    def test_build_mode(self):
        text = render_system_instructions(make_state(items_per_iteration=2))
        assert "Mode: build" in text
        assert "~2 items" in text
        assert COMPLETE_MARKER in text
        assert "PLANNING mode" not in text

    def test_plan_mode_restriction(self):
        text = render_system_instructions(make_state(mode=LoopMode.PLANNING))
        assert "Do NOT implement code" in text
