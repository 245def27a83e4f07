"""Tests for user-facing loop commands."""

import pytest

from ralph_loop.driver.commands import (
    CommandError,
    LoopCommands,
    format_loop,
    render_progress_bar,
    resolve_loop_target,
)
from ralph_loop.driver.contracts import LoopState
from ralph_loop.driver.prompts.templates import DEFAULT_TASK_TEMPLATE
from ralph_loop.driver.utils.state_store import LoopNotFoundError
from ralph_loop.fsm.loop_state import LoopMode, LoopStatus


@pytest.fixture
def commands(driver) -> LoopCommands:
    return LoopCommands(driver)


class TestFormatting:
    def test_format_loop(self):
        state = LoopState(name="auth", task_file="t.md", iteration=3, max_iterations=50)
        assert format_loop(state) == "auth: ▶ running (iteration 3/50)"

    def test_format_loop_unbounded(self):
        state = LoopState(name="auth", task_file="t.md", max_iterations=0, status=LoopStatus.PAUSED)
        assert format_loop(state) == "auth: ⏸ paused (iteration 1)"

    def test_progress_bar(self):
        assert render_progress_bar(8, 15) == "8/15 ████████░░░░░░░"
        assert render_progress_bar(0, 2, width=4) == "0/2 ░░░░"
        assert render_progress_bar(3, 3, width=3) == "3/3 ███"

    def test_progress_bar_empty_checklist(self):
        assert render_progress_bar(0, 0) == ""

    def test_resolve_bare_name(self):
        assert resolve_loop_target("refactor auth") == ("refactor_auth", ".ralph/refactor_auth.md")

    def test_resolve_path(self):
        assert resolve_loop_target("docs/tasks/migrate.md") == ("migrate", "docs/tasks/migrate.md")


class TestStart:
    def test_start_scaffolds_task_file(self, commands, project):
        state = commands.start("fresh", max_iterations=10)

        assert state.task_file == ".ralph/fresh.md"
        assert (project / ".ralph" / "fresh.md").read_text(encoding="utf-8") == DEFAULT_TASK_TEMPLATE
        assert state.max_iterations == 10
        assert commands.store.load("fresh").status == LoopStatus.RUNNING

    def test_start_keeps_existing_task_file(self, commands, project, task_file):
        commands.start("demo", mode=LoopMode.PLANNING)
        assert "First item" in (project / task_file).read_text(encoding="utf-8")
        assert commands.store.load("demo").mode == LoopMode.PLANNING

    def test_start_refused_while_running(self, commands, task_file):
        commands.start("demo")
        with pytest.raises(CommandError):
            commands.start("demo")

    def test_restart_after_stop(self, commands, task_file):
        commands.start("demo")
        commands.stop("demo")
        state = commands.start("demo")
        assert state.status == LoopStatus.RUNNING
        assert state.iteration == 1

    def test_bare_name_is_sanitized(self, commands, project):
        state = commands.start("refactor auth")

        assert state.name == "refactor_auth"
        assert commands.store.load("refactor_auth").task_file == ".ralph/refactor_auth.md"
        assert commands.list_loops() == ["refactor_auth: ▶ running (iteration 1/50)"]

    def test_missing_template_dropped(self, commands, task_file, caplog):
        state = commands.start("demo", prompt_template="nope.md")
        assert state.prompt_template is None
        assert "Template not found" in caplog.text


class TestStatus:
    def test_status_line(self, commands, project, task_file, check_items):
        commands.start("demo", max_iterations=20)
        check_items(1)
        commands.hint("demo", "look at auth.py")

        line = commands.status("demo")

        assert line.startswith("demo: ▶ running (iteration 1/20)")
        assert "1/3 " in line
        assert "1 hint(s)" in line

    def test_status_of_stopped_loop_shows_reason(self, commands, task_file):
        commands.start("demo")
        commands.stop("demo")
        assert "stopped by user" in commands.status("demo")

    def test_list_loops(self, commands, task_file):
        commands.start("demo")
        commands.start("other")
        lines = commands.list_loops()
        assert len(lines) == 2
        assert any(line.startswith("other:") for line in lines)


class TestHintCommands:
    def test_hints_listing(self, commands, task_file):
        commands.start("demo")
        commands.hint("demo", "first")
        commands.hint("demo", "always", sticky=True)

        assert commands.hints("demo") == ["1. first (one-shot)", "2. always (sticky)"]
        assert commands.remove_hint("demo", 1) == "first"
        assert commands.clear_hints("demo") == 1
        assert commands.hints("demo") == []


class TestHousekeeping:
    def test_archive_refused_while_running(self, commands, task_file):
        commands.start("demo")
        with pytest.raises(CommandError):
            commands.archive("demo")

    def test_archive_moves_state_and_task(self, commands, project, task_file):
        commands.start("demo")
        commands.pause("demo")
        commands.archive("demo")

        assert not commands.store.exists("demo")
        assert commands.store.exists("demo", archived=True)
        assert not (project / task_file).exists()
        assert commands.list_loops(archived=True)

    def test_clean_removes_terminal_loops_only(self, commands, project, task_file):
        commands.start("demo")
        commands.start("other")
        commands.stop("demo")

        cleaned = commands.clean(all_files=True)

        assert cleaned == ["demo"]
        assert not commands.store.exists("demo")
        assert not (project / task_file).exists()
        assert commands.store.exists("other")

    def test_clean_keeps_task_files_by_default(self, commands, project, task_file):
        commands.start("demo")
        commands.stop("demo")
        commands.clean()
        assert (project / task_file).exists()

    def test_cancel_deletes_state(self, commands, project, task_file):
        commands.start("demo")
        commands.driver.start_turn("demo")

        assert commands.cancel("demo")

        assert not commands.driver.is_turn_active("demo")
        with pytest.raises(LoopNotFoundError):
            commands.store.load("demo")
        assert (project / task_file).exists()
        assert not commands.cancel("demo")

    def test_rotate_refused_when_paused(self, commands, task_file):
        commands.start("demo")
        commands.pause("demo")
        with pytest.raises(CommandError):
            commands.rotate("demo")

    def test_rotate_and_mode(self, commands, task_file):
        commands.start("demo")
        assert commands.rotate("demo").rotation_pending
        assert commands.mode("demo", LoopMode.PLANNING).mode == LoopMode.PLANNING


class TestNuke:
    def test_nuke_removes_ralph_dir_but_keeps_external_tasks(self, commands, project, task_file):
        external = project / "docs" / "plan.md"
        external.parent.mkdir()
        external.write_text("# Plan\n- [ ] step\n", encoding="utf-8")
        commands.start("docs/plan.md")
        commands.start("demo")
        commands.stop("demo")
        commands.archive("demo")
        commands.driver.start_turn("plan")

        assert commands.nuke()

        assert not (project / ".ralph").exists()
        assert external.exists()
        assert not commands.driver.is_turn_active("plan")
        assert commands.list_loops() == []

    def test_nuke_without_ralph_dir(self, commands, project):
        assert not commands.nuke()
