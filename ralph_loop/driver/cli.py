"""CLI for managing Ralph loops from the command line."""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Callable, Optional

import click  # type: ignore[import-not-found]
from rich.console import Console  # type: ignore[import-not-found]
from rich.logging import RichHandler  # type: ignore[import-not-found]

from ralph_loop.driver.commands import CommandError, LoopCommands
from ralph_loop.driver.transition_logger import TransitionLogger
from ralph_loop.driver.utils.config import load_loop_config
from ralph_loop.driver.utils.state_store import StateStore, StateStoreError
from ralph_loop.fsm.loop_fsm import LoopDriver, LoopDriverError
from ralph_loop.fsm.loop_state import LoopMode

console = Console()

MODE_CHOICES = click.Choice([m.value for m in LoopMode])


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the loop CLI.

    Args:
        verbose: Enable debug level logging
    """
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(name)s: %(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=verbose)],
        force=True,
    )


def build_commands(root: Path) -> LoopCommands:
    """Wire store, config and driver for a project root."""
    store = StateStore(root)
    driver = LoopDriver(
        store,
        config=load_loop_config(root),
        transition_logger=TransitionLogger(console=console),
    )
    return LoopCommands(driver)


def handle_errors(func: Callable) -> Callable:
    """Turn loop refusals into click errors (printed once, exit code 1)."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (CommandError, LoopDriverError, StateStoreError, ValueError, IndexError) as e:
            raise click.ClickException(str(e)) from e

    return wrapper


@click.group()
@click.option(
    "--root",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    help="Project root containing .ralph/ (default: current directory)",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging",
)
@click.pass_context
def main(ctx: click.Context, root: Path, verbose: bool) -> None:
    """Manage long-running Ralph build/plan loops."""
    setup_logging(verbose)
    ctx.obj = build_commands(root)


@main.command()
@click.argument("name_or_path")
@click.option("--mode", type=MODE_CHOICES, default=LoopMode.BUILDING.value, help="build or plan")
@click.option("--max-iterations", type=int, default=None, help="Iteration budget (0 = unlimited)")
@click.option("--reflect-every", type=int, default=0, help="Checkpoint every N iterations")
@click.option("--items-per-iteration", type=int, default=0, help="Suggested items per turn")
@click.option("--template", "prompt_template", default=None, help="Custom iteration template file")
@click.pass_obj
@handle_errors
def start(
    commands: LoopCommands,
    name_or_path: str,
    mode: str,
    max_iterations: Optional[int],
    reflect_every: int,
    items_per_iteration: int,
    prompt_template: Optional[str],
) -> None:
    """Start (or restart) a loop for a name or task file path."""
    state = commands.start(
        name_or_path,
        mode=LoopMode(mode),
        max_iterations=max_iterations,
        reflect_every=reflect_every,
        items_per_iteration=items_per_iteration,
        prompt_template=prompt_template,
    )
    console.print(f"[green]Started[/green] {state.name} [dim]({state.task_file})[/dim]")


@main.command()
@click.argument("name")
@click.pass_obj
@handle_errors
def stop(commands: LoopCommands, name: str) -> None:
    """Stop a loop for good."""
    state = commands.stop(name)
    console.print(f"[yellow]Stopped[/yellow] {state.name} at iteration {state.iteration}")


@main.command()
@click.argument("name")
@click.pass_obj
@handle_errors
def pause(commands: LoopCommands, name: str) -> None:
    """Pause a loop until resumed."""
    state = commands.pause(name)
    console.print(f"[yellow]Paused[/yellow] {state.name} at iteration {state.iteration}")


@main.command()
@click.argument("name")
@click.pass_obj
@handle_errors
def resume(commands: LoopCommands, name: str) -> None:
    """Resume a paused or stuck loop."""
    state = commands.resume(name)
    console.print(f"[green]Resumed[/green] {state.name} (iteration {state.iteration})")


@main.command()
@click.argument("name")
@click.argument("text")
@click.option("--sticky", is_flag=True, help="Inject into every prompt instead of the next one")
@click.pass_obj
@handle_errors
def hint(commands: LoopCommands, name: str, text: str, sticky: bool) -> None:
    """Add a hint for the agent."""
    commands.hint(name, text, sticky=sticky)
    label = "sticky" if sticky else "one-shot"
    console.print(f"[green]Added {label} hint[/green] to {name}")


@main.command()
@click.argument("name")
@click.pass_obj
@handle_errors
def hints(commands: LoopCommands, name: str) -> None:
    """List active hints."""
    lines = commands.hints(name)
    if not lines:
        console.print("[dim]No active hints[/dim]")
        return
    for line in lines:
        console.print(f"  {line}")


@main.command(name="clear-hints")
@click.argument("name")
@click.pass_obj
@handle_errors
def clear_hints(commands: LoopCommands, name: str) -> None:
    """Remove all hints."""
    removed = commands.clear_hints(name)
    console.print(f"Cleared {removed} hint(s)")


@main.command(name="remove-hint")
@click.argument("name")
@click.argument("index", type=int)
@click.pass_obj
@handle_errors
def remove_hint(commands: LoopCommands, name: str, index: int) -> None:
    """Remove one hint by its number in `hints`."""
    removed = commands.remove_hint(name, index)
    console.print(f"Removed hint: {removed}")


@main.command()
@click.argument("name")
@click.argument("mode", type=MODE_CHOICES)
@click.pass_obj
@handle_errors
def mode(commands: LoopCommands, name: str, mode: str) -> None:
    """Switch a loop between build and plan mode."""
    state = commands.mode(name, LoopMode(mode))
    console.print(f"{state.name} now in [cyan]{state.mode.value}[/cyan] mode")


@main.command()
@click.argument("name")
@click.pass_obj
@handle_errors
def rotate(commands: LoopCommands, name: str) -> None:
    """Record a session rotation; the next turn re-orients the agent."""
    state = commands.rotate(name)
    console.print(f"Rotation #{state.session_rotations} recorded for {state.name}")


@main.command()
@click.argument("name", required=False)
@click.pass_obj
@handle_errors
def status(commands: LoopCommands, name: Optional[str]) -> None:
    """Show one loop, or all loops."""
    if name:
        console.print(commands.status(name))
        return
    lines = commands.list_loops()
    if not lines:
        console.print("[dim]No Ralph loops found.[/dim]")
        return
    for line in lines:
        console.print(line)


@main.command(name="list")
@click.option("--archived", is_flag=True, help="Show archived loops")
@click.pass_obj
@handle_errors
def list_loops(commands: LoopCommands, archived: bool) -> None:
    """List loops."""
    lines = commands.list_loops(archived=archived)
    if not lines:
        console.print("[dim]No archived loops[/dim]" if archived else "[dim]No loops found.[/dim]")
        return
    console.print("[cyan]Archived loops:[/cyan]" if archived else "[cyan]Ralph loops:[/cyan]")
    for line in lines:
        console.print(f"  {line}")


@main.command()
@click.argument("name")
@click.pass_obj
@handle_errors
def archive(commands: LoopCommands, name: str) -> None:
    """Move a stopped loop to .ralph/archive/."""
    commands.archive(name)
    console.print(f"Archived: {name}")


@main.command()
@click.option("--all", "all_files", is_flag=True, help="Also delete task files in .ralph/")
@click.pass_obj
@handle_errors
def clean(commands: LoopCommands, all_files: bool) -> None:
    """Delete state of completed and aborted loops."""
    cleaned = commands.clean(all_files=all_files)
    if not cleaned:
        console.print("[dim]No finished loops to clean[/dim]")
        return
    suffix = " (all files)" if all_files else " (state only)"
    console.print(f"Cleaned {len(cleaned)} loop(s){suffix}:")
    for loop_name in cleaned:
        console.print(f"  • {loop_name}")


@main.command()
@click.argument("name")
@click.pass_obj
@handle_errors
def cancel(commands: LoopCommands, name: str) -> None:
    """Delete a loop's state."""
    if not commands.cancel(name):
        raise CommandError(f"Loop '{name}' not found")
    console.print(f"Cancelled: {name}")


@main.command()
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
@click.pass_obj
@handle_errors
def nuke(commands: LoopCommands, yes: bool) -> None:
    """Delete all .ralph/ state, task and archive files."""
    console.print(
        "[yellow]This deletes all .ralph state, task, and archive files. "
        "External task files are not removed.[/yellow]"
    )
    if not yes:
        click.confirm("Delete all Ralph loop files?", abort=True)
    if commands.nuke():
        console.print("Removed .ralph directory.")
    else:
        console.print("[dim]No .ralph directory found.[/dim]")


if __name__ == "__main__":
    main()
