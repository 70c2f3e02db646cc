"""
claude-local CLI - keep Claude Code conversations inside project folders.

One-shot commands sync, export and inspect a single project; ``watch`` and
``daemon start`` keep projects in sync in the foreground.
"""

import os
import signal
import time
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from claude_local import __version__
from claude_local.config import ConfigManager, settings
from claude_local.daemon import SyncDaemon, read_pid_file, run_daemon
from claude_local.exceptions import DaemonAlreadyRunningError, ProjectNotFoundError
from claude_local.git import (
    get_recommended_gitignore_entries,
    remove_from_gitignore,
    update_gitignore,
)
from claude_local.logging_config import setup_logging
from claude_local.models import ProjectInfo, SyncResult
from claude_local.paths import get_history_path, get_local_storage_path
from claude_local.project_detector import ProjectDetector
from claude_local.storage import StorageManager, list_conversation_files
from claude_local.watcher import HistoryWatcher

app = typer.Typer(
    name="claude-local",
    help="Automatic conversation sync for Claude Code - stores conversations in project .claude folders",
    no_args_is_help=True,
)
daemon_app = typer.Typer(help="Manage automatic background sync daemon", no_args_is_help=True)
config_app = typer.Typer(help="View and change claude-local configuration", no_args_is_help=True)
gitignore_app = typer.Typer(help="Manage .gitignore entries for local storage", no_args_is_help=True)
app.add_typer(daemon_app, name="daemon")
app.add_typer(config_app, name="config")
app.add_typer(gitignore_app, name="gitignore")

console = Console()

PathArgument = typer.Argument(None, help="Project directory (default: current directory)")


def get_config_manager() -> ConfigManager:
    return ConfigManager()


def get_storage_manager() -> StorageManager:
    return StorageManager(
        get_config_manager().get_global_storage_path(), layout=settings.global_layout
    )


def get_pid_file() -> Path:
    return Path(settings.daemon_pid_file).expanduser()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"claude-local {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version"
    ),
) -> None:
    """Automatic conversation sync for Claude Code."""
    context = ctx.invoked_subcommand if ctx.invoked_subcommand in ("daemon", "watch") else "cli"
    setup_logging(context=context)


def _detect(path: Optional[str]) -> ProjectInfo:
    detector = ProjectDetector()
    try:
        project = detector.detect_project(path)
    except ProjectNotFoundError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)
    valid, reasons = detector.validate_project(project.root)
    if not valid:
        for reason in reasons:
            console.print(f"[bold red]Error:[/bold red] {reason}: {project.root}")
        raise typer.Exit(1)
    return project


def _initialize(project: ProjectInfo, storage_manager: StorageManager) -> None:
    console.print("[blue]Initializing local storage...[/blue]")
    console.print(f"  Project root: {project.root}")
    storage_manager.initialize_local_storage(project.root)
    console.print("[green]✓ Local storage initialized[/green]")

    config_manager = get_config_manager()
    if project.is_git_repo and config_manager.is_auto_gitignore_enabled():
        added = update_gitignore(project.root, config_manager.get_ignore_patterns())
        if added:
            console.print("[green]✓ .gitignore updated[/green]")


def _print_result(result: SyncResult, verb: str = "Synced") -> None:
    if result.success:
        console.print(
            f"[green]✓ {verb} {result.files_processed} conversation(s) "
            f"in {result.to_dict()['duration_ms']}ms[/green]"
        )
        if result.files_skipped:
            console.print(
                f"[yellow]⊘ Skipped {result.files_skipped} unreadable file(s)[/yellow]"
            )
        return

    console.print(f"[yellow]⚠ Completed with {len(result.errors)} error(s)[/yellow]")
    for error in result.errors:
        console.print(f"  [red]✗[/red] {error}")
    raise typer.Exit(1)


@app.command()
def sync(path: Optional[str] = PathArgument) -> None:
    """
    Sync all conversations bidirectionally.

    Initializes local storage first if the project has none.
    """
    project = _detect(path)
    storage_manager = get_storage_manager()

    if not project.has_local_storage:
        _initialize(project, storage_manager)

    console.print("[blue]Syncing conversations (bidirectional)...[/blue]")
    result = storage_manager.sync_to_local(project.root, bidirectional=True)
    _print_result(result)


@app.command()
def init(path: Optional[str] = PathArgument) -> None:
    """Initialize local storage for a project."""
    project = _detect(path)
    if project.has_local_storage:
        console.print(f"[yellow]Local storage already initialized in {project.root}[/yellow]")
        return
    _initialize(project, get_storage_manager())


@app.command()
def export(path: Optional[str] = PathArgument) -> None:
    """
    Copy every local conversation into the global store.

    Use this to restore a project's history on a new machine.
    """
    project = _detect(path)
    result = get_storage_manager().sync_to_global(project.root)
    _print_result(result, verb="Exported")


@app.command()
def status(path: Optional[str] = PathArgument) -> None:
    """Show storage locations and sync state for a project."""
    project = _detect(path)
    config_manager = get_config_manager()
    storage_manager = get_storage_manager()
    locations = storage_manager.get_storage_locations(project.root)

    table = Table(title="claude-local status", show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value")

    table.add_row("Project root", str(project.root))
    table.add_row("Git repository", "yes" if project.is_git_repo else "no")
    table.add_row("Mode", config_manager.get_mode())
    for name, location in locations.items():
        if location is None:
            continue
        marker = "[green]✓[/green]" if location.exists else "[red]✗[/red]"
        table.add_row(f"{name.capitalize()} store", f"{marker} {location.path}")

    local_history = get_history_path(get_local_storage_path(project.root))
    table.add_row("Local conversations", str(len(list_conversation_files(local_history))))

    pid = read_pid_file(get_pid_file())
    table.add_row("Daemon", f"running (PID: {pid})" if pid else "not running")
    console.print(table)


@app.command("list")
def list_conversations(path: Optional[str] = PathArgument) -> None:
    """List conversations in a project's local store."""
    project = _detect(path)
    if not project.has_local_storage:
        console.print("[yellow]Local storage not initialized. Run `claude-local init`.[/yellow]")
        raise typer.Exit(0)

    metadata = get_storage_manager().get_conversation_metadata(
        get_local_storage_path(project.root)
    )
    if not metadata:
        console.print("[yellow]No conversations found[/yellow]")
        return

    table = Table(title=f"Conversations in {project.root}")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")
    for item in metadata:
        table.add_row(
            item.id,
            item.title or "-",
            str(item.message_count),
            item.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def clean(
    path: Optional[str] = PathArgument,
    preserve_config: bool = typer.Option(
        False, "--preserve-config", help="Keep .claude/ and remove only the history"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a project's local conversation history."""
    project = _detect(path)
    target = get_local_storage_path(project.root)
    if not yes:
        typer.confirm(f"Delete local storage in {target}?", abort=True)

    get_storage_manager().clean_local_storage(project.root, preserve_config=preserve_config)
    console.print(f"[green]✓ Cleaned {target}[/green]")


@app.command()
def watch(
    path: Optional[str] = PathArgument,
    bidirectional: bool = typer.Option(
        False, "--bidirectional", help="Also mirror local changes to the global store"
    ),
) -> None:
    """Watch the global store and mirror one project's conversations."""
    project = _detect(path)
    storage_manager = get_storage_manager()
    watcher = HistoryWatcher(storage_manager)

    console.print(f"[bold green]Watching conversations for {project.root}[/bold green]")
    console.print("  Press Ctrl+C to stop")

    watcher.start_watching(
        storage_manager.global_path,
        project.root,
        bidirectional=bidirectional,
        ignore_initial=False,
    )
    try:
        while watcher.is_watching():
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping watcher...[/yellow]")
    finally:
        watcher.stop_watching()


@daemon_app.command("start")
def daemon_start(
    paths: Optional[list[str]] = typer.Option(
        None, "--paths", help="Directories to search for projects (repeatable)"
    ),
) -> None:
    """Start automatic background sync in the foreground."""
    pid_file = get_pid_file()
    pid = read_pid_file(pid_file)
    if pid is not None:
        console.print(f"[yellow]Daemon already running (PID: {pid})[/yellow]")
        console.print("  Use `claude-local daemon stop` to stop it")
        return

    search_paths = paths or settings.daemon_search_paths
    console.print("[blue]Starting automatic sync daemon...[/blue]")
    console.print("  Monitoring paths:")
    for search_path in search_paths:
        console.print(f"    - {search_path}")

    daemon = SyncDaemon(search_paths, storage_manager=get_storage_manager())
    console.print("[green]✓ Daemon started[/green]")
    console.print("  Press Ctrl+C or use `claude-local daemon stop` to stop")
    try:
        run_daemon(daemon, pid_file)
    except DaemonAlreadyRunningError as e:
        console.print(f"[yellow]{e}[/yellow]")
        raise typer.Exit(1)


@daemon_app.command("stop")
def daemon_stop() -> None:
    """Stop the running daemon."""
    pid_file = get_pid_file()
    pid = read_pid_file(pid_file)
    if pid is None:
        console.print("[yellow]Daemon is not running[/yellow]")
        return

    console.print(f"[blue]Stopping daemon (PID: {pid})...[/blue]")
    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as e:
        console.print(f"[bold red]Error:[/bold red] Could not signal PID {pid}: {e}")
        raise typer.Exit(1)
    pid_file.unlink(missing_ok=True)
    console.print("[green]✓ Daemon stopped[/green]")


@daemon_app.command("status")
def daemon_status() -> None:
    """Show whether the daemon is running."""
    pid = read_pid_file(get_pid_file())
    if pid is None:
        console.print("Daemon: [yellow]not running[/yellow]")
    else:
        console.print(f"Daemon: [green]running[/green] (PID: {pid})")


@config_app.command("show")
def config_show() -> None:
    """Show the current configuration."""
    config_manager = get_config_manager()
    config = config_manager.get_config()

    table = Table(title=f"Configuration ({config_manager.config_path})", show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value")
    table.add_row("mode", config.mode)
    table.add_row("global_storage_path", config_manager.get_global_storage_path())
    table.add_row("auto_sync", str(config.auto_sync))
    table.add_row("auto_gitignore", str(config.auto_gitignore))
    table.add_row("ignore_patterns", "\n".join(config.ignore_patterns) or "-")
    console.print(table)


@config_app.command("set-mode")
def config_set_mode(
    mode: str = typer.Argument(..., help="global, local or hybrid"),
) -> None:
    """Set the storage mode."""
    try:
        get_config_manager().set_mode(mode)
    except ValidationError:
        console.print(
            f"[bold red]Error:[/bold red] Invalid mode '{mode}' (choose global, local or hybrid)"
        )
        raise typer.Exit(1)
    console.print(f"[green]✓ Mode set to {mode}[/green]")


@config_app.command("set-global-path")
def config_set_global_path(path: str = typer.Argument(..., help="Global store directory")) -> None:
    """Set the global storage path."""
    resolved = str(Path(path).expanduser())
    get_config_manager().set_global_storage_path(resolved)
    console.print(f"[green]✓ Global storage path set to {resolved}[/green]")


@config_app.command("auto-sync")
def config_auto_sync(
    enabled: bool = typer.Option(True, "--enable/--disable", help="Enable or disable"),
) -> None:
    """Enable or disable automatic sync."""
    get_config_manager().set_auto_sync(enabled)
    console.print(f"[green]✓ Auto-sync {'enabled' if enabled else 'disabled'}[/green]")


@config_app.command("auto-gitignore")
def config_auto_gitignore(
    enabled: bool = typer.Option(True, "--enable/--disable", help="Enable or disable"),
) -> None:
    """Enable or disable automatic .gitignore updates on init."""
    get_config_manager().set_auto_gitignore(enabled)
    console.print(f"[green]✓ Auto-gitignore {'enabled' if enabled else 'disabled'}[/green]")


@config_app.command("add-pattern")
def config_add_pattern(pattern: str) -> None:
    """Add a .gitignore pattern."""
    get_config_manager().add_ignore_pattern(pattern)
    console.print(f"[green]✓ Added pattern {pattern}[/green]")


@config_app.command("remove-pattern")
def config_remove_pattern(pattern: str) -> None:
    """Remove a .gitignore pattern."""
    get_config_manager().remove_ignore_pattern(pattern)
    console.print(f"[green]✓ Removed pattern {pattern}[/green]")


@config_app.command("reset")
def config_reset() -> None:
    """Reset configuration to defaults."""
    get_config_manager().reset()
    console.print("[green]✓ Configuration reset[/green]")


@gitignore_app.command("add")
def gitignore_add(path: Optional[str] = PathArgument) -> None:
    """Add the recommended local storage entries to .gitignore."""
    project = _detect(path)
    added = update_gitignore(project.root, get_recommended_gitignore_entries())
    if added:
        console.print(f"[green]✓ Added {len(added)} entries to .gitignore[/green]")
    else:
        console.print("[yellow].gitignore already up to date[/yellow]")


@gitignore_app.command("remove")
def gitignore_remove(path: Optional[str] = PathArgument) -> None:
    """Remove the local storage entries from .gitignore."""
    project = _detect(path)
    remove_from_gitignore(project.root, get_recommended_gitignore_entries())
    console.print("[green]✓ .gitignore entries removed[/green]")


if __name__ == "__main__":
    app()
