"""Command-line entry point for Grove."""

from __future__ import annotations

import json
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from . import __version__, git, paths, ports, worktrees
from . import log as grove_log
from .errors import GroveError, NotFoundError
from .io import confirm, die, say
from .models import SCRIPT_PHASE_VALUES, Workspace
from .runtime import Runtime, bootstrap
from .scripts import load_scripts_config, save_scripts_config


class LogLevelChoice(str, Enum):
    debug = "debug"
    info = "info"
    success = "success"
    warning = "warning"
    error = "error"


class PhaseChoice(str, Enum):
    setup = "setup"
    run = "run"
    archive = "archive"


app = typer.Typer(help="Parallel git worktrees with private port ranges.", no_args_is_help=True)
repo_app = typer.Typer(help="Manage registered repositories.", no_args_is_help=True)
app.add_typer(repo_app, name="repo")


@contextmanager
def _handled() -> Iterator[None]:
    try:
        yield
    except GroveError as exc:
        message = str(exc)
        if exc.recovery_hint:
            message = f"{message}\nhint: {exc.recovery_hint}"
        die(message)


def _runtime() -> Runtime:
    with _handled():
        return bootstrap()


def _version_callback(value: bool) -> None:
    if value:
        say(__version__)
        raise typer.Exit()


@app.callback()
def main(
    log_level: Optional[LogLevelChoice] = typer.Option(
        None, "--log-level", help="Minimum log level to display."
    ),
    no_color: bool = typer.Option(False, "--no-color", help="Disable coloured output."),
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True
    ),
) -> None:
    if log_level is not None:
        grove_log.set_level(log_level.value)
    if no_color:
        grove_log.set_no_color(True)


def _port_span(port_base: int) -> str:
    owned = ports.port_range(port_base)
    return f"{owned[0]}-{owned[-1]}"


def _workspace_table(workspaces: list[Workspace]) -> Table:
    table = Table(box=box.SIMPLE)
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Branch")
    table.add_column("Ports")
    table.add_column("Status")
    table.add_column("Path")
    for ws in workspaces:
        name = f"{ws.name} (main)" if ws.is_main_worktree else ws.name
        table.add_row(
            ws.id,
            name,
            ws.branch,
            _port_span(ws.port_base),
            ws.status,
            ws.worktree_path,
        )
    return table


@app.command()
def create(
    repo: Path = typer.Argument(..., help="Repository to branch from."),
    name: str = typer.Argument(..., help="Workspace name."),
    branch: Optional[str] = typer.Option(None, "--branch", "-b", help="New branch name."),
    base: Optional[str] = typer.Option(None, "--base", help="Start point for the branch."),
) -> None:
    """Create a workspace in a new worktree."""
    runtime = _runtime()
    with _handled():
        workspace = runtime.registry.create_workspace(repo, name, branch, base)
    grove_log.success(f"Created {workspace.name} on port {workspace.port_base}")
    say(workspace.id)


@app.command("create-main")
def create_main(
    repo: Path = typer.Argument(..., help="Repository to register."),
    name: str = typer.Argument("main", help="Workspace name."),
) -> None:
    """Register the repository's own working directory as a workspace."""
    runtime = _runtime()
    with _handled():
        workspace = runtime.registry.create_workspace_for_main(repo, name)
    grove_log.success(f"Registered {workspace.worktree_path} on port {workspace.port_base}")
    say(workspace.id)


@app.command("list")
def list_cmd(
    include_archived: bool = typer.Option(False, "--all", "-a", help="Include archived."),
    as_json: bool = typer.Option(False, "--json", help="Print JSON."),
) -> None:
    """List workspaces."""
    runtime = _runtime()
    workspaces = [
        ws
        for ws in runtime.registry.list_workspaces()
        if include_archived or ws.status == "Active"
    ]
    if as_json:
        say(json.dumps([ws.model_dump(mode="json") for ws in workspaces], indent=2))
        return
    if not workspaces:
        say("No workspaces.")
        return
    Console(soft_wrap=True).print(_workspace_table(workspaces))


@app.command()
def delete(
    workspace_id: str = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Delete a workspace, its worktree, and its branch."""
    runtime = _runtime()
    with _handled():
        workspace = runtime.registry.get_workspace(workspace_id)
        if not yes and not confirm(f"Delete workspace {workspace.name!r}?"):
            say("Aborted.")
            raise typer.Exit(code=1)
        runtime.registry.delete_workspace(workspace_id)
    grove_log.success(f"Deleted {workspace.name}")


@app.command()
def archive(workspace_id: str = typer.Argument(...)) -> None:
    """Mark a workspace archived."""
    runtime = _runtime()
    with _handled():
        workspace = runtime.registry.archive_workspace(workspace_id)
    say(f"{workspace.name}: {workspace.status}")


@app.command()
def restore(workspace_id: str = typer.Argument(...)) -> None:
    """Mark an archived workspace active again."""
    runtime = _runtime()
    with _handled():
        workspace = runtime.registry.restore_workspace(workspace_id)
    say(f"{workspace.name}: {workspace.status}")


@app.command()
def env(workspace_id: str = typer.Argument(...)) -> None:
    """Print a workspace's environment as shell assignments."""
    runtime = _runtime()
    with _handled():
        env_vars = runtime.registry.get_workspace_env(workspace_id)
    for key in sorted(env_vars):
        say(f"{key}={env_vars[key]}")


@app.command()
def run(
    workspace_id: str = typer.Argument(...),
    script: Optional[str] = typer.Argument(None, help="Script name; default: whole phase."),
    phase: PhaseChoice = typer.Option(PhaseChoice.run, "--phase", "-p"),
) -> None:
    """Start scripts from the workspace's grove.json in the background."""
    runtime = _runtime()
    with _handled():
        workspace = runtime.registry.get_workspace(workspace_id)
        if script is None:
            started = runtime.registry.run_phase(workspace_id, phase.value)
        else:
            config = load_scripts_config(Path(workspace.worktree_path))
            matches = [
                item
                for phase_name in SCRIPT_PHASE_VALUES
                for item in config.scripts_for(phase_name)
                if item.name == script
            ]
            if not matches:
                raise NotFoundError(f"script {script!r} not found in grove.json")
            started = [runtime.registry.run_script(workspace_id, matches[0])]
    if not started:
        say(f"No {phase.value} scripts configured.")
        return
    for process in started:
        say(f"{process.script_name}: pid {process.pid}")


@app.command("worktrees")
def worktrees_cmd(repo: Path = typer.Argument(...)) -> None:
    """List git worktrees of a repository."""
    with _handled():
        infos = worktrees.list_worktrees(repo.expanduser().resolve())
    for info in infos:
        marker = "*" if info.is_main else " "
        say(f"{marker} {info.name}\t{info.branch or '-'}\t{info.path}")


@app.command()
def branches(repo: Path = typer.Argument(...)) -> None:
    """List local and remote-tracking branches of a repository."""
    repo_root = repo.expanduser().resolve()
    with _handled():
        worktrees.validate_repo(repo_root)
        default = git.git_default_branch(repo_root)
        infos = git.git_list_branches(repo_root)
    for info in infos:
        marker = "*" if info.is_head else " "
        suffix = " (default)" if info.name == default else ""
        kind = "remote" if info.is_remote else "local"
        say(f"{marker} {info.name}\t{kind}{suffix}")


@app.command()
def notes(
    workspace_id: str = typer.Argument(...),
    text: Optional[str] = typer.Argument(None, help="Replace the notes with this text."),
) -> None:
    """Show or replace a workspace's notes."""
    runtime = _runtime()
    with _handled():
        if text is None:
            runtime.registry.get_workspace(workspace_id)
            say(runtime.registry.load_workspace_notes(workspace_id))
            return
        runtime.registry.save_workspace_notes(workspace_id, text)
    grove_log.success("Notes saved")


@app.command("scripts")
def scripts_cmd(
    workspace_id: str = typer.Argument(...),
    init: bool = typer.Option(False, "--init", help="Write an empty grove.json if missing."),
) -> None:
    """Show the scripts a workspace's grove.json declares."""
    runtime = _runtime()
    with _handled():
        worktree_path = Path(runtime.registry.get_workspace(workspace_id).worktree_path)
        config = load_scripts_config(worktree_path)
        if init and not paths.scripts_config_path(worktree_path).exists():
            grove_log.success(f"Wrote {save_scripts_config(worktree_path, config)}")
    for phase_name in SCRIPT_PHASE_VALUES:
        for item in config.scripts_for(phase_name):
            say(f"{phase_name}\t{item.name}\t{' '.join([item.command, *item.args])}")


@repo_app.command("add")
def repo_add(path: Path = typer.Argument(...)) -> None:
    """Register a repository."""
    runtime = _runtime()
    with _handled():
        entry = runtime.repos.add_repo(path)
    say(f"Added {entry.name} ({entry.path})")


@repo_app.command("remove")
def repo_remove(path: Path = typer.Argument(...)) -> None:
    """Forget a repository."""
    runtime = _runtime()
    with _handled():
        removed = runtime.repos.remove_repo(path)
    say("Removed." if removed else "Not registered.")


@repo_app.command("list")
def repo_list() -> None:
    """List registered repositories."""
    runtime = _runtime()
    entries = runtime.repos.list_repos()
    if not entries:
        say("No repositories.")
        return
    for entry in entries:
        say(f"{entry.name}\t{entry.path}")


if __name__ == "__main__":  # pragma: no cover
    app()
