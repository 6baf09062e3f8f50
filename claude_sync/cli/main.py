"""
Main CLI entry point for claude-sync.
"""

from collections.abc import Callable
from functools import wraps
from pathlib import Path

import typer

from claude_sync.config import ConfigManager
from claude_sync.daemon import build_daemon, build_services
from claude_sync.errors import ClaudeSyncError, ConfigError
from claude_sync.git.manager import GitManager
from claude_sync.lock import GitLock
from claude_sync.paths import get_sync_paths
from claude_sync.utils.logging import configure_logging, get_logger
from claude_sync.utils.rich_console import get_console, print_error, print_panel, print_table

console = get_console()
logger = get_logger(__name__)

app = typer.Typer(
    help="claude-sync - Keep CLAUDE.md rules, skills and agents in sync across machines.",
    no_args_is_help=True,
)


@app.callback()
def main():
    """
    claude-sync - shared Claude rules through a git repository
    """
    configure_logging(log_file=get_sync_paths().log_file)


def handle_errors(func: Callable) -> Callable:
    """Render claude-sync errors with their suggestion and exit with status 1."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ClaudeSyncError as error:
            logger.debug(f"{func.__name__} failed: {error!r}")
            print_error(error)
            raise typer.Exit(1) from error

    return wrapper


@app.command()
@handle_errors
def init(
    repo: str = typer.Option(..., "--repo", help="URL of the shared git repository"),
    auth: str = typer.Option("ssh", "--auth", help="Authentication method: ssh or https"),
    branch: str = typer.Option("main", "--branch", help="Branch to sync"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration"),
):
    """Clone the shared repository and write the configuration."""
    paths = get_sync_paths()
    manager = ConfigManager(paths)
    if manager.exists() and not force:
        raise ConfigError(
            f"Configuration already exists at {manager.config_path}",
            suggestion='Use --force to overwrite it, or "claude-sync reset" to start over.',
        )
    if auth not in ("ssh", "https"):
        raise ConfigError(f"Unknown authentication method: {auth}", suggestion="Use --auth ssh or --auth https.")

    paths.ensure_dirs()
    git = GitManager(paths.repo_dir, branch=branch)
    if git.is_initialized():
        console.print(f"Using existing repository clone at {paths.repo_dir}")
    else:
        git.clone(repo)
        if not git.log():
            console.print("Repository is empty, creating the initial layout...")
            git.init_repository()
            git.push()

    manager.create(repo_url=repo, auth_method=auth, branch=branch)
    print_panel(
        f"Repository: {repo}\nClone: {paths.repo_dir}\nConfig: {manager.config_path}\n\n"
        "Next: claude-sync add <path-to-your-project>",
        title="claude-sync initialized",
        style="green",
    )


@app.command()
@handle_errors
def add(path: Path = typer.Argument(..., help="Workspace directory to sync")):
    """Register a workspace directory."""
    services = build_services()
    workspace = services.config.add_workspace(path)
    console.print(f"✓ Added workspace: {workspace}", style="green")

    result = services.syncer.sync_workspace(workspace)
    if result.success:
        console.print(f"✓ {result.message}", style="green")
    else:
        console.print(f"⚠ {result.message}", style="yellow")


@app.command()
@handle_errors
def remove(path: Path = typer.Argument(..., help="Workspace directory to stop syncing")):
    """Unregister a workspace directory."""
    manager = ConfigManager(get_sync_paths())
    workspace = manager.remove_workspace(path)
    console.print(f"✓ Removed workspace: {workspace}", style="green")


@app.command("list")
@handle_errors
def list_workspaces():
    """List registered workspaces."""
    manager = ConfigManager(get_sync_paths())
    workspaces = manager.list_workspaces()
    if not workspaces:
        console.print("No workspaces registered. Use: claude-sync add <path>")
        return
    rows = [[w.name, str(w.path), w.added_at.strftime("%Y-%m-%d %H:%M")] for w in workspaces]
    print_table(["Name", "Path", "Added"], rows, title="Workspaces")


@app.command()
@handle_errors
def sync():
    """Regenerate every workspace and push shared rules, skills and agents."""
    services = build_services()
    results = services.syncer.sync_all()
    rows = [[r.workspace, "✓" if r.success else "✗", r.message] for r in results]
    print_table(["Workspace", "Status", "Message"], rows, title="Sync results")

    for label, bulk in (
        ("Skills", services.syncer.sync_all_global_skills()),
        ("Agents", services.syncer.sync_all_global_agents()),
    ):
        console.print(f"{label}: {bulk.message}", style="green" if bulk.success else "yellow")
        for item in bulk.details:
            if item.status == "failed":
                console.print(f"  ✗ {item.name}: {item.message}", style="red")

    if not all(r.success for r in results):
        raise typer.Exit(1)


@app.command()
@handle_errors
def pull():
    """Pull the shared repository and update every workspace and global root."""
    services = build_services()
    result = services.syncer.pull_and_propagate()
    rows = [[r.workspace, "✓" if r.success else "✗", r.message] for r in result.workspaces]
    if rows:
        print_table(["Workspace", "Status", "Message"], rows, title="Shared rules")
    console.print(f"Skill files updated: {len(result.skills_written)}")
    console.print(f"Agents updated: {len(result.agents_written)}")
    for error in result.errors:
        console.print(f"✗ {error}", style="red")
    if not result.success:
        raise typer.Exit(1)


@app.command()
@handle_errors
def watch():  # pragma: no cover
    """Watch workspaces and global roots in the foreground. Press Ctrl+C to stop."""
    build_daemon(pull_on_start=False).run()


@app.command()
@handle_errors
def daemon():  # pragma: no cover
    """Pull, then watch until SIGINT or SIGTERM. Meant to be run by a supervisor."""
    build_daemon().run()


@app.command()
@handle_errors
def status():
    """Show configuration, repository state and lock holder."""
    services = build_services()
    config = services.config.config
    rows = [
        ["Repository", config.repo_url or "-"],
        ["Branch", config.branch],
        ["Workspaces", str(len(config.workspaces))],
        ["Last sync", config.last_sync.isoformat() if config.last_sync else "never"],
    ]

    if services.git.is_initialized():
        state = services.gateway.get_status()
        last = services.gateway.get_last_commit()
        rows.append(["Clone branch", state.branch])
        rows.append(["Last commit", f"{last.hash[:7]} {last.message}" if last else "-"])
        rows.append(["Pending changes", "yes" if services.gateway.has_pending_changes() else "no"])
    else:
        rows.append(["Clone", f"missing ({services.paths.repo_dir})"])

    marker = services.lock.read_marker()
    if marker is not None:
        rows.append(["Lock", f"pid {marker.pid} on {marker.hostname} ({marker.age:.0f}s)"])
    elif services.lock.lock_file.exists():
        rows.append(["Lock", f"unreadable marker at {services.lock.lock_file}"])
    else:
        rows.append(["Lock", "free"])

    print_table(["Item", "Value"], rows, title="claude-sync status")


@app.command()
@handle_errors
def reset(yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")):
    """Delete the configuration and the repository clone."""
    paths = get_sync_paths()
    if not yes and not typer.confirm(f"Delete {paths.config_file} and {paths.repo_dir}?"):
        raise typer.Abort()

    lock = GitLock(paths.lock_file)
    with lock.locked():
        GitManager(paths.repo_dir).reset()
    ConfigManager(paths).reset()
    console.print("✓ claude-sync has been reset", style="green")
