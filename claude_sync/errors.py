"""
Error Taxonomy
==============

Every failure the sync engine reports derives from ``ClaudeSyncError``. Each
error may carry a ``suggestion`` naming the exact recovery action, which the
CLI renders below the message instead of a bare traceback.
"""

import re
from pathlib import Path


class ClaudeSyncError(Exception):
    """Base exception for claude-sync errors."""

    def __init__(self, message: str, suggestion: str | None = None):
        super().__init__(message)
        self.suggestion = suggestion


class ConfigError(ClaudeSyncError):
    """Configuration is missing or cannot be parsed."""


class WorkspaceError(ClaudeSyncError):
    """A workspace could not be registered or unregistered."""


class NotFoundError(ClaudeSyncError):
    """A workspace directory, manifest or canonical file does not exist."""


class LockTimeoutError(ClaudeSyncError):
    """The repository lock could not be acquired within the retry budget."""

    def __init__(self, lock_file: Path, waited: float):
        self.lock_file = Path(lock_file)
        super().__init__(
            f"Could not acquire git lock after {waited:.0f} seconds. "
            f"Another claude-sync process may be stuck. "
            f"Delete {self.lock_file} manually if this persists.",
            suggestion="\n".join([
                "The git lock file may be stale from a previous interrupted operation.",
                f"  Delete it manually: rm {self.lock_file}",
                "  Then retry your command.",
            ]),
        )


class InvariantViolationError(ClaudeSyncError):
    """A programming contract was broken. Never retried."""


class GitCommandError(ClaudeSyncError):
    """A git command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, stderr: str = "", stdout: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        self.stdout = stdout
        detail = stderr or stdout or "no output"
        super().__init__(f"git {' '.join(command)} failed ({returncode}): {detail}")


class TransientNetworkError(ClaudeSyncError):
    """A network operation kept failing with a transient error."""

    def __init__(self, description: str, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{description} failed after {attempts} attempts: {last_error}",
            suggestion="Check your network connection, then run \"claude-sync pull\" and \"claude-sync sync\" again.",
        )


class MergeConflictError(ClaudeSyncError):
    """Pulling produced conflicts that require manual resolution."""

    def __init__(self, repo_path: Path, detail: str = ""):
        self.repo_path = Path(repo_path)
        message = f"Merge conflict while pulling into {self.repo_path}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            message,
            suggestion="\n".join([
                "There are merge conflicts in the local repository.",
                f"  1. cd {self.repo_path}",
                "  2. Resolve conflicts manually",
                "  3. git add . && git commit",
                "  4. Retry your claude-sync command",
            ]),
        )


class StashRecoveryError(ClaudeSyncError):
    """Re-applying the automatic stash failed. The stash is kept."""

    def __init__(self, repo_path: Path, detail: str = ""):
        self.repo_path = Path(repo_path)
        message = f"git stash pop failed in {self.repo_path}; your changes are safe in the stash"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            message,
            suggestion="\n".join([
                "A git stash pop failed. Your changes are safe in the stash.",
                f"  1. cd {self.repo_path}",
                "  2. git status            (resolve any conflicted files)",
                "  3. git stash list        (find the claude-sync autostash entry)",
                "  4. git stash pop         (re-apply it once the tree is clean)",
                "  5. Run claude-sync pull, then claude-sync sync again",
            ]),
        )


ERROR_SUGGESTIONS: list[tuple[re.Pattern, str]] = [
    (
        re.compile(r"Configuration not found", re.I),
        'Run "claude-sync init" to set up your configuration.',
    ),
    (
        re.compile(r"SSH authentication failed|Permission denied \(publickey\)", re.I),
        "\n".join([
            "Check your SSH key setup:",
            "  1. Verify key exists: ls ~/.ssh/id_*",
            "  2. Test connection: ssh -T git@github.com",
            "  3. Add key to agent: ssh-add ~/.ssh/id_ed25519",
        ]),
    ),
    (
        re.compile(r"Could not resolve host|ENOTFOUND", re.I),
        "Check your internet connection. GitHub may also be experiencing an outage (https://githubstatus.com).",
    ),
    (
        re.compile(r"ETIMEDOUT|Connection timed out|Connection refused|ECONNREFUSED", re.I),
        "Connection timed out. Check your network, firewall, or proxy settings.",
    ),
    (
        re.compile(r"Repository not found|404", re.I),
        "\n".join([
            "The repository was not found. Possible causes:",
            "  - The repository does not exist (check owner/repo spelling)",
            "  - You do not have access (check permissions)",
            '  - The repository is private and your token lacks "repo" scope',
        ]),
    ),
    (
        re.compile(r"failed to push|rejected.*non-fast-forward", re.I),
        "\n".join([
            "Push was rejected. This usually means the remote has newer commits.",
            "  Try: claude-sync pull   (to get latest changes first)",
            "  Then: claude-sync sync  (to push again)",
        ]),
    ),
    (
        re.compile(r"Workspace path does not exist", re.I),
        "The specified directory does not exist. Check the path and try again.",
    ),
    (
        re.compile(r"Workspace already registered", re.I),
        'This workspace is already in your sync list. Use "claude-sync list" to see all workspaces.',
    ),
    (
        re.compile(r"Workspace not found", re.I),
        'This workspace is not in your sync list. Use "claude-sync list" to see registered workspaces.',
    ),
    (
        re.compile(r"lock.*stuck|Could not acquire git lock", re.I),
        "\n".join([
            "The git lock file may be stale from a previous interrupted operation.",
            "  Delete it manually: rm ~/.config/claude-sync/git.lock",
            "  Then retry your command.",
        ]),
    ),
    (
        re.compile(r"CONFLICT|merge conflict", re.I),
        "\n".join([
            "There are merge conflicts in the local repository.",
            "  1. cd ~/.config/claude-sync/repo",
            "  2. Resolve conflicts manually",
            "  3. git add . && git commit",
            "  4. Retry your claude-sync command",
        ]),
    ),
    (
        re.compile(r"stash pop failed", re.I),
        "A git stash pop failed. Your changes are safe in the stash. See the error details above for recovery steps.",
    ),
    (
        re.compile(r"No workspaces registered", re.I),
        "Add a workspace first: claude-sync add <path-to-your-project>",
    ),
]


def enrich_error(error: BaseException | str) -> tuple[str, str | None]:
    """Return the message of an error together with a recovery suggestion.

    Typed errors carrying their own suggestion win; otherwise the message is
    matched against ``ERROR_SUGGESTIONS``.

    Args:
        error: The exception (or plain message) to describe

    Returns:
        tuple[str, str | None]: The message and the suggestion, if any
    """
    message = str(error)
    suggestion = getattr(error, "suggestion", None)
    if suggestion:
        return message, suggestion

    for pattern, hint in ERROR_SUGGESTIONS:
        if pattern.search(message):
            return message, hint

    return message, None
