"""Git operations for the shared repository clone."""
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from ..errors import GitCommandError
from ..utils.logging import LogContext, get_logger, log_execution

logger = get_logger(__name__)

README_TEMPLATE = """# Claude Sync Repository

This repository contains:
- Global CLAUDE.md rules synchronized across all projects
- Global Skills from ~/.claude/skills/
- Global Agents from ~/.claude/agents/
"""


class RepositoryStatus(BaseModel):
    """Parsed ``git status --porcelain`` output."""

    branch: str = "unknown"
    staged: list[str] = Field(default_factory=list)
    unstaged: list[str] = Field(default_factory=list)
    untracked: list[str] = Field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not (self.staged or self.unstaged or self.untracked)


class CommitInfo(BaseModel):
    hash: str
    date: datetime
    message: str
    author_name: str


class GitManager:
    """Thin wrapper over the ``git`` executable for one working copy.

    Each method is one git primitive. Locking and retries are layered on top by
    ``RepositoryGateway``.
    """

    def __init__(self, repo_path: str | Path, remote: str = "origin", branch: str = "main"):
        """Initialize GitManager with a repository path."""
        self.repo_path = Path(repo_path).resolve()
        self.remote = remote
        self.branch = branch

    def _run_git_command(self, command: list[str], cwd: Path | None = None) -> tuple[str, str]:
        """Run a git command and return stdout and stderr.

        Raises:
            GitCommandError: If git exits with a non-zero status
        """
        with LogContext(logger, f"git {' '.join(command)}"):
            try:
                result = subprocess.run(
                    ["git"] + command,
                    cwd=cwd or self.repo_path,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    check=True,
                )
            except subprocess.CalledProcessError as e:
                raise GitCommandError(
                    command,
                    e.returncode,
                    (e.stderr or "").strip(),
                    (e.stdout or "").strip(),
                ) from e
            stdout, stderr = result.stdout.rstrip(), result.stderr.strip()
            if stdout:
                logger.debug(f"Command output: {stdout}")
            if stderr:
                logger.debug(f"Command stderr: {stderr}")
            return stdout, stderr

    def is_initialized(self) -> bool:
        """Check if the path is a git working copy."""
        if not self.repo_path.is_dir():
            return False
        try:
            self._run_git_command(["rev-parse", "--is-inside-work-tree"])
            return True
        except GitCommandError:
            return False

    @log_execution()
    def clone(self, url: str) -> None:
        """Clone ``url`` into the repository path."""
        self.repo_path.parent.mkdir(parents=True, exist_ok=True)
        self._run_git_command(["clone", url, str(self.repo_path)], cwd=self.repo_path.parent)
        logger.info(f"Cloned {url} into {self.repo_path}")

    @log_execution()
    def init_repository(self, url: str | None = None) -> None:
        """Initialize an empty clone with the standard layout and one commit."""
        self.repo_path.mkdir(parents=True, exist_ok=True)
        self._run_git_command(["init"])
        self._run_git_command(["symbolic-ref", "HEAD", f"refs/heads/{self.branch}"])
        readme = self.repo_path / "README.md"
        if not readme.exists():
            readme.write_text(README_TEMPLATE, encoding="utf-8")
        for directory in ("skills", "agents"):
            (self.repo_path / directory).mkdir(exist_ok=True)
            (self.repo_path / directory / ".gitkeep").touch()
        if url and self.remote not in self._run_git_command(["remote"])[0].split():
            self._run_git_command(["remote", "add", self.remote, url])
        self._run_git_command(["add", "-A"])
        self._run_git_command(["commit", "-m", "Initial commit"])
        logger.info(f"Initialized git repository at {self.repo_path}")

    def add(self, path: str) -> None:
        self._run_git_command(["add", "--", path])

    def remove(self, path: str) -> None:
        """Stage the deletion of ``path``, whether or not it is still on disk."""
        self._run_git_command(["rm", "-r", "--cached", "--ignore-unmatch", "--quiet", "--", path])

    def add_all(self) -> None:
        self._run_git_command(["add", "-A"])

    def staged_changes(self, path: str | None = None) -> list[str]:
        """Paths whose staged content differs from HEAD."""
        command = ["diff", "--cached", "--name-only"]
        if path:
            command += ["--", path]
        stdout, _ = self._run_git_command(command)
        return [line for line in stdout.splitlines() if line]

    def commit(self, message: str) -> str:
        stdout, _ = self._run_git_command(["commit", "-m", message])
        logger.debug(f"Committed: {message}")
        return stdout

    def push(self) -> str:
        _, stderr = self._run_git_command(["push", self.remote, self.branch])
        return stderr

    def pull(self) -> str:
        stdout, _ = self._run_git_command(["pull", "--no-rebase", "--no-edit", self.remote, self.branch])
        return stdout

    def pull_rebase(self) -> str:
        stdout, _ = self._run_git_command(["pull", "--rebase", "--autostash", self.remote, self.branch])
        return stdout

    def stash_push(self, message: str) -> bool:
        """Stash tracked and untracked changes. Returns False if nothing was stashed."""
        stdout, _ = self._run_git_command(["stash", "push", "--include-untracked", "-m", message])
        return "No local changes to save" not in stdout

    def stash_pop(self) -> None:
        self._run_git_command(["stash", "pop"])

    def get_current_branch(self) -> str:
        """Get the name of the current branch."""
        try:
            branch_output, _ = self._run_git_command(["rev-parse", "--abbrev-ref", "HEAD"])
            return branch_output.strip()
        except GitCommandError:
            logger.debug("Could not determine current branch")
            return "unknown"

    def status(self) -> RepositoryStatus:
        """Get the current state of the repository."""
        branch = self.get_current_branch()
        status_output, _ = self._run_git_command(["status", "--porcelain"])
        state = RepositoryStatus(branch=branch)

        for line in status_output.split("\n"):
            if not line:
                continue
            code = line[:2]
            path = line[3:].strip()

            if code.startswith("??"):
                state.untracked.append(path)
            else:
                if code[0] != " ":
                    state.staged.append(path)
                if code[1] != " ":
                    state.unstaged.append(path)

        logger.debug(
            f"Repository state - Branch: {branch}, "
            f"Staged: {len(state.staged)}, "
            f"Unstaged: {len(state.unstaged)}, "
            f"Untracked: {len(state.untracked)}"
        )
        return state

    def log(self, max_count: int = 1) -> list[CommitInfo]:
        """Most recent commits, newest first."""
        separator = "\x1f"
        try:
            stdout, _ = self._run_git_command(
                ["log", f"--max-count={max_count}", f"--format=%H{separator}%aI{separator}%s{separator}%an"]
            )
        except GitCommandError:
            # No commits yet
            return []
        commits = []
        for line in stdout.splitlines():
            commit_hash, date, message, author = line.split(separator, 3)
            commits.append(
                CommitInfo(hash=commit_hash, date=datetime.fromisoformat(date), message=message, author_name=author)
            )
        return commits

    def unpushed_count(self) -> int:
        """Number of local commits not on the remote branch, 0 if unknown."""
        try:
            stdout, _ = self._run_git_command(
                ["rev-list", "--count", f"{self.remote}/{self.branch}..HEAD"]
            )
            return int(stdout or 0)
        except (GitCommandError, ValueError):
            return 0

    def reset(self) -> None:
        """Delete the working copy."""
        if self.repo_path.exists():
            shutil.rmtree(self.repo_path)
            logger.info(f"Removed repository clone {self.repo_path}")
