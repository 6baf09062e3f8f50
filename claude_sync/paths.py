"""
Path Management
===============

Every location claude-sync reads or writes is derived from a single home
directory, so tests and ``CLAUDE_SYNC_HOME`` can relocate the whole layout.
"""

import os
import sys
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, ConfigDict, Field

from claude_sync.environment import get_settings

SKILL_MANIFEST = "skill.md"
AGENT_SUFFIX = ".md"
CANONICAL_RULES_FILE = "CLAUDE.md"
REPO_SKILLS_DIR = "skills"
REPO_AGENTS_DIR = "agents"

CASE_INSENSITIVE_PLATFORMS = ("win32", "darwin")


def _normalize(path: str | Path) -> str:
    normalized = os.path.normpath(os.path.abspath(os.fspath(path)))
    if sys.platform in CASE_INSENSITIVE_PLATFORMS:
        normalized = normalized.lower()
    return normalized


def path_starts_with(path: str | Path, prefix: str | Path) -> bool:
    """Check whether ``path`` equals ``prefix`` or lies below it.

    The comparison works on whole path segments, so ``/home/u/.claude/skills-old``
    is not inside ``/home/u/.claude/skills``. It ignores case on platforms whose
    default filesystem is case-insensitive.

    Args:
        path: Path to test
        prefix: Root directory

    Returns:
        bool: True if ``path`` is the root itself or a descendant of it
    """
    target = _normalize(path)
    root = _normalize(prefix)
    if target == root:
        return True
    if not root.endswith(os.sep):
        root = root + os.sep
    return target.startswith(root)


def same_path(first: str | Path, second: str | Path) -> bool:
    """Check whether two paths name the same location, without following symlinks."""
    return _normalize(first) == _normalize(second)


def relative_to_root(path: str | Path, root: str | Path) -> PurePosixPath | None:
    """Return ``path`` relative to ``root`` with ``/`` separators.

    Like ``path_starts_with`` this works on the absolute, normalized form and
    never resolves symlinks, so a skill directory linked in from elsewhere
    still maps below the root. Returns None if ``path`` is outside ``root``.
    """
    if not path_starts_with(path, root):
        return None
    target = os.path.normpath(os.path.abspath(os.fspath(path)))
    base = os.path.normpath(os.path.abspath(os.fspath(root)))
    remainder = target[len(base):].lstrip(os.sep)
    return PurePosixPath(*remainder.split(os.sep)) if remainder else PurePosixPath()


class SyncPaths(BaseModel):
    """Locations used by claude-sync, all derived from ``home``."""

    model_config = ConfigDict(frozen=True)

    home: Path = Field(default_factory=Path.home)

    @property
    def config_dir(self) -> Path:
        return self.home / ".config" / "claude-sync"

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def repo_dir(self) -> Path:
        return self.config_dir / "repo"

    @property
    def lock_file(self) -> Path:
        return self.config_dir / "git.lock"

    @property
    def log_file(self) -> Path:
        return self.config_dir / "claude-sync.log"

    @property
    def claude_dir(self) -> Path:
        return self.home / ".claude"

    @property
    def global_skills_dir(self) -> Path:
        return self.claude_dir / "skills"

    @property
    def global_agents_dir(self) -> Path:
        return self.claude_dir / "agents"

    def ensure_dirs(self) -> None:
        """Ensure the config directory and both global roots exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.global_skills_dir.mkdir(parents=True, exist_ok=True)
        self.global_agents_dir.mkdir(parents=True, exist_ok=True)


def get_sync_paths(home: Path | None = None) -> SyncPaths:
    """Build the path layout from ``home`` or the configured home directory."""
    return SyncPaths(home=Path(home or get_settings().home).expanduser())
