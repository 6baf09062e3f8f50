"""
Test Configuration and Fixtures
===============================

Shared fixtures for the claude-sync test suite. Everything lives under
``tmp_path``: a fake home directory, two workspaces and, for the end-to-end
tests, a bare git remote with a working clone created by the real ``git``.
"""

import shutil
import subprocess
from collections.abc import Generator
from pathlib import Path

import pytest

from claude_sync.config import ConfigManager
from claude_sync.git.gateway import RepositoryGateway
from claude_sync.git.manager import GitManager
from claude_sync.git.retry import RetryPolicy
from claude_sync.lock import GitLock
from claude_sync.paths import SyncPaths
from claude_sync.syncer import Syncer


def _run_git(*args: str, cwd: Path) -> str:
    """Run git directly, bypassing the code under test."""
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def _remote_file(remote: Path, name: str) -> str | None:
    try:
        return _run_git("show", f"main:{name}", cwd=remote)
    except subprocess.CalledProcessError:
        return None


@pytest.fixture
def home(tmp_path: Path) -> Path:
    home_dir = tmp_path / "home"
    home_dir.mkdir()
    return home_dir


@pytest.fixture
def paths(home: Path) -> SyncPaths:
    sync_paths = SyncPaths(home=home)
    sync_paths.ensure_dirs()
    return sync_paths


@pytest.fixture
def config_manager(paths: SyncPaths) -> ConfigManager:
    manager = ConfigManager(paths)
    manager.create(repo_url="git@example.com:me/claude-rules.git")
    return manager


@pytest.fixture
def workspaces(tmp_path: Path, config_manager: ConfigManager) -> list[Path]:
    """Two registered, empty workspaces."""
    roots = []
    for name in ("w1", "w2"):
        root = tmp_path / "projects" / name
        root.mkdir(parents=True)
        roots.append(config_manager.add_workspace(root))
    return roots


@pytest.fixture
def fast_lock(paths: SyncPaths) -> GitLock:
    return GitLock(paths.lock_file, retry_interval=0.01, max_retries=50)


@pytest.fixture
def git_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate git from the user's configuration and give it an identity."""
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", "/dev/null")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Test User")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Test User")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")


@pytest.fixture
def remote(tmp_path: Path, git_env: None) -> Path:
    """A bare repository seeded with the standard layout on ``main``."""
    bare = tmp_path / "remote.git"
    bare.mkdir()
    _run_git("init", "--bare", cwd=bare)
    _run_git("symbolic-ref", "HEAD", "refs/heads/main", cwd=bare)

    seed = GitManager(tmp_path / "seed")
    seed.init_repository(url=str(bare))
    seed.push()
    return bare


@pytest.fixture
def clone(paths: SyncPaths, remote: Path) -> GitManager:
    git = GitManager(paths.repo_dir)
    git.clone(str(remote))
    return git


@pytest.fixture
def gateway(clone: GitManager, fast_lock: GitLock, config_manager: ConfigManager) -> RepositoryGateway:
    return RepositoryGateway(
        clone,
        fast_lock,
        config_manager.sync_rules,
        retry_policy=RetryPolicy(max_retries=2, base_delay=0.0),
        sleep=lambda _: None,
    )


@pytest.fixture
def syncer(config_manager: ConfigManager, paths: SyncPaths, gateway: RepositoryGateway) -> Syncer:
    return Syncer(config_manager, paths, gateway)


@pytest.fixture
def second_clone(tmp_path: Path, remote: Path) -> Generator[GitManager, None, None]:
    """Another machine's clone of the same remote."""
    git = GitManager(tmp_path / "other-machine")
    git.clone(str(remote))
    yield git


@pytest.fixture
def run_git():
    """Run git directly, bypassing the code under test."""
    return _run_git


@pytest.fixture
def remote_file():
    """Content of a file on the remote's main branch, or None if absent."""
    return _remote_file
