"""
Repository Gateway
==================

Every mutation of the shared repository clone goes through this module. Each
mutating call holds the ``GitLock`` for its whole duration, and network calls
(pull and push) run under ``retry_with_backoff``.
"""

import re
import shutil
import time
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from pydantic import BaseModel

from claude_sync.config import SyncRules
from claude_sync.errors import GitCommandError, InvariantViolationError, MergeConflictError, StashRecoveryError
from claude_sync.git.manager import CommitInfo, GitManager, RepositoryStatus
from claude_sync.git.retry import RetryPolicy, is_push_rejection, retry_with_backoff
from claude_sync.lock import GitLock
from claude_sync.paths import REPO_AGENTS_DIR, REPO_SKILLS_DIR
from claude_sync.utils.logging import get_logger

logger = get_logger(__name__)

AUTOSTASH_MESSAGE = "claude-sync autostash"
CONFLICT_PATTERN = re.compile(r"CONFLICT|Automatic merge failed|unmerged files", re.IGNORECASE)


class PushResult(BaseModel):
    pushed: bool
    message: str


class RemoveResult(BaseModel):
    removed: bool
    message: str


class RepositoryGateway:
    """Serialized, retry-safe access to the shared repository clone."""

    def __init__(
        self,
        git: GitManager,
        lock: GitLock,
        sync_rules: SyncRules,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.git = git
        self.lock = lock
        self.sync_rules = sync_rules
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def repo_path(self) -> Path:
        return self.git.repo_path

    def _ensure_shareable(self, *names: str) -> None:
        """Refuse to let the private-rules file anywhere near the repository."""
        private = self.sync_rules.project_file
        for name in names:
            if PurePosixPath(str(name).replace("\\", "/")).name == private:
                raise InvariantViolationError(
                    f"{private} must never be pushed to the shared repository. "
                    f"Only {self.sync_rules.global_file} is synced.",
                    suggestion="This is a bug in the caller: private rules stay in their workspace.",
                )

    def _push_with_retry(self, description: str) -> None:
        def rebase_if_rejected(error: BaseException, attempt: int) -> None:
            if is_push_rejection(error):
                logger.info("Remote has newer commits, rebasing before the next push")
                self.git.pull_rebase()

        retry_with_backoff(
            self.git.push,
            self.retry_policy,
            description,
            sleep=self._sleep,
            on_retry=rebase_if_rejected,
        )

    def pull(self) -> None:
        """Pull the remote branch, protecting uncommitted work with a stash.

        Raises:
            MergeConflictError: If the pull left conflicts behind
            StashRecoveryError: If the stash could not be re-applied
            TransientNetworkError: If the network kept failing
        """
        with self.lock.locked():
            stashed = False
            if not self.git.status().is_clean:
                stashed = self.git.stash_push(AUTOSTASH_MESSAGE)
                if stashed:
                    logger.debug("Stashed local changes before pulling")
            conflicted = False
            try:
                retry_with_backoff(self.git.pull, self.retry_policy, "git pull", sleep=self._sleep)
            except GitCommandError as error:
                if CONFLICT_PATTERN.search(f"{error.stdout}\n{error.stderr}"):
                    conflicted = True
                    detail = error.stdout or error.stderr
                    if stashed:
                        detail = f"{detail}\nLocal changes were kept in the stash as \"{AUTOSTASH_MESSAGE}\"; run git stash pop after resolving."
                    raise MergeConflictError(self.repo_path, detail) from error
                raise
            finally:
                # Popping onto a conflicted tree would fail; the stash is kept for manual recovery.
                if stashed and not conflicted:
                    self._pop_stash()
            logger.info("Pulled latest changes from the shared repository")

    def _pop_stash(self) -> None:
        try:
            self.git.stash_pop()
            logger.debug("Re-applied stashed local changes")
        except GitCommandError as error:
            raise StashRecoveryError(self.repo_path, error.stderr or error.stdout) from error

    def sync_file(self, source: Path, target_name: str, message: str) -> PushResult:
        """Copy ``source`` into the clone as ``target_name``, commit and push.

        Args:
            source: File to publish
            target_name: Path relative to the clone root, with ``/`` separators
            message: Commit message

        Returns:
            PushResult: ``pushed=False`` when the file was already up to date

        Raises:
            InvariantViolationError: If either name is the private-rules file
        """
        source = Path(source)
        self._ensure_shareable(source.name, target_name)

        with self.lock.locked():
            target_path = self.repo_path / target_name
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target_path)
            self.git.add(target_name)

            if not self.git.staged_changes(target_name):
                return self._push_pending_or_noop()

            self.git.commit(message)
            self._push_with_retry(f"git push ({target_name})")
            logger.info(f"Pushed {target_name} to the shared repository")
            return PushResult(pushed=True, message="Successfully pushed to the shared repository")

    def _push_pending_or_noop(self) -> PushResult:
        if self.git.unpushed_count() > 0:
            self._push_with_retry("git push (pending commits)")
            return PushResult(pushed=True, message="Pushed pending commits")
        return PushResult(pushed=False, message="No changes to commit")

    def stage_or_remove(self, target_name: str, message: str) -> RemoveResult:
        """Delete ``target_name`` from the clone, commit and push the removal.

        An empty parent directory is removed too.
        """
        self._ensure_shareable(target_name)

        with self.lock.locked():
            target_path = self.repo_path / target_name
            if not target_path.exists():
                return RemoveResult(removed=False, message=f"{target_name} not found in the shared repository")

            target_path.unlink()
            parent = target_path.parent
            keep = {self.repo_path, self.repo_path / REPO_SKILLS_DIR, self.repo_path / REPO_AGENTS_DIR}
            if parent not in keep and parent.is_dir() and not any(parent.iterdir()):
                parent.rmdir()

            self.git.remove(target_name)
            if not self.git.staged_changes(target_name):
                return RemoveResult(removed=False, message=f"{target_name} was not tracked")

            self.git.commit(message)
            self._push_with_retry(f"git push (remove {target_name})")
            logger.info(f"Removed {target_name} from the shared repository")
            return RemoveResult(removed=True, message=f"Removed {target_name} from the shared repository")

    def commit_and_push(self, message: str) -> PushResult:
        """Stage everything in the clone, commit if anything changed, push."""
        with self.lock.locked():
            self.git.add_all()
            if not self.git.staged_changes():
                return self._push_pending_or_noop()
            self.git.commit(message)
            self._push_with_retry("git push")
            return PushResult(pushed=True, message="Successfully pushed to the shared repository")

    def read_file(self, target_name: str) -> str | None:
        path = self.repo_path / target_name
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def get_status(self) -> RepositoryStatus:
        return self.git.status()

    def get_last_commit(self) -> CommitInfo | None:
        commits = self.git.log(max_count=1)
        return commits[0] if commits else None

    def has_pending_changes(self) -> bool:
        """True if the clone has uncommitted changes or commits not yet pushed."""
        return not self.git.status().is_clean or self.git.unpushed_count() > 0
