"""
Repository Lock
===============

Cross-process advisory lock guarding every mutation of the shared repository
clone. A foreground watch, the background daemon and one-shot commands all use
the same marker file; whoever creates it owns the clone until it is deleted.

The marker is written to a private temporary file first and then hard-linked
into place, so the create-if-absent step is a single atomic filesystem
operation and no reader ever sees a half-written marker.
"""

import contextlib
import os
import socket
import tempfile
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path

from pydantic import BaseModel, ValidationError

from claude_sync.errors import LockTimeoutError
from claude_sync.utils.logging import get_logger

logger = get_logger(__name__)

LOCK_STALE_AFTER = 60.0
LOCK_RETRY_INTERVAL = 0.2
LOCK_MAX_RETRIES = 150


class LockRecord(BaseModel):
    """Contents of the lock marker."""

    pid: int
    hostname: str
    timestamp: int  # epoch milliseconds

    @property
    def age(self) -> float:
        return time.time() - self.timestamp / 1000.0


def _pid_alive(pid: int) -> bool:
    """Check if a PID is still running."""
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        # Process exists but owned by different user
        return True
    except OSError:
        return False


class GitLock:
    """Polling file lock with stale-marker reclamation.

    The exclusive create is the only arbiter, so two threads of one process
    contend exactly like two processes do. ``release`` is a no-op unless the
    calling thread is the one that acquired the lock.
    """

    def __init__(
        self,
        lock_file: Path,
        stale_after: float = LOCK_STALE_AFTER,
        retry_interval: float = LOCK_RETRY_INTERVAL,
        max_retries: int = LOCK_MAX_RETRIES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.lock_file = Path(lock_file)
        self.stale_after = stale_after
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self._sleep = sleep
        self._owner: int | None = None

    @property
    def held(self) -> bool:
        return self._owner is not None

    @property
    def held_by_current_thread(self) -> bool:
        return self._owner == threading.get_ident()

    def acquire(self) -> None:
        """Block until the lock is ours.

        Raises:
            LockTimeoutError: If the lock is still taken after ``max_retries`` polls
        """
        attempts = 0
        while attempts < self.max_retries:
            if self._try_acquire():
                self._owner = threading.get_ident()
                logger.debug(f"Acquired git lock {self.lock_file}")
                return

            marker = self.read_marker()
            if marker is None and not self.lock_file.exists():
                # Released between our create attempt and the read.
                continue

            if self._is_stale(marker):
                logger.info(f"Removing stale lock file {self.lock_file}")
                self._reclaim(marker)
                continue

            attempts += 1
            self._sleep(self.retry_interval)

        raise LockTimeoutError(self.lock_file, self.max_retries * self.retry_interval)

    def release(self) -> None:
        """Delete the marker if the calling thread holds it. Never raises."""
        if not self.held_by_current_thread:
            return
        self._owner = None
        try:
            self.lock_file.unlink(missing_ok=True)
            logger.debug(f"Released git lock {self.lock_file}")
        except OSError as error:
            logger.warning(f"Could not remove lock file {self.lock_file}: {error}")

    @contextlib.contextmanager
    def locked(self) -> Iterator["GitLock"]:
        """Run the enclosed block while holding the lock."""
        self.acquire()
        try:
            yield self
        finally:
            self.release()

    def read_marker(self) -> LockRecord | None:
        """Return the current marker, or None if there is none or it is unreadable."""
        try:
            return LockRecord.model_validate_json(self.lock_file.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError):
            return None

    def _try_acquire(self) -> bool:
        self.lock_file.parent.mkdir(parents=True, exist_ok=True)
        record = LockRecord(
            pid=os.getpid(),
            hostname=socket.gethostname(),
            timestamp=int(time.time() * 1000),
        )
        fd, temp_path = tempfile.mkstemp(dir=str(self.lock_file.parent), prefix=".git.lock.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.model_dump_json())
            os.link(temp_path, self.lock_file)
            return True
        except FileExistsError:
            return False
        finally:
            with contextlib.suppress(OSError):
                os.unlink(temp_path)

    def _is_stale(self, marker: LockRecord | None) -> bool:
        if marker is None:
            # Present but unreadable or corrupt
            return True
        if marker.age > self.stale_after:
            return True
        if marker.hostname == socket.gethostname():
            return not _pid_alive(marker.pid)
        return False

    def _reclaim(self, marker: LockRecord | None) -> None:
        # Only delete the marker that was judged stale, not a fresh one that
        # another process created in the meantime.
        if self.read_marker() != marker:
            return
        with contextlib.suppress(FileNotFoundError):
            self.lock_file.unlink()
