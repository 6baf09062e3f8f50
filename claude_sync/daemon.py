"""
Daemon Orchestrator
===================

The long-running process: pull once, then watch until SIGINT or SIGTERM.
``build_daemon`` wires every component from the configured paths.
"""

import signal
import threading
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from claude_sync.config import ConfigManager
from claude_sync.file_monitor import ChangeDetector
from claude_sync.git.gateway import RepositoryGateway
from claude_sync.git.manager import GitManager
from claude_sync.lock import GitLock
from claude_sync.paths import SyncPaths, get_sync_paths
from claude_sync.router import ChangeRouter, FileClassifier
from claude_sync.syncer import Syncer
from claude_sync.utils.logging import get_logger

logger = get_logger(__name__)


class SyncServices(BaseModel):
    """Every engine component, wired to one path layout."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    paths: SyncPaths
    config: ConfigManager
    lock: GitLock
    git: GitManager
    gateway: RepositoryGateway
    syncer: Syncer


def build_services(paths: SyncPaths | None = None) -> SyncServices:
    """Wire the engine from the configuration file.

    Raises:
        ConfigError: If no configuration exists yet
    """
    paths = paths or get_sync_paths()
    config = ConfigManager(paths)
    sync_config = config.config
    lock = GitLock(paths.lock_file)
    git = GitManager(paths.repo_dir, remote=sync_config.remote, branch=sync_config.branch)
    gateway = RepositoryGateway(git, lock, sync_config.sync_rules)
    syncer = Syncer(config, paths, gateway)
    return SyncServices(paths=paths, config=config, lock=lock, git=git, gateway=gateway, syncer=syncer)


def build_detector(services: SyncServices, debounce: float | None = None) -> ChangeDetector:
    classifier = FileClassifier(services.paths, services.config.sync_rules)
    router = ChangeRouter(classifier, services.syncer)
    return ChangeDetector(services.config, services.paths, router, services.syncer, debounce=debounce)


class SyncDaemon:
    """Pull on start, watch until told to stop."""

    def __init__(
        self,
        config: ConfigManager,
        paths: SyncPaths,
        detector: ChangeDetector,
        syncer: Syncer,
        lock: GitLock,
        pull_on_start: bool = True,
    ):
        self.config = config
        self.paths = paths
        self.detector = detector
        self.syncer = syncer
        self.lock = lock
        self.pull_on_start = pull_on_start
        self._stop_event = threading.Event()
        self._started = False

    def start(self) -> None:
        """Pull the latest shared state, then start the change detector.

        A failed pull is not fatal: the daemon keeps running on local files.
        """
        if self.pull_on_start:
            self._pull()
        self.detector.start()
        self._started = True

    def _pull(self) -> None:
        logger.info("Pulling latest changes from the shared repository...")
        try:
            result = self.syncer.pull_and_propagate()
            if result.success:
                logger.info("✓ Successfully pulled latest changes")
            else:
                for error in result.errors:
                    logger.warning(f"⚠ {error}")
        except Exception as error:
            logger.warning(f"⚠ Could not pull from the shared repository: {error}")
            logger.info("Continuing with local files...")

    def stop(self) -> None:
        """Stop watching and give up the lock. Safe to call more than once."""
        self._stop_event.set()
        if not self._started:
            return
        self._started = False
        logger.info("Stopping watcher...")
        self.detector.stop()
        self.lock.release()
        logger.info("✓ Watcher stopped")

    def request_stop(self, signum=None, frame=None) -> None:
        if signum is not None:
            logger.debug(f"Received signal {signum}")
        self._stop_event.set()

    def run(self) -> None:
        """Start, block until SIGINT or SIGTERM, then stop."""
        previous = {sig: signal.signal(sig, self.request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}
        try:
            self.start()
            logger.info("Watching for changes... Press Ctrl+C to stop")
            while not self._stop_event.wait(1.0):
                pass
        finally:
            self.stop()
            for sig, handler in previous.items():
                signal.signal(sig, handler)


def build_daemon(
    paths: Path | SyncPaths | None = None,
    debounce: float | None = None,
    pull_on_start: bool = True,
) -> SyncDaemon:
    """Create a daemon for the configured paths, or for ``paths`` if given."""
    if paths is not None and not isinstance(paths, SyncPaths):
        paths = get_sync_paths(Path(paths))
    services = build_services(paths)
    detector = build_detector(services, debounce=debounce)
    return SyncDaemon(
        services.config, services.paths, detector, services.syncer, services.lock, pull_on_start=pull_on_start
    )
