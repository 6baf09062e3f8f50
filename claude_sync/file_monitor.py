"""
Change Detector
===============

Watches every workspace, both global roots and the configuration file with a
watchdog ``Observer``. Raw filesystem events are debounced per path, then
handed to the ``ChangeRouter`` one path at a time.
"""

import threading
from collections.abc import Callable, Iterable
from pathlib import Path

from pydantic import BaseModel, ConfigDict
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from claude_sync.config import ConfigManager, Workspace
from claude_sync.environment import get_settings
from claude_sync.errors import ClaudeSyncError, ConfigError
from claude_sync.paths import SyncPaths
from claude_sync.router import ChangeEvent, ChangeKind, ChangeOutcome, ChangeRouter
from claude_sync.syncer import BulkSyncResult, Syncer
from claude_sync.utils.logging import get_logger

logger = get_logger(__name__)

CONFIG_DEBOUNCE = 1.0
STOP_TIMEOUT = 10.0


class WatchSpec(BaseModel):
    """One directory the observer watches."""

    model_config = ConfigDict(frozen=True)

    path: Path
    recursive: bool


def build_watch_set(workspaces: Iterable[Workspace], paths: SyncPaths) -> frozenset[WatchSpec]:
    """Directories to watch for the given workspaces.

    Each workspace root is watched without recursion so that build output and
    dependency trees never flood the observer; its ``.claude`` directory is
    watched recursively for local skills and agents. Both global roots are
    created if missing and watched recursively.
    """
    specs = set()
    for workspace in workspaces:
        root = Path(workspace.path)
        specs.add(WatchSpec(path=root, recursive=False))
        if (root / ".claude").is_dir():
            specs.add(WatchSpec(path=root / ".claude", recursive=True))

    for global_root in (paths.global_skills_dir, paths.global_agents_dir):
        global_root.mkdir(parents=True, exist_ok=True)
        specs.add(WatchSpec(path=global_root, recursive=True))
    return frozenset(specs)


class Debouncer:
    """Runs a callback once a key has been quiet for ``delay`` seconds.

    Scheduling a key again before it fires restarts its timer and replaces the
    callback, so the last scheduled callback wins.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._timers: dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(self, key: str, callback: Callable[[], None]) -> None:
        timer = threading.Timer(self.delay, self._fire, args=(key, callback))
        timer.daemon = True
        with self._lock:
            previous = self._timers.get(key)
            if previous is not None:
                previous.cancel()
            self._timers[key] = timer
        timer.start()

    def _fire(self, key: str, callback: Callable[[], None]) -> None:
        with self._lock:
            if self._timers.get(key) is not threading.current_thread():
                return
            del self._timers[key]
        callback()

    def cancel_all(self) -> int:
        """Cancel every pending timer. Returns how many were cancelled."""
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)

    def pending(self) -> list[str]:
        with self._lock:
            return sorted(self._timers)


def _event_path(raw: str | bytes) -> Path:
    if isinstance(raw, bytes):
        raw = raw.decode()
    return Path(raw)


class SyncEventHandler(FileSystemEventHandler):
    """Turns watchdog file events into debounced ``ChangeEvent``s."""

    def __init__(self, debouncer: Debouncer, on_change: Callable[[ChangeEvent], None]):
        super().__init__()
        self.debouncer = debouncer
        self.on_change = on_change

    def _emit(self, raw_path: str | bytes, kind: ChangeKind) -> None:
        change = ChangeEvent(path=_event_path(raw_path), kind=kind)
        self.debouncer.schedule(str(change.path), lambda: self.on_change(change))

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.ADD)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.CHANGE)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.REMOVE)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._emit(event.src_path, ChangeKind.REMOVE)
            self._emit(event.dest_path, ChangeKind.ADD)


class ConfigFileHandler(FileSystemEventHandler):
    """Calls ``on_change`` when the configuration file is written or replaced."""

    def __init__(self, config_file: Path, debouncer: Debouncer, on_change: Callable[[], None]):
        super().__init__()
        self.config_file = Path(config_file)
        self.debouncer = debouncer
        self.on_change = on_change

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        candidates = [event.src_path, getattr(event, "dest_path", "")]
        if any(c and _event_path(c) == self.config_file for c in candidates):
            self.debouncer.schedule(str(self.config_file), self.on_change)


class ChangeDetector:
    """Owns the observer, the watch set and the per-path processing guard."""

    def __init__(
        self,
        config: ConfigManager,
        paths: SyncPaths,
        router: ChangeRouter,
        syncer: Syncer,
        debounce: float | None = None,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self.config = config
        self.paths = paths
        self.router = router
        self.syncer = syncer
        self.debounce = get_settings().CLAUDE_SYNC_DEBOUNCE if debounce is None else debounce
        self._observer_factory = observer_factory
        self._observer = None
        self._debouncer = Debouncer(self.debounce)
        self._config_debouncer = Debouncer(min(self.debounce, CONFIG_DEBOUNCE))
        self._handler = SyncEventHandler(self._debouncer, self._on_change)
        self._watches: dict[WatchSpec, object] = {}
        self._config_watch = None
        self._workspace_paths: list[str] = []
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._in_flight: set[str] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def watch_set(self) -> frozenset[WatchSpec]:
        return frozenset(self._watches)

    def _ensure_observer(self):
        if self._observer is None:
            self._observer = self._observer_factory()
        return self._observer

    def start(self, initial_sweep: bool = True) -> None:
        """Sweep existing global resources, then start watching.

        Raises:
            ClaudeSyncError: If the detector is already running
            ConfigError: If no workspaces are registered
        """
        if self._running:
            raise ClaudeSyncError("Watcher is already running")
        workspaces = self.config.list_workspaces()
        if not workspaces:
            raise ConfigError('No workspaces registered. Use "claude-sync add <path>" to add workspaces.')

        if initial_sweep:
            self.sweep()

        observer = self._ensure_observer()
        self._workspace_paths = sorted(str(w.path) for w in workspaces)
        self.rebuild_watch_set(build_watch_set(workspaces, self.paths))

        self.paths.config_dir.mkdir(parents=True, exist_ok=True)
        config_handler = ConfigFileHandler(self.paths.config_file, self._config_debouncer, self.reload)
        self._config_watch = observer.schedule(config_handler, str(self.paths.config_dir), recursive=False)

        observer.start()
        self._running = True
        logger.info(f"Watching {len(workspaces)} workspace(s) and the global skills and agents roots")
        for spec in sorted(self._watches, key=lambda s: str(s.path)):
            logger.debug(f"  - {spec.path}{' (recursive)' if spec.recursive else ''}")

    def sweep(self) -> tuple[BulkSyncResult, BulkSyncResult]:
        """Push every existing global skill and agent once."""
        logger.info("Scanning for existing skills and agents to sync...")
        skills = self.syncer.sync_all_global_skills()
        agents = self.syncer.sync_all_global_agents()
        for label, result in (("skill", skills), ("agent", agents)):
            if result.synced:
                logger.info(f"✓ Synced {result.synced} existing {label}(s)")
            if result.failed:
                logger.error(f"✗ Failed to sync {result.failed} {label}(s)")
                for item in result.details:
                    if item.status == "failed":
                        logger.error(f"  {item.name}: {item.message}")
        return skills, agents

    def rebuild_watch_set(self, new_set: frozenset[WatchSpec]) -> tuple[frozenset[WatchSpec], frozenset[WatchSpec]]:
        """Bring the observer's watches in line with ``new_set``.

        Watches present in both sets are left untouched, so calling this twice
        with the same set changes nothing the second time.

        Returns:
            The specs that were added and the specs that were removed
        """
        observer = self._ensure_observer()
        current = frozenset(self._watches)
        removed = current - new_set
        added = set()

        for spec in removed:
            observer.unschedule(self._watches.pop(spec))
            logger.debug(f"Stopped watching {spec.path}")

        for spec in new_set - current:
            if not spec.path.is_dir():
                logger.warning(f"Watch path does not exist: {spec.path}")
                continue
            self._watches[spec] = observer.schedule(self._handler, str(spec.path), recursive=spec.recursive)
            added.add(spec)
            logger.debug(f"Watching {spec.path}")

        return frozenset(added), removed

    def reload(self) -> bool:
        """Re-read the workspace list and rebuild the watches if it changed.

        Returns:
            bool: True if the watch set was rebuilt
        """
        try:
            workspaces = self.config.reload().workspaces
        except ClaudeSyncError as error:
            logger.error(f"Failed to reload configuration: {error}")
            return False

        new_paths = sorted(str(w.path) for w in workspaces)
        if new_paths == self._workspace_paths:
            logger.debug("No workspace changes detected")
            return False

        logger.info(f"Workspaces changed: {len(self._workspace_paths)} → {len(new_paths)}")
        self._workspace_paths = new_paths
        added, removed = self.rebuild_watch_set(build_watch_set(workspaces, self.paths))
        logger.info(f"Watchers reloaded (+{len(added)} / -{len(removed)})")
        return True

    def _on_change(self, event: ChangeEvent) -> None:
        if self._running:
            self.process_event(event)

    def process_event(self, event: ChangeEvent) -> ChangeOutcome | None:
        """Route one change unless the same path is already being handled.

        Returns:
            The outcome, or None when the event was skipped
        """
        key = str(event.path)
        with self._lock:
            if key in self._in_flight:
                logger.info(f"Already processing {event.path.name}, skipping")
                return None
            self._in_flight.add(key)
        try:
            return self.router.route(event)
        finally:
            with self._idle:
                self._in_flight.discard(key)
                self._idle.notify_all()

    def stop(self, timeout: float = STOP_TIMEOUT) -> None:
        """Stop watching and wait for in-flight handling to finish. Idempotent."""
        cancelled = self._debouncer.cancel_all() + self._config_debouncer.cancel_all()
        if cancelled:
            logger.debug(f"Cancelled {cancelled} pending change(s)")
        self._running = False

        observer, self._observer = self._observer, None
        if observer is not None:
            if observer.is_alive():
                observer.stop()
                observer.join(timeout)
            self._watches.clear()
            self._config_watch = None

        with self._idle:
            if not self._idle.wait_for(lambda: not self._in_flight, timeout):
                logger.warning(f"Still processing {sorted(self._in_flight)} after {timeout}s")

    def status(self) -> dict:
        with self._lock:
            in_flight = sorted(self._in_flight)
        return {
            "running": self._running,
            "workspaces": len(self._workspace_paths),
            "watched_paths": sorted(str(spec.path) for spec in self._watches),
            "pending": self._debouncer.pending(),
            "in_flight": in_flight,
        }
