"""
Configuration Management
========================

The workspace registry and sync settings persisted as JSON in the config
directory. The file is the source of truth: ``list_workspaces`` re-reads it
whenever it changed on disk, so a daemon notices workspaces added by a manual
``claude-sync add`` in another process.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from claude_sync.errors import ConfigError, WorkspaceError
from claude_sync.paths import SyncPaths
from claude_sync.utils.file_ops import safe_write_file
from claude_sync.utils.logging import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Workspace(_CamelModel):
    """A registered local directory."""

    path: Path
    name: str
    added_at: datetime = Field(default_factory=_utcnow)


class SyncRules(_CamelModel):
    """The three well-known rule filenames of every workspace."""

    global_file: str = "CLAUDE-GLOBAL.md"
    project_file: str = "CLAUDE-PROJECT.md"
    target_file: str = "CLAUDE.md"


class SyncConfig(_CamelModel):
    """Contents of ``config.json``."""

    repo_url: str | None = None
    auth_method: Literal["ssh", "https"] = "ssh"
    remote: str = "origin"
    branch: str = "main"
    sync_rules: SyncRules = Field(default_factory=SyncRules)
    workspaces: list[Workspace] = Field(default_factory=list)
    last_sync: datetime | None = None


class ConfigManager:
    """Loads, edits and saves the claude-sync configuration file."""

    def __init__(self, paths: SyncPaths):
        self.paths = paths
        self._config: SyncConfig | None = None
        self._loaded_mtime: float | None = None

    @property
    def config_path(self) -> Path:
        return self.paths.config_file

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> SyncConfig:
        """Read the configuration from disk.

        Raises:
            ConfigError: If the file is missing or is not a valid configuration
        """
        if not self.exists():
            raise ConfigError('Configuration not found. Run "claude-sync init" first.')
        try:
            mtime = self.config_path.stat().st_mtime
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
            config = SyncConfig.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as error:
            raise ConfigError(
                f"Invalid configuration in {self.config_path}: {error}",
                suggestion=f"Fix or delete {self.config_path}, then run \"claude-sync init\".",
            ) from error
        self._config = config
        self._loaded_mtime = mtime
        return config

    def reload(self) -> SyncConfig:
        """Drop the cached snapshot and read the file again."""
        self._config = None
        return self.load()

    @property
    def config(self) -> SyncConfig:
        if self._config is None:
            return self.load()
        return self._config

    def _refresh_if_changed(self) -> SyncConfig:
        try:
            mtime = self.config_path.stat().st_mtime
        except FileNotFoundError:
            return self.load()
        if self._config is None or mtime != self._loaded_mtime:
            return self.load()
        return self._config

    def create(self, **initial) -> SyncConfig:
        """Write a fresh configuration, overriding defaults with ``initial``."""
        self._config = SyncConfig(**initial)
        self.save()
        return self._config

    def save(self) -> None:
        if self._config is None:
            raise ConfigError("No configuration loaded")
        self.paths.config_dir.mkdir(parents=True, exist_ok=True)
        payload = self._config.model_dump(mode="json", by_alias=True)
        safe_write_file(self.config_path, json.dumps(payload, indent=2) + "\n")
        self._loaded_mtime = self.config_path.stat().st_mtime

    @property
    def sync_rules(self) -> SyncRules:
        return self._refresh_if_changed().sync_rules

    def list_workspaces(self) -> list[Workspace]:
        """Current workspaces, re-read from disk if the file changed."""
        return list(self._refresh_if_changed().workspaces)

    def add_workspace(self, workspace_path: str | Path) -> Path:
        """Register a workspace directory.

        Raises:
            WorkspaceError: If the path does not exist or is already registered
        """
        config = self._refresh_if_changed()
        normalized = Path(workspace_path).expanduser().resolve()
        if not normalized.is_dir():
            raise WorkspaceError(f"Workspace path does not exist: {normalized}")
        if any(w.path == normalized for w in config.workspaces):
            raise WorkspaceError(f"Workspace already registered: {normalized}")

        config.workspaces.append(Workspace(path=normalized, name=normalized.name))
        self.save()
        logger.info(f"Registered workspace {normalized}")
        return normalized

    def remove_workspace(self, workspace_path: str | Path) -> Path:
        """Unregister a workspace directory.

        Raises:
            WorkspaceError: If the path is not registered
        """
        config = self._refresh_if_changed()
        normalized = Path(workspace_path).expanduser().resolve()
        remaining = [w for w in config.workspaces if w.path != normalized]
        if len(remaining) == len(config.workspaces):
            raise WorkspaceError(f"Workspace not found: {normalized}")

        config.workspaces = remaining
        self.save()
        logger.info(f"Unregistered workspace {normalized}")
        return normalized

    def mark_synced(self) -> None:
        config = self._refresh_if_changed()
        config.last_sync = _utcnow()
        self.save()

    def reset(self) -> None:
        """Delete the configuration file."""
        self.config_path.unlink(missing_ok=True)
        self._config = None
        self._loaded_mtime = None
