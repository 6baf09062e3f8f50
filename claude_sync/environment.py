"""Environment configuration management."""

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def _is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ["true", "1", "yes"]


class SyncSettings(BaseModel):
    """Process-level settings read from the environment (and a ``.env`` file)."""

    CLAUDE_SYNC_LOG_LEVEL: str = Field(
        "INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    CLAUDE_SYNC_DEBUG: bool = Field(False, description="Enable debug logging and the log file")
    CLAUDE_SYNC_LOG_FILE: Optional[Path] = Field(None, description="Log file used in debug mode")
    CLAUDE_SYNC_HOME: Optional[Path] = Field(
        None, description="Home directory used to derive every claude-sync path"
    )
    CLAUDE_SYNC_DEBOUNCE: float = Field(
        2.0, ge=0.0, description="Seconds a file must stay quiet before it is processed"
    )
    invalid_log_level: Optional[str] = Field(None, exclude=True)

    @property
    def log_level(self) -> str:
        """Effective log level, DEBUG whenever debug mode is on."""
        if self.CLAUDE_SYNC_DEBUG:
            return "DEBUG"
        return self.CLAUDE_SYNC_LOG_LEVEL

    @property
    def home(self) -> Path:
        return self.CLAUDE_SYNC_HOME or Path.home()

    @classmethod
    def load(cls) -> "SyncSettings":
        """Load settings from environment variables."""
        level = os.getenv("CLAUDE_SYNC_LOG_LEVEL", "INFO").strip().upper()
        invalid = None
        if level not in VALID_LOG_LEVELS:
            invalid, level = level, "INFO"

        env_vars = {
            "CLAUDE_SYNC_LOG_LEVEL": level,
            "CLAUDE_SYNC_DEBUG": _is_truthy(os.getenv("CLAUDE_SYNC_DEBUG")),
            "invalid_log_level": invalid,
        }
        if os.getenv("CLAUDE_SYNC_LOG_FILE"):
            env_vars["CLAUDE_SYNC_LOG_FILE"] = Path(os.environ["CLAUDE_SYNC_LOG_FILE"]).expanduser()
        if os.getenv("CLAUDE_SYNC_HOME"):
            env_vars["CLAUDE_SYNC_HOME"] = Path(os.environ["CLAUDE_SYNC_HOME"]).expanduser()
        if os.getenv("CLAUDE_SYNC_DEBOUNCE"):
            env_vars["CLAUDE_SYNC_DEBOUNCE"] = float(os.environ["CLAUDE_SYNC_DEBOUNCE"])

        return cls(**env_vars)


# Global settings instance
_settings: Optional[SyncSettings] = None


def get_settings() -> SyncSettings:
    """Get the settings singleton."""
    global _settings
    if _settings is None:
        _settings = SyncSettings.load()
    return _settings


def reload_settings() -> SyncSettings:
    """Discard the cached settings and read the environment again."""
    global _settings
    _settings = SyncSettings.load()
    return _settings


def is_debug_enabled() -> bool:
    """Check if debug mode is enabled."""
    return get_settings().CLAUDE_SYNC_DEBUG
