"""Utility modules for claude-sync."""

from claude_sync.utils.file_ops import copy_if_changed, read_text_or_empty, safe_write_file, write_if_changed
from claude_sync.utils.logging import LogContext, configure_logging, get_logger, log_execution

__all__ = [
    "LogContext",
    "configure_logging",
    "copy_if_changed",
    "get_logger",
    "log_execution",
    "read_text_or_empty",
    "safe_write_file",
    "write_if_changed",
]
