"""Command-line interface for claude-sync."""

from claude_sync.cli.main import app

__all__ = ["app"]
